import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


def _values(enum_cls):
    return [member.value for member in enum_cls]


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    GURU = "guru"
    SISWA = "siswa"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class StudentStatus(str, enum.Enum):
    AKTIF = "aktif"
    LULUS = "lulus"
    PINDAH = "pindah"
    KELUAR = "keluar"


class Periode(str, enum.Enum):
    BULANAN = "bulanan"
    SEMESTER = "semester"
    TAHUNAN = "tahunan"


class CatalogStatus(str, enum.Enum):
    AKTIF = "aktif"
    NONAKTIF = "nonaktif"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(Enum(UserRole, values_callable=_values), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class Guru(Base):
    __tablename__ = "guru"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    nip: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    nama_lengkap: Mapped[str] = mapped_column(String(100), nullable=False)
    jenis_kelamin: Mapped[str] = mapped_column(String(1), nullable=False)
    tanggal_lahir: Mapped[date | None] = mapped_column(Date, nullable=True)
    alamat: Mapped[str | None] = mapped_column(Text, nullable=True)
    telepon: Mapped[str | None] = mapped_column(String(20), nullable=True)
    email: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    user: Mapped[User] = relationship("User")
    kelas_diampu: Mapped[list["Kelas"]] = relationship("Kelas", back_populates="wali_kelas")


class Kelas(Base):
    __tablename__ = "kelas"
    __table_args__ = (UniqueConstraint("nama_kelas", "tahun_ajaran", name="uq_kelas_nama_tahun"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    nama_kelas: Mapped[str] = mapped_column(String(20), nullable=False)
    tingkat: Mapped[int] = mapped_column(Integer, nullable=False)
    tahun_ajaran: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    guru_id: Mapped[int | None] = mapped_column(ForeignKey("guru.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    wali_kelas: Mapped[Guru | None] = relationship("Guru", back_populates="kelas_diampu")
    siswa: Mapped[list["Siswa"]] = relationship("Siswa", back_populates="kelas")


class Siswa(Base):
    __tablename__ = "siswa"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    nisn: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    nama_lengkap: Mapped[str] = mapped_column(String(100), nullable=False)
    jenis_kelamin: Mapped[str] = mapped_column(String(1), nullable=False)
    tanggal_lahir: Mapped[date | None] = mapped_column(Date, nullable=True)
    tempat_lahir: Mapped[str | None] = mapped_column(String(100), nullable=True)
    alamat: Mapped[str | None] = mapped_column(Text, nullable=True)
    nama_orang_tua: Mapped[str | None] = mapped_column(String(100), nullable=True)
    telepon_orang_tua: Mapped[str | None] = mapped_column(String(20), nullable=True)
    email: Mapped[str | None] = mapped_column(String(100), nullable=True)
    kelas_id: Mapped[int | None] = mapped_column(ForeignKey("kelas.id", ondelete="SET NULL"), nullable=True, index=True)
    status: Mapped[StudentStatus] = mapped_column(
        Enum(StudentStatus, values_callable=_values), default=StudentStatus.AKTIF, nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    user: Mapped[User] = relationship("User")
    kelas: Mapped[Kelas | None] = relationship("Kelas", back_populates="siswa")


class ListPembayaran(Base):
    __tablename__ = "list_pembayaran"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    nama_pembayaran: Mapped[str] = mapped_column(String(100), nullable=False)
    nominal: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    periode: Mapped[Periode] = mapped_column(Enum(Periode, values_callable=_values), nullable=False)
    tingkat: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    deskripsi: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[CatalogStatus] = mapped_column(
        Enum(CatalogStatus, values_callable=_values), default=CatalogStatus.AKTIF, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)


class Pembayaran(Base):
    __tablename__ = "pembayaran"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    siswa_id: Mapped[int] = mapped_column(ForeignKey("siswa.id"), nullable=False, index=True)
    list_pembayaran_id: Mapped[int] = mapped_column(ForeignKey("list_pembayaran.id"), nullable=False, index=True)
    jumlah_bayar: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    tanggal_bayar: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    bukti_bayar: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, values_callable=_values), default=PaymentStatus.PENDING, nullable=False, index=True
    )
    approved_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    catatan: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    siswa: Mapped[Siswa] = relationship("Siswa")
    jenis_pembayaran: Mapped[ListPembayaran] = relationship("ListPembayaran")
    approver: Mapped[User | None] = relationship("User")


class MataPelajaran(Base):
    __tablename__ = "mata_pelajaran"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    kode_mapel: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    nama_mapel: Mapped[str] = mapped_column(String(100), nullable=False)


class Rapor(Base):
    __tablename__ = "rapor"
    __table_args__ = (
        UniqueConstraint("siswa_id", "mata_pelajaran_id", "semester", "tahun_ajaran", name="uq_rapor_periode"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    siswa_id: Mapped[int] = mapped_column(ForeignKey("siswa.id"), nullable=False, index=True)
    mata_pelajaran_id: Mapped[int] = mapped_column(ForeignKey("mata_pelajaran.id"), nullable=False)
    kelas_id: Mapped[int] = mapped_column(ForeignKey("kelas.id"), nullable=False, index=True)
    semester: Mapped[str] = mapped_column(String(1), nullable=False)
    tahun_ajaran: Mapped[str] = mapped_column(String(20), nullable=False)
    nilai_harian: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    nilai_uts: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    nilai_uas: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    nilai_akhir: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    predikat: Mapped[str | None] = mapped_column(String(2), nullable=True)
    catatan: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    siswa: Mapped[Siswa] = relationship("Siswa")
    mata_pelajaran: Mapped[MataPelajaran] = relationship("MataPelajaran")
    kelas: Mapped[Kelas] = relationship("Kelas")


class ChatbotIntent(Base):
    __tablename__ = "chatbot_intents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    intent_name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    responses: Mapped[list["ChatbotResponse"]] = relationship(
        "ChatbotResponse", back_populates="intent", cascade="all, delete-orphan"
    )


class ChatbotResponse(Base):
    __tablename__ = "chatbot_responses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    intent_id: Mapped[int] = mapped_column(ForeignKey("chatbot_intents.id"), nullable=False, index=True)
    response_text: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    intent: Mapped[ChatbotIntent] = relationship("ChatbotIntent", back_populates="responses")


class ChatbotLog(Base):
    __tablename__ = "chatbot_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    user_message: Mapped[str] = mapped_column(Text, nullable=False)
    bot_response: Mapped[str] = mapped_column(Text, nullable=False)
    intent_id: Mapped[int | None] = mapped_column(ForeignKey("chatbot_intents.id"), nullable=True)
    confidence_score: Mapped[float | None] = mapped_column(Numeric(5, 4, asdecimal=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)

    intent: Mapped[ChatbotIntent | None] = relationship("ChatbotIntent")
