from datetime import date, datetime

from pydantic import BaseModel, Field

from .models import CatalogStatus, PaymentStatus, Periode, StudentStatus, UserRole


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1)


class PasswordChangeRequest(BaseModel):
    old_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


class UserOut(BaseModel):
    id: int
    username: str
    role: UserRole
    is_active: bool = True
    profile: dict | None = None


class LoginResponse(BaseModel):
    token: str
    user: UserOut


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


# Reference summaries used when joining records together


class KelasSummary(BaseModel):
    id: int
    nama_kelas: str
    tingkat: int


class SiswaSummary(BaseModel):
    id: int
    nisn: str
    nama_lengkap: str
    kelas: KelasSummary | None = None


class PaymentTypeSummary(BaseModel):
    id: int
    nama_pembayaran: str
    nominal: float
    periode: Periode


class ApproverSummary(BaseModel):
    id: int
    username: str


# Payments


class PaymentOut(BaseModel):
    id: int
    siswa_id: int
    list_pembayaran_id: int
    jumlah_bayar: float
    tanggal_bayar: date
    bukti_bayar: str | None = None
    status: PaymentStatus
    approved_by: int | None = None
    approved_at: datetime | None = None
    catatan: str | None = None
    created_at: datetime | None = None
    siswa: SiswaSummary | None = None
    jenis_pembayaran: PaymentTypeSummary | None = None
    approver: ApproverSummary | None = None


class PaymentPage(BaseModel):
    pembayaran: list[PaymentOut]
    pagination: Pagination


class StatusBucket(BaseModel):
    count: int = 0
    nominal: float = 0.0


class PaymentStatistics(BaseModel):
    total_transaksi: int
    total_nominal: float
    approved: StatusBucket
    pending: StatusBucket
    rejected: StatusBucket


class PaymentRecap(BaseModel):
    periode: dict[str, str]
    statistik: PaymentStatistics


class StudentPaymentStats(BaseModel):
    total_pembayaran: int
    total_nominal: float
    approved: int
    pending: int
    rejected: int


class StudentPayments(BaseModel):
    siswa: SiswaSummary
    pembayaran: list[PaymentOut]
    statistik: StudentPaymentStats


class RejectRequest(BaseModel):
    catatan: str | None = None


class ApproveRequest(BaseModel):
    catatan: str | None = None


# Payment type catalog


class PaymentTypeCreate(BaseModel):
    nama_pembayaran: str | None = None
    nominal: float | None = None
    periode: str | None = None
    tingkat: int | None = None
    deskripsi: str | None = None


class PaymentTypeUpdate(BaseModel):
    nama_pembayaran: str | None = None
    nominal: float | None = None
    periode: str | None = None
    tingkat: int | None = None
    deskripsi: str | None = None
    status: str | None = None


class PaymentTypeOut(BaseModel):
    id: int
    nama_pembayaran: str
    nominal: float
    periode: Periode
    tingkat: int
    deskripsi: str | None = None
    status: CatalogStatus


class PaymentTypePage(BaseModel):
    list_pembayaran: list[PaymentTypeOut]
    pagination: Pagination


# Roster


class StudentCreate(BaseModel):
    nisn: str | None = None
    nama_lengkap: str | None = None
    jenis_kelamin: str | None = None
    tanggal_lahir: date | None = None
    tempat_lahir: str | None = None
    alamat: str | None = None
    nama_orang_tua: str | None = None
    telepon_orang_tua: str | None = None
    email: str | None = None
    kelas_id: int | None = None
    status: StudentStatus = StudentStatus.AKTIF
    username: str | None = None
    password: str | None = None


class StudentUpdate(BaseModel):
    nama_lengkap: str | None = None
    jenis_kelamin: str | None = None
    tanggal_lahir: date | None = None
    tempat_lahir: str | None = None
    alamat: str | None = None
    nama_orang_tua: str | None = None
    telepon_orang_tua: str | None = None
    email: str | None = None
    kelas_id: int | None = None
    status: StudentStatus | None = None


class StudentOut(BaseModel):
    id: int
    user_id: int
    nisn: str
    nama_lengkap: str
    jenis_kelamin: str
    tanggal_lahir: date | None = None
    tempat_lahir: str | None = None
    alamat: str | None = None
    nama_orang_tua: str | None = None
    telepon_orang_tua: str | None = None
    email: str | None = None
    status: StudentStatus
    username: str | None = None
    kelas: KelasSummary | None = None
    created_at: datetime | None = None


class StudentPage(BaseModel):
    siswa: list[StudentOut]
    pagination: Pagination


class StudentCreated(BaseModel):
    siswa: StudentOut
    credentials: dict[str, str]


class TeacherCreate(BaseModel):
    nip: str | None = None
    nama_lengkap: str | None = None
    jenis_kelamin: str | None = None
    tanggal_lahir: date | None = None
    alamat: str | None = None
    telepon: str | None = None
    email: str | None = None
    username: str | None = None


class TeacherUpdate(BaseModel):
    nama_lengkap: str | None = None
    jenis_kelamin: str | None = None
    tanggal_lahir: date | None = None
    alamat: str | None = None
    telepon: str | None = None
    email: str | None = None


class TeacherOut(BaseModel):
    id: int
    user_id: int
    nip: str
    nama_lengkap: str
    jenis_kelamin: str
    tanggal_lahir: date | None = None
    alamat: str | None = None
    telepon: str | None = None
    email: str | None = None
    username: str | None = None
    is_active: bool = True


class TeacherCreated(BaseModel):
    guru: TeacherOut
    credentials: dict[str, str]


class KelasCreate(BaseModel):
    nama_kelas: str | None = None
    tingkat: int | None = None
    tahun_ajaran: str | None = None
    guru_id: int | None = None


class KelasUpdate(BaseModel):
    nama_kelas: str | None = None
    tingkat: int | None = None
    tahun_ajaran: str | None = None
    guru_id: int | None = None


class KelasOut(BaseModel):
    id: int
    nama_kelas: str
    tingkat: int
    tahun_ajaran: str
    guru_id: int | None = None
    wali_kelas: str | None = None
    jumlah_siswa: int = 0


class KelasDetail(KelasOut):
    siswa: list[SiswaSummary] = []


class AssignStudentsRequest(BaseModel):
    siswa_ids: list[int] = Field(default_factory=list)


# Grades


class SubjectCreate(BaseModel):
    kode_mapel: str = Field(min_length=1, max_length=20)
    nama_mapel: str = Field(min_length=1, max_length=100)


class SubjectOut(BaseModel):
    id: int
    kode_mapel: str
    nama_mapel: str


class RaporCreate(BaseModel):
    siswa_id: int | None = None
    mata_pelajaran_id: int | None = None
    kelas_id: int | None = None
    semester: str | None = None
    tahun_ajaran: str | None = None
    nilai_harian: float | None = None
    nilai_uts: float | None = None
    nilai_uas: float | None = None
    catatan: str | None = None


class RaporUpdate(BaseModel):
    nilai_harian: float | None = None
    nilai_uts: float | None = None
    nilai_uas: float | None = None
    catatan: str | None = None


class RaporOut(BaseModel):
    id: int
    siswa_id: int
    mata_pelajaran_id: int
    kelas_id: int
    semester: str
    tahun_ajaran: str
    nilai_harian: float | None = None
    nilai_uts: float | None = None
    nilai_uas: float | None = None
    nilai_akhir: float | None = None
    predikat: str | None = None
    catatan: str | None = None
    mata_pelajaran: SubjectOut | None = None
    siswa: SiswaSummary | None = None


# Chatbot


class ChatRequest(BaseModel):
    message: str | None = None
    context: dict | None = None


class ChatReply(BaseModel):
    message: str
    data: dict | list | None = None
    intent: str
    confidence: float
    entities: dict = Field(default_factory=dict)


class IntentCreate(BaseModel):
    intent_name: str | None = None
    description: str | None = None


class ResponseCreate(BaseModel):
    response_text: str | None = None
    priority: int | None = None


class ResponseOut(BaseModel):
    id: int
    intent_id: int
    response_text: str
    priority: int


class IntentOut(BaseModel):
    id: int
    intent_name: str
    description: str | None = None
    responses: list[ResponseOut] = []


# Excel import


class ImportSuccess(BaseModel):
    row: int
    nisn: str
    nama: str
    username: str


class ImportFailure(BaseModel):
    row: int
    nisn: str | None = None
    nama: str | None = None
    error: str


class ImportResult(BaseModel):
    totalRows: int
    successCount: int
    failedCount: int
    successDetails: list[ImportSuccess]
    failedDetails: list[ImportFailure]
