import math

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from .errors import ValidationError
from .models import Guru, Kelas, ListPembayaran, Pembayaran, Rapor, Siswa
from .schemas import (
    ApproverSummary,
    KelasSummary,
    Pagination,
    PaymentOut,
    PaymentTypeOut,
    PaymentTypeSummary,
    RaporOut,
    SiswaSummary,
    StudentOut,
    SubjectOut,
    TeacherOut,
)


MAX_PAGE_SIZE = 100


def _float(value) -> float | None:
    return float(value) if value is not None else None


def paginate(db: Session, stmt: Select, page: int, limit: int) -> tuple[list, Pagination]:
    if page < 1:
        raise ValidationError("page harus >= 1")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit harus antara 1-{MAX_PAGE_SIZE}")

    total = db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0
    rows = db.scalars(stmt.offset((page - 1) * limit).limit(limit)).unique().all()
    meta = Pagination(total=total, page=page, limit=limit, total_pages=math.ceil(total / limit) if total else 0)
    return list(rows), meta


def kelas_summary(kelas: Kelas | None) -> KelasSummary | None:
    if kelas is None:
        return None
    return KelasSummary(id=kelas.id, nama_kelas=kelas.nama_kelas, tingkat=kelas.tingkat)


def siswa_summary(siswa: Siswa | None) -> SiswaSummary | None:
    if siswa is None:
        return None
    return SiswaSummary(
        id=siswa.id,
        nisn=siswa.nisn,
        nama_lengkap=siswa.nama_lengkap,
        kelas=kelas_summary(siswa.kelas),
    )


def payment_type_summary(item: ListPembayaran | None) -> PaymentTypeSummary | None:
    if item is None:
        return None
    return PaymentTypeSummary(
        id=item.id,
        nama_pembayaran=item.nama_pembayaran,
        nominal=float(item.nominal),
        periode=item.periode,
    )


def payment_out(payment: Pembayaran) -> PaymentOut:
    approver = None
    if payment.approver is not None:
        approver = ApproverSummary(id=payment.approver.id, username=payment.approver.username)
    return PaymentOut(
        id=payment.id,
        siswa_id=payment.siswa_id,
        list_pembayaran_id=payment.list_pembayaran_id,
        jumlah_bayar=float(payment.jumlah_bayar),
        tanggal_bayar=payment.tanggal_bayar,
        bukti_bayar=payment.bukti_bayar,
        status=payment.status,
        approved_by=payment.approved_by,
        approved_at=payment.approved_at,
        catatan=payment.catatan,
        created_at=payment.created_at,
        siswa=siswa_summary(payment.siswa),
        jenis_pembayaran=payment_type_summary(payment.jenis_pembayaran),
        approver=approver,
    )


def payment_type_out(item: ListPembayaran) -> PaymentTypeOut:
    return PaymentTypeOut(
        id=item.id,
        nama_pembayaran=item.nama_pembayaran,
        nominal=float(item.nominal),
        periode=item.periode,
        tingkat=item.tingkat,
        deskripsi=item.deskripsi,
        status=item.status,
    )


def student_out(siswa: Siswa) -> StudentOut:
    return StudentOut(
        id=siswa.id,
        user_id=siswa.user_id,
        nisn=siswa.nisn,
        nama_lengkap=siswa.nama_lengkap,
        jenis_kelamin=siswa.jenis_kelamin,
        tanggal_lahir=siswa.tanggal_lahir,
        tempat_lahir=siswa.tempat_lahir,
        alamat=siswa.alamat,
        nama_orang_tua=siswa.nama_orang_tua,
        telepon_orang_tua=siswa.telepon_orang_tua,
        email=siswa.email,
        status=siswa.status,
        username=siswa.user.username if siswa.user else None,
        kelas=kelas_summary(siswa.kelas),
        created_at=siswa.created_at,
    )


def teacher_out(guru: Guru) -> TeacherOut:
    return TeacherOut(
        id=guru.id,
        user_id=guru.user_id,
        nip=guru.nip,
        nama_lengkap=guru.nama_lengkap,
        jenis_kelamin=guru.jenis_kelamin,
        tanggal_lahir=guru.tanggal_lahir,
        alamat=guru.alamat,
        telepon=guru.telepon,
        email=guru.email,
        username=guru.user.username if guru.user else None,
        is_active=guru.user.is_active if guru.user else False,
    )


def rapor_out(rapor: Rapor) -> RaporOut:
    subject = None
    if rapor.mata_pelajaran is not None:
        subject = SubjectOut(
            id=rapor.mata_pelajaran.id,
            kode_mapel=rapor.mata_pelajaran.kode_mapel,
            nama_mapel=rapor.mata_pelajaran.nama_mapel,
        )
    return RaporOut(
        id=rapor.id,
        siswa_id=rapor.siswa_id,
        mata_pelajaran_id=rapor.mata_pelajaran_id,
        kelas_id=rapor.kelas_id,
        semester=rapor.semester,
        tahun_ajaran=rapor.tahun_ajaran,
        nilai_harian=_float(rapor.nilai_harian),
        nilai_uts=_float(rapor.nilai_uts),
        nilai_uas=_float(rapor.nilai_uas),
        nilai_akhir=_float(rapor.nilai_akhir),
        predikat=rapor.predikat,
        catatan=rapor.catatan,
        mata_pelajaran=subject,
        siswa=siswa_summary(rapor.siswa),
    )
