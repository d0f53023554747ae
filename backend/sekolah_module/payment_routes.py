from datetime import date

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.orm import Session

from .actor import Actor
from .database import get_db_session
from .errors import success
from .middleware import require_roles
from .models import PaymentStatus, UserRole
from .payment_service import (
    approve_payment,
    create_payment,
    delete_payment,
    get_payment,
    get_statistics,
    list_payments,
    list_payments_by_student,
    reject_payment,
    update_payment,
)
from .schemas import ApproveRequest, RejectRequest
from .uploads import ProofFile

router = APIRouter(prefix="/payments", tags=["Pembayaran"])

admin_only = require_roles(UserRole.ADMIN)


def _proof(upload: UploadFile | None) -> ProofFile | None:
    if upload is None or not upload.filename:
        return None
    return ProofFile(filename=upload.filename, content_type=upload.content_type, content=upload.file.read())


@router.get("")
def index(
    siswa_id: int | None = Query(default=None),
    list_pembayaran_id: int | None = Query(default=None),
    status_filter: PaymentStatus | None = Query(default=None, alias="status"),
    tanggal_mulai: date | None = Query(default=None),
    tanggal_selesai: date | None = Query(default=None),
    page: int = Query(default=1),
    limit: int = Query(default=10),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    result = list_payments(
        db,
        siswa_id=siswa_id,
        list_pembayaran_id=list_pembayaran_id,
        status=status_filter,
        tanggal_mulai=tanggal_mulai,
        tanggal_selesai=tanggal_selesai,
        page=page,
        limit=limit,
    )
    return success(result, "Data pembayaran berhasil diambil")


@router.get("/rekap/statistik")
def statistics(
    tahun: int | None = Query(default=None),
    bulan: int | None = Query(default=None),
    kelas_id: int | None = Query(default=None),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    return success(get_statistics(db, tahun=tahun, bulan=bulan, kelas_id=kelas_id), "Rekap pembayaran berhasil diambil")


@router.get("/siswa/{siswa_id}")
def by_student(
    siswa_id: int,
    status_filter: PaymentStatus | None = Query(default=None, alias="status"),
    tahun: int | None = Query(default=None),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(require_roles(UserRole.ADMIN, UserRole.GURU, UserRole.SISWA)),
):
    result = list_payments_by_student(db, siswa_id, actor=actor, status=status_filter, tahun=tahun)
    return success(result, "Data pembayaran siswa berhasil diambil")


@router.get("/{payment_id}")
def show(
    payment_id: int,
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(require_roles(UserRole.ADMIN, UserRole.GURU)),
):
    return success(get_payment(db, payment_id), "Data pembayaran berhasil diambil")


@router.post("", status_code=status.HTTP_201_CREATED)
def create(
    siswa_id: int | None = Form(default=None),
    list_pembayaran_id: int | None = Form(default=None),
    jumlah_bayar: str | None = Form(default=None),
    tanggal_bayar: date | None = Form(default=None),
    catatan: str | None = Form(default=None),
    bukti_bayar: UploadFile | None = File(default=None),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(require_roles(UserRole.ADMIN, UserRole.GURU, UserRole.SISWA)),
):
    payment = create_payment(
        db,
        siswa_id=siswa_id,
        list_pembayaran_id=list_pembayaran_id,
        jumlah_bayar=jumlah_bayar,
        tanggal_bayar=tanggal_bayar,
        actor=actor,
        proof=_proof(bukti_bayar),
        catatan=catatan,
    )
    return success(payment, "Pembayaran berhasil ditambahkan")


@router.put("/{payment_id}")
def edit(
    payment_id: int,
    jumlah_bayar: str | None = Form(default=None),
    tanggal_bayar: date | None = Form(default=None),
    catatan: str | None = Form(default=None),
    bukti_bayar: UploadFile | None = File(default=None),
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(require_roles(UserRole.ADMIN, UserRole.GURU)),
):
    payment = update_payment(
        db,
        payment_id,
        jumlah_bayar=jumlah_bayar,
        tanggal_bayar=tanggal_bayar,
        catatan=catatan,
        proof=_proof(bukti_bayar),
    )
    return success(payment, "Pembayaran berhasil diupdate")


@router.put("/{payment_id}/approve")
def approve(
    payment_id: int,
    payload: ApproveRequest | None = None,
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    payment = approve_payment(db, payment_id, actor=actor, catatan=payload.catatan if payload else None)
    return success(payment, "Pembayaran berhasil disetujui")


@router.put("/{payment_id}/reject")
def reject(
    payment_id: int,
    payload: RejectRequest | None = None,
    db: Session = Depends(get_db_session),
    actor: Actor = Depends(admin_only),
):
    payment = reject_payment(db, payment_id, actor=actor, catatan=payload.catatan if payload else None)
    return success(payment, "Pembayaran berhasil ditolak")


@router.delete("/{payment_id}")
def destroy(payment_id: int, db: Session = Depends(get_db_session), actor: Actor = Depends(admin_only)):
    delete_payment(db, payment_id)
    return success(message="Pembayaran berhasil dihapus")
