import logging
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from .database import unit_of_work
from .errors import NotFoundError, ValidationError
from .models import CatalogStatus, ListPembayaran, Pembayaran, Periode
from .presenters import paginate, payment_type_out
from .schemas import PaymentTypeOut, PaymentTypePage


logger = logging.getLogger(__name__)

MAX_TINGKAT = 6


def _periode(value: str) -> Periode:
    try:
        return Periode(value)
    except ValueError as exc:
        raise ValidationError("Periode harus bulanan, semester, atau tahunan") from exc


def _nominal(value) -> Decimal:
    try:
        nominal = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("Nominal tidak valid") from exc
    if not nominal.is_finite() or nominal <= 0:
        raise ValidationError("Nominal harus lebih dari 0")
    return nominal


def _tingkat(value: int) -> int:
    if not 0 <= value <= MAX_TINGKAT:
        raise ValidationError(f"Tingkat harus antara 0-{MAX_TINGKAT}")
    return value


def _get(db: Session, type_id: int) -> ListPembayaran:
    item = db.get(ListPembayaran, type_id)
    if not item:
        raise NotFoundError("Jenis pembayaran tidak ditemukan")
    return item


def list_payment_types(
    db: Session,
    *,
    search: str | None = None,
    periode: str | None = None,
    tingkat: int | None = None,
    status: str | None = CatalogStatus.AKTIF.value,
    page: int = 1,
    limit: int = 10,
) -> PaymentTypePage:
    stmt = select(ListPembayaran)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(ListPembayaran.nama_pembayaran.ilike(pattern), ListPembayaran.deskripsi.ilike(pattern)))
    if periode:
        stmt = stmt.where(ListPembayaran.periode == _periode(periode))
    if tingkat is not None:
        stmt = stmt.where(ListPembayaran.tingkat == tingkat)
    if status:
        try:
            stmt = stmt.where(ListPembayaran.status == CatalogStatus(status))
        except ValueError as exc:
            raise ValidationError("Status harus aktif atau nonaktif") from exc
    stmt = stmt.order_by(ListPembayaran.tingkat, ListPembayaran.nama_pembayaran)

    rows, meta = paginate(db, stmt, page, limit)
    return PaymentTypePage(list_pembayaran=[payment_type_out(item) for item in rows], pagination=meta)


def get_payment_type(db: Session, type_id: int) -> PaymentTypeOut:
    return payment_type_out(_get(db, type_id))


def create_payment_type(
    db: Session,
    *,
    nama_pembayaran: str | None,
    nominal,
    periode: str | None,
    tingkat: int | None = None,
    deskripsi: str | None = None,
) -> PaymentTypeOut:
    if not nama_pembayaran or nominal is None or not periode:
        raise ValidationError("Nama pembayaran, nominal, dan periode wajib diisi")

    item = ListPembayaran(
        nama_pembayaran=nama_pembayaran.strip(),
        nominal=_nominal(nominal),
        periode=_periode(periode),
        tingkat=_tingkat(tingkat or 0),
        deskripsi=deskripsi,
        status=CatalogStatus.AKTIF,
    )
    with unit_of_work(db):
        db.add(item)
    logger.info(f"Payment type {item.id} '{item.nama_pembayaran}' created")
    return payment_type_out(item)


def update_payment_type(
    db: Session,
    type_id: int,
    *,
    nama_pembayaran: str | None = None,
    nominal=None,
    periode: str | None = None,
    tingkat: int | None = None,
    deskripsi: str | None = None,
    status: str | None = None,
) -> PaymentTypeOut:
    item = _get(db, type_id)

    if nama_pembayaran:
        item.nama_pembayaran = nama_pembayaran.strip()
    if nominal is not None:
        item.nominal = _nominal(nominal)
    if periode:
        item.periode = _periode(periode)
    if tingkat is not None:
        item.tingkat = _tingkat(tingkat)
    if deskripsi is not None:
        item.deskripsi = deskripsi
    if status:
        try:
            item.status = CatalogStatus(status)
        except ValueError as exc:
            raise ValidationError("Status harus aktif atau nonaktif") from exc

    with unit_of_work(db):
        db.add(item)
    return payment_type_out(item)


def delete_payment_type(db: Session, type_id: int) -> None:
    item = _get(db, type_id)
    used = db.scalar(select(func.count(Pembayaran.id)).where(Pembayaran.list_pembayaran_id == type_id)) or 0
    if used:
        raise ValidationError(f"Jenis pembayaran tidak bisa dihapus karena sudah digunakan di {used} transaksi")

    with unit_of_work(db):
        db.delete(item)
    logger.info(f"Payment type {type_id} deleted")


def toggle_payment_type_status(db: Session, type_id: int) -> PaymentTypeOut:
    item = _get(db, type_id)
    item.status = CatalogStatus.NONAKTIF if item.status == CatalogStatus.AKTIF else CatalogStatus.AKTIF
    with unit_of_work(db):
        db.add(item)
    logger.info(f"Payment type {type_id} is now {item.status.value}")
    return payment_type_out(item)


def list_payment_types_for_tingkat(db: Session, tingkat: int) -> list[PaymentTypeOut]:
    """Active payment types that apply to a grade level, including the all-levels ones."""
    if not 1 <= tingkat <= MAX_TINGKAT:
        raise ValidationError(f"Tingkat harus antara 1-{MAX_TINGKAT}")
    stmt = (
        select(ListPembayaran)
        .where(
            ListPembayaran.tingkat.in_([0, tingkat]),
            ListPembayaran.status == CatalogStatus.AKTIF,
        )
        .order_by(ListPembayaran.tingkat, ListPembayaran.nama_pembayaran)
    )
    return [payment_type_out(item) for item in db.scalars(stmt).all()]
