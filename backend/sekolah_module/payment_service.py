import calendar
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, joinedload

from .actor import Actor
from .database import unit_of_work
from .errors import ForbiddenError, NotFoundError, StateConflictError, ValidationError
from .models import ListPembayaran, Pembayaran, PaymentStatus, Siswa, UserRole
from .presenters import paginate, payment_out, siswa_summary
from .schemas import (
    PaymentOut,
    PaymentPage,
    PaymentRecap,
    PaymentStatistics,
    StatusBucket,
    StudentPayments,
    StudentPaymentStats,
)
from .uploads import ProofFile, remove_proof, store


logger = logging.getLogger(__name__)


def _payment_query():
    return select(Pembayaran).options(
        joinedload(Pembayaran.siswa).joinedload(Siswa.kelas),
        joinedload(Pembayaran.jenis_pembayaran),
        joinedload(Pembayaran.approver),
    )


def _get_payment(db: Session, payment_id: int) -> Pembayaran:
    payment = db.scalars(_payment_query().where(Pembayaran.id == payment_id)).first()
    if not payment:
        raise NotFoundError("Pembayaran tidak ditemukan")
    return payment


def _amount(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError("Jumlah bayar tidak valid") from exc
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Jumlah bayar harus lebih dari 0")
    return amount


def _check_year(tahun: int | None) -> None:
    if tahun is not None and not 1 <= tahun <= 9999:
        raise ValidationError("Tahun harus antara 1-9999")


def _ensure_student_access(db: Session, siswa: Siswa, actor: Actor) -> None:
    if actor.role == UserRole.SISWA and siswa.user_id != actor.id:
        raise ForbiddenError("Siswa hanya dapat mengakses data pembayarannya sendiri")


def list_payments(
    db: Session,
    *,
    siswa_id: int | None = None,
    list_pembayaran_id: int | None = None,
    status: PaymentStatus | None = None,
    tanggal_mulai: date | None = None,
    tanggal_selesai: date | None = None,
    page: int = 1,
    limit: int = 10,
) -> PaymentPage:
    stmt = _payment_query()
    if siswa_id:
        stmt = stmt.where(Pembayaran.siswa_id == siswa_id)
    if list_pembayaran_id:
        stmt = stmt.where(Pembayaran.list_pembayaran_id == list_pembayaran_id)
    if status:
        stmt = stmt.where(Pembayaran.status == status)
    if tanggal_mulai:
        stmt = stmt.where(Pembayaran.tanggal_bayar >= tanggal_mulai)
    if tanggal_selesai:
        stmt = stmt.where(Pembayaran.tanggal_bayar <= tanggal_selesai)
    stmt = stmt.order_by(Pembayaran.tanggal_bayar.desc(), Pembayaran.created_at.desc(), Pembayaran.id.desc())

    rows, meta = paginate(db, stmt, page, limit)
    return PaymentPage(pembayaran=[payment_out(p) for p in rows], pagination=meta)


def get_payment(db: Session, payment_id: int) -> PaymentOut:
    return payment_out(_get_payment(db, payment_id))


def list_payments_by_student(
    db: Session,
    siswa_id: int,
    *,
    actor: Actor,
    status: PaymentStatus | None = None,
    tahun: int | None = None,
) -> StudentPayments:
    siswa = db.scalars(select(Siswa).options(joinedload(Siswa.kelas)).where(Siswa.id == siswa_id)).first()
    if not siswa:
        raise NotFoundError("Siswa tidak ditemukan")
    _ensure_student_access(db, siswa, actor)
    _check_year(tahun)

    stmt = _payment_query().where(Pembayaran.siswa_id == siswa_id)
    if status:
        stmt = stmt.where(Pembayaran.status == status)
    if tahun is not None:
        stmt = stmt.where(Pembayaran.tanggal_bayar.between(date(tahun, 1, 1), date(tahun, 12, 31)))
    payments = db.scalars(stmt.order_by(Pembayaran.tanggal_bayar.desc())).unique().all()

    counts = {s: sum(1 for p in payments if p.status == s) for s in PaymentStatus}
    stats = StudentPaymentStats(
        total_pembayaran=len(payments),
        total_nominal=float(sum((p.jumlah_bayar for p in payments), Decimal("0"))),
        approved=counts[PaymentStatus.APPROVED],
        pending=counts[PaymentStatus.PENDING],
        rejected=counts[PaymentStatus.REJECTED],
    )
    return StudentPayments(
        siswa=siswa_summary(siswa),
        pembayaran=[payment_out(p) for p in payments],
        statistik=stats,
    )


def create_payment(
    db: Session,
    *,
    siswa_id: int | None,
    list_pembayaran_id: int | None,
    jumlah_bayar,
    tanggal_bayar: date | None,
    actor: Actor,
    proof: ProofFile | None = None,
    catatan: str | None = None,
) -> PaymentOut:
    """Record a payment.

    Payments entered by an admin are approved immediately with the admin as
    approver; everyone else's start out pending.
    """
    if not siswa_id or not list_pembayaran_id or jumlah_bayar in (None, "") or not tanggal_bayar:
        raise ValidationError("siswa_id, list_pembayaran_id, jumlah_bayar, dan tanggal_bayar wajib diisi")

    siswa = db.get(Siswa, siswa_id)
    if not siswa:
        raise NotFoundError("Siswa tidak ditemukan")
    if not db.get(ListPembayaran, list_pembayaran_id):
        raise NotFoundError("Jenis pembayaran tidak ditemukan")
    amount = _amount(jumlah_bayar)
    _ensure_student_access(db, siswa, actor)

    approved = actor.can_approve_payments
    stored = store(proof)
    payment = Pembayaran(
        siswa_id=siswa_id,
        list_pembayaran_id=list_pembayaran_id,
        jumlah_bayar=amount,
        tanggal_bayar=tanggal_bayar,
        bukti_bayar=stored,
        status=PaymentStatus.APPROVED if approved else PaymentStatus.PENDING,
        approved_by=actor.id if approved else None,
        approved_at=datetime.utcnow() if approved else None,
        catatan=catatan or None,
    )
    try:
        with unit_of_work(db):
            db.add(payment)
    except Exception:
        remove_proof(stored)
        raise

    logger.info(
        f"Payment {payment.id} created by {actor.username} for siswa={siswa_id} "
        f"amount={amount} status={payment.status.value}"
    )
    return get_payment(db, payment.id)


def update_payment(
    db: Session,
    payment_id: int,
    *,
    jumlah_bayar=None,
    tanggal_bayar: date | None = None,
    catatan: str | None = None,
    proof: ProofFile | None = None,
) -> PaymentOut:
    payment = _get_payment(db, payment_id)
    if payment.status != PaymentStatus.PENDING:
        raise StateConflictError(f"Tidak bisa mengupdate pembayaran yang sudah {payment.status.value}")

    values: dict = {}
    if jumlah_bayar not in (None, ""):
        values["jumlah_bayar"] = _amount(jumlah_bayar)
    if tanggal_bayar:
        values["tanggal_bayar"] = tanggal_bayar
    if catatan is not None:
        values["catatan"] = catatan

    old_proof = payment.bukti_bayar
    stored = store(proof)
    if stored:
        values["bukti_bayar"] = stored
    if not values:
        return payment_out(payment)

    try:
        with unit_of_work(db):
            result = db.execute(
                update(Pembayaran)
                .where(Pembayaran.id == payment_id, Pembayaran.status == PaymentStatus.PENDING)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise StateConflictError("Pembayaran sudah diproses oleh pengguna lain")
    except Exception:
        remove_proof(stored)
        raise

    if stored:
        remove_proof(old_proof)
    logger.info(f"Payment {payment_id} updated: {sorted(values)}")
    return get_payment(db, payment_id)


def _decide(db: Session, payment_id: int, target: PaymentStatus, actor: Actor, catatan: str | None) -> PaymentOut:
    payment = _get_payment(db, payment_id)
    if payment.status != PaymentStatus.PENDING:
        raise StateConflictError(f"Pembayaran sudah {payment.status.value}")

    values = {"status": target, "approved_by": actor.id, "approved_at": datetime.utcnow()}
    if catatan:
        values["catatan"] = catatan

    # Compare-and-swap on status: only one decision can win for a pending record.
    with unit_of_work(db):
        result = db.execute(
            update(Pembayaran)
            .where(Pembayaran.id == payment_id, Pembayaran.status == PaymentStatus.PENDING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StateConflictError("Pembayaran sudah diproses oleh pengguna lain")

    logger.info(f"Payment {payment_id} {target.value} by {actor.username}")
    return get_payment(db, payment_id)


def approve_payment(db: Session, payment_id: int, *, actor: Actor, catatan: str | None = None) -> PaymentOut:
    if not actor.can_approve_payments:
        raise ForbiddenError("Hanya admin yang dapat menyetujui pembayaran")
    return _decide(db, payment_id, PaymentStatus.APPROVED, actor, catatan)


def reject_payment(db: Session, payment_id: int, *, actor: Actor, catatan: str | None) -> PaymentOut:
    if not catatan or not catatan.strip():
        raise ValidationError("Catatan penolakan wajib diisi")
    if not actor.can_approve_payments:
        raise ForbiddenError("Hanya admin yang dapat menolak pembayaran")
    return _decide(db, payment_id, PaymentStatus.REJECTED, actor, catatan.strip())


def delete_payment(db: Session, payment_id: int) -> None:
    payment = _get_payment(db, payment_id)
    if payment.status == PaymentStatus.APPROVED:
        raise StateConflictError("Tidak bisa menghapus pembayaran yang sudah disetujui")
    proof = payment.bukti_bayar

    with unit_of_work(db):
        result = db.execute(
            delete(Pembayaran)
            .where(Pembayaran.id == payment_id, Pembayaran.status != PaymentStatus.APPROVED)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StateConflictError("Tidak bisa menghapus pembayaran yang sudah disetujui")

    db.expunge(payment)
    remove_proof(proof)
    logger.info(f"Payment {payment_id} deleted")


def get_statistics(
    db: Session,
    *,
    tahun: int | None = None,
    bulan: int | None = None,
    kelas_id: int | None = None,
) -> PaymentRecap:
    if bulan is not None and not 1 <= bulan <= 12:
        raise ValidationError("Bulan harus antara 1-12")
    _check_year(tahun)
    if bulan is not None and tahun is None:
        raise ValidationError("Filter bulan membutuhkan tahun")

    stmt = select(
        Pembayaran.status,
        func.count(Pembayaran.id),
        func.coalesce(func.sum(Pembayaran.jumlah_bayar), 0),
    ).join(Siswa, Siswa.id == Pembayaran.siswa_id)

    if tahun is not None and bulan is not None:
        last_day = calendar.monthrange(tahun, bulan)[1]
        stmt = stmt.where(Pembayaran.tanggal_bayar.between(date(tahun, bulan, 1), date(tahun, bulan, last_day)))
    elif tahun is not None:
        stmt = stmt.where(Pembayaran.tanggal_bayar.between(date(tahun, 1, 1), date(tahun, 12, 31)))
    if kelas_id:
        stmt = stmt.where(Siswa.kelas_id == kelas_id)

    buckets = {s: StatusBucket() for s in PaymentStatus}
    for status, count, total in db.execute(stmt.group_by(Pembayaran.status)).all():
        buckets[PaymentStatus(status)] = StatusBucket(count=count, nominal=float(total or 0))

    stats = PaymentStatistics(
        total_transaksi=sum(b.count for b in buckets.values()),
        total_nominal=sum(b.nominal for b in buckets.values()),
        approved=buckets[PaymentStatus.APPROVED],
        pending=buckets[PaymentStatus.PENDING],
        rejected=buckets[PaymentStatus.REJECTED],
    )
    return PaymentRecap(
        periode={"tahun": str(tahun) if tahun else "Semua", "bulan": str(bulan) if bulan else "Semua"},
        statistik=stats,
    )
