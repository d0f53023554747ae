import os
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from sekolah_module import payment_service
from sekolah_module.errors import ForbiddenError, NotFoundError, StateConflictError, ValidationError
from sekolah_module.models import Pembayaran, PaymentStatus
from sekolah_module.uploads import ProofFile, proof_dir


PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def _pending(db, school, amount=150000, on=date(2024, 9, 1), siswa_id=None):
    return payment_service.create_payment(
        db,
        siswa_id=siswa_id or school.siswa_id,
        list_pembayaran_id=school.spp_id,
        jumlah_bayar=amount,
        tanggal_bayar=on,
        actor=school.guru,
    )


def _count(db) -> int:
    return db.scalar(select(func.count(Pembayaran.id)))


def test_admin_payment_is_approved_immediately(db, school):
    payment = payment_service.create_payment(
        db,
        siswa_id=school.siswa_id,
        list_pembayaran_id=school.spp_id,
        jumlah_bayar=50000,
        tanggal_bayar=date(2024, 9, 1),
        actor=school.admin,
    )

    assert payment.status == PaymentStatus.APPROVED
    assert payment.approved_by == school.admin.id
    assert payment.approved_at is not None
    assert payment.jumlah_bayar == 50000.0
    assert payment.siswa.nisn == "0012345678"
    assert payment.siswa.kelas.nama_kelas == "4A"
    assert payment.jenis_pembayaran.nama_pembayaran == "SPP"


def test_non_admin_payment_starts_pending(db, school):
    payment = _pending(db, school)

    assert payment.status == PaymentStatus.PENDING
    assert payment.approved_by is None
    assert payment.approved_at is None


@pytest.mark.parametrize("amount", [0, -1000, "0"])
def test_non_positive_amount_is_rejected_without_writing(db, school, amount):
    with pytest.raises(ValidationError):
        _pending(db, school, amount=amount)
    assert _count(db) == 0


def test_missing_required_fields(db, school):
    with pytest.raises(ValidationError):
        payment_service.create_payment(
            db,
            siswa_id=school.siswa_id,
            list_pembayaran_id=None,
            jumlah_bayar=1000,
            tanggal_bayar=date(2024, 9, 1),
            actor=school.admin,
        )


def test_unknown_student_or_type_is_not_found(db, school):
    with pytest.raises(NotFoundError, match="Siswa"):
        _pending(db, school, siswa_id=9999)
    with pytest.raises(NotFoundError, match="Jenis pembayaran"):
        payment_service.create_payment(
            db,
            siswa_id=school.siswa_id,
            list_pembayaran_id=9999,
            jumlah_bayar=1000,
            tanggal_bayar=date(2024, 9, 1),
            actor=school.admin,
        )


def test_student_can_only_pay_for_themselves(db, school):
    with pytest.raises(ForbiddenError):
        payment_service.create_payment(
            db,
            siswa_id=school.other_siswa_id,
            list_pembayaran_id=school.spp_id,
            jumlah_bayar=1000,
            tanggal_bayar=date(2024, 9, 1),
            actor=school.siswa_actor,
        )
    own = payment_service.create_payment(
        db,
        siswa_id=school.siswa_id,
        list_pembayaran_id=school.spp_id,
        jumlah_bayar=1000,
        tanggal_bayar=date(2024, 9, 1),
        actor=school.siswa_actor,
    )
    assert own.status == PaymentStatus.PENDING


def test_approve_pending_payment(db, school):
    payment = _pending(db, school)

    approved = payment_service.approve_payment(db, payment.id, actor=school.admin, catatan="Lunas")

    assert approved.status == PaymentStatus.APPROVED
    assert approved.approved_by == school.admin.id
    assert approved.catatan == "Lunas"


def test_approve_keeps_existing_note_when_none_given(db, school):
    payment = payment_service.create_payment(
        db,
        siswa_id=school.siswa_id,
        list_pembayaran_id=school.spp_id,
        jumlah_bayar=1000,
        tanggal_bayar=date(2024, 9, 1),
        actor=school.guru,
        catatan="Transfer BRI",
    )

    approved = payment_service.approve_payment(db, payment.id, actor=school.admin)

    assert approved.catatan == "Transfer BRI"


def test_reject_requires_note_before_anything_else(db, school):
    with pytest.raises(ValidationError):
        payment_service.reject_payment(db, 9999, actor=school.admin, catatan="  ")


def test_reject_pending_payment(db, school):
    payment = _pending(db, school)

    rejected = payment_service.reject_payment(db, payment.id, actor=school.admin, catatan="Bukti tidak jelas")

    assert rejected.status == PaymentStatus.REJECTED
    assert rejected.approved_by == school.admin.id
    assert rejected.catatan == "Bukti tidak jelas"


@pytest.mark.parametrize("decide", ["approve", "reject"])
def test_terminal_payments_cannot_be_decided_again(db, school, decide):
    payment = _pending(db, school)
    payment_service.reject_payment(db, payment.id, actor=school.admin, catatan="Salah nominal")

    with pytest.raises(StateConflictError):
        if decide == "approve":
            payment_service.approve_payment(db, payment.id, actor=school.admin)
        else:
            payment_service.reject_payment(db, payment.id, actor=school.admin, catatan="Lagi")

    current = payment_service.get_payment(db, payment.id)
    assert current.status == PaymentStatus.REJECTED
    assert current.catatan == "Salah nominal"


def test_only_admin_decides(db, school):
    payment = _pending(db, school)
    with pytest.raises(ForbiddenError):
        payment_service.approve_payment(db, payment.id, actor=school.guru)


def test_stale_reader_loses_the_approval_race(session_factory, school):
    Session = session_factory
    first = Session(expire_on_commit=False)
    second = Session()
    try:
        payment_id = _pending(second, school).id
        second.close()

        # first loads the pending record and keeps its in-memory copy
        payment_service.get_payment(first, payment_id)
        first.commit()

        with Session() as other:
            payment_service.reject_payment(other, payment_id, actor=school.admin, catatan="Duplikat")

        with pytest.raises(StateConflictError):
            payment_service.approve_payment(first, payment_id, actor=school.admin)
    finally:
        first.close()

    with Session() as check:
        assert payment_service.get_payment(check, payment_id).status == PaymentStatus.REJECTED


def test_update_only_while_pending(db, school):
    payment = _pending(db, school)

    updated = payment_service.update_payment(
        db, payment.id, jumlah_bayar="175000", tanggal_bayar=date(2024, 9, 2), catatan="Revisi"
    )
    assert updated.jumlah_bayar == 175000.0
    assert updated.tanggal_bayar == date(2024, 9, 2)
    assert updated.catatan == "Revisi"

    with pytest.raises(ValidationError):
        payment_service.update_payment(db, payment.id, jumlah_bayar=0)

    payment_service.approve_payment(db, payment.id, actor=school.admin)
    with pytest.raises(StateConflictError):
        payment_service.update_payment(db, payment.id, catatan="Terlambat")


def test_replacing_proof_removes_old_file(db, school):
    payment = payment_service.create_payment(
        db,
        siswa_id=school.siswa_id,
        list_pembayaran_id=school.spp_id,
        jumlah_bayar=1000,
        tanggal_bayar=date(2024, 9, 1),
        actor=school.guru,
        proof=ProofFile(filename="struk.png", content_type="image/png", content=PNG),
    )
    old_proof = payment.bukti_bayar
    assert old_proof.startswith("bukti-") and old_proof.endswith(".png")
    assert os.path.exists(os.path.join(proof_dir(), old_proof))

    updated = payment_service.update_payment(
        db, payment.id, proof=ProofFile(filename="baru.jpg", content_type="image/jpeg", content=PNG)
    )

    stored = sorted(os.listdir(proof_dir()))
    assert stored == [updated.bukti_bayar]
    assert updated.bukti_bayar.endswith(".jpg")


def test_proof_rejects_non_images(db, school):
    with pytest.raises(ValidationError):
        payment_service.create_payment(
            db,
            siswa_id=school.siswa_id,
            list_pembayaran_id=school.spp_id,
            jumlah_bayar=1000,
            tanggal_bayar=date(2024, 9, 1),
            actor=school.guru,
            proof=ProofFile(filename="struk.pdf", content_type="application/pdf", content=b"%PDF"),
        )
    assert _count(db) == 0


def test_delete_blocked_for_approved(db, school):
    approved = payment_service.approve_payment(db, _pending(db, school).id, actor=school.admin)
    pending = _pending(db, school)

    with pytest.raises(StateConflictError):
        payment_service.delete_payment(db, approved.id)
    assert _count(db) == 2

    payment_service.delete_payment(db, pending.id)
    assert _count(db) == 1
    with pytest.raises(NotFoundError):
        payment_service.get_payment(db, pending.id)


def test_statistics_by_period_and_class(db, school):
    payment_service.approve_payment(db, _pending(db, school, amount=150000, on=date(2024, 9, 1)).id, actor=school.admin)
    payment_service.approve_payment(db, _pending(db, school, amount=100000, on=date(2024, 10, 5)).id, actor=school.admin)
    _pending(db, school, amount=75000, on=date(2024, 9, 20))
    payment_service.reject_payment(db, _pending(db, school, amount=5000, on=date(2023, 9, 1)).id, actor=school.admin, catatan="x")

    everything = payment_service.get_statistics(db)
    assert everything.periode == {"tahun": "Semua", "bulan": "Semua"}
    assert everything.statistik.total_transaksi == 4
    assert everything.statistik.total_nominal == 330000.0

    september = payment_service.get_statistics(db, tahun=2024, bulan=9, kelas_id=school.kelas_id)
    stats = september.statistik
    assert stats.total_transaksi == 2
    assert stats.approved.count == 1 and stats.approved.nominal == 150000.0
    assert stats.pending.count == 1 and stats.pending.nominal == 75000.0
    assert stats.rejected.count == 0

    year = payment_service.get_statistics(db, tahun=2024).statistik
    assert year.total_transaksi == 3
    assert payment_service.get_statistics(db, kelas_id=9999).statistik.total_transaksi == 0


def test_statistics_validates_period(db, school):
    with pytest.raises(ValidationError):
        payment_service.get_statistics(db, tahun=2024, bulan=13)
    with pytest.raises(ValidationError):
        payment_service.get_statistics(db, bulan=5)
    for tahun in (0, -1, 10000):
        with pytest.raises(ValidationError, match="Tahun"):
            payment_service.get_statistics(db, tahun=tahun)
    with pytest.raises(ValidationError, match="Tahun"):
        payment_service.list_payments_by_student(db, school.siswa_id, actor=school.admin, tahun=-1)


def test_list_filters_and_pagination(db, school):
    for day in range(1, 6):
        _pending(db, school, on=date(2024, 9, day))
    payment_service.approve_payment(db, _pending(db, school, on=date(2024, 8, 1)).id, actor=school.admin)

    page = payment_service.list_payments(db, status=PaymentStatus.PENDING, page=1, limit=2)
    assert page.pagination.total == 5
    assert page.pagination.total_pages == 3
    assert [p.tanggal_bayar for p in page.pembayaran] == [date(2024, 9, 5), date(2024, 9, 4)]

    ranged = payment_service.list_payments(db, tanggal_mulai=date(2024, 9, 2), tanggal_selesai=date(2024, 9, 3))
    assert ranged.pagination.total == 2

    with pytest.raises(ValidationError):
        payment_service.list_payments(db, limit=0)


def test_payments_by_student_with_stats(db, school):
    payment_service.approve_payment(db, _pending(db, school, amount=150000).id, actor=school.admin)
    _pending(db, school, amount=50000)
    _pending(db, school, siswa_id=school.other_siswa_id)

    result = payment_service.list_payments_by_student(db, school.siswa_id, actor=school.siswa_actor)

    assert result.siswa.nama_lengkap == "Ahmad Fauzi"
    assert result.statistik.total_pembayaran == 2
    assert result.statistik.total_nominal == 200000.0
    assert result.statistik.approved == 1 and result.statistik.pending == 1

    with pytest.raises(ForbiddenError):
        payment_service.list_payments_by_student(db, school.other_siswa_id, actor=school.siswa_actor)


def test_amount_is_stored_as_decimal(db, school):
    payment = _pending(db, school, amount="12500.50")
    stored = db.get(Pembayaran, payment.id)
    assert stored.jumlah_bayar == Decimal("12500.50")
