from datetime import date

import pytest

from conftest import auth_header
from sekolah_module import payment_service, payment_type_service
from sekolah_module.errors import NotFoundError, ValidationError
from sekolah_module.models import CatalogStatus, Periode


def test_create_defaults_to_all_levels(db, school):
    item = payment_type_service.create_payment_type(
        db, nama_pembayaran=" Uang Buku ", nominal="250000", periode="tahunan", deskripsi="Paket buku"
    )

    assert item.nama_pembayaran == "Uang Buku"
    assert item.nominal == 250000.0
    assert item.periode == Periode.TAHUNAN
    assert item.tingkat == 0
    assert item.status == CatalogStatus.AKTIF


@pytest.mark.parametrize(
    "fields",
    [
        {"nama_pembayaran": "", "nominal": 1000, "periode": "bulanan"},
        {"nama_pembayaran": "X", "nominal": 0, "periode": "bulanan"},
        {"nama_pembayaran": "X", "nominal": "abc", "periode": "bulanan"},
        {"nama_pembayaran": "X", "nominal": 1000, "periode": "mingguan"},
        {"nama_pembayaran": "X", "nominal": 1000, "periode": "bulanan", "tingkat": 7},
    ],
)
def test_create_validation(db, school, fields):
    with pytest.raises(ValidationError):
        payment_type_service.create_payment_type(db, **fields)


def test_list_filters_and_toggle(db, school):
    kelas4 = payment_type_service.create_payment_type(
        db, nama_pembayaran="Study Tour", nominal=500000, periode="tahunan", tingkat=4
    )
    kelas6 = payment_type_service.create_payment_type(
        db, nama_pembayaran="Wisuda", nominal=300000, periode="tahunan", tingkat=6
    )

    assert payment_type_service.list_payment_types(db).pagination.total == 3
    assert [i.nama_pembayaran for i in payment_type_service.list_payment_types(db, search="tour").list_pembayaran] == [
        "Study Tour"
    ]
    assert payment_type_service.list_payment_types(db, periode="bulanan").pagination.total == 1

    toggled = payment_type_service.toggle_payment_type_status(db, kelas6.id)
    assert toggled.status == CatalogStatus.NONAKTIF
    assert payment_type_service.list_payment_types(db).pagination.total == 2
    assert payment_type_service.list_payment_types(db, status="nonaktif").list_pembayaran[0].id == kelas6.id

    for_four = payment_type_service.list_payment_types_for_tingkat(db, 4)
    assert [i.id for i in for_four] == [school.spp_id, kelas4.id]
    assert payment_type_service.list_payment_types_for_tingkat(db, 6) == [
        payment_type_service.get_payment_type(db, school.spp_id)
    ]
    with pytest.raises(ValidationError):
        payment_type_service.list_payment_types_for_tingkat(db, 0)


def test_update_payment_type(db, school):
    updated = payment_type_service.update_payment_type(db, school.spp_id, nominal=175000, periode="semester")

    assert updated.nominal == 175000.0
    assert updated.periode == Periode.SEMESTER
    assert updated.nama_pembayaran == "SPP"

    with pytest.raises(NotFoundError):
        payment_type_service.update_payment_type(db, 9999, nominal=1)


def test_delete_blocked_while_in_use(db, school):
    payment_service.create_payment(
        db,
        siswa_id=school.siswa_id,
        list_pembayaran_id=school.spp_id,
        jumlah_bayar=150000,
        tanggal_bayar=date(2024, 9, 1),
        actor=school.guru,
    )
    unused = payment_type_service.create_payment_type(db, nama_pembayaran="Seragam", nominal=200000, periode="tahunan")

    with pytest.raises(ValidationError, match="1 transaksi"):
        payment_type_service.delete_payment_type(db, school.spp_id)

    payment_type_service.delete_payment_type(db, unused.id)
    with pytest.raises(NotFoundError):
        payment_type_service.get_payment_type(db, unused.id)


def test_payment_type_endpoints(client, school):
    admin = auth_header(school.admin)

    created = client.post(
        "/api/payment-types",
        json={"nama_pembayaran": "Ekskul", "nominal": 50000, "periode": "bulanan", "tingkat": 3},
        headers=admin,
    )
    assert created.status_code == 201
    type_id = created.json()["data"]["id"]

    toggled = client.patch(f"/api/payment-types/{type_id}/toggle-status", headers=admin)
    assert toggled.json()["data"]["status"] == "nonaktif"

    for_three = client.get("/api/payment-types/tingkat/3", headers=auth_header(school.siswa_actor))
    assert for_three.status_code == 200
    assert [i["nama_pembayaran"] for i in for_three.json()["data"]] == ["SPP"]

    forbidden = client.post("/api/payment-types", json={}, headers=auth_header(school.guru))
    assert forbidden.status_code == 403

    removed = client.delete(f"/api/payment-types/{type_id}", headers=admin)
    assert removed.status_code == 200
