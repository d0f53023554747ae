import os

from conftest import auth_header


PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def _create(client, school, actor, **overrides):
    form = {
        "siswa_id": str(school.siswa_id),
        "list_pembayaran_id": str(school.spp_id),
        "jumlah_bayar": "150000",
        "tanggal_bayar": "2024-09-01",
    }
    form.update(overrides)
    return client.post("/api/payments", data=form, headers=auth_header(actor))


def test_requires_token(client, school):
    response = client.get("/api/payments")

    assert response.status_code == 401
    assert response.json() == {"success": False, "message": "Access denied. No token provided."}


def test_listing_is_admin_only(client, school):
    response = client.get("/api/payments", headers=auth_header(school.guru))

    assert response.status_code == 403
    assert response.json()["success"] is False


def test_admin_creates_approved_payment(client, school):
    response = _create(client, school, school.admin, jumlah_bayar="50000")

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["status"] == "approved"
    assert body["data"]["approved_by"] == school.admin.id
    assert body["data"]["siswa"]["nisn"] == "0012345678"


def test_guru_uploads_proof_with_pending_payment(client, school, upload_dir):
    response = client.post(
        "/api/payments",
        data={
            "siswa_id": str(school.siswa_id),
            "list_pembayaran_id": str(school.spp_id),
            "jumlah_bayar": "150000",
            "tanggal_bayar": "2024-09-01",
        },
        files={"bukti_bayar": ("struk.png", PNG, "image/png")},
        headers=auth_header(school.guru),
    )

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "pending"
    assert os.listdir(upload_dir / "bukti_bayar") == [data["bukti_bayar"]]


def test_invalid_amount_is_400(client, school):
    response = _create(client, school, school.guru, jumlah_bayar="0")

    assert response.status_code == 400
    assert response.json()["message"] == "Jumlah bayar harus lebih dari 0"


def test_approve_reject_flow(client, school):
    first = _create(client, school, school.guru).json()["data"]
    second = _create(client, school, school.guru).json()["data"]
    admin = auth_header(school.admin)

    approved = client.put(f"/api/payments/{first['id']}/approve", json={"catatan": "OK"}, headers=admin)
    assert approved.status_code == 200
    assert approved.json()["data"]["status"] == "approved"

    again = client.put(f"/api/payments/{first['id']}/approve", headers=admin)
    assert again.status_code == 400

    no_note = client.put(f"/api/payments/{second['id']}/reject", json={}, headers=admin)
    assert no_note.status_code == 400

    rejected = client.put(f"/api/payments/{second['id']}/reject", json={"catatan": "Nominal kurang"}, headers=admin)
    assert rejected.json()["data"]["status"] == "rejected"

    blocked = client.delete(f"/api/payments/{first['id']}", headers=admin)
    assert blocked.status_code == 400
    removed = client.delete(f"/api/payments/{second['id']}", headers=admin)
    assert removed.status_code == 200

    missing = client.get(f"/api/payments/{second['id']}", headers=admin)
    assert missing.status_code == 404
    assert missing.json()["message"] == "Pembayaran tidak ditemukan"


def test_guru_edits_pending_payment(client, school):
    created = _create(client, school, school.guru).json()["data"]

    response = client.put(
        f"/api/payments/{created['id']}",
        data={"jumlah_bayar": "160000", "catatan": "Koreksi"},
        headers=auth_header(school.guru),
    )

    assert response.status_code == 200
    assert response.json()["data"]["jumlah_bayar"] == 160000.0
    assert response.json()["data"]["catatan"] == "Koreksi"


def test_rekap_statistik(client, school):
    _create(client, school, school.admin, jumlah_bayar="100000")
    _create(client, school, school.guru, jumlah_bayar="25000", tanggal_bayar="2024-10-01")

    response = client.get(
        "/api/payments/rekap/statistik",
        params={"tahun": 2024, "bulan": 9},
        headers=auth_header(school.admin),
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["periode"] == {"tahun": "2024", "bulan": "9"}
    assert data["statistik"]["total_transaksi"] == 1
    assert data["statistik"]["approved"] == {"count": 1, "nominal": 100000.0}


def test_rekap_statistik_rejects_out_of_range_year(client, school):
    response = client.get("/api/payments/rekap/statistik", params={"tahun": -1}, headers=auth_header(school.admin))

    assert response.status_code == 400
    assert response.json()["message"] == "Tahun harus antara 1-9999"


def test_payment_detail_is_staff_only(client, school):
    created = _create(client, school, school.admin).json()["data"]

    as_guru = client.get(f"/api/payments/{created['id']}", headers=auth_header(school.guru))
    assert as_guru.status_code == 200
    assert as_guru.json()["data"]["id"] == created["id"]

    as_siswa = client.get(f"/api/payments/{created['id']}", headers=auth_header(school.siswa_actor))
    assert as_siswa.status_code == 403


def test_student_sees_only_own_payments(client, school):
    _create(client, school, school.siswa_actor)
    headers = auth_header(school.siswa_actor)

    own = client.get(f"/api/payments/siswa/{school.siswa_id}", headers=headers)
    assert own.status_code == 200
    assert own.json()["data"]["statistik"]["pending"] == 1

    other = client.get(f"/api/payments/siswa/{school.other_siswa_id}", headers=headers)
    assert other.status_code == 403


def test_unknown_route_uses_envelope(client):
    response = client.get("/api/does-not-exist")

    assert response.status_code == 404
    assert response.json()["success"] is False


def test_health(client):
    response = client.get("/api/health")

    assert response.status_code == 200
    assert response.json()["data"] == {"status": "ok"}
