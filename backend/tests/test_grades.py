from decimal import Decimal

import pytest

from conftest import auth_header
from sekolah_module import grade_service
from sekolah_module.errors import DuplicateError, ForbiddenError, NotFoundError, ValidationError


@pytest.fixture()
def subjects(session_factory):
    with session_factory() as session:
        mtk = grade_service.create_subject(session, kode_mapel="mtk", nama_mapel="Matematika")
        ipa = grade_service.create_subject(session, kode_mapel="IPA", nama_mapel="Ilmu Pengetahuan Alam")
    return mtk, ipa


def _rapor(db, school, subject, siswa_id=None, **scores):
    return grade_service.create_rapor(
        db,
        actor=school.guru,
        siswa_id=siswa_id or school.siswa_id,
        mata_pelajaran_id=subject.id,
        kelas_id=school.kelas_id,
        semester="1",
        tahun_ajaran="2024/2025",
        **scores,
    )


@pytest.mark.parametrize(
    "score, expected",
    [(Decimal("85"), "A"), (Decimal("84.99"), "B"), (Decimal("70"), "B"), (Decimal("55"), "C"), (Decimal("54.5"), "D")],
)
def test_predikat_thresholds(score, expected):
    assert grade_service.predikat_for(score) == expected


def test_final_score_averages_filled_components():
    assert grade_service.final_score(80, 90, 85) == Decimal("85.00")
    assert grade_service.final_score(70, None, 75) == Decimal("72.50")
    assert grade_service.final_score(66, 67, 67) == Decimal("66.67")
    assert grade_service.final_score(None, None, None) is None


def test_subject_codes_are_unique(db, subjects):
    assert subjects[0].kode_mapel == "MTK"
    with pytest.raises(DuplicateError):
        grade_service.create_subject(db, kode_mapel="MTK", nama_mapel="Matematika Lanjut")
    assert [s.nama_mapel for s in grade_service.list_subjects(db)] == ["Ilmu Pengetahuan Alam", "Matematika"]


def test_create_rapor_computes_final_and_predikat(db, school, subjects):
    rapor = _rapor(db, school, subjects[0], nilai_harian=80, nilai_uts=90, nilai_uas=85)

    assert rapor.nilai_akhir == 85.0
    assert rapor.predikat == "A"
    assert rapor.mata_pelajaran.kode_mapel == "MTK"
    assert rapor.siswa.nama_lengkap == "Ahmad Fauzi"


def test_create_rapor_rejections(db, school, subjects):
    _rapor(db, school, subjects[0], nilai_uas=70)

    with pytest.raises(ValidationError, match="sudah ada"):
        _rapor(db, school, subjects[0], nilai_uas=90)
    with pytest.raises(ValidationError):
        _rapor(db, school, subjects[1], nilai_uts=101)
    with pytest.raises(ValidationError, match="antara 0-100"):
        _rapor(db, school, subjects[1], nilai_uts=float("nan"))
    with pytest.raises(ValidationError):
        grade_service.create_rapor(
            db,
            actor=school.guru,
            siswa_id=school.siswa_id,
            mata_pelajaran_id=subjects[1].id,
            kelas_id=school.kelas_id,
            semester="3",
            tahun_ajaran="2024/2025",
        )
    with pytest.raises(NotFoundError):
        _rapor(db, school, subjects[1], siswa_id=9999)


def test_update_rapor_recomputes(db, school, subjects):
    rapor = _rapor(db, school, subjects[0], nilai_harian=60, nilai_uts=60, nilai_uas=60)
    assert rapor.predikat == "C"

    updated = grade_service.update_rapor(db, rapor.id, nilai_uas=90, catatan="Meningkat")

    assert updated.nilai_akhir == 70.0
    assert updated.predikat == "B"
    assert updated.catatan == "Meningkat"

    grade_service.delete_rapor(db, rapor.id)
    with pytest.raises(NotFoundError):
        grade_service.get_rapor(db, rapor.id)


def test_rapor_by_student_statistics(db, school, subjects):
    _rapor(db, school, subjects[0], nilai_harian=90, nilai_uts=90, nilai_uas=90)
    _rapor(db, school, subjects[1], nilai_harian=60, nilai_uts=60, nilai_uas=60)

    result = grade_service.rapor_by_student(db, school.siswa_id, actor=school.siswa_actor)

    assert [r.mata_pelajaran.nama_mapel for r in result["rapor"]] == ["Ilmu Pengetahuan Alam", "Matematika"]
    assert result["statistik"]["total_mapel"] == 2
    assert result["statistik"]["rata_rata_nilai"] == 75.0
    assert result["statistik"]["predikat"] == {"A": 1, "B": 0, "C": 1, "D": 0}
    assert result["periode"] == {"semester": "Semua", "tahun_ajaran": "Semua"}

    with pytest.raises(ForbiddenError):
        grade_service.rapor_by_student(db, school.other_siswa_id, actor=school.siswa_actor)


def test_rapor_by_class_and_ranking(db, school, subjects):
    mtk, ipa = subjects
    _rapor(db, school, mtk, nilai_uas=70)
    _rapor(db, school, ipa, nilai_uas=80)
    _rapor(db, school, mtk, siswa_id=school.other_siswa_id, nilai_uas=95)

    grouped = grade_service.rapor_by_class(db, school.kelas_id)
    assert grouped["wali_kelas"] == "Siti Aminah"
    assert grouped["total"] == 3
    assert [row["siswa"].nama_lengkap for row in grouped["data_rapor"]] == ["Ahmad Fauzi", "Dewi Lestari"]
    assert grouped["data_rapor"][0]["rata_rata"] == 75.0

    single = grade_service.rapor_by_class(db, school.kelas_id, mata_pelajaran_id=mtk.id)
    assert [r.nilai_akhir for r in single["data_rapor"]] == [70.0, 95.0]

    ranking = grade_service.class_ranking(db, school.kelas_id, semester="1")["ranking"]
    assert [(r["ranking"], r["siswa"].nama_lengkap, r["rata_rata"]) for r in ranking] == [
        (1, "Dewi Lestari", 95.0),
        (2, "Ahmad Fauzi", 75.0),
    ]
    assert ranking[1]["jumlah_mapel"] == 2


def test_rapor_endpoints(client, school, subjects):
    created = client.post(
        "/api/rapor",
        json={
            "siswa_id": school.siswa_id,
            "mata_pelajaran_id": subjects[0].id,
            "kelas_id": school.kelas_id,
            "semester": "2",
            "tahun_ajaran": "2024/2025",
            "nilai_harian": 88,
        },
        headers=auth_header(school.guru),
    )
    assert created.status_code == 201
    assert created.json()["data"]["predikat"] == "A"

    own = client.get(f"/api/rapor/siswa/{school.siswa_id}", headers=auth_header(school.siswa_actor))
    assert own.status_code == 200
    assert own.json()["data"]["statistik"]["total_mapel"] == 1

    other = client.get(f"/api/rapor/siswa/{school.other_siswa_id}", headers=auth_header(school.siswa_actor))
    assert other.status_code == 403

    by_class = client.get(f"/api/rapor/kelas/{school.kelas_id}", headers=auth_header(school.siswa_actor))
    assert by_class.status_code == 403
