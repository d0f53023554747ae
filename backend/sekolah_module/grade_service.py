import logging
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from .actor import Actor
from .database import unit_of_work
from .errors import DuplicateError, ForbiddenError, NotFoundError, ValidationError
from .models import Kelas, MataPelajaran, Rapor, Siswa, UserRole
from .presenters import kelas_summary, rapor_out, siswa_summary
from .schemas import RaporOut, SubjectOut


logger = logging.getLogger(__name__)

SEMESTERS = ("1", "2")
PREDIKAT_THRESHOLDS = ((Decimal("85"), "A"), (Decimal("70"), "B"), (Decimal("55"), "C"))
TWO_PLACES = Decimal("0.01")


def predikat_for(nilai_akhir: Decimal | None) -> str | None:
    if nilai_akhir is None:
        return None
    for threshold, grade in PREDIKAT_THRESHOLDS:
        if nilai_akhir >= threshold:
            return grade
    return "D"


def final_score(*scores) -> Decimal | None:
    """Mean of the component scores that were filled in, to two decimals."""
    present = [Decimal(str(s)) for s in scores if s is not None]
    if not present:
        return None
    return (sum(present) / len(present)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _average(values) -> float:
    present = [Decimal(str(v)) for v in values if v is not None]
    if not present:
        return 0.0
    return float((sum(present) / len(present)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def _score(name: str, value) -> Decimal | None:
    if value is None:
        return None
    score = Decimal(str(value))
    if not score.is_finite() or not Decimal("0") <= score <= Decimal("100"):
        raise ValidationError(f"{name} harus antara 0-100")
    return score


# Subjects


def list_subjects(db: Session) -> list[SubjectOut]:
    subjects = db.scalars(select(MataPelajaran).order_by(MataPelajaran.nama_mapel)).all()
    return [SubjectOut(id=s.id, kode_mapel=s.kode_mapel, nama_mapel=s.nama_mapel) for s in subjects]


def create_subject(db: Session, *, kode_mapel: str, nama_mapel: str) -> SubjectOut:
    kode = kode_mapel.strip().upper()
    if db.scalar(select(MataPelajaran.id).where(MataPelajaran.kode_mapel == kode)):
        raise DuplicateError(f"Kode mata pelajaran {kode} sudah digunakan")
    subject = MataPelajaran(kode_mapel=kode, nama_mapel=nama_mapel.strip())
    with unit_of_work(db):
        db.add(subject)
    return SubjectOut(id=subject.id, kode_mapel=subject.kode_mapel, nama_mapel=subject.nama_mapel)


# Report cards


def _rapor_query():
    return select(Rapor).options(
        joinedload(Rapor.mata_pelajaran),
        joinedload(Rapor.siswa).joinedload(Siswa.kelas),
    )


def _get_rapor(db: Session, rapor_id: int) -> Rapor:
    rapor = db.scalars(_rapor_query().where(Rapor.id == rapor_id)).first()
    if not rapor:
        raise NotFoundError("Rapor tidak ditemukan")
    return rapor


def get_rapor(db: Session, rapor_id: int) -> RaporOut:
    return rapor_out(_get_rapor(db, rapor_id))


def create_rapor(
    db: Session,
    *,
    actor: Actor,
    siswa_id: int | None,
    mata_pelajaran_id: int | None,
    kelas_id: int | None,
    semester: str | None,
    tahun_ajaran: str | None,
    nilai_harian=None,
    nilai_uts=None,
    nilai_uas=None,
    catatan: str | None = None,
) -> RaporOut:
    if not siswa_id or not mata_pelajaran_id or not kelas_id or not semester or not tahun_ajaran:
        raise ValidationError("siswa_id, mata_pelajaran_id, kelas_id, semester, dan tahun_ajaran wajib diisi")
    semester = str(semester)
    if semester not in SEMESTERS:
        raise ValidationError("Semester harus 1 atau 2")
    if not db.get(Siswa, siswa_id):
        raise NotFoundError("Siswa tidak ditemukan")
    if not db.get(MataPelajaran, mata_pelajaran_id):
        raise NotFoundError("Mata pelajaran tidak ditemukan")
    if not db.get(Kelas, kelas_id):
        raise NotFoundError("Kelas tidak ditemukan")

    duplicate = db.scalar(
        select(Rapor.id).where(
            Rapor.siswa_id == siswa_id,
            Rapor.mata_pelajaran_id == mata_pelajaran_id,
            Rapor.semester == semester,
            Rapor.tahun_ajaran == tahun_ajaran,
        )
    )
    if duplicate:
        raise ValidationError("Nilai untuk mata pelajaran ini di semester dan tahun ajaran tersebut sudah ada")

    harian = _score("nilai_harian", nilai_harian)
    uts = _score("nilai_uts", nilai_uts)
    uas = _score("nilai_uas", nilai_uas)
    akhir = final_score(harian, uts, uas)

    rapor = Rapor(
        siswa_id=siswa_id,
        mata_pelajaran_id=mata_pelajaran_id,
        kelas_id=kelas_id,
        semester=semester,
        tahun_ajaran=tahun_ajaran,
        nilai_harian=harian,
        nilai_uts=uts,
        nilai_uas=uas,
        nilai_akhir=akhir,
        predikat=predikat_for(akhir),
        catatan=catatan,
        created_by=actor.id,
    )
    with unit_of_work(db):
        db.add(rapor)
    logger.info(f"Rapor {rapor.id} created by {actor.username} for siswa={siswa_id} mapel={mata_pelajaran_id}")
    return get_rapor(db, rapor.id)


def update_rapor(db: Session, rapor_id: int, *, nilai_harian=None, nilai_uts=None, nilai_uas=None, catatan=None) -> RaporOut:
    rapor = _get_rapor(db, rapor_id)
    if nilai_harian is not None:
        rapor.nilai_harian = _score("nilai_harian", nilai_harian)
    if nilai_uts is not None:
        rapor.nilai_uts = _score("nilai_uts", nilai_uts)
    if nilai_uas is not None:
        rapor.nilai_uas = _score("nilai_uas", nilai_uas)
    if catatan is not None:
        rapor.catatan = catatan
    rapor.nilai_akhir = final_score(rapor.nilai_harian, rapor.nilai_uts, rapor.nilai_uas)
    rapor.predikat = predikat_for(rapor.nilai_akhir)

    with unit_of_work(db):
        db.add(rapor)
    return get_rapor(db, rapor_id)


def delete_rapor(db: Session, rapor_id: int) -> None:
    rapor = _get_rapor(db, rapor_id)
    with unit_of_work(db):
        db.delete(rapor)


def rapor_by_student(
    db: Session,
    siswa_id: int,
    *,
    actor: Actor,
    semester: str | None = None,
    tahun_ajaran: str | None = None,
) -> dict:
    siswa = db.scalars(select(Siswa).options(joinedload(Siswa.kelas)).where(Siswa.id == siswa_id)).first()
    if not siswa:
        raise NotFoundError("Siswa tidak ditemukan")
    if actor.role == UserRole.SISWA and siswa.user_id != actor.id:
        raise ForbiddenError("Siswa hanya dapat melihat rapor miliknya sendiri")

    stmt = _rapor_query().join(MataPelajaran, MataPelajaran.id == Rapor.mata_pelajaran_id).where(Rapor.siswa_id == siswa_id)
    if semester:
        stmt = stmt.where(Rapor.semester == str(semester))
    if tahun_ajaran:
        stmt = stmt.where(Rapor.tahun_ajaran == tahun_ajaran)
    entries = db.scalars(stmt.order_by(MataPelajaran.nama_mapel)).unique().all()

    return {
        "siswa": siswa_summary(siswa),
        "periode": {"semester": semester or "Semua", "tahun_ajaran": tahun_ajaran or "Semua"},
        "rapor": [rapor_out(r) for r in entries],
        "statistik": {
            "total_mapel": len(entries),
            "rata_rata_nilai": _average(r.nilai_akhir for r in entries),
            "predikat": {grade: sum(1 for r in entries if r.predikat == grade) for grade in ("A", "B", "C", "D")},
        },
    }


def _class_entries(db: Session, kelas_id: int, semester, tahun_ajaran, mata_pelajaran_id=None) -> tuple[Kelas, list[Rapor]]:
    kelas = db.scalars(select(Kelas).options(joinedload(Kelas.wali_kelas)).where(Kelas.id == kelas_id)).first()
    if not kelas:
        raise NotFoundError("Kelas tidak ditemukan")

    stmt = (
        _rapor_query()
        .join(Siswa, Siswa.id == Rapor.siswa_id)
        .join(MataPelajaran, MataPelajaran.id == Rapor.mata_pelajaran_id)
        .where(Rapor.kelas_id == kelas_id)
    )
    if semester:
        stmt = stmt.where(Rapor.semester == str(semester))
    if tahun_ajaran:
        stmt = stmt.where(Rapor.tahun_ajaran == tahun_ajaran)
    if mata_pelajaran_id:
        stmt = stmt.where(Rapor.mata_pelajaran_id == mata_pelajaran_id)
    entries = db.scalars(stmt.order_by(Siswa.nama_lengkap, MataPelajaran.nama_mapel)).unique().all()
    return kelas, list(entries)


def _group_by_student(entries: list[Rapor]) -> list[dict]:
    grouped: dict[int, dict] = {}
    for r in entries:
        bucket = grouped.setdefault(r.siswa_id, {"siswa": siswa_summary(r.siswa), "nilai": [], "_scores": []})
        bucket["nilai"].append(
            {
                "mata_pelajaran": r.mata_pelajaran.nama_mapel if r.mata_pelajaran else None,
                "nilai_akhir": float(r.nilai_akhir) if r.nilai_akhir is not None else None,
                "predikat": r.predikat,
            }
        )
        bucket["_scores"].append(r.nilai_akhir)
    result = []
    for bucket in grouped.values():
        scores = bucket.pop("_scores")
        bucket["rata_rata"] = _average(scores)
        result.append(bucket)
    return result


def rapor_by_class(
    db: Session,
    kelas_id: int,
    *,
    semester: str | None = None,
    tahun_ajaran: str | None = None,
    mata_pelajaran_id: int | None = None,
) -> dict:
    kelas, entries = _class_entries(db, kelas_id, semester, tahun_ajaran, mata_pelajaran_id)
    data = [rapor_out(r) for r in entries] if mata_pelajaran_id else _group_by_student(entries)
    return {
        "kelas": kelas_summary(kelas),
        "wali_kelas": kelas.wali_kelas.nama_lengkap if kelas.wali_kelas else None,
        "periode": {"semester": semester or "Semua", "tahun_ajaran": tahun_ajaran or kelas.tahun_ajaran},
        "data_rapor": data,
        "total": len(entries),
    }


def class_ranking(db: Session, kelas_id: int, *, semester: str | None = None, tahun_ajaran: str | None = None) -> dict:
    kelas, entries = _class_entries(db, kelas_id, semester, tahun_ajaran)
    students = _group_by_student(entries)
    students.sort(key=lambda s: (-s["rata_rata"], s["siswa"].nama_lengkap))
    ranking = [
        {
            "ranking": position,
            "siswa": s["siswa"],
            "rata_rata": s["rata_rata"],
            "jumlah_mapel": len(s["nilai"]),
        }
        for position, s in enumerate(students, start=1)
    ]
    return {
        "kelas": kelas_summary(kelas),
        "periode": {"semester": semester or "Semua", "tahun_ajaran": tahun_ajaran or kelas.tahun_ajaran},
        "ranking": ranking,
    }
