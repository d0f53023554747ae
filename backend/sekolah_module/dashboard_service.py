from datetime import date

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from .errors import ValidationError
from .models import Guru, Kelas, Siswa, StudentStatus, User
from .presenters import kelas_summary


CHART_TYPES = ("siswa_per_kelas", "siswa_per_tingkat", "gender")
RECENT_STUDENTS = 5
TOP_CLASSES = 5


def academic_year(today: date) -> str:
    return f"{today.year}/{today.year + 1}"


def _count(db: Session, stmt) -> int:
    return db.scalar(stmt) or 0


def _student_counts(db: Session) -> dict[str, int]:
    rows = db.execute(select(Siswa.status, func.count(Siswa.id)).group_by(Siswa.status)).all()
    counts = {status.value: 0 for status in StudentStatus}
    for status, count in rows:
        counts[StudentStatus(status).value] = count
    return counts


def _gender_counts(db: Session) -> dict[str, int]:
    rows = db.execute(
        select(Siswa.jenis_kelamin, func.count(Siswa.id))
        .where(Siswa.status == StudentStatus.AKTIF)
        .group_by(Siswa.jenis_kelamin)
    ).all()
    counts = dict(rows)
    return {"laki_laki": counts.get("L", 0), "perempuan": counts.get("P", 0)}


def _students_per_tingkat(db: Session, tahun_ajaran: str | None = None) -> list[dict]:
    stmt = (
        select(Kelas.tingkat, func.count(Siswa.id))
        .join(Siswa, Siswa.kelas_id == Kelas.id)
        .where(Siswa.status == StudentStatus.AKTIF)
    )
    if tahun_ajaran:
        stmt = stmt.where(Kelas.tahun_ajaran == tahun_ajaran)
    rows = db.execute(stmt.group_by(Kelas.tingkat).order_by(Kelas.tingkat)).all()
    return [{"tingkat": tingkat, "jumlah": count} for tingkat, count in rows]


def _enrollment_by_class(db: Session, limit: int | None = None) -> list[tuple[Kelas, int]]:
    counts = (
        select(Siswa.kelas_id, func.count(Siswa.id).label("jumlah"))
        .where(Siswa.status == StudentStatus.AKTIF)
        .group_by(Siswa.kelas_id)
        .subquery()
    )
    jumlah = func.coalesce(counts.c.jumlah, 0)
    stmt = (
        select(Kelas, jumlah)
        .options(joinedload(Kelas.wali_kelas))
        .outerjoin(counts, counts.c.kelas_id == Kelas.id)
        .order_by(jumlah.desc(), Kelas.nama_kelas)
    )
    if limit:
        stmt = stmt.limit(limit)
    return list(db.execute(stmt).all())


def get_dashboard_stats(db: Session, today: date | None = None) -> dict:
    """Headline counts and breakdowns for the admin landing page."""
    today = today or date.today()
    tahun_ajaran = academic_year(today)
    students = _student_counts(db)

    overview = {
        "total_siswa": sum(students.values()),
        "siswa_aktif": students[StudentStatus.AKTIF.value],
        "siswa_lulus": students[StudentStatus.LULUS.value],
        "siswa_pindah": students[StudentStatus.PINDAH.value],
        "siswa_keluar": students[StudentStatus.KELUAR.value],
        "total_guru": _count(db, select(func.count(Guru.id))),
        "guru_aktif": _count(
            db, select(func.count(Guru.id)).join(User, User.id == Guru.user_id).where(User.is_active.is_(True))
        ),
        "total_kelas": _count(db, select(func.count(Kelas.id))),
        "kelas_tahun_ini": _count(db, select(func.count(Kelas.id)).where(Kelas.tahun_ajaran == tahun_ajaran)),
        "wali_kelas": _count(db, select(func.count(func.distinct(Kelas.guru_id))).where(Kelas.guru_id.is_not(None))),
    }

    recent = db.scalars(
        select(Siswa)
        .options(joinedload(Siswa.kelas))
        .order_by(Siswa.created_at.desc(), Siswa.id.desc())
        .limit(RECENT_STUDENTS)
    ).all()
    top_classes = [
        {
            "id": kelas.id,
            "nama_kelas": kelas.nama_kelas,
            "tingkat": kelas.tingkat,
            "tahun_ajaran": kelas.tahun_ajaran,
            "jumlah_siswa": jumlah,
            "wali_kelas": kelas.wali_kelas.nama_lengkap if kelas.wali_kelas else None,
        }
        for kelas, jumlah in _enrollment_by_class(db, TOP_CLASSES)
    ]

    return {
        "overview": overview,
        "gender": _gender_counts(db),
        "siswa_per_tingkat": _students_per_tingkat(db, tahun_ajaran),
        "siswa_terbaru": [
            {
                "id": s.id,
                "nisn": s.nisn,
                "nama_lengkap": s.nama_lengkap,
                "kelas": kelas_summary(s.kelas).model_dump() if s.kelas else None,
                "created_at": s.created_at.isoformat() if s.created_at else None,
            }
            for s in recent
        ],
        "kelas_terbanyak": top_classes,
        "tahun_ajaran": tahun_ajaran,
    }


def get_chart_data(db: Session, chart_type: str) -> dict:
    if chart_type == "siswa_per_kelas":
        rows = _enrollment_by_class(db)
        rows.sort(key=lambda row: (row[0].tingkat, row[0].nama_kelas))
        return {"labels": [k.nama_kelas for k, _ in rows], "values": [n for _, n in rows]}
    if chart_type == "siswa_per_tingkat":
        rows = _students_per_tingkat(db)
        return {"labels": [f"Kelas {r['tingkat']}" for r in rows], "values": [r["jumlah"] for r in rows]}
    if chart_type == "gender":
        counts = _gender_counts(db)
        return {"labels": ["Laki-laki", "Perempuan"], "values": [counts["laki_laki"], counts["perempuan"]]}
    raise ValidationError(f"Tipe chart tidak valid. Gunakan: {', '.join(CHART_TYPES)}")


def get_quick_stats(db: Session) -> dict:
    return {
        "siswa_aktif": _count(db, select(func.count(Siswa.id)).where(Siswa.status == StudentStatus.AKTIF)),
        "total_guru": _count(
            db, select(func.count(Guru.id)).join(User, User.id == Guru.user_id).where(User.is_active.is_(True))
        ),
        "total_kelas": _count(db, select(func.count(Kelas.id))),
    }
