import logging
import re

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session, joinedload, selectinload

from .config import settings
from .database import unit_of_work
from .errors import DuplicateError, NotFoundError, ValidationError
from .models import ChatbotLog, Guru, Kelas, Pembayaran, PaymentStatus, Rapor, Siswa, StudentStatus, User, UserRole
from .presenters import paginate, siswa_summary, student_out, teacher_out
from .schemas import (
    KelasDetail,
    KelasOut,
    StudentCreated,
    StudentOut,
    StudentPage,
    TeacherCreated,
    TeacherOut,
)
from .security import generate_password, hash_password
from .uploads import remove_proof


logger = logging.getLogger(__name__)

NISN_PATTERN = re.compile(r"^\d{10,20}$")
NIP_PATTERN = re.compile(r"^\d+$")
MIN_PASSWORD_LENGTH = 6
GENDERS = ("L", "P")


def _gender(value: str | None) -> str:
    gender = (value or "").strip().upper()
    if gender not in GENDERS:
        raise ValidationError("Jenis kelamin harus L atau P")
    return gender


def _ensure_username_free(db: Session, username: str) -> None:
    if db.scalar(select(User.id).where(User.username == username)):
        raise DuplicateError(f"Username {username} sudah digunakan")


def _ensure_kelas(db: Session, kelas_id: int | None) -> None:
    if kelas_id is not None and not db.get(Kelas, kelas_id):
        raise NotFoundError("Kelas tidak ditemukan")


# Students


def _student_query():
    return select(Siswa).options(joinedload(Siswa.kelas), joinedload(Siswa.user))


def _get_student(db: Session, siswa_id: int) -> Siswa:
    siswa = db.scalars(_student_query().where(Siswa.id == siswa_id)).first()
    if not siswa:
        raise NotFoundError("Siswa tidak ditemukan")
    return siswa


def create_student(
    db: Session,
    *,
    nisn: str | None,
    nama_lengkap: str | None,
    jenis_kelamin: str | None,
    username: str | None = None,
    password: str | None = None,
    kelas_id: int | None = None,
    status: StudentStatus = StudentStatus.AKTIF,
    **profile,
) -> StudentCreated:
    """Create a student login and profile together.

    The username falls back to the NISN and the password to the configured
    default for imported students.
    """
    if not nisn or not nama_lengkap or not jenis_kelamin:
        raise ValidationError("NISN, nama lengkap, dan jenis kelamin wajib diisi")
    nisn = nisn.strip()
    if not NISN_PATTERN.match(nisn):
        raise ValidationError("NISN harus berupa 10-20 digit angka")
    gender = _gender(jenis_kelamin)
    password = password or settings.default_student_password
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password minimal {MIN_PASSWORD_LENGTH} karakter")
    username = (username or nisn).strip()

    if db.scalar(select(Siswa.id).where(Siswa.nisn == nisn)):
        raise DuplicateError(f"NISN {nisn} sudah terdaftar")
    _ensure_username_free(db, username)
    _ensure_kelas(db, kelas_id)

    with unit_of_work(db):
        user = User(username=username, password_hash=hash_password(password), role=UserRole.SISWA, is_active=True)
        db.add(user)
        db.flush()
        siswa = Siswa(
            user_id=user.id,
            nisn=nisn,
            nama_lengkap=nama_lengkap.strip(),
            jenis_kelamin=gender,
            kelas_id=kelas_id,
            status=status,
            **profile,
        )
        db.add(siswa)

    logger.info(f"Student {siswa.id} ({nisn}) created with username {username}")
    return StudentCreated(
        siswa=student_out(_get_student(db, siswa.id)),
        credentials={"username": username, "password": password},
    )


def list_students(
    db: Session,
    *,
    search: str | None = None,
    kelas_id: int | None = None,
    status: StudentStatus | None = None,
    page: int = 1,
    limit: int = 10,
) -> StudentPage:
    stmt = _student_query()
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Siswa.nama_lengkap.ilike(pattern), Siswa.nisn.ilike(pattern)))
    if kelas_id:
        stmt = stmt.where(Siswa.kelas_id == kelas_id)
    if status:
        stmt = stmt.where(Siswa.status == status)
    stmt = stmt.order_by(Siswa.nama_lengkap)

    rows, meta = paginate(db, stmt, page, limit)
    return StudentPage(siswa=[student_out(s) for s in rows], pagination=meta)


def get_student(db: Session, siswa_id: int) -> StudentOut:
    return student_out(_get_student(db, siswa_id))


def update_student(db: Session, siswa_id: int, **fields) -> StudentOut:
    siswa = _get_student(db, siswa_id)
    fields = {key: value for key, value in fields.items() if value is not None}
    if "jenis_kelamin" in fields:
        fields["jenis_kelamin"] = _gender(fields["jenis_kelamin"])
    if "kelas_id" in fields:
        _ensure_kelas(db, fields["kelas_id"])
    if "status" in fields:
        try:
            fields["status"] = StudentStatus(fields["status"])
        except ValueError as exc:
            raise ValidationError("Status siswa tidak valid") from exc

    for key, value in fields.items():
        setattr(siswa, key, value)
    with unit_of_work(db):
        db.add(siswa)
    return get_student(db, siswa_id)


def delete_student(db: Session, siswa_id: int) -> None:
    siswa = _get_student(db, siswa_id)
    approved = db.scalar(
        select(func.count(Pembayaran.id)).where(
            Pembayaran.siswa_id == siswa_id, Pembayaran.status == PaymentStatus.APPROVED
        )
    )
    if approved:
        raise ValidationError("Siswa memiliki pembayaran yang sudah disetujui dan tidak bisa dihapus")

    proofs = db.scalars(
        select(Pembayaran.bukti_bayar).where(Pembayaran.siswa_id == siswa_id, Pembayaran.bukti_bayar.is_not(None))
    ).all()
    user = siswa.user
    with unit_of_work(db):
        db.execute(delete(Pembayaran).where(Pembayaran.siswa_id == siswa_id).execution_options(synchronize_session=False))
        db.execute(delete(Rapor).where(Rapor.siswa_id == siswa_id).execution_options(synchronize_session=False))
        if user is not None:
            db.execute(delete(ChatbotLog).where(ChatbotLog.user_id == user.id).execution_options(synchronize_session=False))
        db.delete(siswa)
        if user is not None:
            db.delete(user)

    for proof in proofs:
        remove_proof(proof)
    logger.info(f"Student {siswa_id} deleted")


# Teachers


def _get_teacher(db: Session, guru_id: int) -> Guru:
    guru = db.scalars(select(Guru).options(joinedload(Guru.user)).where(Guru.id == guru_id)).first()
    if not guru:
        raise NotFoundError("Guru tidak ditemukan")
    return guru


def create_teacher(
    db: Session,
    *,
    nip: str | None,
    nama_lengkap: str | None,
    jenis_kelamin: str | None,
    username: str | None = None,
    **profile,
) -> TeacherCreated:
    if not nip or not nama_lengkap or not jenis_kelamin:
        raise ValidationError("NIP, nama lengkap, dan jenis kelamin wajib diisi")
    nip = nip.strip()
    if not NIP_PATTERN.match(nip):
        raise ValidationError("NIP harus berupa angka")
    gender = _gender(jenis_kelamin)
    username = (username or f"guru_{nip}").strip()

    if db.scalar(select(Guru.id).where(Guru.nip == nip)):
        raise DuplicateError(f"NIP {nip} sudah terdaftar")
    _ensure_username_free(db, username)

    password = generate_password()
    with unit_of_work(db):
        user = User(username=username, password_hash=hash_password(password), role=UserRole.GURU, is_active=True)
        db.add(user)
        db.flush()
        guru = Guru(user_id=user.id, nip=nip, nama_lengkap=nama_lengkap.strip(), jenis_kelamin=gender, **profile)
        db.add(guru)

    logger.info(f"Teacher {guru.id} ({nip}) created with username {username}")
    return TeacherCreated(
        guru=teacher_out(_get_teacher(db, guru.id)),
        credentials={"username": username, "password": password},
    )


def list_teachers(db: Session, *, search: str | None = None) -> list[TeacherOut]:
    stmt = select(Guru).options(joinedload(Guru.user)).join(User, User.id == Guru.user_id).where(User.is_active.is_(True))
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(or_(Guru.nama_lengkap.ilike(pattern), Guru.nip.ilike(pattern)))
    return [teacher_out(g) for g in db.scalars(stmt.order_by(Guru.nama_lengkap)).unique().all()]


def get_teacher(db: Session, guru_id: int) -> TeacherOut:
    return teacher_out(_get_teacher(db, guru_id))


def update_teacher(db: Session, guru_id: int, **fields) -> TeacherOut:
    guru = _get_teacher(db, guru_id)
    fields = {key: value for key, value in fields.items() if value is not None}
    if "jenis_kelamin" in fields:
        fields["jenis_kelamin"] = _gender(fields["jenis_kelamin"])
    for key, value in fields.items():
        setattr(guru, key, value)
    with unit_of_work(db):
        db.add(guru)
    return get_teacher(db, guru_id)


def delete_teacher(db: Session, guru_id: int) -> None:
    guru = _get_teacher(db, guru_id)
    homeroom = db.scalars(select(Kelas.nama_kelas).where(Kelas.guru_id == guru_id)).all()
    if homeroom:
        raise ValidationError(f"Guru masih menjadi wali kelas: {', '.join(homeroom)}")

    with unit_of_work(db):
        if guru.user is not None:
            guru.user.is_active = False
        db.delete(guru)
    logger.info(f"Teacher {guru_id} removed and login deactivated")


# Classes


def _kelas_out(kelas: Kelas, jumlah_siswa: int) -> KelasOut:
    return KelasOut(
        id=kelas.id,
        nama_kelas=kelas.nama_kelas,
        tingkat=kelas.tingkat,
        tahun_ajaran=kelas.tahun_ajaran,
        guru_id=kelas.guru_id,
        wali_kelas=kelas.wali_kelas.nama_lengkap if kelas.wali_kelas else None,
        jumlah_siswa=jumlah_siswa,
    )


def _get_kelas(db: Session, kelas_id: int) -> Kelas:
    kelas = db.scalars(
        select(Kelas)
        .options(joinedload(Kelas.wali_kelas), selectinload(Kelas.siswa))
        .where(Kelas.id == kelas_id)
    ).first()
    if not kelas:
        raise NotFoundError("Kelas tidak ditemukan")
    return kelas


def _validate_kelas_fields(db: Session, *, tingkat: int | None, guru_id: int | None) -> None:
    if tingkat is not None and not 1 <= tingkat <= 6:
        raise ValidationError("Tingkat harus antara 1-6")
    if guru_id is not None and not db.get(Guru, guru_id):
        raise NotFoundError("Guru tidak ditemukan")


def _ensure_kelas_name_free(db: Session, nama_kelas: str, tahun_ajaran: str, exclude_id: int | None = None) -> None:
    stmt = select(Kelas.id).where(Kelas.nama_kelas == nama_kelas, Kelas.tahun_ajaran == tahun_ajaran)
    if exclude_id is not None:
        stmt = stmt.where(Kelas.id != exclude_id)
    if db.scalar(stmt):
        raise DuplicateError(f"Kelas {nama_kelas} tahun ajaran {tahun_ajaran} sudah ada")


def list_classes(db: Session, *, tahun_ajaran: str | None = None, tingkat: int | None = None) -> list[KelasOut]:
    counts = (
        select(Siswa.kelas_id, func.count(Siswa.id).label("jumlah"))
        .where(Siswa.status == StudentStatus.AKTIF)
        .group_by(Siswa.kelas_id)
        .subquery()
    )
    stmt = (
        select(Kelas, func.coalesce(counts.c.jumlah, 0))
        .options(joinedload(Kelas.wali_kelas))
        .outerjoin(counts, counts.c.kelas_id == Kelas.id)
    )
    if tahun_ajaran:
        stmt = stmt.where(Kelas.tahun_ajaran == tahun_ajaran)
    if tingkat:
        stmt = stmt.where(Kelas.tingkat == tingkat)
    rows = db.execute(stmt.order_by(Kelas.tingkat, Kelas.nama_kelas)).all()
    return [_kelas_out(kelas, jumlah) for kelas, jumlah in rows]


def get_class(db: Session, kelas_id: int) -> KelasDetail:
    kelas = _get_kelas(db, kelas_id)
    students = sorted(kelas.siswa, key=lambda s: s.nama_lengkap)
    active = sum(1 for s in students if s.status == StudentStatus.AKTIF)
    return KelasDetail(
        **_kelas_out(kelas, active).model_dump(),
        siswa=[siswa_summary(s) for s in students],
    )


def create_class(
    db: Session,
    *,
    nama_kelas: str | None,
    tingkat: int | None,
    tahun_ajaran: str | None,
    guru_id: int | None = None,
) -> KelasDetail:
    if not nama_kelas or tingkat is None or not tahun_ajaran:
        raise ValidationError("Nama kelas, tingkat, dan tahun ajaran wajib diisi")
    _validate_kelas_fields(db, tingkat=tingkat, guru_id=guru_id)
    _ensure_kelas_name_free(db, nama_kelas, tahun_ajaran)

    kelas = Kelas(nama_kelas=nama_kelas.strip(), tingkat=tingkat, tahun_ajaran=tahun_ajaran.strip(), guru_id=guru_id)
    with unit_of_work(db):
        db.add(kelas)
    logger.info(f"Class {kelas.id} {kelas.nama_kelas} ({kelas.tahun_ajaran}) created")
    return get_class(db, kelas.id)


def update_class(db: Session, kelas_id: int, **fields) -> KelasDetail:
    kelas = _get_kelas(db, kelas_id)
    fields = {key: value for key, value in fields.items() if value is not None}
    _validate_kelas_fields(db, tingkat=fields.get("tingkat"), guru_id=fields.get("guru_id"))
    if "nama_kelas" in fields or "tahun_ajaran" in fields:
        _ensure_kelas_name_free(
            db,
            fields.get("nama_kelas", kelas.nama_kelas),
            fields.get("tahun_ajaran", kelas.tahun_ajaran),
            exclude_id=kelas_id,
        )
    for key, value in fields.items():
        setattr(kelas, key, value)
    with unit_of_work(db):
        db.add(kelas)
    return get_class(db, kelas_id)


def delete_class(db: Session, kelas_id: int) -> None:
    kelas = _get_kelas(db, kelas_id)
    if kelas.siswa:
        raise ValidationError(f"Kelas masih memiliki {len(kelas.siswa)} siswa")
    with unit_of_work(db):
        db.delete(kelas)
    logger.info(f"Class {kelas_id} deleted")


def assign_students(db: Session, kelas_id: int, siswa_ids: list[int]) -> KelasDetail:
    _get_kelas(db, kelas_id)
    if not siswa_ids:
        raise ValidationError("Daftar siswa wajib diisi")
    students = db.scalars(select(Siswa).where(Siswa.id.in_(siswa_ids))).all()
    missing = sorted(set(siswa_ids) - {s.id for s in students})
    if missing:
        raise NotFoundError(f"Siswa tidak ditemukan: {', '.join(str(i) for i in missing)}")

    with unit_of_work(db):
        for siswa in students:
            siswa.kelas_id = kelas_id
    logger.info(f"Assigned {len(students)} students to class {kelas_id}")
    db.expire_all()
    return get_class(db, kelas_id)


def remove_student_from_class(db: Session, kelas_id: int, siswa_id: int) -> None:
    _get_kelas(db, kelas_id)
    siswa = _get_student(db, siswa_id)
    if siswa.kelas_id != kelas_id:
        raise ValidationError("Siswa tidak terdaftar di kelas ini")
    with unit_of_work(db):
        siswa.kelas_id = None
    db.expire_all()
