import logging

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from .config import settings
from .database import unit_of_work
from .errors import AuthError, ForbiddenError, ValidationError
from .models import Guru, Siswa, User, UserRole
from .schemas import LoginResponse, UserOut
from .security import create_access_token, hash_password, verify_password


logger = logging.getLogger(__name__)


def _profile(db: Session, user: User) -> dict | None:
    if user.role == UserRole.SISWA:
        siswa = db.scalars(select(Siswa).options(joinedload(Siswa.kelas)).where(Siswa.user_id == user.id)).first()
        if siswa:
            return {
                "siswa_id": siswa.id,
                "nisn": siswa.nisn,
                "nama_lengkap": siswa.nama_lengkap,
                "kelas": siswa.kelas.nama_kelas if siswa.kelas else None,
            }
    elif user.role == UserRole.GURU:
        guru = db.scalars(select(Guru).where(Guru.user_id == user.id)).first()
        if guru:
            return {"guru_id": guru.id, "nip": guru.nip, "nama_lengkap": guru.nama_lengkap}
    return None


def user_out(db: Session, user: User) -> UserOut:
    return UserOut(
        id=user.id,
        username=user.username,
        role=user.role,
        is_active=user.is_active,
        profile=_profile(db, user),
    )


def login(db: Session, *, username: str, password: str) -> LoginResponse:
    user = db.scalars(select(User).where(User.username == username.strip())).first()
    if not user or not verify_password(password, user.password_hash):
        raise AuthError("Username atau password salah")
    if not user.is_active:
        raise ForbiddenError("Akun tidak aktif")

    token = create_access_token(user.id, user.username, user.role.value)
    logger.info(f"User {user.username} logged in as {user.role.value}")
    return LoginResponse(token=token, user=user_out(db, user))


def change_password(db: Session, user: User, *, old_password: str, new_password: str) -> None:
    if not verify_password(old_password, user.password_hash):
        raise ValidationError("Password lama salah")
    if old_password == new_password:
        raise ValidationError("Password baru harus berbeda dari password lama")
    user.password_hash = hash_password(new_password)
    with unit_of_work(db):
        db.add(user)
    logger.info(f"User {user.username} changed their password")


def seed_default_admin(db: Session) -> None:
    if db.scalar(select(User.id).where(User.role == UserRole.ADMIN)):
        return
    db.add(
        User(
            username=settings.default_admin_username,
            password_hash=hash_password(settings.default_admin_password),
            role=UserRole.ADMIN,
            is_active=True,
        )
    )
    db.commit()
    logger.info(f"Seeded default admin account '{settings.default_admin_username}'")
