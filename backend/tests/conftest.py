import dataclasses
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import server
from sekolah_module import uploads
from sekolah_module.actor import Actor
from sekolah_module.database import Base, configure_sqlite, get_db_session
from sekolah_module.models import (
    CatalogStatus,
    Guru,
    Kelas,
    ListPembayaran,
    Periode,
    Siswa,
    StudentStatus,
    User,
    UserRole,
)
from sekolah_module.security import create_access_token, hash_password


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    configure_sqlite(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    target = tmp_path / "uploads"
    monkeypatch.setattr(uploads, "settings", dataclasses.replace(uploads.settings, upload_dir=str(target)))
    return target


@pytest.fixture()
def client(session_factory):
    def override_get_db_session():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    server.app.dependency_overrides[get_db_session] = override_get_db_session
    yield TestClient(server.app)
    server.app.dependency_overrides.clear()


def _user(session, username: str, role: UserRole, password: str = "secret123") -> User:
    user = User(username=username, password_hash=hash_password(password), role=role, is_active=True)
    session.add(user)
    session.flush()
    return user


@pytest.fixture()
def school(session_factory):
    """An admin, a homeroom teacher, one class, two students and an SPP payment type."""
    with session_factory() as session:
        admin = _user(session, "admin", UserRole.ADMIN)
        guru_user = _user(session, "guru_1987", UserRole.GURU)
        guru = Guru(user_id=guru_user.id, nip="1987", nama_lengkap="Siti Aminah", jenis_kelamin="P")
        session.add(guru)
        session.flush()

        kelas = Kelas(nama_kelas="4A", tingkat=4, tahun_ajaran="2024/2025", guru_id=guru.id)
        session.add(kelas)
        session.flush()

        siswa_user = _user(session, "0012345678", UserRole.SISWA)
        siswa = Siswa(
            user_id=siswa_user.id,
            nisn="0012345678",
            nama_lengkap="Ahmad Fauzi",
            jenis_kelamin="L",
            kelas_id=kelas.id,
            status=StudentStatus.AKTIF,
        )
        other_user = _user(session, "0087654321", UserRole.SISWA)
        other = Siswa(
            user_id=other_user.id,
            nisn="0087654321",
            nama_lengkap="Dewi Lestari",
            jenis_kelamin="P",
            kelas_id=kelas.id,
            status=StudentStatus.AKTIF,
        )
        session.add_all([siswa, other])

        spp = ListPembayaran(
            nama_pembayaran="SPP",
            nominal=Decimal("150000"),
            periode=Periode.BULANAN,
            tingkat=0,
            status=CatalogStatus.AKTIF,
        )
        session.add(spp)
        session.commit()

        return SimpleNamespace(
            admin=Actor(id=admin.id, username=admin.username, role=UserRole.ADMIN),
            guru=Actor(id=guru_user.id, username=guru_user.username, role=UserRole.GURU),
            siswa_actor=Actor(id=siswa_user.id, username=siswa_user.username, role=UserRole.SISWA),
            guru_id=guru.id,
            kelas_id=kelas.id,
            siswa_id=siswa.id,
            other_siswa_id=other.id,
            spp_id=spp.id,
        )


def auth_header(actor: Actor) -> dict[str, str]:
    token = create_access_token(actor.id, actor.username, actor.role.value)
    return {"Authorization": f"Bearer {token}"}


