import dataclasses

import pytest
from sqlalchemy import select

from conftest import auth_header
from sekolah_module import auth_service
from sekolah_module.errors import AuthError, ForbiddenError, ValidationError
from sekolah_module.models import User, UserRole
from sekolah_module.security import create_access_token, decode_access_token, hash_password, verify_password


def test_password_hashing():
    hashed = hash_password("secret123")

    assert hashed != "secret123"
    assert verify_password("secret123", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("secret123", "not-a-bcrypt-hash")


def test_token_round_trip_and_expiry():
    token = create_access_token(7, "budi", "guru")
    claims = decode_access_token(token)
    assert claims.user_id == 7
    assert claims.username == "budi"
    assert claims.role == UserRole.GURU

    with pytest.raises(AuthError, match="Invalid token"):
        decode_access_token(token + "x")


def test_login_returns_token_and_profile(db, school):
    result = auth_service.login(db, username="0012345678", password="secret123")

    assert decode_access_token(result.token).user_id == school.siswa_actor.id
    assert result.user.role == UserRole.SISWA
    assert result.user.profile["nisn"] == "0012345678"
    assert result.user.profile["kelas"] == "4A"


def test_login_failures(db, school):
    with pytest.raises(AuthError):
        auth_service.login(db, username="0012345678", password="salah")
    with pytest.raises(AuthError):
        auth_service.login(db, username="nobody", password="secret123")

    user = db.get(User, school.guru.id)
    user.is_active = False
    db.commit()
    with pytest.raises(ForbiddenError):
        auth_service.login(db, username="guru_1987", password="secret123")


def test_change_password(db, school):
    user = db.get(User, school.guru.id)

    with pytest.raises(ValidationError):
        auth_service.change_password(db, user, old_password="wrong", new_password="baru12345")
    with pytest.raises(ValidationError):
        auth_service.change_password(db, user, old_password="secret123", new_password="secret123")

    auth_service.change_password(db, user, old_password="secret123", new_password="baru12345")
    assert auth_service.login(db, username="guru_1987", password="baru12345").user.profile["nip"] == "1987"


def test_seed_default_admin_only_once(db, monkeypatch):
    monkeypatch.setattr(
        auth_service,
        "settings",
        dataclasses.replace(auth_service.settings, default_admin_username="root", default_admin_password="rootpass"),
    )

    auth_service.seed_default_admin(db)
    auth_service.seed_default_admin(db)

    admins = db.scalars(select(User).where(User.role == UserRole.ADMIN)).all()
    assert [a.username for a in admins] == ["root"]
    assert verify_password("rootpass", admins[0].password_hash)


def test_login_endpoint(client, school):
    ok = client.post("/api/auth/login", json={"username": "admin", "password": "secret123"})
    assert ok.status_code == 200
    body = ok.json()
    assert body["message"] == "Login berhasil"
    token = body["data"]["token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["data"]["username"] == "admin"
    assert me.json()["data"]["profile"] is None

    bad = client.post("/api/auth/login", json={"username": "admin", "password": "nope"})
    assert bad.status_code == 401
    assert bad.json() == {"success": False, "message": "Username atau password salah"}

    missing = client.post("/api/auth/login", json={"username": "admin"})
    assert missing.status_code == 400


def test_token_checks(client, school):
    assert client.get("/api/auth/me", headers={"Authorization": "Basic abc"}).status_code == 401
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401

    expired = create_access_token(school.admin.id, "admin", "admin", expires_minutes=-5)
    response = client.get("/api/auth/me", headers={"Authorization": f"Bearer {expired}"})
    assert response.json()["message"] == "Token expired"


def test_change_password_endpoint(client, school):
    response = client.put(
        "/api/auth/password",
        json={"old_password": "secret123", "new_password": "lebihaman1"},
        headers=auth_header(school.siswa_actor),
    )

    assert response.status_code == 200
    relogin = client.post("/api/auth/login", json={"username": "0012345678", "password": "lebihaman1"})
    assert relogin.status_code == 200
