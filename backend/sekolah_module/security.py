import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

from .config import settings
from .errors import AuthError
from .models import UserRole


PASSWORD_ALPHABET = string.ascii_letters + string.digits


@dataclass(frozen=True)
class TokenClaims:
    user_id: int
    username: str
    role: UserRole


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt()
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str | None) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def generate_password(length: int = 8) -> str:
    """Random alphanumeric password for accounts created by an admin."""
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def create_access_token(user_id: int, username: str, role: UserRole | str, expires_minutes: int | None = None) -> str:
    issued = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=expires_minutes or settings.jwt_exp_minutes)
    claims = {
        "sub": str(user_id),
        "username": username,
        "role": UserRole(role).value,
        "iat": issued,
        "exp": issued + lifetime,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> TokenClaims:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "role", "exp"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError("Invalid token") from exc

    try:
        return TokenClaims(
            user_id=int(payload["sub"]),
            username=str(payload.get("username", "")),
            role=UserRole(payload["role"]),
        )
    except (TypeError, ValueError) as exc:
        raise AuthError("Invalid token payload") from exc
