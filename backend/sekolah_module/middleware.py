from collections.abc import Callable

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from .actor import Actor
from .database import get_db_session
from .errors import AuthError, ForbiddenError
from .models import User, UserRole
from .security import decode_access_token


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise AuthError("Access denied. No token provided.")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Invalid auth scheme")
    return token.strip()


def get_current_user(
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db_session),
) -> User:
    claims = decode_access_token(_bearer_token(authorization))
    user = db.get(User, claims.user_id)
    if user is None or not user.is_active:
        raise AuthError("User not found or inactive")
    return user


def get_actor(current_user: User = Depends(get_current_user)) -> Actor:
    return Actor.from_user(current_user)


def require_roles(*allowed_roles: UserRole) -> Callable:
    """Dependency factory: 403 unless the caller holds one of the given roles."""
    required = " or ".join(role.value for role in allowed_roles)

    def dependency(actor: Actor = Depends(get_actor)) -> Actor:
        if actor.role not in allowed_roles:
            raise ForbiddenError(f"Access denied. Required role: {required}")
        return actor

    return dependency
