from dataclasses import dataclass

from .models import User, UserRole


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, as seen by the service layer."""

    id: int
    username: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def can_approve_payments(self) -> bool:
        return self.role == UserRole.ADMIN

    @classmethod
    def from_user(cls, user: User) -> "Actor":
        return cls(id=user.id, username=user.username, role=user.role)
