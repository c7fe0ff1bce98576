"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work; these types own the domain shape.

Role is a closed enumeration. Anything that is not exactly "admin" or "user"
fails Role.parse() and is treated as unauthenticated by the token validator,
so an unrecognized role can never slip through as a privileged one.

Layer rule: no imports from api/ or library/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"

    @classmethod
    def parse(cls, value: object) -> Role | None:
        """Return the matching Role, or None for anything unrecognized."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value)
            except ValueError:
                return None
        return None


@dataclass
class User:
    """A local account in the document library.

    hashed_password is a bcrypt digest and never leaves the store/auth layer.
    must_change_password is set when an admin resets the password; the client
    is expected to force a password change on next login.
    """

    username: str
    email: str
    role: Role = Role.USER
    id: int | None = None
    hashed_password: str | None = None
    is_active: bool = True
    must_change_password: bool = False
    last_password_change: str | None = None  # ISO 8601
    created_at: str | None = None
    last_login: str | None = None


@dataclass(frozen=True)
class SessionClaims:
    """Identity carried inside a signed session token. Never persisted."""

    user_id: int
    username: str
    role: Role
    issued_at: datetime

    @classmethod
    def for_user(cls, user: User, issued_at: datetime) -> SessionClaims:
        return cls(user_id=user.id, username=user.username, role=user.role, issued_at=issued_at)
