"""
auth/passwords.py -- Password hashing, verification, and strength policy.

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection feeds bcrypt 4.x a password longer than 72 bytes, which it rejects.

bcrypt only looks at the first 72 bytes of its input. Rather than let two
different long passwords collide on the same digest, hash_password() refuses
anything longer with PasswordTooLong. verify_password() returns False for an
oversized candidate since no stored digest can match it.

The cost factor comes from Settings.bcrypt_rounds (minimum 10, validated in
core/config.py).
"""

from __future__ import annotations

import logging
import secrets
import string
from typing import TYPE_CHECKING

import bcrypt

from auth.errors import PasswordTooLong
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("lectoria.auth")

MAX_PASSWORD_BYTES = 72
MIN_PASSWORD_LENGTH = 8


def hash_password(plain: str, rounds: int | None = None) -> str:
    """Return a salted bcrypt hash of the plaintext password."""
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise PasswordTooLong(fields=["password"])
    cost = rounds or get_settings().bcrypt_rounds
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=cost)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. A corrupt stored hash raises
    ValueError inside bcrypt; that is reported as a mismatch and logged.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


def check_password_strength(plain: str) -> list[str]:
    """Return the list of violated rules. An empty list means the password is acceptable."""
    problems: list[str] = []
    if len(plain) < MIN_PASSWORD_LENGTH:
        problems.append(f"at least {MIN_PASSWORD_LENGTH} characters")
    if len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES:
        problems.append(f"at most {MAX_PASSWORD_BYTES} bytes")
    if not any(c.isupper() for c in plain):
        problems.append("an uppercase letter")
    if not any(c.islower() for c in plain):
        problems.append("a lowercase letter")
    if not any(c.isdigit() for c in plain):
        problems.append("a digit")
    if not any(c in string.punctuation or not (c.isalnum() or c.isspace()) for c in plain):
        problems.append("a symbol")
    return problems


def generate_temporary_password(length: int = 16) -> str:
    """Random password that satisfies check_password_strength(), for admin resets."""
    alphabet = string.ascii_letters + string.digits + "!@#$%^&*-_"
    while True:
        candidate = "".join(secrets.choice(alphabet) for _ in range(length))
        if not check_password_strength(candidate):
            return candidate


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones. Verify against it when the username does not
# exist so response time does not reveal which accounts are real.
DUMMY_HASH: str = hash_password("lectoria_timing_dummy")


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Check a username/password pair with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown username: bcrypt runs against DUMMY_HASH (same cost as a real check)
    - Wrong password: bcrypt runs against the real hash

    Inactive accounts fail exactly like a wrong password, so they never get a
    token and their existence is not revealed. Returns the User on success,
    None on any failure.
    """
    user = store.get_by_username(username)
    if user is None or not user.hashed_password:
        verify_password(password, DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user
