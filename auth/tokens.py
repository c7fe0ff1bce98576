"""
auth/tokens.py -- Session token issuance and validation.

Security design decisions:
  JWT: python-jose with HS256 and nothing else. Tokens are signed with the
       process-wide SECRET_KEY and carry sub (username), user_id, role, iat,
       exp, iss and aud.

  Algorithm confusion: the header's alg is checked against HS256 *before*
       the library is asked to verify anything. A token claiming "none",
       HS512, RS256 or anything else is rejected as wrong_algorithm even if
       its claims are otherwise perfect. jwt.decode() is additionally pinned
       to algorithms=[HS256].

  Required claims: python-jose accepts a token with no aud claim even when
       an audience is configured, so presence of every claim is checked here.
       A role outside the Role enum is treated as missing.

  Expiry: checked against the injected clock rather than inside jose, so
       tests can move time forward without sleeping. jose still verifies
       signature, issuer and audience.

  Failure reporting: validate() never raises. It returns a TokenCheck that
       carries either the claims or a TokenFailure reason. The API layer maps
       the reason to 401/403; nothing here knows about HTTP.

SECRET_KEY: supplied by core.config.get_settings(). Settings refuses to start
in production without one -- there is no fallback key.

Layer rule: no imports from api/ or library/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from jose import JWTError, jwt
from jose.exceptions import JWTClaimsError

from auth.models import Role, SessionClaims
from core.clock import Clock, SystemClock
from core.config import Settings

logger = logging.getLogger("lectoria.auth")

ALGORITHM = "HS256"

_REQUIRED_CLAIMS = ("sub", "user_id", "role", "iat", "exp", "iss", "aud")


class TokenFailure(str, Enum):
    MISSING = "missing"
    MALFORMED = "malformed"
    WRONG_ALGORITHM = "wrong_algorithm"
    INVALID_SIGNATURE = "invalid_signature"
    INVALID_AUDIENCE = "invalid_audience"
    MISSING_CLAIMS = "missing_claims"
    EXPIRED = "expired"

    @property
    def status_code(self) -> int:
        # Not authenticated (no token / timed out) vs. presented but unacceptable.
        if self in (TokenFailure.MISSING, TokenFailure.EXPIRED):
            return 401
        return 403


@dataclass(frozen=True)
class TokenCheck:
    """Result of TokenValidator.validate(): exactly one of claims / failure is set."""

    claims: SessionClaims | None = None
    failure: TokenFailure | None = None

    @property
    def ok(self) -> bool:
        return self.claims is not None


class TokenIssuer:
    """Produce signed session tokens.

    Usage:
        issuer = TokenIssuer.from_settings(get_settings())
        token = issuer.issue(SessionClaims.for_user(user, clock.now()))
    """

    def __init__(
        self,
        secret_key: str,
        issuer: str,
        audience: str,
        ttl_seconds: int,
        clock: Clock | None = None,
    ) -> None:
        if not secret_key:
            raise ValueError("A signing key is required to issue session tokens.")
        self._secret_key = secret_key
        self.issuer = issuer
        self.audience = audience
        self.ttl = timedelta(seconds=ttl_seconds)
        self.clock = clock or SystemClock()

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock | None = None) -> TokenIssuer:
        return cls(
            settings.secret_key,
            settings.token_issuer,
            settings.token_audience,
            settings.token_expire_seconds,
            clock,
        )

    def issue(self, claims: SessionClaims) -> str:
        """Encode claims into a signed JWT that expires ttl after claims.issued_at."""
        role = Role.parse(claims.role)
        if role is None:
            raise ValueError("Cannot issue a token for an unknown role.")
        issued_at = claims.issued_at
        payload = {
            "sub": claims.username,
            "user_id": claims.user_id,
            "role": role.value,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self.ttl).timestamp()),
            "iss": self.issuer,
            "aud": self.audience,
        }
        return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)

    def issue_for(self, user_id: int, username: str, role: Role) -> str:
        """Convenience wrapper that stamps issued_at from the clock."""
        return self.issue(SessionClaims(user_id=user_id, username=username, role=role, issued_at=self.clock.now()))

    @property
    def expires_in(self) -> int:
        return int(self.ttl.total_seconds())


class TokenValidator:
    """Verify session tokens. Holds no mutable state; safe to share across threads."""

    def __init__(self, secret_key: str, issuer: str, audience: str, clock: Clock | None = None) -> None:
        if not secret_key:
            raise ValueError("A signing key is required to validate session tokens.")
        self._secret_key = secret_key
        self.issuer = issuer
        self.audience = audience
        self.clock = clock or SystemClock()

    @classmethod
    def from_settings(cls, settings: Settings, clock: Clock | None = None) -> TokenValidator:
        return cls(settings.secret_key, settings.token_issuer, settings.token_audience, clock)

    def validate(self, token: str | None) -> TokenCheck:
        if not token:
            return TokenCheck(failure=TokenFailure.MISSING)

        try:
            header = jwt.get_unverified_header(token)
        except JWTError:
            return TokenCheck(failure=TokenFailure.MALFORMED)
        if not isinstance(header, dict) or header.get("alg") != ALGORITHM:
            return TokenCheck(failure=TokenFailure.WRONG_ALGORITHM)

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={"verify_exp": False},
            )
        except JWTClaimsError:
            return TokenCheck(failure=TokenFailure.INVALID_AUDIENCE)
        except JWTError:
            return TokenCheck(failure=TokenFailure.INVALID_SIGNATURE)

        if any(name not in payload for name in _REQUIRED_CLAIMS):
            return TokenCheck(failure=TokenFailure.MISSING_CLAIMS)
        user_id = payload["user_id"]
        role = Role.parse(payload["role"])
        username = payload["sub"]
        if (
            role is None
            or not isinstance(user_id, int)
            or isinstance(user_id, bool)
            or not isinstance(username, str)
            or not username
            or not isinstance(payload["exp"], (int, float))
            or not isinstance(payload["iat"], (int, float))
        ):
            return TokenCheck(failure=TokenFailure.MISSING_CLAIMS)

        if self.clock.now().timestamp() >= payload["exp"]:
            return TokenCheck(failure=TokenFailure.EXPIRED)

        return TokenCheck(
            claims=SessionClaims(
                user_id=user_id,
                username=username,
                role=role,
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            )
        )
