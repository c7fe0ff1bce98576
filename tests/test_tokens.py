"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Covers:
  - issue -> validate round trip carries user_id, username, role
  - expiry is enforced against the injected clock (401)
  - algorithm confusion: alg=none, HS512, RS256 headers rejected (403)
  - tampered payload and foreign signing key rejected (403)
  - wrong audience / issuer and missing claims rejected (403)
  - malformed and missing tokens
"""

from __future__ import annotations

import base64
import json

import pytest
from jose import jwt

from auth.models import Role, SessionClaims
from auth.tokens import ALGORITHM, TokenFailure, TokenIssuer, TokenValidator
from core.clock import FakeClock

SECRET = "k" * 48
ISSUER = "lectoria-app"
AUDIENCE = "lectoria-users"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def issuer(clock):
    return TokenIssuer(SECRET, ISSUER, AUDIENCE, ttl_seconds=24 * 3600, clock=clock)


@pytest.fixture
def validator(clock):
    return TokenValidator(SECRET, ISSUER, AUDIENCE, clock=clock)


def _payload(clock, **overrides) -> dict:
    now = int(clock.now().timestamp())
    payload = {
        "sub": "alice",
        "user_id": 7,
        "role": "user",
        "iat": now,
        "exp": now + 3600,
        "iss": ISSUER,
        "aud": AUDIENCE,
    }
    payload.update(overrides)
    return {k: v for k, v in payload.items() if v is not None}


def _b64(data: dict) -> str:
    return base64.urlsafe_b64encode(json.dumps(data).encode()).rstrip(b"=").decode()


def _forge(header: dict, payload: dict, signature: str = "") -> str:
    return f"{_b64(header)}.{_b64(payload)}.{signature}"


def test_round_trip(issuer, validator, clock):
    token = issuer.issue_for(7, "alice", Role.USER)
    check = validator.validate(token)
    assert check.ok
    assert check.claims.user_id == 7
    assert check.claims.username == "alice"
    assert check.claims.role is Role.USER
    assert check.claims.issued_at.timestamp() == int(clock.now().timestamp())


def test_payload_has_all_claims(issuer):
    token = issuer.issue_for(7, "alice", Role.ADMIN)
    claims = jwt.get_unverified_claims(token)
    assert set(claims) == {"sub", "user_id", "role", "iat", "exp", "iss", "aud"}
    assert claims["exp"] - claims["iat"] == 24 * 3600
    assert jwt.get_unverified_header(token)["alg"] == ALGORITHM


def test_issue_refuses_unknown_role(issuer, clock):
    claims = SessionClaims(user_id=1, username="x", role="superuser", issued_at=clock.now())
    with pytest.raises(ValueError):
        issuer.issue(claims)


def test_valid_until_just_before_expiry(issuer, validator, clock):
    token = issuer.issue_for(7, "alice", Role.USER)
    clock.advance(hours=23, minutes=59, seconds=59)
    assert validator.validate(token).ok


def test_expired_at_exp(issuer, validator, clock):
    token = issuer.issue_for(7, "alice", Role.USER)
    clock.advance(hours=24)
    check = validator.validate(token)
    assert check.failure is TokenFailure.EXPIRED
    assert check.failure.status_code == 401
    assert check.claims is None


@pytest.mark.parametrize("alg", ["none", "None", "HS512", "RS256"])
def test_wrong_algorithm_rejected(validator, clock, alg):
    token = _forge({"alg": alg, "typ": "JWT"}, _payload(clock, role="admin"), signature="c2lnbmF0dXJl")
    check = validator.validate(token)
    assert check.failure is TokenFailure.WRONG_ALGORITHM
    assert check.failure.status_code == 403


def test_hs512_signed_with_real_key_still_rejected(validator, clock):
    token = jwt.encode(_payload(clock), SECRET, algorithm="HS512")
    assert validator.validate(token).failure is TokenFailure.WRONG_ALGORITHM


def test_tampered_payload_rejected(issuer, validator, clock):
    token = issuer.issue_for(7, "alice", Role.USER)
    header, _payload_part, signature = token.split(".")
    forged = f"{header}.{_b64(_payload(clock, role='admin'))}.{signature}"
    check = validator.validate(forged)
    assert check.failure is TokenFailure.INVALID_SIGNATURE
    assert check.failure.status_code == 403


def test_foreign_key_rejected(validator, clock):
    token = jwt.encode(_payload(clock), "x" * 48, algorithm=ALGORITHM)
    assert validator.validate(token).failure is TokenFailure.INVALID_SIGNATURE


def test_wrong_audience_rejected(validator, clock):
    token = jwt.encode(_payload(clock, aud="someone-else"), SECRET, algorithm=ALGORITHM)
    check = validator.validate(token)
    assert check.failure is TokenFailure.INVALID_AUDIENCE
    assert check.failure.status_code == 403


def test_wrong_issuer_rejected(validator, clock):
    token = jwt.encode(_payload(clock, iss="evil-app"), SECRET, algorithm=ALGORITHM)
    assert not validator.validate(token).ok


@pytest.mark.parametrize("dropped", ["user_id", "role", "aud", "exp"])
def test_missing_claim_rejected(validator, clock, dropped):
    token = jwt.encode(_payload(clock, **{dropped: None}), SECRET, algorithm=ALGORITHM)
    check = validator.validate(token)
    assert check.failure is TokenFailure.MISSING_CLAIMS
    assert check.failure.status_code == 403


def test_unknown_role_rejected(validator, clock):
    token = jwt.encode(_payload(clock, role="superuser"), SECRET, algorithm=ALGORITHM)
    assert validator.validate(token).failure is TokenFailure.MISSING_CLAIMS


@pytest.mark.parametrize("token", ["garbage", "not.a.jwt", "a.b"])
def test_malformed_rejected(validator, token):
    check = validator.validate(token)
    assert not check.ok
    assert check.failure.status_code == 403


@pytest.mark.parametrize("token", [None, ""])
def test_missing_token(validator, token):
    check = validator.validate(token)
    assert check.failure is TokenFailure.MISSING
    assert check.failure.status_code == 401


def test_empty_signing_key_refused():
    with pytest.raises(ValueError):
        TokenIssuer("", ISSUER, AUDIENCE, 3600)
    with pytest.raises(ValueError):
        TokenValidator("", ISSUER, AUDIENCE)
