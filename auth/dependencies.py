"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Protected routes authenticate with an Authorization: Bearer <token> header.
The token goes through TokenValidator; the user it names must still exist and
be active. The role used for authorization decisions is the one currently
stored for the user, so demoting an admin takes effect on their next request
rather than when their token expires.

get_current_claims() raises AuthenticationFailed (401/403 by failure reason).
get_current_user() returns the stored User for routes that need more than claims.
require_admin() additionally raises Forbidden for non-admins.

client_key() is the best-effort client identity used for login lockout.

Layer rule: no imports from api/ or library/.
  auth/dependencies.py may import from fastapi because this module is part of
  the FastAPI dependency injection system.
"""

from __future__ import annotations

import dataclasses

from fastapi import Request

from auth.audit import AccessAuditLog
from auth.errors import AuthenticationFailed, Forbidden
from auth.models import SessionClaims, User
from auth.policy import Action, can_access
from auth.store import UserStore
from auth.tokens import TokenFailure, TokenValidator
from core.config import get_settings

_FAILURE_MESSAGES = {
    TokenFailure.MISSING: ("unauthorized", "Authentication required."),
    TokenFailure.EXPIRED: ("token_expired", "Session expired. Please log in again."),
}


def client_key(request: Request) -> str:
    """Best-effort client identity: the remote address.

    X-Forwarded-For is only trusted when TRUST_FORWARDED_FOR is set, i.e. when
    a reverse proxy we control overwrites it. Otherwise any client could pick
    a fresh identity per request and dodge the lockout.
    """
    if get_settings().trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else "unknown"


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return credentials.strip() or None


def _authenticate(request: Request) -> tuple[SessionClaims, User]:
    validator: TokenValidator = request.app.state.token_validator
    user_store: UserStore = request.app.state.user_store
    audit: AccessAuditLog = request.app.state.audit

    check = validator.validate(_bearer_token(request))
    if not check.ok:
        failure = check.failure
        if failure is not TokenFailure.MISSING:
            audit.token_rejected(failure.value, client_key(request))
        code, message = _FAILURE_MESSAGES.get(failure, ("invalid_token", "Invalid session token."))
        raise AuthenticationFailed(message, code=code, status_code=failure.status_code)

    user = user_store.get_by_id(check.claims.user_id)
    if user is None or not user.is_active:
        audit.token_rejected("inactive_user", client_key(request))
        raise AuthenticationFailed()
    claims = dataclasses.replace(check.claims, role=user.role, username=user.username)
    return claims, user


def get_current_claims(request: Request) -> SessionClaims:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(claims: SessionClaims = Depends(get_current_claims)): ...
    """
    claims, _user = _authenticate(request)
    return claims


def get_current_user(request: Request) -> User:
    _claims, user = _authenticate(request)
    return user


def require_admin(request: Request) -> SessionClaims:
    """Require the admin role. 401 if unauthenticated, 403 if not admin."""
    claims = get_current_claims(request)
    if not can_access(claims, Action.MANAGE_USERS):
        raise Forbidden("Admin access required.")
    return claims
