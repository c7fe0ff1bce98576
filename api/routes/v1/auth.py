"""
api/routes/v1/auth.py -- Authentication and user management REST endpoints.

Routes:
  POST  /api/v1/auth/login                       -- password login; returns bearer token
  POST  /api/v1/auth/register                    -- self-registration; returns bearer token
  POST  /api/v1/auth/change-password             -- requires auth; re-verifies current password
  GET   /api/v1/auth/me                          -- current user info (requires auth)
  GET   /api/v1/auth/users                       -- list all users (admin only)
  PATCH /api/v1/auth/users/{id}                  -- update role/is_active (admin only)
  DELETE /api/v1/auth/users/{id}                 -- delete account, revoke its share links (admin only)
  POST  /api/v1/auth/users/{id}/reset-password   -- temporary password (admin only)

Security:
  Login lockout: LoginRateLimiter is checked before any credential work and
    updated after it. A locked client gets 429 even with the right password.
  Coarse throttle: slowapi limits login/register per address on top of that.
  Timing: authenticate_user() always runs bcrypt -- use it, never inline
    get_by_username() + verify_password().
  Generic errors: wrong username and wrong password both return
    bad_credentials; a lockout never says which one was wrong.
  Password routes are plain `def` handlers so bcrypt runs in FastAPI's thread
    pool instead of blocking the event loop.
  Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter
from api.models import (
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    PasswordResetResponse,
    RegisterRequest,
    UserAdminRow,
    UserInfo,
    UserPatch,
)
from auth.audit import AccessAuditLog
from auth.dependencies import client_key, get_current_claims, get_current_user, require_admin
from auth.errors import AuthenticationFailed, Conflict, Forbidden, NotFound, RateLimited, ValidationFailed, WeakPassword
from auth.models import Role, SessionClaims, User
from auth.passwords import (
    authenticate_user,
    check_password_strength,
    generate_temporary_password,
    hash_password,
    verify_password,
)
from auth.ratelimit import LoginRateLimiter
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST  /auth/login, /auth/register:   public, lockout + slowapi throttled
# - POST  /auth/change-password:         requires auth (get_current_claims)
# - GET   /auth/me:                      requires auth (get_current_user)
# - GET/PATCH/POST /auth/users...:       requires admin (require_admin)
router = APIRouter()


def _token_response(request: Request, user: User, status_code: int = 200) -> JSONResponse:
    issuer: TokenIssuer = request.app.state.token_issuer
    token = issuer.issue(SessionClaims.for_user(user, issuer.clock.now()))
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            token=token,
            expires_in=issuer.expires_in,
            user=UserInfo.from_user(user),
        ).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _check_not_locked(request: Request, key: str) -> None:
    login_limiter: LoginRateLimiter = request.app.state.login_limiter
    audit: AccessAuditLog = request.app.state.audit
    try:
        login_limiter.check_allowed(key)
    except RateLimited as exc:
        audit.login_blocked(key, exc.retry_after)
        raise


def _require_strong(password: str, field: str) -> None:
    problems = check_password_strength(password)
    if problems:
        raise WeakPassword(
            "Password must contain " + ", ".join(problems) + ".",
            fields=[field],
        )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return a session token."""
    user_store: UserStore = request.app.state.user_store
    login_limiter: LoginRateLimiter = request.app.state.login_limiter
    audit: AccessAuditLog = request.app.state.audit
    key = client_key(request)

    _check_not_locked(request, key)

    user = authenticate_user(user_store, body.username, body.password)
    if user is None:
        entry = login_limiter.record_failure(key)
        audit.login_failed(key, body.username, entry.failures)
        raise AuthenticationFailed("Invalid username or password.", code="bad_credentials")

    login_limiter.record_success(key)
    user_store.update_last_login(user.id, request.app.state.clock.now())
    audit.login_succeeded(key, user.id)
    return _token_response(request, user)


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a regular user account and log it in."""
    if not _settings.self_registration_enabled:
        raise Forbidden("Self-registration is disabled.")
    user_store: UserStore = request.app.state.user_store
    _check_not_locked(request, client_key(request))
    _require_strong(body.password, "password")

    new_user = User(
        username=body.username,
        email=str(body.email),
        role=Role.USER,
        hashed_password=hash_password(body.password),
    )
    try:
        user_id = user_store.create_user(new_user, now=request.app.state.clock.now())
    except IntegrityError as exc:
        raise Conflict("Username or email already exists.") from exc

    created = user_store.get_by_id(user_id)
    request.app.state.audit.record("user_registered", user_id=user_id)
    return _token_response(request, created, status_code=201)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/change-password", response_model=AuthResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    claims: SessionClaims = Depends(get_current_claims),
) -> JSONResponse:
    """Replace the caller's password after re-verifying the current one.

    A wrong current password counts as a failed login for the client, so a
    stolen session token cannot be used to brute-force the password.
    """
    user_store: UserStore = request.app.state.user_store
    login_limiter: LoginRateLimiter = request.app.state.login_limiter
    key = client_key(request)
    _check_not_locked(request, key)

    user = user_store.get_by_id(claims.user_id)
    if user is None or not verify_password(body.current_password, user.hashed_password):
        entry = login_limiter.record_failure(key)
        request.app.state.audit.login_failed(key, claims.username, entry.failures)
        raise AuthenticationFailed("Current password is incorrect.", code="bad_credentials")

    _require_strong(body.new_password, "new_password")
    if body.new_password == body.current_password:
        raise ValidationFailed("New password must differ from the current password.", fields=["new_password"])

    now = request.app.state.clock.now()
    user_store.update_password(user.id, hash_password(body.new_password), now)
    login_limiter.record_success(key)
    request.app.state.audit.password_changed(user.id, by=user.id)
    return _token_response(request, user_store.get_by_id(user.id))


@router.get("/auth/me", response_model=UserInfo)
async def me(current_user: User = Depends(get_current_user)) -> UserInfo:
    """Return identity information for the currently authenticated user."""
    return UserInfo.from_user(current_user)


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserAdminRow])
def list_users(request: Request, admin: SessionClaims = Depends(require_admin)) -> list[UserAdminRow]:
    user_store: UserStore = request.app.state.user_store
    return [UserAdminRow.from_user(u) for u in user_store.list_users()]


@router.patch("/auth/users/{user_id}", response_model=UserAdminRow)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    admin: SessionClaims = Depends(require_admin),
) -> UserAdminRow:
    """Update a user's role or active status. Admin only.

    Prevents:
      - Self-deactivation and self-demotion (admin locking themselves out).
      - Deactivating or demoting the last active admin.
    """
    user_store: UserStore = request.app.state.user_store
    target = user_store.get_by_id(user_id)
    if target is None:
        raise NotFound("User not found.")

    updates: dict = {}
    removes_admin = target.role is Role.ADMIN and target.is_active and (
        body.is_active is False or (body.role is not None and body.role is not Role.ADMIN)
    )
    if removes_admin:
        if target.id == admin.user_id:
            raise ValidationFailed("You cannot deactivate or demote your own account.", fields=["is_active", "role"])
        if user_store.count_active_admins() <= 1:
            raise ValidationFailed("Cannot remove the last active admin account.", fields=["is_active", "role"])
    if body.role is not None:
        updates["role"] = body.role
    if body.is_active is not None:
        updates["is_active"] = body.is_active
    if not updates:
        raise ValidationFailed("No fields to update.")

    user_store.update_user(user_id, **updates)
    request.app.state.audit.record(
        "user_updated", user_id=user_id, by=admin.user_id, changed=",".join(sorted(updates))
    )
    return UserAdminRow.from_user(user_store.get_by_id(user_id))


@router.delete("/auth/users/{user_id}")
def delete_user(
    request: Request,
    user_id: int,
    admin: SessionClaims = Depends(require_admin),
) -> dict:
    """Delete a user account. Admin only.

    Same guards as update_user: no self-deletion, and the last active admin
    stays. The user's documents are kept; share links they created are
    revoked, and their outstanding session tokens stop validating.
    """
    user_store: UserStore = request.app.state.user_store
    target = user_store.get_by_id(user_id)
    if target is None:
        raise NotFound("User not found.")
    if target.id == admin.user_id:
        raise ValidationFailed("You cannot delete your own account.")
    if target.role is Role.ADMIN and target.is_active and user_store.count_active_admins() <= 1:
        raise ValidationFailed("Cannot remove the last active admin account.")

    request.app.state.share_manager.deactivate_created_by(user_id)
    user_store.delete_user(user_id)
    request.app.state.audit.record("user_deleted", user_id=user_id, by=admin.user_id)
    return {"message": "User deleted."}


@router.post("/auth/users/{user_id}/reset-password", response_model=PasswordResetResponse)
def reset_password(
    request: Request,
    user_id: int,
    admin: SessionClaims = Depends(require_admin),
) -> JSONResponse:
    """Set a random temporary password and force a change on next login.

    The temporary password is returned once and never stored in clear.
    """
    user_store: UserStore = request.app.state.user_store
    if user_store.get_by_id(user_id) is None:
        raise NotFound("User not found.")
    temporary = generate_temporary_password()
    user_store.update_password(
        user_id,
        hash_password(temporary),
        request.app.state.clock.now(),
        must_change_password=True,
    )
    request.app.state.audit.password_changed(user_id, by=admin.user_id)
    resp = JSONResponse(content=PasswordResetResponse(temporary_password=temporary).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp
