"""
API request and response models for Lectoria REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
library/models.py, which own the internal domain representation. Route
handlers map between the two.

No response model has a field for a password hash or a stored file path.

Request models accept both snake_case and the camelCase names older clients
send (e.g. currentPassword, ttlHours).
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field

from auth.models import Role, User
from library.models import Document, ShareLink

# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None
    fields: list[str] = Field(default_factory=list)


class ErrorResponse(BaseModel):
    """Envelope used by every error response: {"error": {...}}."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=False)

    username: str = Field(min_length=1, max_length=50)
    password: str = Field(min_length=1, max_length=255)


class RegisterRequest(BaseModel):
    username: str = Field(min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_.-]+$")
    email: EmailStr
    password: str = Field(min_length=1, max_length=255)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("current_password", "currentPassword"),
    )
    new_password: str = Field(
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("new_password", "newPassword"),
    )


class UserPatch(BaseModel):
    """Request body for PATCH /auth/users/{id}. At least one field must be set."""

    role: Optional[Role] = None
    is_active: Optional[bool] = None


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    role: Role
    must_change_password: bool = False

    @classmethod
    def from_user(cls, user: User) -> "UserInfo":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            must_change_password=user.must_change_password,
        )


class UserAdminRow(UserInfo):
    """One row of GET /auth/users -- adds account state for administrators."""

    is_active: bool
    created_at: str
    last_login: Optional[str] = None
    last_password_change: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserAdminRow":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            must_change_password=user.must_change_password,
            is_active=user.is_active,
            created_at=user.created_at or "",
            last_login=user.last_login,
            last_password_change=user.last_password_change,
        )


class AuthResponse(BaseModel):
    """Returned by login, register and change-password."""

    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserInfo


class PasswordResetResponse(BaseModel):
    temporary_password: str
    must_change_password: bool = True


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


class DocumentResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    author: Optional[str]
    description: Optional[str]
    doc_type: str
    filename: str
    file_size: int
    download_count: int
    uploaded_by: int
    upload_date: str

    @classmethod
    def from_document(cls, doc: Document) -> "DocumentResponse":
        return cls(
            id=doc.id,
            title=doc.title,
            author=doc.author,
            description=doc.description,
            doc_type=doc.doc_type,
            filename=doc.filename,
            file_size=doc.file_size,
            download_count=doc.download_count,
            uploaded_by=doc.uploaded_by,
            upload_date=doc.upload_date,
        )


class DocumentStatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: int
    total_links: int
    active_links: int
    total_accesses: int
    download_count: int


# ---------------------------------------------------------------------------
# Share links
# ---------------------------------------------------------------------------


class ShareCreateRequest(BaseModel):
    ttl_hours: Optional[float] = Field(
        default=None,
        gt=0,
        le=24 * 365,
        validation_alias=AliasChoices("ttl_hours", "ttlHours", "expiresIn"),
        description="Hours until the link expires. Omit for a link that never expires.",
    )


class ShareCreatedResponse(BaseModel):
    token: str
    expires_at: Optional[str]
    share_url: str


class ShareLinkResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    document_id: int
    created_by: int
    created_at: str
    expires_at: Optional[str]
    access_count: int
    share_url: str

    @classmethod
    def from_link(cls, link: ShareLink, share_url: str) -> "ShareLinkResponse":
        return cls(
            token=link.token,
            document_id=link.document_id,
            created_by=link.created_by,
            created_at=link.created_at,
            expires_at=link.expires_at,
            access_count=link.access_count,
            share_url=share_url,
        )


class SharedDocumentResponse(BaseModel):
    """Public metadata for GET /share/{token}. Nothing that identifies internals."""

    model_config = ConfigDict(frozen=True)

    title: str
    author: Optional[str]
    description: Optional[str]
    doc_type: str
    filename: str
    file_size: int
    upload_date: str
    uploader_name: Optional[str]
    access_count: int
    created_at: str
    expires_at: Optional[str]
