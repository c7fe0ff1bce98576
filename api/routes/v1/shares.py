"""
api/routes/v1/shares.py -- Share-link REST endpoints.

Authenticated (owner or admin of the document):
  POST   /documents/{document_id}/share   -- mint a link, optional ttl_hours
  GET    /documents/{document_id}/shares  -- list the document's usable links
  DELETE /shares/{token}                  -- revoke (creator or admin, idempotent)

Public (the token is the only credential):
  GET /share/{token}          -- document metadata; counts one access
  GET /share/{token}/fetch    -- file bytes; counts one access and one download
  GET /share/{token}/qr       -- PNG QR code of the share URL; counts nothing

Every public failure is the same 404 whether the token never existed, expired
or was revoked. Counters are bumped only once the response is certain to be
served. Public responses carry Cache-Control: no-store so a revoked link is not
replayed from a cache.
"""

from __future__ import annotations

import io

import segno
from fastapi import APIRouter, Depends, Request
from fastapi.responses import FileResponse, JSONResponse, Response

from api.limiter import limiter
from api.models import ShareCreatedResponse, ShareCreateRequest, ShareLinkResponse, SharedDocumentResponse
from auth.dependencies import get_current_claims
from auth.errors import NotFound
from auth.models import SessionClaims
from auth.store import UserStore
from core.config import get_settings
from library.shares import ShareLinkManager
from library.store import DocumentStore

_settings = get_settings()

# Auth policy:
# - /documents/{id}/share(s), /shares/{token}:  requires auth, gate enforced in ShareLinkManager
# - /share/{token}, /share/{token}/fetch, /qr:   public, slowapi throttled
router = APIRouter()


def _share_url(request: Request, token: str) -> str:
    path = request.app.url_path_for("view_shared_document", token=token)
    base = _settings.public_base_url.rstrip("/") if _settings.public_base_url else str(request.base_url).rstrip("/")
    return f"{base}{path}"


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/documents/{document_id}/share", response_model=ShareCreatedResponse, status_code=201)
def create_share_link(
    request: Request,
    document_id: int,
    body: ShareCreateRequest | None = None,
    claims: SessionClaims = Depends(get_current_claims),
) -> ShareCreatedResponse:
    """Mint a share link for a document the caller owns (or any, for admins)."""
    shares: ShareLinkManager = request.app.state.share_manager
    link = shares.create(document_id, claims, ttl_hours=body.ttl_hours if body else None)
    return ShareCreatedResponse(
        token=link.token,
        expires_at=link.expires_at,
        share_url=_share_url(request, link.token),
    )


@router.get("/documents/{document_id}/shares", response_model=list[ShareLinkResponse])
def list_share_links(
    request: Request,
    document_id: int,
    claims: SessionClaims = Depends(get_current_claims),
) -> list[ShareLinkResponse]:
    shares: ShareLinkManager = request.app.state.share_manager
    return [
        ShareLinkResponse.from_link(link, _share_url(request, link.token))
        for link in shares.list_for_document(document_id, claims)
    ]


@router.delete("/shares/{token}")
def revoke_share_link(
    request: Request,
    token: str,
    claims: SessionClaims = Depends(get_current_claims),
) -> dict:
    shares: ShareLinkManager = request.app.state.share_manager
    shares.deactivate(token, claims)
    return {"message": "Share link deactivated."}


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.share_rate_limit)
@router.get("/share/{token}", response_model=SharedDocumentResponse)
def view_shared_document(request: Request, token: str) -> JSONResponse:
    """Public metadata for a shared document."""
    shares: ShareLinkManager = request.app.state.share_manager
    documents: DocumentStore = request.app.state.document_store
    user_store: UserStore = request.app.state.user_store

    link = shares.resolve(token)
    doc = documents.get_document(link.document_id)
    if doc is None:
        raise NotFound("Share link not found.")
    link = shares.record_access(token)
    uploader = user_store.get_by_id(doc.uploaded_by)

    body = SharedDocumentResponse(
        title=doc.title,
        author=doc.author,
        description=doc.description,
        doc_type=doc.doc_type,
        filename=doc.filename,
        file_size=doc.file_size,
        upload_date=doc.upload_date,
        uploader_name=uploader.username if uploader else None,
        access_count=link.access_count,
        created_at=link.created_at,
        expires_at=link.expires_at,
    )
    resp = JSONResponse(content=body.model_dump(mode="json"))
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(_settings.share_rate_limit)
@router.get("/share/{token}/fetch")
def fetch_shared_document(request: Request, token: str) -> FileResponse:
    """Serve the shared file. Counts as one access and one download."""
    shares: ShareLinkManager = request.app.state.share_manager
    documents: DocumentStore = request.app.state.document_store

    link = shares.resolve(token)
    doc = documents.get_document(link.document_id)
    if doc is None or not request.app.state.file_storage.exists(doc.filepath):
        raise NotFound("Share link not found.")
    shares.record_access(token, download=True)

    resp = FileResponse(doc.filepath, filename=doc.filename)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(_settings.share_rate_limit)
@router.get("/share/{token}/qr")
def share_qr_code(request: Request, token: str) -> Response:
    """PNG QR code pointing at the public share URL.

    Resolves the link like the other public endpoints but is not an access:
    scanning the code and opening the link is what counts.
    """
    shares: ShareLinkManager = request.app.state.share_manager
    shares.resolve(token)

    buffer = io.BytesIO()
    segno.make(_share_url(request, token), error="m").save(buffer, kind="png", scale=8, border=2)
    return Response(content=buffer.getvalue(), media_type="image/png", headers={"Cache-Control": "no-store"})
