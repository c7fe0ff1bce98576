"""
api/routes/v1/documents.py -- Document library routes (thin collaborator).

Routes:
  POST   /documents                      -- upload a PDF/EPUB (multipart/form-data)
  GET    /documents                      -- list all documents
  GET    /documents/{document_id}        -- document metadata
  GET    /documents/{document_id}/download   -- file bytes; counts a download
  DELETE /documents/{document_id}        -- owner/admin; removes its share links too
  GET    /documents/{document_id}/analytics  -- owner/admin; sharing statistics

Every route requires a session token. Ownership-restricted actions go through
auth.policy.can_access() with the document's uploader as the owner.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse, Response

from api.limiter import limiter
from api.models import DocumentResponse, DocumentStatsResponse
from auth.dependencies import get_current_claims
from auth.errors import Forbidden, NotFound, ValidationFailed
from auth.models import SessionClaims
from auth.policy import Action, can_access
from core.config import get_settings
from library.files import ALLOWED_TYPES, FileStorage
from library.models import DOCUMENT_TYPES, Document
from library.shares import ShareLinkManager
from library.store import DocumentStore

_settings = get_settings()

router = APIRouter(dependencies=[Depends(get_current_claims)])


def _load(request: Request, document_id: int) -> Document:
    store: DocumentStore = request.app.state.document_store
    doc = store.get_document(document_id)
    if doc is None:
        raise NotFound("Document not found.")
    return doc


# ---------------------------------------------------------------------------
# POST /documents -- upload
# ---------------------------------------------------------------------------


@limiter.limit(_settings.upload_rate_limit)
@router.post("/documents", response_model=DocumentResponse, status_code=201)
async def upload_document(
    request: Request,
    file: UploadFile = File(...),
    title: str = Form(..., min_length=1, max_length=500),
    author: str | None = Form(default=None, max_length=255),
    description: str | None = Form(default=None, max_length=5000),
    doc_type: str = Form(default="book"),
    claims: SessionClaims = Depends(get_current_claims),
) -> DocumentResponse:
    """Store an uploaded PDF or EPUB and register it under the caller's ownership.

    The body is read with a one-byte overshoot so an oversized upload is
    detected without buffering more than max_upload_bytes + 1.
    """
    if doc_type not in DOCUMENT_TYPES:
        raise ValidationFailed("doc_type must be 'book' or 'magazine'.", fields=["doc_type"])
    storage: FileStorage = request.app.state.file_storage
    store: DocumentStore = request.app.state.document_store

    storage.check_type(file.filename or "", file.content_type)
    data = await file.read(storage.max_bytes + 1)
    path = await run_in_threadpool(storage.save, file.filename or "", file.content_type, data)

    doc = Document(
        title=title,
        author=author,
        description=description,
        doc_type=doc_type,
        filename=file.filename or f"document{path.suffix}",
        filepath=str(path),
        file_size=len(data),
        uploaded_by=claims.user_id,
    )
    doc_id = store.create_document(doc, now=request.app.state.clock.now())
    return DocumentResponse.from_document(store.get_document(doc_id))


# ---------------------------------------------------------------------------
# Read routes
# ---------------------------------------------------------------------------


@router.get("/documents", response_model=list[DocumentResponse])
def list_documents(request: Request) -> list[DocumentResponse]:
    store: DocumentStore = request.app.state.document_store
    return [DocumentResponse.from_document(d) for d in store.list_documents()]


@router.get("/documents/{document_id}", response_model=DocumentResponse)
def get_document(request: Request, document_id: int) -> DocumentResponse:
    return DocumentResponse.from_document(_load(request, document_id))


@router.get("/documents/{document_id}/download")
def download_document(
    request: Request,
    document_id: int,
    claims: SessionClaims = Depends(get_current_claims),
) -> FileResponse:
    doc = _load(request, document_id)
    if not can_access(claims, Action.DOWNLOAD, doc.uploaded_by):
        raise Forbidden()
    storage: FileStorage = request.app.state.file_storage
    if not storage.exists(doc.filepath):
        raise NotFound("File not found.")
    request.app.state.document_store.increment_download_count(doc.id)
    return FileResponse(doc.filepath, filename=doc.filename, media_type=_media_type(doc.filename))


# ---------------------------------------------------------------------------
# Owner / admin routes
# ---------------------------------------------------------------------------


@router.delete("/documents/{document_id}", status_code=204)
def delete_document(
    request: Request,
    document_id: int,
    claims: SessionClaims = Depends(get_current_claims),
) -> Response:
    """Delete a document, its share links and its stored file."""
    doc = _load(request, document_id)
    if not can_access(claims, Action.DELETE, doc.uploaded_by):
        raise Forbidden()
    store: DocumentStore = request.app.state.document_store
    store.delete_document(doc.id)
    request.app.state.file_storage.delete(doc.filepath)
    request.app.state.audit.record("document_deleted", document_id=doc.id, by=claims.user_id)
    return Response(status_code=204)


@router.get("/documents/{document_id}/analytics", response_model=DocumentStatsResponse)
def document_analytics(
    request: Request,
    document_id: int,
    claims: SessionClaims = Depends(get_current_claims),
) -> DocumentStatsResponse:
    shares: ShareLinkManager = request.app.state.share_manager
    return DocumentStatsResponse(**shares.document_stats(document_id, claims))


def _media_type(filename: str) -> str:
    for extension, media_type in ALLOWED_TYPES.items():
        if filename.lower().endswith(extension):
            return media_type
    return "application/octet-stream"
