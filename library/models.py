"""
library/models.py -- Domain dataclasses for documents and share links.

These are pure data containers. Lifecycle rules (who may create or revoke a
link, when it stops being usable) live in library/shares.py; persistence lives
in library/store.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from core.clock import from_iso

DOCUMENT_TYPES = ("book", "magazine")


@dataclass
class Document:
    """An uploaded PDF or EPUB.

    filepath is the server-side location of the stored file and is never sent
    to clients. uploaded_by is the owner for authorization purposes.
    """

    title: str
    filename: str
    filepath: str
    uploaded_by: int
    doc_type: str = "book"  # "book" | "magazine"
    author: str | None = None
    description: str | None = None
    file_size: int = 0
    download_count: int = 0
    id: int | None = None
    upload_date: str = ""  # ISO 8601, set by store on insert


@dataclass
class ShareLink:
    """A public capability for one document.

    Usable iff is_active and (expires_at is None or now < expires_at).
    access_count only moves through DocumentStore.increment_share_access().
    """

    document_id: int
    token: str
    created_by: int
    created_at: str
    expires_at: str | None = None  # ISO 8601; None = never expires
    is_active: bool = True
    access_count: int = 0
    id: int | None = None

    def expiry(self) -> datetime | None:
        return from_iso(self.expires_at)

    def is_expired(self, now: datetime) -> bool:
        expiry = self.expiry()
        return expiry is not None and now >= expiry

    def is_usable(self, now: datetime) -> bool:
        return self.is_active and not self.is_expired(now)
