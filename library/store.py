"""
library/store.py -- SQLAlchemy Core persistence for documents and share links.

Pattern: Repository + Data Mapper, same as auth/store.py. DocumentStore is the
repository; _row_to_document / _row_to_share_link are the mappers. Route code
never touches SQL directly.

Counters: access_count and download_count are only ever changed with a
server-evaluated expression (SET access_count = access_count + 1). Two
simultaneous downloads of a popular link therefore both count -- there is no
application-level read-modify-write to lose an update in.

Usability in SQL: "active and not expired" is evaluated in the WHERE clause of
the increment itself, so a link revoked or expired between the caller's
resolve() and the increment is not counted. Timestamps are stored in one
fixed UTC ISO format (core.clock.to_iso) so string comparison orders them
correctly.

Cascade: delete_document() removes the document's share links in the same
transaction as the document row. Share links are otherwise never deleted,
only deactivated.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, Index, Integer, MetaData, String, Table, Text, select
from sqlalchemy.engine import Engine

from core.clock import to_iso
from core.config import get_settings
from core.db import make_engine
from library.models import Document, ShareLink

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_documents = Table(
    "documents",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(500), nullable=False),
    Column("author", String(255)),
    Column("description", Text),
    Column("doc_type", String(20), nullable=False, server_default="book"),
    Column("filename", String(500), nullable=False),
    Column("filepath", Text, nullable=False),
    Column("file_size", Integer, nullable=False, server_default="0"),
    Column("download_count", Integer, nullable=False, server_default="0"),
    Column("uploaded_by", Integer, nullable=False),
    Column("upload_date", String(32), nullable=False),
)

_share_links = Table(
    "share_links",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("document_id", Integer, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False),
    Column("token", String(64), nullable=False, unique=True),
    Column("created_by", Integer, nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32)),  # NULL = never expires
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("access_count", Integer, nullable=False, server_default="0"),
)

Index("idx_share_links_document_id", _share_links.c.document_id)


def _usable(now: datetime):
    """SQL predicate: link is active and not past its expiry at `now`."""
    return (_share_links.c.is_active == 1) & (
        _share_links.c.expires_at.is_(None) | (_share_links.c.expires_at > to_iso(now))
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class DocumentStore:
    """Repository for Document and ShareLink entities.

    Usage:
        store = DocumentStore()                               # settings.database_url
        store = DocumentStore("postgresql://user:pw@host/db")
        doc_id = store.create_document(doc)
        store.create_share_link(link)
        store.increment_share_access(token, now)
        store.close()
    """

    def __init__(self, db_url: str | None = None, timeout_seconds: int | None = None) -> None:
        settings = get_settings()
        self.engine: Engine = make_engine(
            db_url or settings.database_url,
            timeout_seconds or settings.db_timeout_seconds,
        )
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def create_document(self, doc: Document, now: datetime | None = None) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _documents.insert().values(
                    title=doc.title,
                    author=doc.author,
                    description=doc.description,
                    doc_type=doc.doc_type,
                    filename=doc.filename,
                    filepath=doc.filepath,
                    file_size=doc.file_size,
                    uploaded_by=doc.uploaded_by,
                    upload_date=to_iso(now or datetime.now(timezone.utc)),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_document(self, document_id: int) -> Document | None:
        with self.engine.connect() as conn:
            row = conn.execute(_documents.select().where(_documents.c.id == document_id)).fetchone()
        return _row_to_document(row) if row is not None else None

    def get_owner_id(self, document_id: int) -> int | None:
        """Return the uploader's user id, or None if the document does not exist."""
        with self.engine.connect() as conn:
            return conn.execute(
                select(_documents.c.uploaded_by).where(_documents.c.id == document_id)
            ).scalar()

    def list_documents(self) -> list[Document]:
        """All documents, newest upload first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_documents.select().order_by(_documents.c.upload_date.desc())).fetchall()
        return [_row_to_document(r) for r in rows]

    def delete_document(self, document_id: int) -> bool:
        """Delete a document and all of its share links atomically.

        The explicit share_links delete does not rely on the FK cascade, which
        SQLite only honours with PRAGMA foreign_keys=ON.
        """
        with self.engine.connect() as conn:
            conn.execute(_share_links.delete().where(_share_links.c.document_id == document_id))
            result = conn.execute(_documents.delete().where(_documents.c.id == document_id))
            conn.commit()
        return result.rowcount > 0

    def increment_download_count(self, document_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _documents.update()
                .where(_documents.c.id == document_id)
                .values(download_count=_documents.c.download_count + 1)
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Share links
    # ------------------------------------------------------------------

    def create_share_link(self, link: ShareLink) -> int:
        """Insert a share link. Raises IntegrityError on a duplicate token."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _share_links.insert().values(
                    document_id=link.document_id,
                    token=link.token,
                    created_by=link.created_by,
                    created_at=link.created_at,
                    expires_at=link.expires_at,
                    is_active=1 if link.is_active else 0,
                    access_count=0,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_share_link(self, token: str) -> ShareLink | None:
        """Return the link in whatever state it is in (active, revoked, expired)."""
        with self.engine.connect() as conn:
            row = conn.execute(_share_links.select().where(_share_links.c.token == token)).fetchone()
        return _row_to_share_link(row) if row is not None else None

    def list_share_links(self, document_id: int, now: datetime) -> list[ShareLink]:
        """Usable links for a document, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _share_links.select()
                .where((_share_links.c.document_id == document_id) & _usable(now))
                .order_by(_share_links.c.created_at.desc(), _share_links.c.id.desc())
            ).fetchall()
        return [_row_to_share_link(r) for r in rows]

    def list_all_share_links(self, document_id: int) -> list[ShareLink]:
        """Every link ever created for a document, in any state."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _share_links.select().where(_share_links.c.document_id == document_id).order_by(_share_links.c.id)
            ).fetchall()
        return [_row_to_share_link(r) for r in rows]

    def deactivate_share_link(self, token: str) -> bool:
        """Set is_active=0. Returns True if this call changed the row."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _share_links.update()
                .where((_share_links.c.token == token) & (_share_links.c.is_active == 1))
                .values(is_active=0)
            )
            conn.commit()
        return result.rowcount > 0

    def deactivate_links_created_by(self, user_id: int) -> int:
        """Deactivate every active link a user created. Returns the count."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _share_links.update()
                .where((_share_links.c.created_by == user_id) & (_share_links.c.is_active == 1))
                .values(is_active=0)
            )
            conn.commit()
        return result.rowcount

    def deactivate_expired(self, now: datetime) -> int:
        """Deactivate every active link whose expiry has passed. Returns the count."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _share_links.update()
                .where(
                    (_share_links.c.is_active == 1)
                    & _share_links.c.expires_at.is_not(None)
                    & (_share_links.c.expires_at <= to_iso(now))
                )
                .values(is_active=0)
            )
            conn.commit()
        return result.rowcount

    def increment_share_access(self, token: str, now: datetime, download: bool = False) -> ShareLink | None:
        """Count one access of a usable link; return the updated link or None.

        The usability check and the increment are one UPDATE statement. When
        download is True the document's download_count is bumped in the same
        transaction.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _share_links.update()
                .where((_share_links.c.token == token) & _usable(now))
                .values(access_count=_share_links.c.access_count + 1)
            )
            if result.rowcount == 0:
                conn.rollback()
                return None
            row = conn.execute(_share_links.select().where(_share_links.c.token == token)).fetchone()
            if download:
                conn.execute(
                    _documents.update()
                    .where(_documents.c.id == row.document_id)
                    .values(download_count=_documents.c.download_count + 1)
                )
            conn.commit()
        return _row_to_share_link(row)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_document(row) -> Document:
    return Document(
        id=row.id,
        title=row.title,
        author=row.author,
        description=row.description,
        doc_type=row.doc_type,
        filename=row.filename,
        filepath=row.filepath,
        file_size=row.file_size,
        download_count=row.download_count,
        uploaded_by=row.uploaded_by,
        upload_date=row.upload_date,
    )


def _row_to_share_link(row) -> ShareLink:
    return ShareLink(
        id=row.id,
        document_id=row.document_id,
        token=row.token,
        created_by=row.created_by,
        created_at=row.created_at,
        expires_at=row.expires_at,
        is_active=bool(row.is_active),
        access_count=row.access_count,
    )
