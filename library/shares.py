"""
library/shares.py -- Share-link lifecycle.

A share link is an unauthenticated capability for one document:

    active (no expiry) ----------------------------+
    active (pending expiry) --(time passes)--> expired   (terminal, detected lazily)
    active (*) --------------(deactivate)----> revoked   (terminal)

Anti-enumeration: resolve() raises the same NotFound for a token that never
existed, one that expired and one that was revoked. deactivate() also answers
NotFound when the requester is not allowed to touch the link, so a signed-in
user cannot fish for other people's tokens either. The real reason is only
written to the audit log.

Revocation policy: a link may be deactivated by the user who created it or by
an admin. The document's current uploader has no extra say over links someone
else minted (they can still delete the document, which removes every link).

Token format: secrets.token_urlsafe(32) -- 32 random bytes, 43 URL-safe
characters, 256 bits of entropy, unrelated to document ids or row order.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from auth.audit import AccessAuditLog
from auth.errors import Forbidden, NotFound, ValidationFailed
from auth.models import SessionClaims
from auth.policy import Action, can_access
from core.clock import Clock, SystemClock, to_iso
from library.models import ShareLink
from library.store import DocumentStore

logger = logging.getLogger("lectoria.library")

TOKEN_BYTES = 32
MAX_TTL_HOURS = 24 * 365


def generate_share_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


class ShareLinkManager:
    """Create, resolve, count and revoke share links.

    Usage:
        shares = ShareLinkManager(document_store, audit)
        link = shares.create(document_id, claims, ttl_hours=1)
        shares.resolve(link.token)
        shares.record_access(link.token, download=True)
        shares.deactivate(link.token, claims)
    """

    def __init__(self, store: DocumentStore, audit: AccessAuditLog | None = None, clock: Clock | None = None) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.audit = audit or AccessAuditLog(clock=self.clock)

    def _authorize_on_document(self, document_id: int, requester: SessionClaims, action: Action) -> None:
        owner_id = self.store.get_owner_id(document_id)
        if owner_id is None:
            raise NotFound("Document not found.")
        if not can_access(requester, action, owner_id):
            raise Forbidden()

    # ------------------------------------------------------------------
    # Owner / admin operations
    # ------------------------------------------------------------------

    def create(self, document_id: int, creator: SessionClaims, ttl_hours: float | None = None) -> ShareLink:
        if ttl_hours is not None and not 0 < ttl_hours <= MAX_TTL_HOURS:
            raise ValidationFailed(f"ttl_hours must be between 0 and {MAX_TTL_HOURS}.", fields=["ttl_hours"])
        self._authorize_on_document(document_id, creator, Action.SHARE_CREATE)

        now = self.clock.now()
        expires_at = to_iso(now + timedelta(hours=ttl_hours)) if ttl_hours is not None else None
        link = ShareLink(
            document_id=document_id,
            token=generate_share_token(),
            created_by=creator.user_id,
            created_at=to_iso(now),
            expires_at=expires_at,
        )
        link.id = self.store.create_share_link(link)
        self.audit.share_created(link.token, document_id, creator.user_id, expires_at)
        return link

    def list_for_document(self, document_id: int, requester: SessionClaims) -> list[ShareLink]:
        self._authorize_on_document(document_id, requester, Action.SHARE_LIST)
        return self.store.list_share_links(document_id, self.clock.now())

    def deactivate(self, token: str, requester: SessionClaims) -> None:
        """Revoke a link. Idempotent: revoking a revoked or expired link succeeds again."""
        link = self.store.get_share_link(token)
        if link is None:
            self.audit.share_denied(token, requester.user_id, "unknown")
            raise NotFound("Share link not found.")
        if not can_access(requester, Action.SHARE_REVOKE, link.created_by):
            self.audit.share_denied(token, requester.user_id, "not_creator")
            raise NotFound("Share link not found.")
        changed = self.store.deactivate_share_link(token)
        self.audit.share_revoked(token, requester.user_id, already_inactive=not changed)

    def document_stats(self, document_id: int, requester: SessionClaims) -> dict:
        """Sharing analytics for one document (owner/admin)."""
        self._authorize_on_document(document_id, requester, Action.ANALYTICS)
        document = self.store.get_document(document_id)
        if document is None:
            raise NotFound("Document not found.")
        now = self.clock.now()
        links = self.store.list_all_share_links(document_id)
        return {
            "document_id": document_id,
            "total_links": len(links),
            "active_links": sum(1 for link in links if link.is_usable(now)),
            "total_accesses": sum(link.access_count for link in links),
            "download_count": document.download_count,
        }

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def resolve(self, token: str) -> ShareLink:
        """Return the usable link for token, or raise NotFound.

        An expired link found here is deactivated on the spot so later lookups
        and listings stop seeing it.
        """
        link = self.store.get_share_link(token) if token else None
        if link is None:
            self.audit.share_resolved(token, "unknown")
            raise NotFound("Share link not found.")
        if not link.is_active:
            self.audit.share_resolved(token, "revoked")
            raise NotFound("Share link not found.")
        if link.is_expired(self.clock.now()):
            self.store.deactivate_share_link(token)
            self.audit.share_resolved(token, "expired")
            raise NotFound("Share link not found.")
        self.audit.share_resolved(token, "ok")
        return link

    def record_access(self, token: str, download: bool = False) -> ShareLink:
        """Count one successful public fetch and return the updated link.

        Call this only once the response is actually going to be served.
        Raises NotFound if the link stopped being usable in the meantime.
        """
        link = self.store.increment_share_access(token, self.clock.now(), download=download)
        if link is None:
            raise NotFound("Share link not found.")
        return link

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def deactivate_created_by(self, user_id: int) -> int:
        """Revoke every link a user minted, used when the account is deleted."""
        count = self.store.deactivate_links_created_by(user_id)
        if count:
            self.audit.record("share_links_revoked", creator_id=user_id, count=count)
        return count

    def deactivate_expired(self) -> int:
        count = self.store.deactivate_expired(self.clock.now())
        if count:
            logger.info("Deactivated %d expired share link(s)", count)
        return count
