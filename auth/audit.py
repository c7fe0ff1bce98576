"""
auth/audit.py -- Append-only access audit log.

Each auth-relevant event becomes one structured log line on the
"lectoria.audit" logger:

    event=login_failed client=10.0.0.7 username=alice

Ship that logger wherever the deployment collects logs. A bounded in-memory
ring of recent events is kept alongside so tests (and an admin endpoint, if
one is ever added) can inspect what was recorded.

Never logged: passwords, full session tokens, the signing key. record()
refuses those field names outright, and share tokens are reduced to an
8-character prefix by share_ref().
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from core.clock import Clock, SystemClock

_FORBIDDEN_FIELDS = frozenset({"password", "current_password", "new_password", "token", "secret", "secret_key"})


def share_ref(token: str) -> str:
    """Loggable reference to a share token -- enough to correlate, not enough to use."""
    return f"{token[:8]}..." if token else ""


@dataclass(frozen=True)
class AuditEvent:
    event: str
    at: datetime
    fields: dict = field(default_factory=dict)


class AccessAuditLog:
    def __init__(self, logger_name: str = "lectoria.audit", clock: Clock | None = None, keep: int = 1000) -> None:
        self._logger = logging.getLogger(logger_name)
        self.clock = clock or SystemClock()
        self._recent: deque[AuditEvent] = deque(maxlen=keep)
        self._lock = threading.Lock()

    def record(self, event: str, level: int = logging.INFO, **fields) -> AuditEvent:
        leaked = _FORBIDDEN_FIELDS.intersection(fields)
        if leaked:
            raise ValueError(f"Refusing to audit secret fields: {sorted(leaked)}")
        entry = AuditEvent(event=event, at=self.clock.now(), fields=dict(fields))
        with self._lock:
            self._recent.append(entry)
        rendered = " ".join(f"{k}={v}" for k, v in fields.items())
        self._logger.log(level, "event=%s %s", event, rendered)
        return entry

    def recent(self, event: str | None = None) -> list[AuditEvent]:
        with self._lock:
            events = list(self._recent)
        if event is None:
            return events
        return [e for e in events if e.event == event]

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    def login_succeeded(self, client: str, user_id: int) -> None:
        self.record("login_succeeded", client=client, user_id=user_id)

    def login_failed(self, client: str, username: str, failures: int) -> None:
        self.record("login_failed", logging.WARNING, client=client, username=username, failures=failures)

    def login_blocked(self, client: str, retry_after: int) -> None:
        self.record("login_blocked", logging.WARNING, client=client, retry_after=retry_after)

    def token_rejected(self, reason: str, client: str) -> None:
        self.record("token_rejected", logging.WARNING, reason=reason, client=client)

    def password_changed(self, user_id: int, by: int) -> None:
        self.record("password_changed", user_id=user_id, by=by)

    def share_created(self, token: str, document_id: int, creator_id: int, expires_at: str | None) -> None:
        self.record(
            "share_created",
            share=share_ref(token),
            document_id=document_id,
            creator_id=creator_id,
            expires_at=expires_at or "never",
        )

    def share_revoked(self, token: str, requester_id: int, already_inactive: bool) -> None:
        self.record("share_revoked", share=share_ref(token), requester_id=requester_id, noop=already_inactive)

    def share_resolved(self, token: str, outcome: str) -> None:
        level = logging.INFO if outcome == "ok" else logging.WARNING
        self.record("share_resolved", level, share=share_ref(token), outcome=outcome)

    def share_denied(self, token: str, requester_id: int, reason: str) -> None:
        self.record("share_denied", logging.WARNING, share=share_ref(token), requester_id=requester_id, reason=reason)
