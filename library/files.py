"""
library/files.py -- On-disk storage for uploaded documents.

Uploads are accepted only when both the filename extension and the declared
MIME type say PDF or EPUB. Stored files get a random name under upload_dir;
the client's filename is kept in the database for Content-Disposition only
and never used to build a path.
"""

from __future__ import annotations

import logging
import secrets
from pathlib import Path

from auth.errors import ValidationFailed

logger = logging.getLogger("lectoria.library")

ALLOWED_TYPES: dict[str, str] = {
    ".pdf": "application/pdf",
    ".epub": "application/epub+zip",
}


class FileStorage:
    def __init__(self, upload_dir: str | Path, max_bytes: int) -> None:
        self.root = Path(upload_dir).resolve()
        self.max_bytes = max_bytes
        self.root.mkdir(parents=True, exist_ok=True)

    def check_type(self, filename: str, content_type: str | None) -> str:
        """Return the normalized extension, or raise ValidationFailed."""
        extension = Path(filename or "").suffix.lower()
        expected = ALLOWED_TYPES.get(extension)
        if expected is None or (content_type or "").lower() != expected:
            raise ValidationFailed("Only PDF and EPUB files are allowed.", fields=["file"])
        return extension

    def save(self, filename: str, content_type: str | None, data: bytes) -> Path:
        extension = self.check_type(filename, content_type)
        if len(data) > self.max_bytes:
            raise ValidationFailed("File is too large.", fields=["file"])
        if not data:
            raise ValidationFailed("File is empty.", fields=["file"])
        target = self.root / f"{secrets.token_hex(16)}{extension}"
        target.write_bytes(data)
        return target

    def exists(self, filepath: str) -> bool:
        path = Path(filepath)
        return path.is_file() and self.root in path.resolve().parents

    def delete(self, filepath: str) -> None:
        """Remove a stored file. A missing or undeletable file is logged, not raised."""
        path = Path(filepath)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not delete stored file %s: %s", path.name, exc)
