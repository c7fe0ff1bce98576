"""
core/config.py -- Lectoria settings, read once from the environment.

Every tunable (signing key, lockout thresholds, throttle strings, storage
locations) is a field on Settings. Modules call get_settings() and never read
os.environ themselves, so tests can steer the whole app by setting
environment variables before the first import.

Values come from the process environment first, then from a .env file in the
working directory. Field names map to upper-case variable names
(token_expire_seconds -> TOKEN_EXPIRE_SECONDS); list fields take JSON.

Startup checks (model validators):
  SECRET_KEY  required unless DEBUG=true, in which case a throwaway key is
              generated and sessions end at restart. Always >= 32 characters;
              the HMAC is only as strong as the key.
  BCRYPT_ROUNDS  10..31. The test suite runs at 10, production at the default.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or library/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("lectoria.config")

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Every field has a default, so Settings() works with an empty environment
    apart from the signing key (see validate_secret_key)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # "" means unset; validate_secret_key replaces it or refuses to start.
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Session tokens
    # ------------------------------------------------------------------

    token_issuer: str = "lectoria-app"
    token_audience: str = "lectoria-users"
    token_expire_seconds: int = 24 * 3600

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Login lockout (per client, in-process)
    # ------------------------------------------------------------------

    login_max_attempts: int = 5
    login_lockout_seconds: int = 15 * 60
    rate_limit_max_entries: int = 10_000
    # Only honour X-Forwarded-For when running behind a trusted reverse proxy.
    trust_forwarded_for: bool = False

    # ------------------------------------------------------------------
    # Coarse request throttling (slowapi limit strings)
    # ------------------------------------------------------------------

    login_rate_limit: str = "30/minute"
    share_rate_limit: str = "120/minute"
    upload_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    self_registration_enabled: bool = True

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = f"sqlite:///{_PROJECT_ROOT / 'lectoria.db'}"
    db_timeout_seconds: int = 10
    upload_dir: str = str(_PROJECT_ROOT / "uploads")
    max_upload_bytes: int = 70 * 1024 * 1024

    # ------------------------------------------------------------------
    # Maintenance / public URLs
    # ------------------------------------------------------------------

    maintenance_interval_seconds: int = 300
    # Used to build share URLs. Empty means "derive from the request".
    public_base_url: str = ""

    # ------------------------------------------------------------------
    # HTTP surface (JSON lists in the environment, e.g. ALLOWED_HOSTS='["a","b"]')
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        if not self.secret_key:
            if not self.debug:
                raise ValueError("SECRET_KEY is not set. Provide one (32+ characters) or run with DEBUG=true.")
            self.secret_key = secrets.token_hex(32)
            logger.warning("DEBUG: generated a temporary SECRET_KEY; sessions end when the process stops")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY is too short (minimum 32 characters).")
        return self

    @model_validator(mode="after")
    def validate_bcrypt_rounds(self) -> "Settings":
        """bcrypt cost below 10 is too cheap to slow down offline guessing."""
        if not 10 <= self.bcrypt_rounds <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 10 and 31.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Process-wide Settings, built on first call.

    Tests that need different values must set the environment before the
    first call, or call get_settings.cache_clear().
    """
    return Settings()
