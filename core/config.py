"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for DigestGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. digest_auth_secret -> DIGEST_AUTH_SECRET). Type coercion and
      validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Used for the DEBUG-conditional
      DIGEST_AUTH_SECRET logic and the nonce lifetime sanity checks.

Security notes:
  [S1] DIGEST_AUTH_SECRET shorter than 32 chars is rejected outright. Nonce
       signatures and the challenge opaque value are HMAC-SHA256 over this key.

  [S2] In production mode (DEBUG not set or false), a missing secret is a hard
       startup failure. A random per-process key would silently invalidate
       every outstanding nonce on restart.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("digestgate.config")


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    digest_auth_secret: str = ""

    # ------------------------------------------------------------------
    # Digest protocol
    # ------------------------------------------------------------------

    digest_realm: str = "testrealm@testboilerplate.app"
    digest_algorithm: Literal["MD5", "SHA-256"] = "MD5"

    # ------------------------------------------------------------------
    # Nonce table
    # ------------------------------------------------------------------

    nonce_ttl_seconds: int = 300  # 5 minutes from issuance
    # Expired records are kept this long after issuance so validate() can
    # still answer "stale" instead of "unknown".
    nonce_retention_seconds: int = 600
    cnonce_window: int = 64
    max_nonces: int = 10_000
    nonce_purge_interval_seconds: int = 60

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    # Empty string means the default SQLite file beside auth/store.py.
    auth_db_url: str = ""

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    digest_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret(self) -> "Settings":
        """Enforce DIGEST_AUTH_SECRET policy [S1][S2].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Outstanding nonces will not survive restart -- acceptable for
            local dev, clients simply get a fresh challenge.

        Production mode (DEBUG=false or not set): refuse to start if the
            secret is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.digest_auth_secret:
            if self.debug:
                self.digest_auth_secret = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated DIGEST_AUTH_SECRET. " "Issued nonces will not survive a restart."
                )
            else:
                raise ValueError(
                    "DIGEST_AUTH_SECRET is required in production mode. "
                    "Set DIGEST_AUTH_SECRET in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.digest_auth_secret) < 32:
            raise ValueError("DIGEST_AUTH_SECRET must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_nonce_lifetimes(self) -> "Settings":
        """Reject nonce settings that would break stale detection or bounds."""
        if self.nonce_ttl_seconds <= 0:
            raise ValueError("NONCE_TTL_SECONDS must be positive.")
        if self.nonce_retention_seconds < self.nonce_ttl_seconds:
            raise ValueError("NONCE_RETENTION_SECONDS must be >= NONCE_TTL_SECONDS.")
        if self.cnonce_window < 1 or self.max_nonces < 1:
            raise ValueError("CNONCE_WINDOW and MAX_NONCES must be at least 1.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings()
    directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
