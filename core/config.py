"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AssetMIS happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. DEBUG relaxes two rules: a missing
      SECRET_KEY is generated, and the password KDF may run with few rounds
      (tests rely on this to keep hashing fast).

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. Session ids are
    stored as HMAC-SHA256(SECRET_KEY, sid) -- a short key weakens that.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a
    hard startup failure. A random key would orphan every stored session on
    restart.

  PASSWORD_KDF_ROUNDS below 50 is refused outside DEBUG. The rounds value
    is not encoded in stored hashes, so it must stay stable per deployment.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("assetmis.config")

_MIN_KDF_ROUNDS = 50


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
    secret_key: str = ""

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:5173", "http://127.0.0.1"]
    # Honour X-Forwarded-For when recording client IPs in the auth log.
    trust_proxy: bool = False

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_cookie_name: str = "assetmis_session"
    session_max_age_seconds: int = 30 * 24 * 60 * 60  # 30 days, sliding
    # Lifetime of a pending MFA enrollment secret (scan QR -> confirm code).
    enrollment_ttl_seconds: int = 600

    # ------------------------------------------------------------------
    # Credentials and MFA
    # ------------------------------------------------------------------

    password_kdf_rounds: int = 100
    totp_issuer: str = "AssetMIS"
    # Accept codes from this many 30-second steps either side of "now".
    totp_valid_window: int = 2

    # ------------------------------------------------------------------
    # Brute-force protection
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    mfa_rate_limit: str = "10/minute"
    max_failed_attempts: int = 5
    lockout_base_seconds: int = 30
    lockout_max_seconds: int = 900

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    auth_log_dir: str = "LOGS/auth"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_kdf_rounds(self) -> "Settings":
        """Refuse a weak password KDF outside DEBUG."""
        if self.password_kdf_rounds < 1:
            raise ValueError("PASSWORD_KDF_ROUNDS must be a positive integer.")
        if self.password_kdf_rounds < _MIN_KDF_ROUNDS and not self.debug:
            raise ValueError(f"PASSWORD_KDF_ROUNDS must be at least {_MIN_KDF_ROUNDS} in production mode.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
