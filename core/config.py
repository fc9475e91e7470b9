"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Landing Gate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Complex fields (protected_paths) are
      parsed from JSON.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Dev mode generates missing secrets with a warning,
      production mode refuses to start without them.

Security notes:
  SECRET_KEY signs every bearer token. PASSWORD_SALT keys the deterministic
  password hash -- changing it invalidates every stored password, so it must
  be stable across restarts in production.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("landinggate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'landinggate.db'}"


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
    # Empty string is the sentinel for "not configured" for both secrets.
    secret_key: str = ""
    password_salt: str = ""

    # ------------------------------------------------------------------
    # Password hashing
    # ------------------------------------------------------------------

    # bcrypt-pbkdf rounds. Tests drop this to 1 to keep the suite fast.
    password_hash_rounds: int = 32

    # ------------------------------------------------------------------
    # Identity store
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    # Pool bounds apply to server databases and file SQLite. In-memory
    # SQLite shares a single connection and has nothing to bound.
    db_pool_size: int = 5
    db_max_overflow: int = 10
    db_pool_timeout: float = 5.0

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    # Path prefix -> roles allowed at (and beneath) that prefix.
    protected_paths: dict[str, list[str]] = {"/api/v1/admin": ["admin"]}
    default_role: str = "user"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    auth_rate_limit: str = "10/minute"
    rate_limit_enabled: bool = True

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the startup policy for SECRET_KEY and PASSWORD_SALT.

        Dev mode (DEBUG=true): auto-generate missing values with a warning.
            Tokens and password hashes will not survive a restart.

        Production mode: refuse to start if either value is missing.

        Both modes: reject a SECRET_KEY shorter than 32 characters and a
            PASSWORD_SALT shorter than 16 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if not self.password_salt:
            if self.debug:
                self.password_salt = secrets.token_hex(16)
                logger.warning("Using auto-generated PASSWORD_SALT. Stored passwords will not match after restart.")
            else:
                raise ValueError(
                    "PASSWORD_SALT is required in production mode. "
                    "Set PASSWORD_SALT in your environment or .env file."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if len(self.password_salt) < 16:
            raise ValueError("PASSWORD_SALT must be at least 16 characters.")
        if self.password_hash_rounds < 1:
            raise ValueError("PASSWORD_HASH_ROUNDS must be at least 1.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
