"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Enigma happen here. No module should call
os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from ENIGMA_* environment
      variables and an optional .env file automatically. Field names map to
      env var names (e.g. database_url -> ENIGMA_DATABASE_URL).

  @model_validator(mode="after"): cross-field validation after all fields are
      resolved. Rejects a production config that still points at the default
      relative SQLite file, and a bcrypt cost outside the library's range.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("enigma.config")

DEFAULT_DATABASE_URL = "sqlite:///enigma.db"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="ENIGMA_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    log_level: str = "INFO"
    database_url: str = DEFAULT_DATABASE_URL

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    # Expiry is absolute from creation; verification never extends it.
    session_lifetime_days: int = Field(default=7, ge=1)
    session_token_retries: int = Field(default=10, ge=0)
    secure_cookies: bool = False
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Admin API
    # ------------------------------------------------------------------

    # Grant required to call the user / permission management routes.
    admin_site: str = "enigma"
    admin_permission: str = "admin"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Enforce the bcrypt cost range and the production database policy.

        bcrypt accepts log2 rounds 4..31; anything else fails on the first
        gensalt() call, which is a worse place to find out.

        Production mode (DEBUG=false): the default relative SQLite path is
            accepted but logged, since it resolves against the working
            directory of whichever process starts first.
        """
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ValueError("ENIGMA_BCRYPT_ROUNDS must be between 4 and 31.")
        self.log_level = self.log_level.upper()
        if self.log_level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown ENIGMA_LOG_LEVEL: {self.log_level!r}")
        if not self.debug and self.database_url == DEFAULT_DATABASE_URL:
            logger.warning("Using default database %s relative to the working directory.", DEFAULT_DATABASE_URL)
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
