from functools import lru_cache
from threading import Lock
from typing import Optional

import structlog
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PRODUCTION = "production"
ENV_STAGING = "staging"
ENV_DEVELOPMENT = "development"
ENV_LOCAL = "local"

_VALID_ENVIRONMENTS = {ENV_PRODUCTION, ENV_STAGING, ENV_DEVELOPMENT, ENV_LOCAL}
_VALID_SSL_MODES = {"disable", "require"}


@lru_cache
def get_settings() -> "Settings":
    """Returns a singleton instance of the application settings."""
    return Settings()


_settings_reload_lock = Lock()


def reload_settings_from_environment() -> "Settings":
    """
    Atomically rebuild and replace cached settings from environment values.

    This avoids mutating the cached singleton instance in-place.
    """
    logger = structlog.get_logger()
    with _settings_reload_lock:
        logger.info("settings_reload_started")
        get_settings.cache_clear()
        refreshed = get_settings()
        logger.info("settings_reload_completed")
        return refreshed


class Settings(BaseSettings):
    """
    Main configuration for the SCIM provisioner.
    Uses Pydantic-Settings for environment variable parsing from .env.
    """

    APP_NAME: str = "SCIM Provisioner"
    VERSION: str = "0.1.0"
    DEBUG: bool = False
    # ENVIRONMENT options: local, development, staging, production
    ENVIRONMENT: str = ENV_DEVELOPMENT
    TESTING: bool = False

    # Database
    DATABASE_URL: str = ""
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 10
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_ECHO: bool = False
    # disable | require
    DB_SSL_MODE: str = "require"

    # SCIM
    SCIM_BEARER_TOKEN: Optional[str] = None
    SCIM_BASE_PATH: str = "/scim/v2"
    SCIM_DEFAULT_PAGE_SIZE: int = 100
    SCIM_MAX_RESULTS: int = 200
    # Unsupported filters fall back to an unfiltered list unless strict.
    SCIM_STRICT_FILTERS: bool = False
    # Unsupported PATCH operations are rejected with 400 unless this is set.
    SCIM_PATCH_IGNORE_UNSUPPORTED: bool = False
    SCIM_LOG_PAYLOADS: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True)

    @model_validator(mode="after")
    def validate_all_config(self) -> "Settings":
        """Centralized validation, grouped by concern."""
        if self.ENVIRONMENT not in _VALID_ENVIRONMENTS:
            raise ValueError(
                f"ENVIRONMENT must be one of: {', '.join(sorted(_VALID_ENVIRONMENTS))}"
            )
        if self.TESTING and self.ENVIRONMENT in {ENV_PRODUCTION, ENV_STAGING}:
            raise ValueError(
                "TESTING must be false in staging/production runtime environments."
            )

        self._validate_scim_config()
        if self.TESTING:
            return self

        self._validate_core_secrets()
        self._validate_database_config()
        return self

    def _validate_scim_config(self) -> None:
        if not self.SCIM_BASE_PATH.startswith("/") or self.SCIM_BASE_PATH.endswith("/"):
            raise ValueError("SCIM_BASE_PATH must start with '/' and not end with '/'.")
        if self.SCIM_MAX_RESULTS < 1:
            raise ValueError("SCIM_MAX_RESULTS must be >= 1.")
        if not 0 <= self.SCIM_DEFAULT_PAGE_SIZE <= self.SCIM_MAX_RESULTS:
            raise ValueError(
                "SCIM_DEFAULT_PAGE_SIZE must be between 0 and SCIM_MAX_RESULTS."
            )

    def _validate_core_secrets(self) -> None:
        if not self.SCIM_BEARER_TOKEN or len(self.SCIM_BEARER_TOKEN) < 16:
            raise ValueError("SCIM_BEARER_TOKEN must be set and at least 16 characters.")

    def _validate_database_config(self) -> None:
        if self.DB_SSL_MODE.lower() not in _VALID_SSL_MODES:
            raise ValueError(
                f"Invalid DB_SSL_MODE: {self.DB_SSL_MODE}. Use: disable, require"
            )
        if (self.is_production or self.ENVIRONMENT == ENV_STAGING) and not self.DATABASE_URL:
            raise ValueError("DATABASE_URL is required in staging/production.")

    @property
    def is_production(self) -> bool:
        """True only when ENVIRONMENT is explicitly set to 'production'."""
        return self.ENVIRONMENT == ENV_PRODUCTION
