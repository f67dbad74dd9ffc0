"""
Deedkeeper Configuration
Pydantic Settings for environment-based configuration.
Single source of truth for all app settings.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Use .env file for local development, env vars for production.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # App Identity
    # ==========================================================================
    app_name: str = "Deedkeeper"
    app_version: str = "1.0.0"
    debug: bool = False

    # ==========================================================================
    # Entity Store
    # ==========================================================================
    # "memory" keeps everything in process (tests, demos).
    # "sql" stores collections as JSON rows through SQLAlchemy.
    store_backend: Literal["memory", "sql"] = "memory"
    database_url: str = "sqlite+aiosqlite:///./deedkeeper.db"

    @field_validator("database_url", mode="before")
    @classmethod
    def convert_to_async_driver(cls, v: str) -> str:
        """Rewrite sync driver URLs to their async counterparts."""
        if v and isinstance(v, str):
            if v.startswith("postgres://"):
                v = v.replace("postgres://", "postgresql+asyncpg://", 1)
            elif v.startswith("postgresql://"):
                v = v.replace("postgresql://", "postgresql+asyncpg://", 1)
            elif v.startswith("sqlite://") and "+aiosqlite" not in v:
                v = v.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return v

    # ==========================================================================
    # Credentials
    # ==========================================================================
    credential_secret: str = ""
    credential_ttl_minutes: int = 60

    @field_validator("credential_secret", mode="before")
    @classmethod
    def generate_secret_if_empty(cls, v: str) -> str:
        """Generate a signing secret for this process if none is configured."""
        if not v:
            logger.warning(
                "No CREDENTIAL_SECRET set; generated a temporary one. "
                "Credentials will not survive a restart."
            )
            return secrets.token_urlsafe(64)
        return v

    # One-time admin bootstrap. Empty means bootstrap is disabled.
    admin_init_secret: str = ""

    # ==========================================================================
    # Maintenance
    # ==========================================================================
    cleanup_grace_days: int = 30
    backup_collections_allowed: str = "users,properties,documents,audit_logs"

    @property
    def backup_collections_set(self) -> set[str]:
        """Parse allowed backup collections into a set."""
        return {
            name.strip()
            for name in self.backup_collections_allowed.split(",")
            if name.strip()
        }

    # ==========================================================================
    # Notifications
    # ==========================================================================
    # Leave empty to only log outgoing notifications.
    notification_webhook_url: str = ""
    notification_timeout_seconds: float = 10.0

    # ==========================================================================
    # HTTP
    # ==========================================================================
    cors_origins: str = ""  # Comma-separated. Empty means localhost only.

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins, defaulting to local development hosts."""
        if self.cors_origins:
            if self.cors_origins == "*":
                return ["*"]
            return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
        return [
            "http://localhost:8000",
            "http://127.0.0.1:8000",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ]

    # ==========================================================================
    # Observability
    # ==========================================================================
    log_level: str = "INFO"
    log_json_format: bool = False


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Use dependency injection: Depends(get_settings)
    """
    return Settings()
