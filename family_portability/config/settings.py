"""
Application Settings - Pydantic Settings for configuration management.

Supports environment variables and .env file loading.
"""

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import BeforeValidator, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def normalize_to_lowercase(v: str) -> str:
    """Normalize string to lowercase."""
    if isinstance(v, str):
        return v.lower()
    return v


def normalize_to_uppercase(v: str) -> str:
    """Normalize string to uppercase."""
    if isinstance(v, str):
        return v.upper()
    return v


class DatabaseSettings(BaseSettings):
    """Relational store connection settings."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    url: str = Field(
        default="sqlite+aiosqlite:///./family.db",
        description="SQLAlchemy async database URL",
    )
    echo: bool = Field(default=False, description="Log every SQL statement")

    # Pool settings (ignored for SQLite)
    pool_size: int = Field(default=10, ge=1, description="Connection pool size")
    max_overflow: int = Field(default=5, ge=0, description="Connections allowed above pool_size")
    pool_timeout: float = Field(default=30.0, gt=0, description="Pool checkout timeout in seconds")
    pool_pre_ping: bool = Field(default=True, description="Test connections on checkout")

    sqlite_foreign_keys: bool = Field(
        default=True, description="Enable PRAGMA foreign_keys on SQLite connections"
    )


class PortabilitySettings(BaseSettings):
    """Export, import and erasure behaviour."""

    model_config = SettingsConfigDict(env_prefix="PORTABILITY_")

    # How the importer treats references to rows outside the snapshot
    external_references: Annotated[
        Literal["allow", "nullify", "reject"],
        BeforeValidator(normalize_to_lowercase),
    ] = Field(default="allow", description="Policy for references outside the snapshot")

    import_audit_events: bool = Field(
        default=True, description="Recreate audit events when importing a snapshot"
    )
    compress_archives: bool = Field(
        default=False, description="Gzip snapshot archives written by the CLI"
    )


class ObservabilitySettings(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(env_prefix="OBSERVABILITY_")

    log_format: Annotated[
        Literal["json", "console"],
        BeforeValidator(normalize_to_lowercase),
    ] = Field(
        default="json", description="Log format (json for production, console for development)"
    )


class Settings(BaseSettings):
    """Main application settings aggregating all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application metadata
    app_name: str = Field(default="Family Data Portability", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )
    log_level: Annotated[
        Literal["DEBUG", "INFO", "WARNING", "ERROR"],
        BeforeValidator(normalize_to_uppercase),
    ] = Field(default="INFO", description="Logging level")

    # Sub-settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    portability: PortabilitySettings = Field(default_factory=PortabilitySettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
