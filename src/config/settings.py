"""
Configuration Management for the Ledger Service

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
Every tunable of the store, the session table and the HTTP gateway is
declared in one place and validated at startup.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreSettings(BaseSettings):
    """Persistent document store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_STORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    path: str = Field(
        default="db.json",
        description="Path to the JSON document holding every account"
    )
    audit_log_path: Optional[str] = Field(
        default=None,
        description="Optional JSON-lines file receiving audit events"
    )
    io_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="How many times a failing read/write is attempted"
    )

    @field_validator('path')
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Warn if the parent directory doesn't exist (but don't fail - might be mounted later)."""
        parent = Path(v).expanduser().parent
        if not parent.exists():
            import warnings
            warnings.warn(
                f"Store directory not found at {parent}. "
                "Make sure it exists before the first write."
            )
        return v


class SessionSettings(BaseSettings):
    """Session table configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SESSION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    idle_timeout_minutes: int = Field(
        default=30,
        ge=0,
        description="Inactivity window after which a session expires (0 disables expiry)"
    )


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # HTTP gateway
    host: str = Field(
        default="0.0.0.0",
        description="Interface the API server binds to"
    )
    port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Port the API server listens on"
    )
    max_body_bytes: int = Field(
        default=1_000_000,
        ge=1024,
        description="Largest accepted request body"
    )

    # Account defaults
    default_monthly_budget: Decimal = Field(
        default=Decimal("2000"),
        ge=0,
        description="Monthly budget assumed for stored records that lack one"
    )
    starter_monthly_budget: Decimal = Field(
        default=Decimal("2200"),
        ge=0,
        description="Monthly budget given to newly registered accounts"
    )


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    @property
    def store(self) -> StoreSettings:
        return StoreSettings()

    @property
    def sessions(self) -> SessionSettings:
        return SessionSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, with an extra
    `<name>_error` entry for every group that failed to load.
    """
    results = {}

    settings = get_settings()

    for name in ("store", "sessions", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results
