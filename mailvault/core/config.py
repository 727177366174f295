"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the services it wires up
and the operational scripts share a consistent configuration surface. Every
credential the vault needs is required: a missing value fails settings
validation at startup instead of falling back to a default.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

import os

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


class GoogleSettings(BaseSettings):
    """Client registration used for the Google OAuth handshake and Gmail API."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    client_id: str = Field(..., validation_alias="GOOGLE_CLIENT_ID", min_length=1)
    client_secret: str = Field(
        ...,
        validation_alias="GOOGLE_CLIENT_SECRET",
        min_length=1,
        description="Server-side only; never sent to the browser.",
    )
    redirect_uri: AnyHttpUrl = Field(..., validation_alias="GOOGLE_REDIRECT_URI")


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    token_encryption_key: str = Field(
        ...,
        validation_alias="TOKEN_ENCRYPTION_KEY",
        min_length=1,
        description="URL-safe base64 encoding of the 32-byte AES-256-GCM vault key.",
    )


class OAuthSettings(BaseSettings):
    """OAuth flow configuration."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    state_ttl_seconds: int = Field(600, validation_alias="OAUTH_STATE_TTL", gt=0)
    refresh_skew_seconds: int = Field(
        0,
        validation_alias="OAUTH_REFRESH_SKEW",
        ge=0,
        description="Treat access tokens as expired this many seconds early.",
    )
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        (
            "https://www.googleapis.com/auth/gmail.send",
            "https://www.googleapis.com/auth/userinfo.email",
            "openid",
        ),
        validation_alias="OAUTH_SCOPES",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(scope.strip() for scope in value.split(",") if scope.strip())


class RateLimitSettings(BaseSettings):
    """Sliding-window limits applied to outbound provider calls."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    send_max_requests: int = Field(10, validation_alias="SEND_RATE_LIMIT", gt=0)
    send_window_ms: int = Field(60_000, validation_alias="SEND_RATE_WINDOW_MS", gt=0)
    retention_ms: int = Field(
        300_000,
        validation_alias="RATE_LIMIT_RETENTION_MS",
        gt=0,
        description="Identifiers idle for longer than this are swept from memory.",
    )


class StorageSettings(BaseSettings):
    """Location of the relational store backing linked accounts and send logs."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    database_path: str = Field("data/mailvault.db", validation_alias="MAILVAULT_DB_PATH")


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    frontend_base_url: Optional[HttpUrl] = Field(
        None,
        validation_alias="FRONTEND_BASE_URL",
        description="Optional URL for redirecting users back to the front-end.",
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "GoogleSettings",
    "OAuthSettings",
    "RateLimitSettings",
    "SecuritySettings",
    "StorageSettings",
    "get_settings",
]
