"""Configuration settings for the OAuth relay gateway using Pydantic Settings.

This module provides type-safe configuration management with automatic validation,
environment variable loading, and documentation generation.
"""

import logging
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from oauth_relay.core.constants import (
    ACCESS_TOKEN_TTL_SECONDS,
    AUTHORIZATION_CODE_TTL_SECONDS,
    PENDING_STATE_MAX_ENTRIES,
    PENDING_STATE_TTL_SECONDS,
    PROXY_CONNECT_TIMEOUT_SECONDS,
    PROXY_READ_TIMEOUT_SECONDS,
    PROXY_USER_AGENT,
    REFRESH_TOKEN_TTL_SECONDS,
    UPSTREAM_TOKEN_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Central configuration management with Pydantic validation.

    All settings are loaded from environment variables with automatic type conversion
    and validation. Default values are provided for non-critical settings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
        validate_default=True,
    )

    # ========================================
    # Debug Settings
    # ========================================
    debug: bool = Field(
        default=False,
        alias="OAUTH_RELAY_DEBUG",
        description="Enable debug mode with verbose logging",
    )

    # ========================================
    # Server Settings
    # ========================================
    host: str = Field(
        default="0.0.0.0",
        description="Server host address",
    )

    port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Server port number",
    )

    ssl_certfile: str | None = Field(
        default=None,
        description="Path to the TLS certificate (served directly by uvicorn when set)",
    )

    ssl_keyfile: str | None = Field(
        default=None,
        description="Path to the TLS private key",
    )

    # ========================================
    # Provider Settings
    # ========================================
    oauth_issuer: str | None = Field(
        default=None,
        description="Public base URL of this authorization server",
    )

    frontend_url: str = Field(
        default="http://localhost:3000",
        description="Frontend base URL; the login page lives at <frontend_url>/login",
    )

    session_secret_key: str = Field(
        default="change-me-in-production",
        description="Secret used to sign the session cookie",
    )

    token_store: str = Field(
        default="memory",
        description="Token store backend (memory or file)",
    )

    oauth_storage_dir: str = Field(
        default=".oauth_storage",
        description="Directory for the file token store",
    )

    oauth_seed_file: str | None = Field(
        default=None,
        description="JSON file with clients and users to load at startup",
    )

    authorization_code_ttl_seconds: int = Field(
        default=AUTHORIZATION_CODE_TTL_SECONDS,
        ge=1,
        le=3600,
        description="Authorization code lifetime",
    )

    access_token_ttl_seconds: int = Field(
        default=ACCESS_TOKEN_TTL_SECONDS,
        ge=60,
        le=86400,
        description="Access token lifetime (reported as expires_in)",
    )

    refresh_token_ttl_seconds: int = Field(
        default=REFRESH_TOKEN_TTL_SECONDS,
        ge=3600,
        description="Refresh token lifetime",
    )

    # ========================================
    # Relay Settings
    # ========================================
    relay_enabled: bool = Field(
        default=False,
        description="Enable the relay endpoints in front of the upstream provider",
    )

    upstream_client_id: str | None = Field(
        default=None,
        description="This system's client id at the upstream provider",
    )

    upstream_client_secret: str | None = Field(
        default=None,
        description="This system's client secret at the upstream provider",
    )

    upstream_auth_url: str | None = Field(
        default=None,
        description="Upstream authorize endpoint",
    )

    upstream_token_url: str | None = Field(
        default=None,
        description="Upstream token endpoint",
    )

    upstream_scopes: str = Field(
        default="",
        description="Space-separated scopes requested from the upstream provider",
    )

    upstream_api_host: str | None = Field(
        default=None,
        description="Upstream resource API host (e.g. api.example.com)",
    )

    relay_redirect_url: str | None = Field(
        default=None,
        description="This system's callback registered with the upstream provider",
    )

    upstream_token_timeout_seconds: float = Field(
        default=UPSTREAM_TOKEN_TIMEOUT_SECONDS,
        gt=0,
        le=120,
        description="Total timeout for upstream token calls",
    )

    proxy_connect_timeout_seconds: float = Field(
        default=PROXY_CONNECT_TIMEOUT_SECONDS,
        gt=0,
        le=120,
        description="Connect and TLS handshake timeout for proxied calls",
    )

    proxy_read_timeout_seconds: float = Field(
        default=PROXY_READ_TIMEOUT_SECONDS,
        gt=0,
        le=600,
        description="Response timeout for proxied calls",
    )

    proxy_user_agent: str = Field(
        default=PROXY_USER_AGENT,
        description="User-Agent sent on proxied calls",
    )

    pending_state_ttl_seconds: int = Field(
        default=PENDING_STATE_TTL_SECONDS,
        ge=10,
        le=86400,
        description="How long a relay state waits for its callback",
    )

    pending_state_max_entries: int = Field(
        default=PENDING_STATE_MAX_ENTRIES,
        ge=1,
        description="Maximum number of pending relay states held in memory",
    )

    # ========================================
    # Validators
    # ========================================
    @field_validator("oauth_issuer", mode="before")
    @classmethod
    def set_oauth_issuer(cls, v: str | None, info: Any) -> str:
        """Set OAuth issuer default from host and port if not provided."""
        if v:
            return v.rstrip("/")
        host = info.data.get("host", "0.0.0.0")
        port = info.data.get("port", 8080)
        return f"http://{host}:{port}"

    @field_validator("relay_redirect_url", mode="before")
    @classmethod
    def set_relay_redirect_url(cls, v: str | None, info: Any) -> str:
        """Default the relay callback to <issuer>/relay/callback."""
        if v:
            return v
        issuer = info.data.get("oauth_issuer") or "http://0.0.0.0:8080"
        return f"{issuer}/relay/callback"

    @field_validator("token_store")
    @classmethod
    def validate_token_store(cls, v: str) -> str:
        """Only the memory and file backends exist."""
        v = v.lower()
        if v not in ("memory", "file"):
            msg = f"token_store must be 'memory' or 'file', got {v!r}"
            raise ValueError(msg)
        return v

    # ========================================
    # Helper Methods
    # ========================================
    @property
    def login_url(self) -> str:
        """External login address handed out with AuthenticationRequired."""
        return f"{self.frontend_url.rstrip('/')}/login"

    def has_relay_config(self) -> bool:
        """Check if every upstream setting the relay needs is configured."""
        return all(
            [
                self.upstream_client_id,
                self.upstream_client_secret,
                self.upstream_auth_url,
                self.upstream_token_url,
                self.upstream_api_host,
                self.get_upstream_scopes_list(),
            ]
        )

    def get_upstream_scopes_list(self) -> list[str]:
        """Get upstream scopes as a list."""
        return self.upstream_scopes.split()

    def to_dict(self) -> dict[str, Any]:
        """Export settings as a dictionary (safe version without secrets)."""
        return {
            "debug": self.debug,
            "host": self.host,
            "port": self.port,
            "oauth_issuer": self.oauth_issuer,
            "frontend_url": self.frontend_url,
            "token_store": self.token_store,
            "authorization_code_ttl_seconds": self.authorization_code_ttl_seconds,
            "access_token_ttl_seconds": self.access_token_ttl_seconds,
            "refresh_token_ttl_seconds": self.refresh_token_ttl_seconds,
            "relay_enabled": self.relay_enabled,
            "has_relay_config": self.has_relay_config(),
            "upstream_api_host": self.upstream_api_host,
            "relay_redirect_url": self.relay_redirect_url,
            "upstream_scopes": self.get_upstream_scopes_list(),
            "pending_state_ttl_seconds": self.pending_state_ttl_seconds,
        }


# Singleton pattern with proper typing
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance (singleton pattern)."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
        logger.info("Settings initialized from environment")
        logger.debug("Token store: %s", _settings_instance.token_store)
        if _settings_instance.session_secret_key == "change-me-in-production":
            logger.warning(
                "SESSION_SECRET_KEY is not set. Session cookies use the default key.",
            )
        if _settings_instance.relay_enabled and not _settings_instance.has_relay_config():
            logger.warning(
                "RELAY_ENABLED is set but upstream settings are incomplete. "
                "Relay endpoints will be unavailable.",
            )
    return _settings_instance


def reset_settings() -> None:
    """Reset settings instance (useful for testing)."""
    global _settings_instance
    _settings_instance = None
