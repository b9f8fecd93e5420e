"""Configuration settings for the MCP OAuth server using Pydantic Settings.

This module provides type-safe configuration management with automatic validation,
environment variable loading, and documentation generation.
"""

import logging
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

DEFAULT_SECRET_KEY = "dev-secret-key-change-in-production"


def _split_csv(value: str) -> list[str]:
    return [s.strip() for s in value.split(",") if s.strip()]


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
        alias="MCP_DEBUG",
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
        default=3009,
        ge=1024,
        le=65535,
        description="Server port number",
    )

    transport: str = Field(
        default="http",
        description="Transport mode (http, sse or stdio)",
    )

    mcp_api_key: str | None = Field(
        default=None,
        description="Static API key accepted alongside OAuth2 bearer tokens",
    )

    session_secret_key: str = Field(
        default="dev-session-secret-change-in-production",
        description="Secret used to sign the login session cookie",
    )

    # ========================================
    # OAuth2 Settings
    # ========================================
    use_oauth2: bool = Field(
        default=True,
        description="Enable the OAuth2 authorization server",
    )

    oauth2_issuer: str | None = Field(
        default=None,
        description="OAuth2 issuer URL",
    )

    oauth2_secret_key: str = Field(
        default=DEFAULT_SECRET_KEY,
        min_length=16,
        description="OAuth2 JWT signing key, loaded once at startup",
    )

    oauth2_algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm",
    )

    oauth2_access_token_expire_minutes: int = Field(
        default=60,
        ge=1,
        le=24 * 60,
        description="Access token lifetime in minutes",
    )

    oauth2_authorization_code_expire_minutes: int = Field(
        default=10,
        ge=1,
        le=60,
        description="Authorization code lifetime in minutes",
    )

    oauth2_refresh_token_expire_minutes: int = Field(
        default=30 * 24 * 60,
        ge=1,
        description="Refresh token lifetime in minutes",
    )

    oauth2_scopes: str = Field(
        default="read,write,admin",
        description="Comma-separated list of valid OAuth2 scopes",
    )

    oauth2_default_scopes: str = Field(
        default="read",
        description="Comma-separated scopes granted when a request names none",
    )

    oauth2_allow_plain_pkce: bool = Field(
        default=True,
        description="Accept the 'plain' PKCE method (deprecated by OAuth 2.1)",
    )

    oauth2_require_https_redirects: bool = Field(
        default=False,
        description="Reject non-loopback http:// redirect URIs at registration",
    )

    oauth2_seed_demo_data: bool = Field(
        default=True,
        description="Register the demo client and demo user at startup",
    )

    oauth2_demo_password: str = Field(
        default="demo123",
        description="Password for the seeded demo user",
    )

    # ========================================
    # Validators
    # ========================================
    @field_validator("oauth2_issuer", mode="before")
    @classmethod
    def set_oauth2_issuer(cls, v: str | None, info: Any) -> str:
        """Set OAuth2 issuer default from host and port if not provided."""
        if v:
            return v.rstrip("/")
        host = info.data.get("host", "0.0.0.0")
        port = info.data.get("port", 3009)
        if host == "0.0.0.0":
            host = "localhost"
        return f"http://{host}:{port}"

    @field_validator("oauth2_algorithm")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        """Only symmetric HMAC algorithms can use a shared secret key."""
        if v not in ("HS256", "HS384", "HS512"):
            msg = f"Unsupported JWT algorithm: {v}"
            raise ValueError(msg)
        return v

    # ========================================
    # Helper Methods
    # ========================================
    def get_oauth2_scopes_list(self) -> list[str]:
        """Get OAuth2 scopes as a list."""
        return _split_csv(self.oauth2_scopes)

    def get_oauth2_default_scopes_list(self) -> list[str]:
        """Get default OAuth2 scopes as a list."""
        return _split_csv(self.oauth2_default_scopes)

    def uses_default_secret(self) -> bool:
        """Check whether the JWT signing key is still the development default."""
        return self.oauth2_secret_key == DEFAULT_SECRET_KEY

    def to_dict(self) -> dict[str, Any]:
        """Export settings as a dictionary (safe version without secrets)."""
        return {
            "debug": self.debug,
            "host": self.host,
            "port": self.port,
            "transport": self.transport,
            "use_oauth2": self.use_oauth2,
            "oauth2_issuer": self.oauth2_issuer,
            "oauth2_algorithm": self.oauth2_algorithm,
            "oauth2_scopes": self.get_oauth2_scopes_list(),
            "oauth2_access_token_expire_minutes": self.oauth2_access_token_expire_minutes,
            "oauth2_authorization_code_expire_minutes": self.oauth2_authorization_code_expire_minutes,
            "oauth2_refresh_token_expire_minutes": self.oauth2_refresh_token_expire_minutes,
            "oauth2_allow_plain_pkce": self.oauth2_allow_plain_pkce,
            "oauth2_require_https_redirects": self.oauth2_require_https_redirects,
            "has_api_key": bool(self.mcp_api_key),
        }


# Singleton pattern with proper typing
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance (singleton pattern)."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
        logger.info("Settings initialized from environment")
        logger.debug("OAuth2 issuer: %s", _settings_instance.oauth2_issuer)
        if _settings_instance.uses_default_secret():
            logger.warning(
                "OAUTH2_SECRET_KEY is not set. Using the development signing key.",
            )
    return _settings_instance


def reset_settings() -> None:
    """Reset settings instance (useful for testing)."""
    global _settings_instance
    _settings_instance = None
