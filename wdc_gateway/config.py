"""
Configuration module for the Web Data Connector Gateway.

This module uses Pydantic Settings to load and validate environment variables
for the upstream API, the proxy server, and the client-side connector
lifecycle (token validation, token acquisition, schema descriptors).

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Optional
from urllib.parse import urlsplit

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Every field has a default so the gateway starts with no configuration.
    """

    # =========================================================================
    # Upstream API Configuration
    # =========================================================================

    UPSTREAM_BASE_URL: str = Field(
        default="https://api.example.com/",
        description="Base URL every proxied endpoint path is joined onto",
    )

    USER_AGENT: str = Field(
        default="formstack/0.0.0",
        description="Static User-Agent sent on every upstream request",
    )

    UPSTREAM_TIMEOUT_SECONDS: Optional[float] = Field(
        default=None,
        description="Upstream request timeout in seconds (unset means wait indefinitely)",
        gt=0,
    )

    # =========================================================================
    # Gateway Server Configuration
    # =========================================================================

    HOST: str = Field(
        default="0.0.0.0",
        description="Host to bind the gateway server",
    )

    PORT: int = Field(
        default=9001,
        description="Port to bind the gateway server",
        ge=1,
        le=65535,
    )

    STATIC_DIR: str = Field(
        default=".",
        description="Directory served as static files (must contain index.html)",
    )

    ALLOWED_ORIGINS: Optional[str] = Field(
        None,
        description="Comma-separated list of allowed CORS origins (leave empty for no CORS)",
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    # =========================================================================
    # Connector Lifecycle Configuration
    # =========================================================================

    GATEWAY_URL: str = Field(
        default="http://localhost:9001",
        description="Where the connector reaches the gateway's /proxy route",
    )

    TOKEN_CHECK_PATH: str = Field(
        default="some/predictable/endpoint",
        description="Upstream endpoint used to validate a stored token",
    )

    TOKEN_CHECK_FIELD: str = Field(
        default="valid",
        description="Field of the token check payload that must be truthy",
    )

    TOKEN_EXPIRY_LEEWAY_SECONDS: int = Field(
        default=300,
        description="JWT tokens expiring within this window are refreshed early",
        ge=0,
    )

    TOKEN_URL: Optional[str] = Field(
        None,
        description="OAuth token endpoint used to acquire a new access token",
    )

    OAUTH_CLIENT_ID: Optional[str] = Field(None, description="OAuth client ID")

    OAUTH_CLIENT_SECRET: Optional[str] = Field(None, description="OAuth client secret")

    SCHEMA_DESCRIPTOR_PATHS: str = Field(
        default="/schema/table_id.json",
        description="Comma-separated list of table descriptor JSON paths",
    )

    MAX_PAGES: int = Field(
        default=100,
        description="Upper bound on pages fetched for one table in one session",
        ge=1,
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def allowed_origins_list(self) -> List[str]:
        """
        Parse and return ALLOWED_ORIGINS as a list.

        Returns:
            List of allowed origin URLs, or empty list if not configured.
        """
        if not self.ALLOWED_ORIGINS:
            return []

        return [
            origin.strip()
            for origin in self.ALLOWED_ORIGINS.split(",")
            if origin.strip()
        ]

    @property
    def schema_descriptor_paths_list(self) -> List[str]:
        return [
            path.strip()
            for path in self.SCHEMA_DESCRIPTOR_PATHS.split(",")
            if path.strip()
        ]

    @property
    def upstream_base_url_str(self) -> str:
        """
        Get the upstream base URL with exactly one trailing slash.

        Returns:
            Base URL ready to have a relative endpoint appended.
        """
        return self.UPSTREAM_BASE_URL.rstrip("/") + "/"

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("UPSTREAM_BASE_URL", "GATEWAY_URL")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """
        Validate that a URL setting is an absolute http(s) URL.

        Raises:
            ValueError: If the scheme or host is missing
        """
        parts = urlsplit(v)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ValueError(
                f"Invalid URL: '{v}'. Expected format: 'https://host/path'"
            )
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        if v.upper() not in allowed_levels:
            raise ValueError(f"LOG_LEVEL must be one of {allowed_levels}, got: {v}")

        return v.upper()


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If environment variables are invalid.
    """
    return Settings()
