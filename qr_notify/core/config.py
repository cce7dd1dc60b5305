"""
Application Configuration Module

Centralizes all configuration using environment variables with Pydantic Settings.
Supports two modes:
    - DEVELOPMENT: Uses the mock notification service (no Pushover keys needed)
    - PRODUCTION: Relays order alerts to the Pushover API

Numeric limits (rate limit, timeouts, token TTL, body cap) are clamped into
safe bounds; unparseable values fall back to their defaults instead of
failing startup.

Usage:
    from qr_notify.core.config import get_settings

    settings = get_settings()
    if settings.is_development:
        # Use mock notifier
    else:
        # Use Pushover

Version: 1.0.0
"""

import logging
import re
import sys
from enum import Enum
from typing import Any, Optional
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_RATE_LIMIT_PER_MINUTE = 8
MIN_RATE_LIMIT_PER_MINUTE = 1
MAX_RATE_LIMIT_PER_MINUTE = 60

DEFAULT_PUSHOVER_TIMEOUT_MS = 8_000
MIN_TIMEOUT_MS = 2_000
MAX_TIMEOUT_MS = 20_000

DEFAULT_NOTIFY_AUTH_TTL_SECONDS = 600
MIN_NOTIFY_AUTH_TTL_SECONDS = 60
MAX_NOTIFY_AUTH_TTL_SECONDS = 3_600

DEFAULT_MAX_JSON_BODY_BYTES = 8_192
MIN_MAX_JSON_BODY_BYTES = 1_024
MAX_MAX_JSON_BODY_BYTES = 65_536

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def parse_bounded_integer(value: Any, fallback: int, minimum: int, maximum: int) -> int:
    """
    Parse an integer setting and clamp it into ``[minimum, maximum]``.

    Only the leading digits count ("12.9" and "12s" read as 12); missing
    or non-numeric input yields ``fallback``.
    """
    if value is None or isinstance(value, bool):
        return fallback
    if isinstance(value, int):
        parsed = value
    else:
        match = _LEADING_INT_RE.match(str(value))
        if not match:
            return fallback
        parsed = int(match.group(1))
    return min(maximum, max(minimum, parsed))


class EnvironmentMode(str, Enum):
    """
    Application environment modes.

    Attributes:
        DEVELOPMENT: Local testing with the mock notifier
        PRODUCTION: Live environment with Pushover delivery
        STAGING: Pre-production testing with real Pushover credentials
    """
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    STAGING = "staging"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    Sensitive values (Pushover keys, signing secret) should NEVER be
    committed to version control.

    Attributes:
        env_mode: Current environment (development/production/staging)
        debug: Enable verbose logging and error details

        # Pushover
        pushover_app_token: Pushover application token
        pushover_user_key: Pushover user/group key
        pushover_timeout_ms: Upper bound for the outbound Pushover call

        # Notify authorization
        notify_signing_secret: HMAC secret for auth tokens (optional)
        notify_auth_ttl_seconds: Lifetime of issued auth tokens
        notify_rate_limit_per_minute: Requests per client IP per minute
        notify_max_body_bytes: Maximum accepted JSON body size
        allowed_origins: Comma-separated origin allow-list
        notify_cookie_secure: Secure flag override for the session cookie

        # Locations
        notify_location_tokens: Static location allow-list (optional)
        notify_catalog_url: Catalog document URL override (optional)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================

    env_mode: EnvironmentMode = Field(
        default=EnvironmentMode.DEVELOPMENT,
        description="Application environment mode"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging"
    )

    # ==========================================================================
    # APPLICATION
    # ==========================================================================

    app_name: str = Field(
        default="QR Table Notify",
        description="Application display name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=8001,
        description="API server port"
    )
    forwarded_allow_ips: str = Field(
        default="127.0.0.1",
        description="Proxy addresses trusted for X-Forwarded-Proto/For (uvicorn)"
    )

    # ==========================================================================
    # PUSHOVER
    # ==========================================================================

    pushover_app_token: Optional[str] = Field(
        default=None,
        description="Pushover application API token"
    )
    pushover_user_key: Optional[str] = Field(
        default=None,
        description="Pushover user or group key"
    )
    pushover_api_url: str = Field(
        default="https://api.pushover.net/1/messages.json",
        description="Pushover messages endpoint"
    )
    pushover_timeout_ms: int = Field(
        default=DEFAULT_PUSHOVER_TIMEOUT_MS,
        description="Timeout for the Pushover call in milliseconds"
    )

    # ==========================================================================
    # NOTIFY AUTHORIZATION
    # ==========================================================================

    notify_signing_secret: Optional[str] = Field(
        default=None,
        description="HMAC signing secret; derived from Pushover keys when unset"
    )
    notify_auth_ttl_seconds: int = Field(
        default=DEFAULT_NOTIFY_AUTH_TTL_SECONDS,
        description="Auth token lifetime in seconds"
    )
    notify_rate_limit_per_minute: int = Field(
        default=DEFAULT_RATE_LIMIT_PER_MINUTE,
        description="Requests allowed per client IP per minute"
    )
    notify_max_body_bytes: int = Field(
        default=DEFAULT_MAX_JSON_BODY_BYTES,
        description="Maximum accepted JSON body size in bytes"
    )
    allowed_origins: str = Field(
        default="",
        description="Comma-separated list of allowed origins (same-origin when empty)"
    )
    notify_cookie_secure: Optional[bool] = Field(
        default=None,
        description="Force the session cookie Secure flag (follows the request scheme when unset)"
    )

    # ==========================================================================
    # LOCATIONS
    # ==========================================================================

    notify_location_tokens: Optional[str] = Field(
        default=None,
        description="Comma-separated static allow-list of location tokens"
    )
    notify_catalog_url: Optional[str] = Field(
        default=None,
        description="Catalog document URL (defaults to <first allowed origin>/catalog/order-config.json)"
    )
    notify_catalog_ttl_seconds: int = Field(
        default=300,
        description="Seconds a fetched catalog stays cached"
    )
    notify_catalog_timeout_ms: int = Field(
        default=5_000,
        description="Timeout for the catalog fetch in milliseconds"
    )

    # ==========================================================================
    # VALIDATORS
    # ==========================================================================

    @field_validator("env_mode", mode="before")
    @classmethod
    def validate_env_mode(cls, v: str) -> EnvironmentMode:
        """Convert string to EnvironmentMode enum."""
        if isinstance(v, EnvironmentMode):
            return v
        try:
            return EnvironmentMode(v.lower())
        except ValueError:
            valid = [e.value for e in EnvironmentMode]
            raise ValueError(f"Invalid env_mode. Must be one of: {valid}")

    @field_validator("pushover_timeout_ms", mode="before")
    @classmethod
    def clamp_pushover_timeout(cls, v: Any) -> int:
        return parse_bounded_integer(v, DEFAULT_PUSHOVER_TIMEOUT_MS, MIN_TIMEOUT_MS, MAX_TIMEOUT_MS)

    @field_validator("notify_auth_ttl_seconds", mode="before")
    @classmethod
    def clamp_auth_ttl(cls, v: Any) -> int:
        return parse_bounded_integer(
            v,
            DEFAULT_NOTIFY_AUTH_TTL_SECONDS,
            MIN_NOTIFY_AUTH_TTL_SECONDS,
            MAX_NOTIFY_AUTH_TTL_SECONDS,
        )

    @field_validator("notify_rate_limit_per_minute", mode="before")
    @classmethod
    def clamp_rate_limit(cls, v: Any) -> int:
        return parse_bounded_integer(
            v,
            DEFAULT_RATE_LIMIT_PER_MINUTE,
            MIN_RATE_LIMIT_PER_MINUTE,
            MAX_RATE_LIMIT_PER_MINUTE,
        )

    @field_validator("notify_max_body_bytes", mode="before")
    @classmethod
    def clamp_max_body_bytes(cls, v: Any) -> int:
        return parse_bounded_integer(
            v,
            DEFAULT_MAX_JSON_BODY_BYTES,
            MIN_MAX_JSON_BODY_BYTES,
            MAX_MAX_JSON_BODY_BYTES,
        )

    @field_validator("notify_catalog_ttl_seconds", mode="before")
    @classmethod
    def clamp_catalog_ttl(cls, v: Any) -> int:
        return parse_bounded_integer(v, 300, 10, 3_600)

    @field_validator("notify_catalog_timeout_ms", mode="before")
    @classmethod
    def clamp_catalog_timeout(cls, v: Any) -> int:
        return parse_bounded_integer(v, 5_000, 500, MAX_TIMEOUT_MS)

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env_mode == EnvironmentMode.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.env_mode == EnvironmentMode.PRODUCTION

    @property
    def use_real_services(self) -> bool:
        """Check if real external services should be used."""
        return self.env_mode in (EnvironmentMode.PRODUCTION, EnvironmentMode.STAGING)

    @property
    def has_pushover_credentials(self) -> bool:
        return bool(self.pushover_app_token and self.pushover_user_key)

    @property
    def allowed_origins_list(self) -> list[str]:
        """Get the raw allowed origins as a list (unnormalized)."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def uses_static_locations(self) -> bool:
        """A configured (even empty) static allow-list disables catalog lookups."""
        return self.notify_location_tokens is not None

    @property
    def static_location_tokens(self) -> list[str]:
        """Get the static location allow-list as a list."""
        raw = self.notify_location_tokens or ""
        return [t.strip() for t in raw.split(",") if t.strip()]

    # ==========================================================================
    # VALIDATION METHODS
    # ==========================================================================

    def validate_production_config(self) -> list[str]:
        """
        Validate that all required production settings are configured.

        Returns:
            List of missing configuration keys (empty if all present)
        """
        missing = []

        if self.use_real_services:
            if not self.pushover_app_token:
                missing.append("PUSHOVER_APP_TOKEN")
            if not self.pushover_user_key:
                missing.append("PUSHOVER_USER_KEY")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are loaded only once,
    improving performance and ensuring consistency across
    the application lifecycle.

    Returns:
        Settings: Configured application settings
    """
    return Settings()


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

def setup_logging(level: int = logging.INFO, settings: Optional[Settings] = None) -> logging.Logger:
    """
    Configure application-wide logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        settings: Settings to read the debug flag from (defaults to cached settings)

    Returns:
        Configured package logger
    """
    settings = settings or get_settings()

    # Set level based on debug mode
    if settings.debug:
        level = logging.DEBUG

    # Configure format
    log_format = "%(asctime)s │ %(levelname)-8s │ %(name)-25s │ %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    # Configure root logger
    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt=date_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return logging.getLogger("qr_notify")
