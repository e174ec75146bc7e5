"""
Application settings configuration for NextLevel.

Centralized settings loaded from environment variables.
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class AppSettings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Environment Variables:
        SESSION_SECRET_KEY: Secret used to sign the session cookie
        CORS_ORIGINS: Comma-separated list of allowed browser origins
        VAPID_PUBLIC_KEY: Web Push VAPID public key (Base64url-encoded)
        VAPID_PRIVATE_KEY: Web Push VAPID private key (Base64url-encoded)
        VAPID_SUBJECT: VAPID subject identifier (mailto: or https: URL)
        PUSH_TTL_SECONDS: How long the push service keeps undelivered messages (default: 86400)
        PUSH_URGENCY: Web Push Urgency header (very-low, low, normal, high)
        LIVE_HEARTBEAT_SECONDS: Idle interval before a keep-alive is sent on live channels
        LIVE_QUEUE_SIZE: Max buffered frames per SSE stream before it is treated as dead
        LIVE_SINGLE_SSE_PER_USER: Close a user's older SSE streams when a new one opens
        RATE_LIMIT_ENABLED: Toggle slowapi rate limiting (disabled in tests)
        RATE_LIMIT_STORAGE_URI: Storage backend URI for rate limiting (default: "memory://")
            Use "memory://" for single-process deployments.
            Use "redis://host:6379" for multi-worker or multi-instance deployments.
    """

    session_secret_key: str = Field(
        default="dev-only-session-secret-change-me",
        validation_alias="SESSION_SECRET_KEY",
    )

    session_cookie_name: str = Field(
        default="nextlevel_session",
        validation_alias="SESSION_COOKIE_NAME",
    )

    session_max_age: int = Field(
        default=7 * 24 * 3600,
        validation_alias="SESSION_MAX_AGE",
        ge=60,
    )

    session_https_only: bool = Field(
        default=False,
        validation_alias="SESSION_HTTPS_ONLY",
    )

    cors_origins: str = Field(
        default="http://localhost:3000",
        validation_alias="CORS_ORIGINS",
    )

    # VAPID settings for Web Push notifications
    vapid_public_key: str = Field(
        default="",
        validation_alias="VAPID_PUBLIC_KEY",
        description="Base64url-encoded VAPID public key for Web Push subscriptions"
    )

    vapid_private_key: str = Field(
        default="",
        validation_alias="VAPID_PRIVATE_KEY",
        description="Base64url-encoded VAPID private key for signing push messages"
    )

    vapid_subject: str = Field(
        default="",
        validation_alias="VAPID_SUBJECT",
        description="VAPID subject (mailto: or https: URL identifying the push sender)"
    )

    push_ttl_seconds: int = Field(
        default=86400,
        validation_alias="PUSH_TTL_SECONDS",
        ge=0,
    )

    push_urgency: str = Field(
        default="high",
        validation_alias="PUSH_URGENCY",
    )

    # Live channels
    live_heartbeat_seconds: float = Field(
        default=25.0,
        validation_alias="LIVE_HEARTBEAT_SECONDS",
        gt=0,
    )

    live_queue_size: int = Field(
        default=100,
        validation_alias="LIVE_QUEUE_SIZE",
        ge=2,
    )

    live_single_sse_per_user: bool = Field(
        default=False,
        validation_alias="LIVE_SINGLE_SSE_PER_USER",
        description="If True, a new SSE stream replaces all of the user's existing SSE streams"
    )

    # Rate limiting
    rate_limit_enabled: bool = Field(
        default=True,
        validation_alias="RATE_LIMIT_ENABLED",
    )

    rate_limit_storage_uri: str = Field(
        default="memory://",
        validation_alias="RATE_LIMIT_STORAGE_URI",
        description="Storage backend URI for rate limiting counters"
    )

    class Config:
        env_file = ".env"
        extra = "ignore"

    @field_validator("push_urgency")
    @classmethod
    def validate_push_urgency(cls, v: str) -> str:
        """Only the urgency values defined by RFC 8030 are accepted."""
        value = v.strip().lower()
        if value not in ("very-low", "low", "normal", "high"):
            raise ValueError("PUSH_URGENCY must be one of: very-low, low, normal, high")
        return value

    @property
    def vapid_configured(self) -> bool:
        """Check if VAPID keys are properly configured for Web Push."""
        return bool(self.vapid_public_key and self.vapid_private_key and self.vapid_subject)

    @property
    def vapid_claims(self) -> dict:
        """VAPID claims passed to pywebpush."""
        return {"sub": self.vapid_subject}

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> AppSettings:
    """
    Get cached application settings.

    Returns:
        AppSettings instance (cached after first call)
    """
    return AppSettings()
