"""Account lifecycle configuration."""

from datetime import timedelta

from pydantic import BaseModel, Field


class AuthConfig(BaseModel):
    """
    Authentication and account lifecycle configuration.

    All durations are in their natural units (minutes for short windows,
    hours for longer ones). Secrets are not held here; they come from Vault.
    """

    # Token lifetimes
    email_verification_expiry_hours: int = Field(
        default=24,
        description="How long email verification links remain valid",
        ge=1,
        le=72,
    )
    password_reset_expiry_hours: int = Field(
        default=4,
        description="How long password reset links remain valid",
        ge=1,
        le=24,
    )
    reactivation_expiry_minutes: int = Field(
        default=5,
        description="How long reactivation links remain valid",
        ge=5,
        le=15,
    )

    # Session settings
    session_expiry_hours: int = Field(
        default=720,  # 30 days
        description="Session lifetime in hours",
        ge=1,
        le=2160,
    )

    # Rate limiting of request_* operations
    rate_limit_attempts: int = Field(
        default=5,
        description="Max email-sending requests per email per action per window",
        ge=1,
        le=20,
    )
    rate_limit_window_minutes: int = Field(
        default=15,
        description="Rate limit window duration",
        ge=5,
        le=60,
    )

    # Application
    app_base_url: str = Field(
        default="http://localhost:8000",
        description="Public base URL of this API (OAuth redirect target)",
    )
    client_base_url: str = Field(
        default="http://localhost:3000",
        description="Base URL of the web client, used to build emailed links",
    )
    app_name: str = Field(
        default="Accounts",
        description="Application name for emails",
    )
    oauth_redirect_path: str = Field(
        default="/auth/google/callback",
        description="Path of the OAuth callback route on this API",
    )

    @property
    def email_verification_ttl(self) -> timedelta:
        return timedelta(hours=self.email_verification_expiry_hours)

    @property
    def password_reset_ttl(self) -> timedelta:
        return timedelta(hours=self.password_reset_expiry_hours)

    @property
    def reactivation_ttl(self) -> timedelta:
        return timedelta(minutes=self.reactivation_expiry_minutes)

    @property
    def oauth_redirect_uri(self) -> str:
        return f"{self.app_base_url.rstrip('/')}{self.oauth_redirect_path}"
