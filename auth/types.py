"""Pydantic models for the account domain."""

import re
from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator


PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 40
_PASSWORD_PATTERN = re.compile(
    r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]*$"
)


def validate_password_policy(password: str) -> str:
    """Enforce length and character-class rules. Returns the password unchanged."""
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValueError("Password is too short")
    if len(password) > PASSWORD_MAX_LENGTH:
        raise ValueError(
            f"Password can not be longer than {PASSWORD_MAX_LENGTH} characters"
        )
    if not _PASSWORD_PATTERN.match(password):
        raise ValueError(
            "Password must include lowercase and uppercase letters, "
            "numbers and special characters"
        )
    return password


class Role(str, Enum):
    """Access level. Used as a guard by routes outside the lifecycle core."""

    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    SALER = "SALER"
    WRITER = "WRITER"
    CUSTOMER = "CUSTOMER"


class TokenPurpose(str, Enum):
    """The three single-use token families stored on a user row."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"
    REACTIVATION = "reactivation"

    @property
    def token_field(self) -> str:
        return f"{self.value}_token"

    @property
    def expires_field(self) -> str:
        return f"{self.value}_expires"


class OAuthProvider(str, Enum):
    """Supported external identity providers."""

    GOOGLE = "google"


class User(BaseModel):
    """A registered account with its lifecycle flags and token pairs."""

    id: UUID
    email: EmailStr
    password_hash: str | None = Field(default=None, repr=False, exclude=True)

    email_verified: bool = False
    active: bool = True
    suspended: bool = False
    role: Role = Role.CUSTOMER

    email_verification_token: str | None = Field(default=None, repr=False)
    email_verification_expires: datetime | None = None
    password_reset_token: str | None = Field(default=None, repr=False)
    password_reset_expires: datetime | None = None
    reactivation_token: str | None = Field(default=None, repr=False)
    reactivation_expires: datetime | None = None

    username: str | None = None
    picture: str | None = None
    phone: str | None = None
    address: str | None = None

    created_at: datetime
    updated_at: datetime | None = None
    last_login_at: datetime | None = None

    model_config = {"from_attributes": True}

    def token_pair(self, purpose: TokenPurpose) -> tuple[str | None, datetime | None]:
        """(token, expires) for the given family."""
        return getattr(self, purpose.token_field), getattr(self, purpose.expires_field)

    @property
    def has_password(self) -> bool:
        return bool(self.password_hash)

    def public_dict(self) -> dict:
        """JSON-safe view with token material stripped."""
        return self.model_dump(
            mode="json",
            exclude={
                "email_verification_token",
                "email_verification_expires",
                "password_reset_token",
                "password_reset_expires",
                "reactivation_token",
                "reactivation_expires",
            },
        )


class LinkedIdentity(BaseModel):
    """Binding between a local user and an external provider account."""

    id: UUID
    provider: OAuthProvider
    provider_user_id: str
    user_id: UUID
    created_at: datetime


class OAuthProfile(BaseModel):
    """User info returned by an identity provider."""

    id: str
    email: EmailStr
    email_verified: bool = False
    name: str | None = None
    picture: str | None = None


class Session(BaseModel):
    """An active user session."""

    token: str = Field(..., description="Session token (opaque string)")
    user_id: UUID
    created_at: datetime
    expires_at: datetime
    last_activity_at: datetime


class AuthenticatedUser(BaseModel):
    """User info returned after successful authentication."""

    user: User
    session: Session


class SignUpRequest(BaseModel):
    """Request payload for account creation."""

    username: str = Field(..., min_length=1)
    email: EmailStr
    password: str

    model_config = {"extra": "forbid"}

    @field_validator("password")
    @classmethod
    def _password_policy(cls, value: str) -> str:
        return validate_password_policy(value)


class SignInRequest(BaseModel):
    """Request payload for password sign-in."""

    email: EmailStr
    password: str

    model_config = {"extra": "forbid"}


class EmailRequest(BaseModel):
    """Request payload for the email-keyed request_* operations."""

    email: EmailStr

    model_config = {"extra": "forbid"}


class PasswordResetRequest(BaseModel):
    """New password submitted with a reset link."""

    password: str
    confirm_password: str

    model_config = {"extra": "forbid"}

    @field_validator("password")
    @classmethod
    def _password_policy(cls, value: str) -> str:
        return validate_password_policy(value)

    @model_validator(mode="after")
    def _passwords_match(self) -> "PasswordResetRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords don't match")
        return self


class ChangePasswordRequest(BaseModel):
    """Password change for an authenticated user."""

    old_password: str
    new_password: str
    confirm_new_password: str

    model_config = {"extra": "forbid"}

    @field_validator("new_password")
    @classmethod
    def _password_policy(cls, value: str) -> str:
        return validate_password_policy(value)

    @model_validator(mode="after")
    def _check_pair(self) -> "ChangePasswordRequest":
        if self.new_password != self.confirm_new_password:
            raise ValueError("Confirm new password doesn't match")
        if self.old_password == self.new_password:
            raise ValueError("The new password and old password must not be the same")
        return self
