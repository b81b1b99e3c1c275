"""Typed exceptions for account and credential failures."""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""


class NotFoundOrExpiredError(AuthError):
    """
    Token is absent, expired, already consumed, or its seal is invalid.

    Raised uniformly for every token confirmation failure so callers
    cannot tell a wrong token from an expired or nonexistent one.
    """


class InvalidCredentialsError(AuthError):
    """
    Email/password mismatch.

    Same message whether the email is unknown or the password is wrong.
    """


class AccountSuspendedError(AuthError):
    """Account is administratively locked. User should contact support."""


class AccountInactiveError(AuthError):
    """Account was deactivated. User should go through reactivation."""


class PreconditionFailedError(AuthError):
    """Account state does not allow the requested action."""


class AlreadyVerifiedError(PreconditionFailedError):
    """Email address is already verified."""


class ConflictingIdentityError(AuthError):
    """
    Email or external identity already belongs to another account.

    Carries the conflicting email so the HTTP layer can prompt the user
    to sign in and link explicitly.
    """

    def __init__(self, message: str, email: str | None = None):
        self.email = email
        super().__init__(message)


class RateLimitedError(AuthError):
    """Too many attempts. Client should wait before retrying."""

    def __init__(self, retry_after_seconds: int):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(f"Rate limited. Retry after {retry_after_seconds} seconds.")


class SessionExpiredError(AuthError):
    """Session has expired or was revoked; user must re-authenticate."""


class StoreError(Exception):
    """
    Persistence failure (connectivity, unexpected constraint violation).

    Deliberately not an AuthError: infrastructure faults are not domain
    outcomes and map to a 5xx response.
    """
