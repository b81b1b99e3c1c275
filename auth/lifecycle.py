"""Account state machine.

Each token family on a user row is in one of four states:

    NO_TOKEN         never issued, or cleared without a trace
    PENDING_VALID    token present and now < expires
    PENDING_EXPIRED  token present and now >= expires
    CONSUMED         token cleared, expiry stamped at consumption time

Issue-on-demand moves NO_TOKEN / PENDING_EXPIRED / CONSUMED to PENDING_VALID
and leaves PENDING_VALID untouched (same token returned). Consume moves
PENDING_VALID to CONSUMED while applying the family's effect. Any other
presentation of a token is rejected as NotFoundOrExpiredError.

Account flags are checked through a declarative list of AccountCheck values.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable

from auth.config import AuthConfig
from auth.database import AccountDatabase
from auth.exceptions import (
    AccountInactiveError,
    AccountSuspendedError,
    NotFoundOrExpiredError,
    PreconditionFailedError,
)
from auth.tokens import IssuedToken, TokenGenerator
from auth.types import TokenPurpose, User

logger = logging.getLogger(__name__)


class TokenState(Enum):
    """Lifecycle state of one token family on one user."""

    NO_TOKEN = "no_token"
    PENDING_VALID = "pending_valid"
    PENDING_EXPIRED = "pending_expired"
    CONSUMED = "consumed"


def token_state(user: User, purpose: TokenPurpose, now: datetime) -> TokenState:
    """Classify a token pair against a single clock reading. Expiry is exclusive."""
    token, expires = user.token_pair(purpose)
    if token is None:
        return TokenState.NO_TOKEN if expires is None else TokenState.CONSUMED
    if expires is None or now >= expires:
        return TokenState.PENDING_EXPIRED
    return TokenState.PENDING_VALID


class AccountCheck(Enum):
    """Declarative account preconditions, evaluated in declaration order."""

    NOT_SUSPENDED = "not_suspended"
    ACTIVE = "active"
    EMAIL_VERIFIED = "email_verified"


def check_account(user: User, checks: Iterable[AccountCheck]) -> None:
    """Evaluate checks against the user's flags.

    Suspension is always reported before inactivity, which is reported
    before verification, regardless of the order given.

    Raises:
        AccountSuspendedError, AccountInactiveError, PreconditionFailedError
    """
    wanted = set(checks)
    if AccountCheck.NOT_SUSPENDED in wanted and user.suspended:
        raise AccountSuspendedError(
            "Your account has been locked, please contact the administrator"
        )
    if AccountCheck.ACTIVE in wanted and not user.active:
        raise AccountInactiveError("Your account has been deactivated")
    if AccountCheck.EMAIL_VERIFIED in wanted and not user.email_verified:
        raise PreconditionFailedError("Your email hasn't been verified")


class AccountLifecycle:
    """Issues and consumes the single-use tokens stored on user rows."""

    def __init__(
        self,
        config: AuthConfig,
        account_db: AccountDatabase,
        token_generator: TokenGenerator | None = None,
    ):
        self._config = config
        self._account_db = account_db
        self._tokens = token_generator or TokenGenerator()

    def ttl_for(self, purpose: TokenPurpose) -> timedelta:
        if purpose is TokenPurpose.EMAIL_VERIFICATION:
            return self._config.email_verification_ttl
        if purpose is TokenPurpose.PASSWORD_RESET:
            return self._config.password_reset_ttl
        return self._config.reactivation_ttl

    def new_token(self, purpose: TokenPurpose, now: datetime) -> IssuedToken:
        """Mint a token without storing it (for rows about to be inserted)."""
        return self._tokens.issue(self.ttl_for(purpose), now)

    def issue_or_reuse(self, user: User, purpose: TokenPurpose, now: datetime) -> IssuedToken:
        """Return the user's still-valid token, or store and return a fresh one."""
        if token_state(user, purpose, now) is TokenState.PENDING_VALID:
            token, expires = user.token_pair(purpose)
            return IssuedToken(raw=token, expires_at=expires)

        issued = self.new_token(purpose, now)
        self._account_db.update_tokens(user.id, purpose, issued.raw, issued.expires_at)
        logger.info(f"Issued {purpose.value} token for user {user.id}")
        return issued

    def consume(
        self,
        purpose: TokenPurpose,
        raw_token: str,
        now: datetime,
        effects: dict[str, Any],
    ) -> User:
        """Validate the token and apply effects exactly once.

        Raises:
            NotFoundOrExpiredError: Token unknown, expired, consumed, or lost
                a race with a concurrent consumer.
        """
        user = self._account_db.get_user_by_token(purpose, raw_token)
        if user is None or token_state(user, purpose, now) is not TokenState.PENDING_VALID:
            raise NotFoundOrExpiredError("Invalid or expired token")

        updated = self._account_db.consume_token(purpose, raw_token, now, effects)
        if updated is None:
            raise NotFoundOrExpiredError("Invalid or expired token")

        logger.info(f"Consumed {purpose.value} token for user {updated.id}")
        return updated
