"""Account service - orchestrates sign-up, sign-in and the token-driven flows.

Every operation reads the clock once and threads that instant through
validation and the write. The email-keyed request_* operations answer the
same way whether or not the address is registered.
"""

import logging
from typing import Callable
from urllib.parse import urlencode
from uuid import UUID

from auth.config import AuthConfig
from auth.database import AccountDatabase
from auth.exceptions import (
    AlreadyVerifiedError,
    ConflictingIdentityError,
    InvalidCredentialsError,
    NotFoundOrExpiredError,
    PreconditionFailedError,
    RateLimitedError,
    SessionExpiredError,
)
from auth.lifecycle import AccountCheck, AccountLifecycle, check_account
from auth.oauth import OAuthLinkageResolver
from auth.passwords import PasswordHasher
from auth.rate_limiter import RateLimiter, ThrottledAction
from auth.sealing import SealedTokenCodec
from auth.security_logger import SecurityEvent, SecurityLogger
from auth.session import SessionManager
from auth.types import (
    AuthenticatedUser,
    OAuthProfile,
    OAuthProvider,
    TokenPurpose,
    User,
    validate_password_policy,
)
from clients.email_client import EmailGatewayClient, EmailGatewayError, EmailTemplate
from clients.google_oauth_client import GoogleOAuthClient
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

# Runs mail delivery after the response, e.g. BackgroundTasks.add_task.
MailScheduler = Callable[..., None]


# Client routes that receive sealed tokens, and the mail each one rides in.
_TOKEN_LINKS = {
    TokenPurpose.EMAIL_VERIFICATION: ("/auth/confirm-email", EmailTemplate.VERIFY_EMAIL, "verify_link"),
    TokenPurpose.PASSWORD_RESET: ("/auth/reset-password", EmailTemplate.RECOVER_ACCOUNT, "recover_link"),
    TokenPurpose.REACTIVATION: ("/auth/reactivate", EmailTemplate.REACTIVATE_ACCOUNT, "reactivate_link"),
}


class AuthService:
    """Orchestrates the account lifecycle.

    Handles:
    - Sign-up, sign-in, sign-out, voluntary deactivation, password change
    - Email verification, password recovery and reactivation tokens
    - Google sign-in through OAuth linkage
    """

    def __init__(
        self,
        config: AuthConfig,
        account_db: AccountDatabase,
        lifecycle: AccountLifecycle,
        codec: SealedTokenCodec,
        password_hasher: PasswordHasher,
        session_manager: SessionManager,
        rate_limiter: RateLimiter,
        email_client: EmailGatewayClient,
        security_logger: SecurityLogger,
        oauth_resolver: OAuthLinkageResolver,
        oauth_client: GoogleOAuthClient | None = None,
    ):
        self._config = config
        self._account_db = account_db
        self._lifecycle = lifecycle
        self._codec = codec
        self._hasher = password_hasher
        self._session_manager = session_manager
        self._rate_limiter = rate_limiter
        self._email_client = email_client
        self._security_logger = security_logger
        self._oauth_resolver = oauth_resolver
        self._oauth_client = oauth_client

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _throttle(self, action: ThrottledAction, email: str, ip_address: str | None) -> None:
        try:
            self._rate_limiter.check_rate_limit(action, email)
        except RateLimitedError:
            self._security_logger.log(
                SecurityEvent.RATE_LIMITED,
                email=email,
                ip_address=ip_address,
                details={"action": action.value},
            )
            raise

    def build_link(self, purpose: TokenPurpose, sealed: str) -> str:
        """Client URL carrying a sealed token."""
        path = _TOKEN_LINKS[purpose][0]
        return f"{self._config.client_base_url.rstrip('/')}{path}?{urlencode({'token': sealed})}"

    def _send_token_mail(
        self,
        user: User,
        purpose: TokenPurpose,
        raw_token: str,
        now,
        schedule: MailScheduler | None,
    ) -> None:
        """Seal the token and mail its link, inline unless a scheduler is given."""
        _, template, link_name = _TOKEN_LINKS[purpose]
        sealed = self._codec.seal(raw_token, purpose, now)
        variables = {
            "username": user.username or user.email,
            link_name: self.build_link(purpose, sealed),
            "app_name": self._config.app_name,
            "app_link": self._config.client_base_url,
        }
        if schedule is None:
            self._deliver_mail(user, template, variables)
        else:
            schedule(self._deliver_mail, user, template, variables)

    def _deliver_mail(self, user: User, template: EmailTemplate, variables: dict) -> None:
        """Send one mail. Failures are logged only.

        The token write has already committed, so an outage leaves the user
        able to request a resend.
        """
        try:
            self._email_client.send(template, user.email, variables)
        except EmailGatewayError as e:
            logger.error(f"Failed to send {template} email to user {user.id}: {e}")
            self._security_logger.log(
                SecurityEvent.EMAIL_SEND_FAILED,
                email=user.email,
                user_id=user.id,
                details={"template": template},
            )

    def _unseal(self, sealed: str, purpose: TokenPurpose, ip_address, user_agent):
        try:
            return self._codec.unseal(sealed, purpose)
        except NotFoundOrExpiredError:
            self._security_logger.log(
                SecurityEvent.TOKEN_REJECTED,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"purpose": purpose.value, "reason": "bad_seal"},
            )
            raise

    def _consume(self, sealed: str, purpose: TokenPurpose, effects: dict, now, ip_address, user_agent) -> User:
        unsealed = self._unseal(sealed, purpose, ip_address, user_agent)
        try:
            return self._lifecycle.consume(purpose, unsealed.raw, now, effects)
        except NotFoundOrExpiredError:
            self._security_logger.log(
                SecurityEvent.TOKEN_REJECTED,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"purpose": purpose.value, "reason": "not_found_or_expired"},
            )
            raise

    def _start_session(self, user: User, now, event: SecurityEvent, ip_address, user_agent) -> AuthenticatedUser:
        session = self._session_manager.establish(user.id, now)
        self._account_db.update_last_login(user.id, now)
        self._security_logger.log(
            event,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return AuthenticatedUser(
            user=user.model_copy(update={"last_login_at": now}),
            session=session,
        )

    # -------------------------------------------------------------------------
    # Sign-up / sign-in / sign-out
    # -------------------------------------------------------------------------

    def sign_up(
        self,
        username: str,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        schedule: MailScheduler | None = None,
    ) -> User:
        """Create a password account with a pending verification token.

        Raises:
            ValueError: Password violates policy.
            ConflictingIdentityError: Email already registered.
        """
        email = email.lower().strip()
        validate_password_policy(password)
        now = now_utc()

        if self._account_db.get_user_by_email(email) is not None:
            raise ConflictingIdentityError("User already exists", email=email)

        verification = self._lifecycle.new_token(TokenPurpose.EMAIL_VERIFICATION, now)
        user = self._account_db.create_user(
            email=email,
            username=username,
            password_hash=self._hasher.hash(password),
            email_verified=False,
            verification=verification,
        )

        self._security_logger.log(
            SecurityEvent.USER_SIGNED_UP,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self._send_token_mail(user, TokenPurpose.EMAIL_VERIFICATION, verification.raw, now, schedule)
        return user

    def sign_in(
        self,
        email: str,
        password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthenticatedUser:
        """Check credentials and establish a session.

        Raises:
            InvalidCredentialsError: Unknown email, OAuth-only account, or wrong password.
            AccountSuspendedError: Account is locked.
            AccountInactiveError: Account was deactivated.
        """
        email = email.lower().strip()
        now = now_utc()

        user = self._account_db.get_user_by_email(email)
        password_ok = self._hasher.verify(user.password_hash if user else None, password)

        if user is None or not password_ok:
            self._security_logger.log(
                SecurityEvent.SIGN_IN_FAILED,
                email=email,
                user_id=user.id if user else None,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"reason": "invalid_credentials"},
            )
            raise InvalidCredentialsError("Invalid email or password")

        check_account(user, [AccountCheck.NOT_SUSPENDED, AccountCheck.ACTIVE])
        return self._start_session(user, now, SecurityEvent.SIGN_IN_SUCCEEDED, ip_address, user_agent)

    def sign_out(self, session_token: str, ip_address: str | None = None) -> None:
        """End the session. Safe to call with an invalid token."""
        try:
            user_id = self._session_manager.validate_session(session_token).user_id
        except SessionExpiredError:
            user_id = None

        self._session_manager.terminate(session_token)
        self._security_logger.log(SecurityEvent.SIGNED_OUT, user_id=user_id, ip_address=ip_address)

    # -------------------------------------------------------------------------
    # Email verification
    # -------------------------------------------------------------------------

    def request_verification(
        self,
        email: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        schedule: MailScheduler | None = None,
    ) -> None:
        """Send (or resend) the verification link.

        Silent no-op for unknown or already verified addresses.

        Raises:
            RateLimitedError: Too many requests for this email.
        """
        email = email.lower().strip()
        self._throttle(ThrottledAction.VERIFICATION, email, ip_address)
        now = now_utc()

        user = self._account_db.get_user_by_email(email)
        if user is None or user.email_verified:
            self._security_logger.log(
                SecurityEvent.VERIFICATION_REQUESTED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"sent": False},
            )
            return

        self._issue_verification(user, now, ip_address, user_agent, schedule)

    def send_verification_for_user(
        self,
        user_id: UUID,
        ip_address: str | None = None,
        schedule: MailScheduler | None = None,
    ) -> None:
        """Resend the verification link to the signed-in user.

        Raises:
            SessionExpiredError: User no longer exists.
            AlreadyVerifiedError: Nothing to verify.
            RateLimitedError: Too many requests.
        """
        now = now_utc()
        user = self._account_db.get_user_by_id(user_id)
        if user is None:
            raise SessionExpiredError("Session user no longer exists")
        if user.email_verified:
            raise AlreadyVerifiedError("Your email is already verified")

        self._throttle(ThrottledAction.VERIFICATION, user.email, ip_address)
        self._issue_verification(user, now, ip_address, None, schedule)

    def _issue_verification(self, user: User, now, ip_address, user_agent, schedule) -> None:
        issued = self._lifecycle.issue_or_reuse(user, TokenPurpose.EMAIL_VERIFICATION, now)
        self._security_logger.log(
            SecurityEvent.VERIFICATION_REQUESTED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"sent": True},
        )
        self._send_token_mail(user, TokenPurpose.EMAIL_VERIFICATION, issued.raw, now, schedule)

    def confirm_verification(
        self,
        sealed_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> User:
        """Consume a verification token and mark the email verified.

        Raises:
            NotFoundOrExpiredError: Seal invalid, token unknown, expired or used.
        """
        now = now_utc()
        user = self._consume(
            sealed_token,
            TokenPurpose.EMAIL_VERIFICATION,
            {"email_verified": True},
            now,
            ip_address,
            user_agent,
        )
        self._security_logger.log(
            SecurityEvent.EMAIL_VERIFIED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return user

    # -------------------------------------------------------------------------
    # Password recovery
    # -------------------------------------------------------------------------

    def request_password_reset(
        self,
        email: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        schedule: MailScheduler | None = None,
    ) -> None:
        """Send the password reset link.

        Unknown addresses get the same silent success as known ones.

        Raises:
            PreconditionFailedError: Account exists but its email is unverified.
            RateLimitedError: Too many requests for this email.
        """
        email = email.lower().strip()
        self._throttle(ThrottledAction.PASSWORD_RESET, email, ip_address)
        now = now_utc()

        user = self._account_db.get_user_by_email(email)
        if user is None:
            self._security_logger.log(
                SecurityEvent.PASSWORD_RESET_REQUESTED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"sent": False},
            )
            return

        if not user.email_verified:
            raise PreconditionFailedError(
                "Please verify your email address before using password recovery"
            )

        issued = self._lifecycle.issue_or_reuse(user, TokenPurpose.PASSWORD_RESET, now)
        self._security_logger.log(
            SecurityEvent.PASSWORD_RESET_REQUESTED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"sent": True},
        )
        self._send_token_mail(user, TokenPurpose.PASSWORD_RESET, issued.raw, now, schedule)

    def confirm_password_reset(
        self,
        sealed_token: str,
        new_password: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> User:
        """Consume a reset token, set the new password, end all sessions.

        Raises:
            ValueError: Password violates policy (token left untouched).
            NotFoundOrExpiredError: Seal invalid, token unknown, expired or used.
        """
        validate_password_policy(new_password)
        now = now_utc()

        user = self._consume(
            sealed_token,
            TokenPurpose.PASSWORD_RESET,
            {"password_hash": self._hasher.hash(new_password)},
            now,
            ip_address,
            user_agent,
        )
        self._session_manager.terminate_all(user.id)
        self._rate_limiter.reset_rate_limit(ThrottledAction.PASSWORD_RESET, user.email)
        self._security_logger.log(
            SecurityEvent.PASSWORD_RESET_COMPLETED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return user

    # -------------------------------------------------------------------------
    # Reactivation / deactivation
    # -------------------------------------------------------------------------

    def request_reactivation(
        self,
        email: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        schedule: MailScheduler | None = None,
    ) -> None:
        """Send a short-lived reactivation link to a deactivated account.

        Silent no-op for unknown or already active addresses.

        Raises:
            RateLimitedError: Too many requests for this email.
        """
        email = email.lower().strip()
        self._throttle(ThrottledAction.REACTIVATION, email, ip_address)
        now = now_utc()

        user = self._account_db.get_user_by_email(email)
        if user is None or user.active:
            self._security_logger.log(
                SecurityEvent.REACTIVATION_REQUESTED,
                email=email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"sent": False},
            )
            return

        issued = self._lifecycle.issue_or_reuse(user, TokenPurpose.REACTIVATION, now)
        self._security_logger.log(
            SecurityEvent.REACTIVATION_REQUESTED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"sent": True},
        )
        self._send_token_mail(user, TokenPurpose.REACTIVATION, issued.raw, now, schedule)

    def confirm_reactivation(
        self,
        sealed_token: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> User:
        """Consume a reactivation token and make the account usable again.

        Raises:
            NotFoundOrExpiredError: Seal invalid, token unknown, expired or used.
        """
        now = now_utc()
        user = self._consume(
            sealed_token,
            TokenPurpose.REACTIVATION,
            {"active": True},
            now,
            ip_address,
            user_agent,
        )
        self._rate_limiter.reset_rate_limit(ThrottledAction.REACTIVATION, user.email)
        self._security_logger.log(
            SecurityEvent.ACCOUNT_REACTIVATED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return user

    def deactivate(self, user_id: UUID, ip_address: str | None = None) -> None:
        """Voluntarily deactivate the account and end all of its sessions.

        Raises:
            SessionExpiredError: User no longer exists.
        """
        if not self._account_db.set_active(user_id, False):
            raise SessionExpiredError("Session user no longer exists")

        ended = self._session_manager.terminate_all(user_id)
        self._security_logger.log(
            SecurityEvent.ACCOUNT_DEACTIVATED,
            user_id=user_id,
            ip_address=ip_address,
            details={"sessions_ended": ended},
        )

    # -------------------------------------------------------------------------
    # Authenticated account operations
    # -------------------------------------------------------------------------

    def current_user(self, user_id: UUID) -> User:
        """Load the signed-in user.

        Raises:
            SessionExpiredError: User no longer exists.
        """
        user = self._account_db.get_user_by_id(user_id)
        if user is None:
            raise SessionExpiredError("Session user no longer exists")
        return user

    def change_password(
        self,
        user_id: UUID,
        old_password: str,
        new_password: str,
        ip_address: str | None = None,
    ) -> None:
        """Replace the password after re-checking the old one.

        Raises:
            PreconditionFailedError: Account has no password (OAuth-only).
            InvalidCredentialsError: Old password is wrong.
            ValueError: New password violates policy or equals the old one.
        """
        user = self.current_user(user_id)
        if not user.has_password:
            raise PreconditionFailedError(
                "This account has no password. Use password recovery to set one."
            )
        if not self._hasher.verify(user.password_hash, old_password):
            raise InvalidCredentialsError("Invalid password")
        if old_password == new_password:
            raise ValueError("The new password and old password must not be the same")
        validate_password_policy(new_password)

        self._account_db.update_password(user.id, self._hasher.hash(new_password))
        self._security_logger.log(
            SecurityEvent.PASSWORD_CHANGED,
            email=user.email,
            user_id=user.id,
            ip_address=ip_address,
        )

    # -------------------------------------------------------------------------
    # OAuth
    # -------------------------------------------------------------------------

    def _require_oauth(self) -> GoogleOAuthClient:
        if self._oauth_client is None:
            raise ValueError("Google OAuth is not configured on the server")
        return self._oauth_client

    def oauth_authorization_url(self, state: str | None = None) -> str:
        """Provider consent URL."""
        return self._require_oauth().build_authorization_url(state)

    def resolve_oauth_login(
        self,
        provider_code: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        schedule: MailScheduler | None = None,
    ) -> AuthenticatedUser:
        """Exchange the provider code, resolve the local account, start a session.

        Raises:
            OAuthProviderError: Provider exchange or profile fetch failed.
            ConflictingIdentityError: Email belongs to an unlinked local account.
            AccountSuspendedError, AccountInactiveError: Account not usable.
        """
        client = self._require_oauth()
        tokens = client.exchange_code_for_tokens(provider_code)
        profile = OAuthProfile(**client.fetch_profile(tokens))
        now = now_utc()

        try:
            result = self._oauth_resolver.resolve(
                provider=OAuthProvider.GOOGLE,
                provider_user_id=profile.id,
                provider_email=profile.email,
                provider_email_verified=profile.email_verified,
                display_name=profile.name,
                avatar_url=profile.picture,
                now=now,
            )
        except ConflictingIdentityError:
            self._security_logger.log(
                SecurityEvent.OAUTH_LINK_REQUIRED,
                email=profile.email,
                ip_address=ip_address,
                user_agent=user_agent,
                details={"provider": OAuthProvider.GOOGLE.value},
            )
            raise

        user = result.user
        if result.is_new_link:
            self._security_logger.log(
                SecurityEvent.OAUTH_LINKED,
                email=user.email,
                user_id=user.id,
                ip_address=ip_address,
                details={"provider": OAuthProvider.GOOGLE.value},
            )
            if not user.email_verified and user.email_verification_token:
                self._send_token_mail(
                    user, TokenPurpose.EMAIL_VERIFICATION, user.email_verification_token, now, schedule
                )

        return self._start_session(user, now, SecurityEvent.OAUTH_SIGN_IN, ip_address, user_agent)
