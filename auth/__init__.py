"""Account lifecycle: credentials, single-use tokens, sessions, OAuth linkage."""

from auth.exceptions import (
    AuthError,
    NotFoundOrExpiredError,
    InvalidCredentialsError,
    AccountSuspendedError,
    AccountInactiveError,
    PreconditionFailedError,
    AlreadyVerifiedError,
    ConflictingIdentityError,
    RateLimitedError,
    SessionExpiredError,
    StoreError,
)
from auth.types import (
    Role,
    TokenPurpose,
    OAuthProvider,
    User,
    LinkedIdentity,
    OAuthProfile,
    Session,
    AuthenticatedUser,
    validate_password_policy,
)
from auth.config import AuthConfig
from auth.tokens import IssuedToken, TokenGenerator
from auth.sealing import SealedTokenCodec, UnsealedToken
from auth.passwords import PasswordHasher
from auth.database import AccountDatabase
from auth.lifecycle import (
    TokenState,
    token_state,
    AccountCheck,
    check_account,
    AccountLifecycle,
)
from auth.oauth import OAuthLinkageResolver, OAuthLinkResult
from auth.rate_limiter import RateLimiter, ThrottledAction
from auth.security_logger import SecurityLogger, SecurityEvent
from auth.session import SessionManager
from auth.service import AuthService
from auth.security_middleware import AuthMiddleware
from auth.api import create_auth_router, create_account_router, require_account
