"""OAuth linkage: reconcile an identity-provider account with a local user.

Merge policy: an external account is never attached to an existing local
account implicitly. If no link exists but the provider email already
belongs to a local user, resolution fails with ConflictingIdentityError
carrying that email; the client asks the user to sign in with a password.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from auth.database import AccountDatabase
from auth.exceptions import ConflictingIdentityError, StoreError
from auth.lifecycle import AccountCheck, AccountLifecycle, check_account
from auth.types import OAuthProvider, TokenPurpose, User

logger = logging.getLogger(__name__)


@dataclass
class OAuthLinkResult:
    """Resolved user and whether this resolution created the link."""

    user: User
    is_new_link: bool


class OAuthLinkageResolver:
    """Find or create the local account for an external identity."""

    def __init__(self, account_db: AccountDatabase, lifecycle: AccountLifecycle):
        self._account_db = account_db
        self._lifecycle = lifecycle

    def resolve(
        self,
        provider: OAuthProvider,
        provider_user_id: str,
        provider_email: str,
        provider_email_verified: bool,
        display_name: str | None,
        avatar_url: str | None,
        now: datetime,
    ) -> OAuthLinkResult:
        """Resolve an external identity to a usable local user.

        Raises:
            ConflictingIdentityError: Email belongs to an unlinked local account.
            AccountSuspendedError: Resolved user is suspended.
            AccountInactiveError: Resolved user is deactivated.
        """
        identity = self._account_db.find_linked_identity(provider, provider_user_id)

        if identity is not None:
            user = self._account_db.get_user_by_id(identity.user_id)
            if user is None:
                # FK cascade makes this unreachable unless the row vanished mid-request
                raise StoreError("Linked identity points at a missing user")
            is_new_link = False
        else:
            if self._account_db.get_user_by_email(provider_email) is not None:
                logger.info(f"{provider.value} login for existing email requires explicit linking")
                raise ConflictingIdentityError(
                    "An account with this email already exists. "
                    "Sign in with your password to continue.",
                    email=provider_email,
                )

            verification = None
            if not provider_email_verified:
                verification = self._lifecycle.new_token(TokenPurpose.EMAIL_VERIFICATION, now)

            user, _ = self._account_db.create_user_with_identity(
                provider=provider,
                provider_user_id=provider_user_id,
                email=provider_email,
                username=display_name,
                picture=avatar_url,
                email_verified=provider_email_verified,
                verification=verification,
            )
            is_new_link = True
            logger.info(f"Created user {user.id} from {provider.value} identity")

        check_account(user, [AccountCheck.NOT_SUSPENDED, AccountCheck.ACTIVE])
        return OAuthLinkResult(user=user, is_new_link=is_new_link)
