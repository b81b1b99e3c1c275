"""Credential store for accounts and linked identities.

Tables: users, linked_identities (see sql/schema.sql).

Every token write touches the token column and its expiry column in the same
UPDATE, so a half-written pair is never observable. Consumption is a single
conditional UPDATE keyed by the token value: of two concurrent consumers only
one matches a row.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any
from uuid import UUID

import psycopg2
import psycopg2.errors

from auth.exceptions import ConflictingIdentityError, StoreError
from auth.tokens import IssuedToken
from auth.types import LinkedIdentity, OAuthProvider, TokenPurpose, User
from clients.postgres_client import PostgresClient


_USER_COLUMNS = """id, email, password_hash, email_verified, active, suspended, role,
       email_verification_token, email_verification_expires,
       password_reset_token, password_reset_expires,
       reactivation_token, reactivation_expires,
       username, picture, phone, address,
       created_at, updated_at, last_login_at"""

_IDENTITY_COLUMNS = "id, provider, provider_user_id, user_id, created_at"

# Columns a token consumption may update alongside clearing the pair.
CONSUMPTION_EFFECT_COLUMNS = frozenset({"email_verified", "active", "password_hash"})


@contextmanager
def _store_errors(conflict_message: str = "Record already exists", email: str | None = None):
    """Translate driver errors into domain/infrastructure errors."""
    try:
        yield
    except psycopg2.errors.UniqueViolation as e:
        raise ConflictingIdentityError(conflict_message, email=email) from e
    except psycopg2.Error as e:
        raise StoreError(f"Account store failure: {e.__class__.__name__}") from e


class AccountDatabase:
    """Database operations for account lifecycle."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    @staticmethod
    def _to_user(row: dict[str, Any] | None) -> User | None:
        if row is None:
            return None
        return User.model_validate(row)

    @staticmethod
    def _to_identity(row: dict[str, Any] | None) -> LinkedIdentity | None:
        if row is None:
            return None
        return LinkedIdentity.model_validate(row)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_user_by_email(self, email: str) -> User | None:
        """Find user by email (case-insensitive)."""
        with _store_errors():
            row = self._db.execute_single(
                f"SELECT {_USER_COLUMNS} FROM users WHERE email = lower(%s)",
                (email,),
            )
        return self._to_user(row)

    def get_user_by_id(self, user_id: UUID) -> User | None:
        """Find user by ID."""
        with _store_errors():
            row = self._db.execute_single(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s",
                (user_id,),
            )
        return self._to_user(row)

    def get_user_by_token(self, purpose: TokenPurpose, token: str) -> User | None:
        """Find the user holding this token, expired or not.

        Expiry is judged by the caller against its own clock read.
        """
        with _store_errors():
            row = self._db.execute_single(
                f"SELECT {_USER_COLUMNS} FROM users WHERE {purpose.token_field} = %s",
                (token,),
            )
        return self._to_user(row)

    def find_by_verification_token(self, token: str) -> User | None:
        return self.get_user_by_token(TokenPurpose.EMAIL_VERIFICATION, token)

    def find_by_reset_token(self, token: str) -> User | None:
        return self.get_user_by_token(TokenPurpose.PASSWORD_RESET, token)

    def find_by_reactivation_token(self, token: str) -> User | None:
        return self.get_user_by_token(TokenPurpose.REACTIVATION, token)

    def find_linked_identity(
        self, provider: OAuthProvider, provider_user_id: str
    ) -> LinkedIdentity | None:
        """Find the binding for an external account."""
        with _store_errors():
            row = self._db.execute_single(
                f"""SELECT {_IDENTITY_COLUMNS} FROM linked_identities
                    WHERE provider = %s AND provider_user_id = %s""",
                (provider.value, provider_user_id),
            )
        return self._to_identity(row)

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    def create_user(
        self,
        email: str,
        username: str | None = None,
        password_hash: str | None = None,
        email_verified: bool = False,
        picture: str | None = None,
        verification: IssuedToken | None = None,
    ) -> User:
        """Create a user (email lowercased), optionally with a verification token.

        Raises:
            ConflictingIdentityError: If the email is already registered.
        """
        with _store_errors("Email already registered", email=email):
            rows = self._db.execute_returning(
                f"""INSERT INTO users
                       (email, username, password_hash, email_verified, picture,
                        email_verification_token, email_verification_expires)
                    VALUES (lower(%s), %s, %s, %s, %s, %s, %s)
                    RETURNING {_USER_COLUMNS}""",
                (
                    email,
                    username,
                    password_hash,
                    email_verified,
                    picture,
                    verification.raw if verification else None,
                    verification.expires_at if verification else None,
                ),
            )
        return self._to_user(rows[0])

    def create_linked_identity(
        self, provider: OAuthProvider, provider_user_id: str, user_id: UUID
    ) -> LinkedIdentity:
        """Bind an external account to a user.

        Raises:
            ConflictingIdentityError: If the external account (or this provider
                for this user) is already bound.
        """
        with _store_errors("External identity already linked"):
            rows = self._db.execute_returning(
                f"""INSERT INTO linked_identities (provider, provider_user_id, user_id)
                    VALUES (%s, %s, %s)
                    RETURNING {_IDENTITY_COLUMNS}""",
                (provider.value, provider_user_id, user_id),
            )
        return self._to_identity(rows[0])

    def create_user_with_identity(
        self,
        provider: OAuthProvider,
        provider_user_id: str,
        email: str,
        username: str | None,
        picture: str | None,
        email_verified: bool,
        verification: IssuedToken | None = None,
    ) -> tuple[User, LinkedIdentity]:
        """Create a user and its first linked identity in one transaction."""
        with _store_errors("Email or external identity already registered", email=email):
            with self._db.transaction() as tx:
                user_rows = tx.execute_returning(
                    f"""INSERT INTO users
                           (email, username, email_verified, picture,
                            email_verification_token, email_verification_expires)
                        VALUES (lower(%s), %s, %s, %s, %s, %s)
                        RETURNING {_USER_COLUMNS}""",
                    (
                        email,
                        username,
                        email_verified,
                        picture,
                        verification.raw if verification else None,
                        verification.expires_at if verification else None,
                    ),
                )
                user = self._to_user(user_rows[0])
                identity_rows = tx.execute_returning(
                    f"""INSERT INTO linked_identities (provider, provider_user_id, user_id)
                        VALUES (%s, %s, %s)
                        RETURNING {_IDENTITY_COLUMNS}""",
                    (provider.value, provider_user_id, user.id),
                )
        return user, self._to_identity(identity_rows[0])

    # -------------------------------------------------------------------------
    # Token pairs
    # -------------------------------------------------------------------------

    def update_tokens(
        self,
        user_id: UUID,
        purpose: TokenPurpose,
        token: str | None,
        expires_at: datetime | None,
    ) -> None:
        """Set or clear one token pair atomically.

        Raises:
            ValueError: If only one half of the pair is given.
        """
        if (token is None) != (expires_at is None):
            raise ValueError("Token and expiry must be set or cleared together")

        with _store_errors():
            self._db.execute_returning(
                f"""UPDATE users
                    SET {purpose.token_field} = %s, {purpose.expires_field} = %s,
                        updated_at = now()
                    WHERE id = %s
                    RETURNING id""",
                (token, expires_at, user_id),
            )

    def consume_token(
        self,
        purpose: TokenPurpose,
        token: str,
        now: datetime,
        effects: dict[str, Any],
    ) -> User | None:
        """Apply effects and clear the token, only if it is still present and valid.

        The token column is nulled and the expiry set to now in the same
        statement that applies the effects.

        Returns:
            The updated user, or None if no row still held a valid token.
        """
        unknown = set(effects) - CONSUMPTION_EFFECT_COLUMNS
        if unknown:
            raise ValueError(f"Unsupported consumption effects: {sorted(unknown)}")

        assignments = [f"{column} = %s" for column in effects]
        params: list[Any] = list(effects.values())

        with _store_errors():
            row = self._db.execute_single(
                f"""UPDATE users
                    SET {", ".join(assignments + [
                        f"{purpose.token_field} = NULL",
                        f"{purpose.expires_field} = %s",
                        "updated_at = %s",
                    ])}
                    WHERE {purpose.token_field} = %s AND {purpose.expires_field} > %s
                    RETURNING {_USER_COLUMNS}""",
                tuple(params + [now, now, token, now]),
            )
        return self._to_user(row)

    # -------------------------------------------------------------------------
    # Account fields
    # -------------------------------------------------------------------------

    def update_password(self, user_id: UUID, password_hash: str) -> bool:
        """Replace the password hash. Returns False if user not found."""
        with _store_errors():
            rows = self._db.execute_returning(
                """UPDATE users SET password_hash = %s, updated_at = now()
                   WHERE id = %s RETURNING id""",
                (password_hash, user_id),
            )
        return len(rows) > 0

    def set_active(self, user_id: UUID, active: bool) -> bool:
        """Set the usable flag. Returns False if user not found."""
        with _store_errors():
            rows = self._db.execute_returning(
                "UPDATE users SET active = %s, updated_at = now() WHERE id = %s RETURNING id",
                (active, user_id),
            )
        return len(rows) > 0

    def set_suspended(self, user_id: UUID, suspended: bool) -> bool:
        """Administratively lock or unlock. Returns False if user not found."""
        with _store_errors():
            rows = self._db.execute_returning(
                "UPDATE users SET suspended = %s, updated_at = now() WHERE id = %s RETURNING id",
                (suspended, user_id),
            )
        return len(rows) > 0

    def update_last_login(self, user_id: UUID, now: datetime) -> None:
        """Record a successful sign-in."""
        with _store_errors():
            self._db.execute_returning(
                "UPDATE users SET last_login_at = %s WHERE id = %s RETURNING id",
                (now, user_id),
            )
