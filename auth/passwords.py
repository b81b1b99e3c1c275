"""Password hashing with Argon2id."""

from argon2 import PasswordHasher as Argon2Hasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError


class PasswordHasher:
    """One-way hash and compare for account passwords."""

    def __init__(self, hasher: Argon2Hasher | None = None):
        self._hasher = hasher or Argon2Hasher()
        # Compared against when the account is missing, so unknown emails
        # cost the same as wrong passwords.
        self._dummy_hash = self._hasher.hash("dummy-password-for-timing")

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, password_hash: str | None, password: str) -> bool:
        """True if password matches. A missing hash never matches."""
        if not password_hash:
            self._matches(self._dummy_hash, password)
            return False
        return self._matches(password_hash, password)

    def _matches(self, password_hash: str, password: str) -> bool:
        try:
            return self._hasher.verify(password_hash, password)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False
