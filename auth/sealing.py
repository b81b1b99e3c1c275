"""Sealed-token codec.

A raw token never leaves the server bare: links and cookies carry an HS256
JWT binding the raw token, its purpose and the issue time. The seal is signed,
not encrypted. Unsealing fails closed and every failure surfaces as
NotFoundOrExpiredError, the same error a missing token produces.
"""

from dataclasses import dataclass
from datetime import datetime

import jwt

from auth.exceptions import NotFoundOrExpiredError
from auth.types import TokenPurpose
from utils.timezone import from_epoch, to_epoch


JWT_ALGORITHM = "HS256"
MIN_SECRET_LENGTH = 32


@dataclass(frozen=True)
class UnsealedToken:
    """Contents of a valid seal."""

    raw: str
    purpose: TokenPurpose
    issued_at: datetime


class SealedTokenCodec:
    """Stateless seal/unseal of raw tokens with a server secret."""

    def __init__(self, secret: str):
        if not secret or len(secret) < MIN_SECRET_LENGTH:
            raise ValueError(
                f"Token signing secret must be at least {MIN_SECRET_LENGTH} characters"
            )
        self._secret = secret

    def seal(self, raw_token: str, purpose: TokenPurpose, issued_at: datetime) -> str:
        """Wrap raw token in a signed envelope."""
        payload = {
            "sub": raw_token,
            "purpose": purpose.value,
            "iat": to_epoch(issued_at),
        }
        return jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)

    def unseal(self, sealed: str, purpose: TokenPurpose) -> UnsealedToken:
        """Verify and open a seal.

        Expiry is not checked here; the stored expiry on the user row is
        authoritative.

        Raises:
            NotFoundOrExpiredError: On bad signature, malformed structure,
                missing claims, or a seal minted for another purpose.
        """
        if not sealed:
            raise NotFoundOrExpiredError("Invalid or expired token")

        try:
            payload = jwt.decode(
                sealed,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["sub", "purpose", "iat"], "verify_iat": False},
            )
        except jwt.PyJWTError:
            raise NotFoundOrExpiredError("Invalid or expired token")

        raw = payload.get("sub")
        issued = payload.get("iat")
        if not isinstance(raw, str) or not raw or not isinstance(issued, (int, float)):
            raise NotFoundOrExpiredError("Invalid or expired token")

        if payload.get("purpose") != purpose.value:
            raise NotFoundOrExpiredError("Invalid or expired token")

        return UnsealedToken(raw=raw, purpose=purpose, issued_at=from_epoch(issued))
