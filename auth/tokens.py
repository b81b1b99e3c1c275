"""Single-use token generation.

Tokens are hex-encoded CSPRNG output (secrets.token_hex), safe for URLs and
long enough that collisions are not handled; the unique index on each token
column is the backstop.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from utils.timezone import now_utc


TOKEN_BYTES = 32  # 256 bits


@dataclass(frozen=True)
class IssuedToken:
    """A freshly minted raw token and the instant it stops being valid."""

    raw: str
    expires_at: datetime


class TokenGenerator:
    """Mints raw tokens and their expiry. No side effects."""

    def __init__(self, token_bytes: int = TOKEN_BYTES):
        if token_bytes < 20:
            raise ValueError("token_bytes must provide at least 160 bits of entropy")
        self._token_bytes = token_bytes

    def issue(self, ttl: timedelta, now: datetime | None = None) -> IssuedToken:
        """Generate a token valid for ttl from now."""
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        now = now or now_utc()
        return IssuedToken(
            raw=secrets.token_hex(self._token_bytes),
            expires_at=now + ttl,
        )
