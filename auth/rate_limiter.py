"""Rate limiting for email-sending account requests.

Uses Valkey with sliding window TTL - each attempt resets the expiry.
Counters are keyed by action and email before any account lookup, so
throttling behaves the same for registered and unknown addresses.
"""

from enum import Enum

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.exceptions import RateLimitedError


class ThrottledAction(str, Enum):
    """Request kinds throttled independently of each other."""

    VERIFICATION = "verification"
    PASSWORD_RESET = "password_reset"
    REACTIVATION = "reactivation"


class RateLimiter:
    """Per-action, per-email request throttling using Valkey."""

    KEY_PREFIX = "ratelimit:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config
        self._window_seconds = config.rate_limit_window_minutes * 60

    def _key(self, action: ThrottledAction, email: str) -> str:
        """Generate rate limit key (email normalized to lowercase)."""
        return f"{self.KEY_PREFIX}{action.value}:{email.strip().lower()}"

    def check_rate_limit(self, action: ThrottledAction, email: str) -> None:
        """Count an attempt and reject it if over the limit.

        Sliding window: TTL resets on every attempt. Hammering extends lockout.

        Raises:
            RateLimitedError: If rate limit exceeded.
        """
        key = self._key(action, email)
        count = self._valkey.incr_with_expiry(key, self._window_seconds)

        if count > self._config.rate_limit_attempts:
            ttl = self._valkey.ttl(key)
            retry_after = max(ttl, 1)  # At least 1 second
            raise RateLimitedError(retry_after_seconds=retry_after)

    def reset_rate_limit(self, action: ThrottledAction, email: str) -> None:
        """Clear the counter after the action completes."""
        self._valkey.delete(self._key(action, email))
