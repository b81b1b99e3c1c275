"""Session lifecycle management.

Sessions are stored in Valkey with TTL matching session expiry, plus a
per-user index so every session of an account can be terminated at once.
Token format is cryptographically random (secrets.token_urlsafe).
"""

import secrets
from datetime import datetime, timedelta
from uuid import UUID

from clients.valkey_client import ValkeyClient
from auth.config import AuthConfig
from auth.types import Session
from auth.exceptions import SessionExpiredError
from utils.timezone import now_utc, parse_iso


class SessionManager:
    """Session establish/validate/terminate.

    Supports sliding expiry: each validation extends the session.
    """

    KEY_PREFIX = "session:"
    USER_INDEX_PREFIX = "user_sessions:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config
        self._ttl_seconds = config.session_expiry_hours * 3600

    def _key(self, token: str) -> str:
        """Generate Valkey key for session token."""
        return f"{self.KEY_PREFIX}{token}"

    def _user_key(self, user_id: UUID) -> str:
        return f"{self.USER_INDEX_PREFIX}{user_id}"

    def _store(self, session: Session) -> None:
        self._valkey.set_json(
            self._key(session.token),
            {
                "user_id": str(session.user_id),
                "created_at": session.created_at.isoformat(),
                "expires_at": session.expires_at.isoformat(),
                "last_activity_at": session.last_activity_at.isoformat(),
            },
            expire_seconds=self._ttl_seconds,
        )

    def establish(self, user_id: UUID, now: datetime | None = None) -> Session:
        """Create a new session for user."""
        now = now or now_utc()
        session = Session(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(seconds=self._ttl_seconds),
            last_activity_at=now,
        )
        self._store(session)
        self._valkey.add_to_set(
            self._user_key(user_id), session.token, expire_seconds=self._ttl_seconds
        )
        return session

    def validate_session(self, token: str) -> Session:
        """Validate session token and return the extended session.

        Raises:
            SessionExpiredError: If token unknown or expired.
        """
        data = self._valkey.get_json(self._key(token))

        if data is None:
            raise SessionExpiredError("Session not found or expired")

        session = Session(
            token=token,
            user_id=UUID(data["user_id"]),
            created_at=parse_iso(data["created_at"]),
            expires_at=parse_iso(data["expires_at"]),
            last_activity_at=parse_iso(data["last_activity_at"]),
        )

        now = now_utc()

        # Valkey TTL should already have dropped it
        if now >= session.expires_at:
            self.terminate(token)
            raise SessionExpiredError("Session expired")

        return self._extend_session(session, now)

    def _extend_session(self, session: Session, now: datetime) -> Session:
        """Extend session expiry and update last_activity_at."""
        updated = session.model_copy(
            update={
                "expires_at": now + timedelta(seconds=self._ttl_seconds),
                "last_activity_at": now,
            }
        )
        self._store(updated)
        self._valkey.add_to_set(
            self._user_key(session.user_id), session.token, expire_seconds=self._ttl_seconds
        )
        return updated

    def terminate(self, token: str) -> None:
        """End one session. Safe to call with nonexistent token."""
        data = self._valkey.get_json(self._key(token))
        self._valkey.delete(self._key(token))
        if data is not None:
            self._valkey.remove_from_set(self._user_key(UUID(data["user_id"])), token)

    def terminate_all(self, user_id: UUID) -> int:
        """End every session of a user. Returns how many were live."""
        user_key = self._user_key(user_id)
        ended = 0
        for token in self._valkey.set_members(user_key):
            if self._valkey.delete(self._key(token)):
                ended += 1
        self._valkey.delete(user_key)
        return ended
