"""Security event logging for the account audit trail.

Events go to the security_events table and are mirrored to the module
logger. Emails are recorded as given; raw tokens and passwords never are.
Old events are archived to JSON lines files by rotate_logs.
"""

import json
import logging
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import UUID

import psycopg2
from psycopg2.extras import Json

from clients.postgres_client import PostgresClient
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class SecurityEvent(Enum):
    """Account security event types."""

    USER_SIGNED_UP = "user_signed_up"
    SIGN_IN_SUCCEEDED = "sign_in_succeeded"
    SIGN_IN_FAILED = "sign_in_failed"
    SIGNED_OUT = "signed_out"
    VERIFICATION_REQUESTED = "verification_requested"
    EMAIL_VERIFIED = "email_verified"
    PASSWORD_RESET_REQUESTED = "password_reset_requested"
    PASSWORD_RESET_COMPLETED = "password_reset_completed"
    PASSWORD_CHANGED = "password_changed"
    REACTIVATION_REQUESTED = "reactivation_requested"
    ACCOUNT_REACTIVATED = "account_reactivated"
    ACCOUNT_DEACTIVATED = "account_deactivated"
    TOKEN_REJECTED = "token_rejected"
    OAUTH_LINKED = "oauth_linked"
    OAUTH_SIGN_IN = "oauth_sign_in"
    OAUTH_LINK_REQUIRED = "oauth_link_required"
    EMAIL_SEND_FAILED = "email_send_failed"
    RATE_LIMITED = "rate_limited"


class SecurityLogger:
    """Append-only security event logger."""

    def __init__(self, postgres: PostgresClient):
        self._db = postgres

    def log(
        self,
        event: SecurityEvent,
        email: str | None = None,
        user_id: UUID | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log security event to database.

        Events describe changes that have already committed, so a failed
        insert is logged and does not fail the caller.
        """
        logger.info(
            f"security event {event.value} user_id={user_id} ip={ip_address}"
        )
        try:
            self._db.execute_returning(
                """INSERT INTO security_events
                   (event_type, email, user_id, ip_address, user_agent, details, created_at)
                   VALUES (%s, %s, %s, %s, %s, %s, %s)
                   RETURNING id""",
                (
                    event.value,
                    email,
                    str(user_id) if user_id else None,
                    ip_address,
                    user_agent,
                    Json(details) if details else None,
                    now_utc(),
                ),
            )
        except psycopg2.Error as e:
            logger.error(f"Failed to record security event {event.value} user_id={user_id}: {e}")

    def get_recent_events(
        self,
        email: str | None = None,
        user_id: UUID | None = None,
        event_type: SecurityEvent | None = None,
        limit: int = 100,
    ) -> list[dict]:
        """Query recent security events with optional filters."""
        conditions = []
        params = []

        if email:
            conditions.append("email = %s")
            params.append(email)

        if user_id:
            conditions.append("user_id = %s")
            params.append(str(user_id))

        if event_type:
            conditions.append("event_type = %s")
            params.append(event_type.value)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        params.append(limit)

        return self._db.execute(
            f"""SELECT id, event_type, email, user_id, ip_address, user_agent, details, created_at
                FROM security_events
                WHERE {where_clause}
                ORDER BY created_at DESC
                LIMIT %s""",
            tuple(params),
        )


    def rotate_logs(self, older_than_days: int, output_path: Path) -> int:
        """Append events older than the cutoff to a JSON lines file, then delete them.

        Only the rows written to the file are deleted, so events logged
        during rotation are left for the next run.

        Returns:
            Number of events archived.
        """
        cutoff = now_utc() - timedelta(days=older_than_days)
        events = self._db.execute(
            """SELECT id, event_type, email, user_id, ip_address, user_agent, details, created_at
               FROM security_events
               WHERE created_at < %s
               ORDER BY created_at ASC""",
            (cutoff,),
        )
        if not events:
            return 0

        with open(output_path, "a") as f:
            for event in events:
                record = {
                    "id": str(event["id"]),
                    "event_type": event["event_type"],
                    "email": event["email"],
                    "user_id": str(event["user_id"]) if event["user_id"] else None,
                    "ip_address": str(event["ip_address"]) if event["ip_address"] else None,
                    "user_agent": event["user_agent"],
                    "details": event["details"],
                    "created_at": event["created_at"].isoformat(),
                }
                f.write(json.dumps(record) + "\n")

        archived_ids = [str(event["id"]) for event in events]
        self._db.execute_returning(
            "DELETE FROM security_events WHERE id = ANY(%s::uuid[]) RETURNING id",
            (archived_ids,),
        )
        logger.info(f"Archived {len(events)} security events to {output_path}")
        return len(events)
