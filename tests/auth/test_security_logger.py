"""Tests for SecurityLogger - account event audit trail."""

import json
import logging
from datetime import timedelta
from unittest.mock import Mock
from uuid import uuid4

import psycopg2
import pytest
from psycopg2.extras import Json

from auth.security_logger import SecurityEvent, SecurityLogger
from clients.postgres_client import PostgresClient
from utils.timezone import now_utc


@pytest.fixture
def postgres():
    return Mock(spec=PostgresClient)


@pytest.fixture
def security_logger(postgres):
    return SecurityLogger(postgres)


class TestLogEvent:
    """Test event logging."""

    def test_inserts_event_row(self, security_logger, postgres):
        user_id = uuid4()

        security_logger.log(
            SecurityEvent.SIGN_IN_FAILED,
            email="someone@example.com",
            user_id=user_id,
            ip_address="192.168.1.1",
        )

        query, params = postgres.execute_returning.call_args.args
        assert "INSERT INTO security_events" in query
        assert params[:4] == ("sign_in_failed", "someone@example.com", str(user_id), "192.168.1.1")

    def test_details_wrapped_as_json(self, security_logger, postgres):
        security_logger.log(SecurityEvent.PASSWORD_RESET_REQUESTED, details={"sent": False})

        details = postgres.execute_returning.call_args.args[1][5]
        assert isinstance(details, Json)
        assert details.adapted == {"sent": False}

    def test_no_details_stored_as_null(self, security_logger, postgres):
        security_logger.log(SecurityEvent.SIGNED_OUT)

        params = postgres.execute_returning.call_args.args[1]
        assert params[2] is None
        assert params[5] is None

    def test_insert_failure_is_logged_not_raised(self, security_logger, postgres, caplog):
        postgres.execute_returning.side_effect = psycopg2.OperationalError("server closed the connection")

        with caplog.at_level(logging.ERROR, logger="auth.security_logger"):
            security_logger.log(SecurityEvent.USER_SIGNED_UP, email="new@example.com")

        assert "Failed to record security event user_signed_up" in caplog.text

    def test_non_database_errors_propagate(self, security_logger, postgres):
        postgres.execute_returning.side_effect = TypeError("bad params")

        with pytest.raises(TypeError):
            security_logger.log(SecurityEvent.SIGNED_OUT)


class TestGetRecentEvents:
    """Test event querying."""

    def test_filters_combined(self, security_logger, postgres):
        user_id = uuid4()
        postgres.execute.return_value = []

        security_logger.get_recent_events(
            email="target@example.com",
            user_id=user_id,
            event_type=SecurityEvent.RATE_LIMITED,
            limit=5,
        )

        query, params = postgres.execute.call_args.args
        assert "email = %s AND user_id = %s AND event_type = %s" in query
        assert "ORDER BY created_at DESC" in query
        assert params == ("target@example.com", str(user_id), "rate_limited", 5)

    def test_no_filters(self, security_logger, postgres):
        postgres.execute.return_value = []

        assert security_logger.get_recent_events(limit=3) == []

        query, params = postgres.execute.call_args.args
        assert "WHERE 1=1" in query
        assert params == (3,)


class TestRotateLogs:

    def test_archives_then_deletes_only_archived_rows(self, security_logger, postgres, tmp_path):
        event_id = uuid4()
        postgres.execute.return_value = [{
            "id": event_id,
            "event_type": "rate_limited",
            "email": "old@example.com",
            "user_id": None,
            "ip_address": "10.0.0.1",
            "user_agent": None,
            "details": {"action": "password_reset"},
            "created_at": now_utc() - timedelta(days=10),
        }]
        archive = tmp_path / "security_events.jsonl"

        count = security_logger.rotate_logs(older_than_days=5, output_path=archive)

        assert count == 1
        record = json.loads(archive.read_text().splitlines()[0])
        assert record["id"] == str(event_id)
        assert record["details"] == {"action": "password_reset"}
        query, params = postgres.execute_returning.call_args.args
        assert "DELETE FROM security_events" in query
        assert params == ([str(event_id)],)

    def test_nothing_to_archive(self, security_logger, postgres, tmp_path):
        postgres.execute.return_value = []

        assert security_logger.rotate_logs(5, tmp_path / "none.jsonl") == 0
        assert not (tmp_path / "none.jsonl").exists()
        postgres.execute_returning.assert_not_called()


class TestAgainstPostgres:
    """Requires sql/schema.sql applied; skipped when not configured."""

    @pytest.fixture
    def live_logger(self, db):
        yield SecurityLogger(db)
        db.execute("DELETE FROM security_events WHERE email LIKE %s", ("%@logtest.example.com",))

    def test_newest_first(self, live_logger):
        live_logger.log(SecurityEvent.VERIFICATION_REQUESTED, email="first@logtest.example.com")
        live_logger.log(SecurityEvent.EMAIL_VERIFIED, email="second@logtest.example.com")

        events = [
            e for e in live_logger.get_recent_events()
            if e["email"] and e["email"].endswith("@logtest.example.com")
        ]

        assert events[0]["email"] == "second@logtest.example.com"
