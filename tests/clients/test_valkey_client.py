"""Tests for ValkeyClient - Redis-compatible session and throttle store.

Server tests run against a real Valkey; skipped when Vault is not configured.
"""

from unittest.mock import patch
from uuid import uuid4

import pytest

from clients.valkey_client import ValkeyClient


@pytest.fixture
def key(valkey):
    """Unique key, deleted afterwards."""
    name = f"test:{uuid4()}"
    yield name
    valkey.delete(name)


class TestBasicOperations:

    def test_ping(self, valkey):
        assert valkey.ping() is True

    def test_set_and_get(self, valkey, key):
        valkey.set(key, "hello")

        assert valkey.get(key) == "hello"

    def test_get_missing_returns_none(self, valkey, key):
        assert valkey.get(key) is None

    def test_delete_reports_existence(self, valkey, key):
        valkey.set(key, "value")

        assert valkey.delete(key) is True
        assert valkey.delete(key) is False


class TestExpiry:

    def test_set_with_expiry_has_ttl(self, valkey, key):
        valkey.set(key, "value", expire_seconds=60)

        assert 0 < valkey.ttl(key) <= 60

    def test_ttl_of_missing_key(self, valkey, key):
        assert valkey.ttl(key) == -2

    def test_incr_with_expiry_counts_and_refreshes(self, valkey, key):
        assert valkey.incr_with_expiry(key, 30) == 1
        assert valkey.incr_with_expiry(key, 120) == 2
        assert valkey.ttl(key) > 30


class TestSets:

    def test_add_list_remove(self, valkey, key):
        valkey.add_to_set(key, "a", expire_seconds=60)
        valkey.add_to_set(key, "b")

        assert valkey.set_members(key) == {"a", "b"}

        valkey.remove_from_set(key, "a")
        assert valkey.set_members(key) == {"b"}

    def test_members_of_missing_set(self, valkey, key):
        assert valkey.set_members(key) == set()


class TestJson:

    def test_round_trip(self, valkey, key):
        valkey.set_json(key, {"user_id": "u1", "n": 2}, expire_seconds=60)

        assert valkey.get_json(key) == {"user_id": "u1", "n": 2}

    def test_invalid_json_raises(self, valkey, key):
        valkey.set(key, "not-json")

        with pytest.raises(ValueError, match="Invalid JSON"):
            valkey.get_json(key)


class TestWithoutServer:
    """Wrapper behaviour against a mocked redis connection."""

    @pytest.fixture
    def client(self):
        with patch("clients.valkey_client.redis.from_url") as from_url:
            from_url.return_value.smembers.return_value = {"a", "b"}
            yield ValkeyClient("redis://localhost:6379/0")

    def test_set_members_returns_plain_set(self, client):
        assert client.set_members("user_sessions:u1") == {"a", "b"}

    def test_add_to_set_with_expiry_uses_pipeline(self, client):
        client.add_to_set("user_sessions:u1", "tok", expire_seconds=60)

        pipe = client._client.pipeline.return_value
        pipe.sadd.assert_called_once_with("user_sessions:u1", "tok")
        pipe.expire.assert_called_once_with("user_sessions:u1", 60)
        pipe.execute.assert_called_once()
