"""Shared test fixtures for the account service test suite."""

from pathlib import Path
from unittest.mock import Mock

import pytest
from argon2 import PasswordHasher as Argon2Hasher
from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from auth.config import AuthConfig
from auth.lifecycle import AccountLifecycle
from auth.oauth import OAuthLinkageResolver
from auth.passwords import PasswordHasher
from auth.rate_limiter import RateLimiter
from auth.sealing import SealedTokenCodec
from auth.security_logger import SecurityLogger
from auth.service import AuthService
from auth.session import SessionManager
from clients.email_client import EmailGatewayClient
from clients.google_oauth_client import GoogleOAuthClient
from fakes import CLIENT_URL, TEST_SECRET, FakeValkey, InMemoryAccountDatabase


# =============================================================================
# CORE FIXTURES
# =============================================================================


@pytest.fixture
def config():
    """Test auth config."""
    return AuthConfig(
        session_expiry_hours=1,
        rate_limit_attempts=3,
        rate_limit_window_minutes=5,
        app_base_url="https://api.example.com",
        client_base_url=CLIENT_URL,
        app_name="Test Accounts",
    )


@pytest.fixture
def account_db():
    return InMemoryAccountDatabase()


@pytest.fixture
def fake_valkey():
    return FakeValkey()


@pytest.fixture
def lifecycle(config, account_db):
    return AccountLifecycle(config, account_db)


@pytest.fixture
def codec():
    return SealedTokenCodec(TEST_SECRET)


@pytest.fixture(scope="session")
def password_hasher():
    """Argon2 with minimal cost so tests stay fast."""
    return PasswordHasher(Argon2Hasher(time_cost=1, memory_cost=8, parallelism=1))


@pytest.fixture
def session_manager(fake_valkey, config):
    return SessionManager(fake_valkey, config)


@pytest.fixture
def rate_limiter(fake_valkey, config):
    return RateLimiter(fake_valkey, config)


@pytest.fixture
def mock_email_client():
    """Mock email client - the gateway is never called in unit tests."""
    mock = Mock(spec=EmailGatewayClient)
    mock.send.return_value = None
    return mock


@pytest.fixture
def mock_security_logger():
    return Mock(spec=SecurityLogger)


@pytest.fixture
def mock_oauth_client():
    mock = Mock(spec=GoogleOAuthClient)
    mock.exchange_code_for_tokens.return_value = {"access_token": "provider-access-token"}
    return mock


@pytest.fixture
def oauth_resolver(account_db, lifecycle):
    return OAuthLinkageResolver(account_db, lifecycle)


@pytest.fixture
def auth_service(
    config,
    account_db,
    lifecycle,
    codec,
    password_hasher,
    session_manager,
    rate_limiter,
    mock_email_client,
    mock_security_logger,
    oauth_resolver,
    mock_oauth_client,
):
    """Real AuthService over in-memory store and Valkey, mocked edges."""
    return AuthService(
        config=config,
        account_db=account_db,
        lifecycle=lifecycle,
        codec=codec,
        password_hasher=password_hasher,
        session_manager=session_manager,
        rate_limiter=rate_limiter,
        email_client=mock_email_client,
        security_logger=mock_security_logger,
        oauth_resolver=oauth_resolver,
        oauth_client=mock_oauth_client,
    )


# =============================================================================
# REAL INFRASTRUCTURE (skipped when Vault is not configured)
# =============================================================================


@pytest.fixture(scope="session")
def db():
    """Session-scoped PostgresClient from Vault, or skip."""
    from clients.postgres_client import PostgresClient
    from clients.vault_client import VaultError, get_database_url

    try:
        url = get_database_url()
    except (VaultError, KeyError) as e:
        pytest.skip(f"Database not configured: {e}")

    client = PostgresClient(url)
    yield client
    client.close()


@pytest.fixture(scope="session")
def valkey():
    """Session-scoped ValkeyClient from Vault, or skip."""
    from clients.valkey_client import ValkeyClient
    from clients.vault_client import VaultError, get_valkey_url

    try:
        url = get_valkey_url()
    except (VaultError, KeyError) as e:
        pytest.skip(f"Valkey not configured: {e}")

    client = ValkeyClient(url)
    yield client
    client.close()
