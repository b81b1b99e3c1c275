"""Application assembly: clients from Vault, services, routers, middleware."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from api.base import success_response
from api.errors import register_error_handlers
from api.middleware import RequestIDMiddleware
from auth.api import create_account_router, create_auth_router
from auth.config import AuthConfig
from auth.database import AccountDatabase
from auth.lifecycle import AccountLifecycle
from auth.oauth import OAuthLinkageResolver
from auth.passwords import PasswordHasher
from auth.rate_limiter import RateLimiter
from auth.sealing import SealedTokenCodec
from auth.security_logger import SecurityLogger
from auth.security_middleware import AuthMiddleware
from auth.service import AuthService
from auth.session import SessionManager
from clients.email_client import EmailGatewayClient
from clients.google_oauth_client import GoogleOAuthClient
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.vault_client import (
    get_database_url,
    get_email_config,
    get_google_oauth_config,
    get_token_secret,
    get_valkey_url,
)

logger = logging.getLogger(__name__)


def build_auth_service(
    config: AuthConfig,
    postgres: PostgresClient,
    session_manager: SessionManager,
    valkey: ValkeyClient,
    email_client: EmailGatewayClient,
    token_secret: str,
    oauth_client: GoogleOAuthClient | None = None,
) -> AuthService:
    """Wire the account service from already-constructed clients."""
    account_db = AccountDatabase(postgres)
    lifecycle = AccountLifecycle(config, account_db)
    return AuthService(
        config=config,
        account_db=account_db,
        lifecycle=lifecycle,
        codec=SealedTokenCodec(token_secret),
        password_hasher=PasswordHasher(),
        session_manager=session_manager,
        rate_limiter=RateLimiter(valkey, config),
        email_client=email_client,
        security_logger=SecurityLogger(postgres),
        oauth_resolver=OAuthLinkageResolver(account_db, lifecycle),
        oauth_client=oauth_client,
    )


def mount(app: FastAPI, auth_service: AuthService, session_manager: SessionManager, config: AuthConfig) -> FastAPI:
    """Attach middleware, error handlers and routers to an app."""
    app.add_middleware(AuthMiddleware, session_manager=session_manager)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_auth_router(auth_service, config.client_base_url), prefix="/auth")
    app.include_router(create_account_router(auth_service), prefix="/users")

    @app.get("/health")
    async def health():
        return success_response({"status": "ok"})

    return app


def create_app(config: AuthConfig | None = None) -> FastAPI:
    """Build the production app. Secrets and URLs come from Vault."""
    config = config or AuthConfig()

    postgres = PostgresClient(get_database_url())
    valkey = ValkeyClient(get_valkey_url())
    email_client = EmailGatewayClient(**get_email_config())
    google = get_google_oauth_config()
    oauth_client = GoogleOAuthClient(
        client_id=google["client_id"],
        client_secret=google["client_secret"],
        redirect_uri=config.oauth_redirect_uri,
    )

    session_manager = SessionManager(valkey, config)
    auth_service = build_auth_service(
        config,
        postgres,
        session_manager,
        valkey,
        email_client,
        get_token_secret(),
        oauth_client,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            postgres.close()
            valkey.close()
            logger.info("Account service clients closed")

    app = FastAPI(title=config.app_name, lifespan=lifespan)
    mount(app, auth_service, session_manager, config)

    logger.info("Account service app created")
    return app
