"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from auth.exceptions import (
    AccountInactiveError,
    AccountSuspendedError,
    AlreadyVerifiedError,
    AuthError,
    ConflictingIdentityError,
    InvalidCredentialsError,
    NotFoundOrExpiredError,
    PreconditionFailedError,
    RateLimitedError,
    SessionExpiredError,
    StoreError,
)
from clients.google_oauth_client import OAuthProviderError

logger = logging.getLogger(__name__)

# Most specific first: AlreadyVerifiedError is a PreconditionFailedError.
AUTH_ERROR_STATUS = [
    (NotFoundOrExpiredError, 404, ErrorCodes.INVALID_TOKEN),
    (InvalidCredentialsError, 401, ErrorCodes.INVALID_CREDENTIALS),
    (SessionExpiredError, 401, ErrorCodes.SESSION_EXPIRED),
    (AccountSuspendedError, 403, ErrorCodes.ACCOUNT_SUSPENDED),
    (AccountInactiveError, 403, ErrorCodes.ACCOUNT_INACTIVE),
    (AlreadyVerifiedError, 409, ErrorCodes.ALREADY_VERIFIED),
    (PreconditionFailedError, 412, ErrorCodes.PRECONDITION_FAILED),
    (ConflictingIdentityError, 409, ErrorCodes.IDENTITY_CONFLICT),
    (RateLimitedError, 429, ErrorCodes.RATE_LIMITED),
]


def auth_error_json(exc: AuthError) -> JSONResponse:
    """Render a domain error in the standard envelope."""
    for exc_type, status_code, code in AUTH_ERROR_STATUS:
        if isinstance(exc, exc_type):
            break
    else:
        status_code, code = 400, ErrorCodes.INVALID_REQUEST

    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}

    email = exc.email if isinstance(exc, ConflictingIdentityError) else None
    return JSONResponse(
        status_code=status_code,
        headers=headers,
        content=error_response(code, str(exc), email=email).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        return auth_error_json(exc)

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.error(f"Store failure on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content=error_response(
                ErrorCodes.SERVICE_UNAVAILABLE,
                "Service temporarily unavailable",
            ).model_dump(mode="json"),
        )

    @app.exception_handler(OAuthProviderError)
    async def oauth_provider_error_handler(request: Request, exc: OAuthProviderError):
        logger.warning(f"OAuth provider failure: {exc}")
        return JSONResponse(
            status_code=502,
            content=error_response(
                ErrorCodes.OAUTH_PROVIDER_ERROR,
                "Sign-in provider request failed",
            ).model_dump(mode="json"),
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(
            status_code=400,
            content=error_response(ErrorCodes.INVALID_REQUEST, str(exc)).model_dump(mode="json"),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=error_response(
                ErrorCodes.VALIDATION_ERROR,
                str(exc.errors()),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content=error_response(
                ErrorCodes.INTERNAL_ERROR,
                "An internal error occurred",
            ).model_dump(mode="json"),
        )
