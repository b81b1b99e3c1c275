"""HTTP routes for authentication and the signed-in account."""

import ipaddress
import json

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse

from auth.exceptions import ConflictingIdentityError
from auth.lifecycle import AccountCheck, check_account
from auth.security_middleware import SESSION_COOKIE
from auth.service import AuthService
from auth.types import (
    AuthenticatedUser,
    ChangePasswordRequest,
    EmailRequest,
    PasswordResetRequest,
    SignInRequest,
    SignUpRequest,
    User,
)
from api.base import success_response

OAUTH_COOKIE = "oauth2"
SIGNIN_PAGE = "/auth/signin"
OAUTH_ERROR_PAGE = "/auth/error"
OAUTH_SUCCESS_PAGE = "/account/profile"


def _get_client_ip(request: Request) -> str | None:
    """Extract valid IP address from request, or None if invalid."""
    if not request.client:
        return None
    host = request.client.host
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        return None


def _set_session_cookie(response: Response, result: AuthenticatedUser) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=result.session.token,
        httponly=True,
        secure=True,
        samesite="lax",
        max_age=int((result.session.expires_at - result.session.created_at).total_seconds()),
    )


def require_account(auth_service: AuthService, *checks: AccountCheck):
    """Dependency that loads the session user and enforces account checks.

    Checks run in a fixed order regardless of how they are listed:
    suspended, then active, then verified.
    """

    def dependency(request: Request) -> User:
        user = auth_service.current_user(request.state.user_id)
        check_account(user, checks)
        return user

    return dependency


def create_auth_router(auth_service: AuthService, client_base_url: str) -> APIRouter:
    """Create the unauthenticated auth router with injected service."""
    router = APIRouter(tags=["auth"])
    client_base_url = client_base_url.rstrip("/")

    @router.post("/signup", status_code=201)
    async def sign_up(request: Request, body: SignUpRequest, background_tasks: BackgroundTasks):
        user = auth_service.sign_up(
            username=body.username,
            email=body.email,
            password=body.password,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
            schedule=background_tasks.add_task,
        )
        return success_response({"user": user.public_dict()})

    @router.post("/signin")
    async def sign_in(request: Request, response: Response, body: SignInRequest):
        """Check credentials. Sets session_token cookie on success."""
        result = auth_service.sign_in(
            email=body.email,
            password=body.password,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        _set_session_cookie(response, result)
        return success_response({"user": result.user.public_dict()})

    @router.delete("/signout")
    async def sign_out(request: Request, response: Response):
        """Revoke session and clear cookie."""
        session_token = request.cookies.get(SESSION_COOKIE)
        if session_token:
            auth_service.sign_out(session_token, ip_address=_get_client_ip(request))
        response.delete_cookie(key=SESSION_COOKIE)
        return success_response({"message": "Sign out successful"})

    @router.post("/send-verify-email")
    async def request_verification(
        request: Request, body: EmailRequest, background_tasks: BackgroundTasks
    ):
        auth_service.request_verification(
            email=body.email,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
            schedule=background_tasks.add_task,
        )
        return success_response(
            {"message": "If the address needs verification, a link has been sent"}
        )

    @router.get("/confirm-email/{token}")
    async def confirm_email(request: Request, token: str):
        user = auth_service.confirm_verification(
            token,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return success_response({"user": user.public_dict()})

    @router.patch("/recover")
    async def recover(request: Request, body: EmailRequest, background_tasks: BackgroundTasks):
        auth_service.request_password_reset(
            email=body.email,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
            schedule=background_tasks.add_task,
        )
        return success_response({"message": "If the account exists, a recovery link has been sent"})

    @router.patch("/reset-password/{token}")
    async def reset_password(request: Request, token: str, body: PasswordResetRequest):
        auth_service.confirm_password_reset(
            token,
            body.password,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return success_response({"message": "Password has been reset. Please sign in."})

    @router.patch("/reactivate")
    async def reactivate(request: Request, body: EmailRequest, background_tasks: BackgroundTasks):
        auth_service.request_reactivation(
            email=body.email,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
            schedule=background_tasks.add_task,
        )
        return success_response(
            {"message": "If the account is deactivated, a reactivation link has been sent"}
        )

    @router.get("/reactivate/{token}")
    async def confirm_reactivation(request: Request, token: str):
        user = auth_service.confirm_reactivation(
            token,
            ip_address=_get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        return success_response({"user": user.public_dict()})

    @router.get("/google")
    async def sign_in_google(redir: str | None = Query(None)):
        """Redirect to the provider consent screen."""
        return RedirectResponse(auth_service.oauth_authorization_url(state=redir))

    @router.get("/google/callback")
    async def sign_in_google_callback(
        request: Request,
        background_tasks: BackgroundTasks,
        code: str | None = Query(None),
        error: str | None = Query(None),
        state: str | None = Query(None),
    ):
        """Finish provider sign-in.

        An email that already belongs to an unlinked local account sets a
        'nolink' cookie and sends the browser to the sign-in page.
        """
        if error or not code:
            return RedirectResponse(f"{client_base_url}{OAUTH_ERROR_PAGE}")

        try:
            result = auth_service.resolve_oauth_login(
                code,
                ip_address=_get_client_ip(request),
                user_agent=request.headers.get("User-Agent"),
                schedule=background_tasks.add_task,
            )
        except ConflictingIdentityError as e:
            redirect = RedirectResponse(f"{client_base_url}{SIGNIN_PAGE}")
            redirect.set_cookie(
                key=OAUTH_COOKIE,
                value=json.dumps({
                    "type": "nolink",
                    "email": e.email if state == SIGNIN_PAGE else "",
                }),
                httponly=False,
                path="/auth",
                secure=True,
                samesite="lax",
            )
            return redirect

        redirect = RedirectResponse(f"{client_base_url}{OAUTH_SUCCESS_PAGE}")
        _set_session_cookie(redirect, result)
        return redirect

    return router


def create_account_router(auth_service: AuthService) -> APIRouter:
    """Create the router for the signed-in user's own account.

    Requires AuthMiddleware to have set request.state.user_id.
    """
    router = APIRouter(tags=["account"])
    usable_account = require_account(auth_service, AccountCheck.NOT_SUSPENDED, AccountCheck.ACTIVE)

    @router.get("/me")
    async def current_user(user: User = Depends(usable_account)):
        return success_response({"user": user.public_dict()})

    @router.patch("/deactivate")
    async def deactivate(request: Request, response: Response, user: User = Depends(usable_account)):
        """Deactivate the account, end every session, clear the cookie."""
        auth_service.deactivate(user.id, ip_address=_get_client_ip(request))
        response.delete_cookie(key=SESSION_COOKIE)
        return success_response({"message": "Your account has been deactivated"})

    @router.patch("/change-password")
    async def change_password(
        request: Request,
        body: ChangePasswordRequest,
        user: User = Depends(usable_account),
    ):
        auth_service.change_password(
            user.id,
            body.old_password,
            body.new_password,
            ip_address=_get_client_ip(request),
        )
        return success_response({"message": "Password updated"})

    @router.post("/send-verify-email")
    async def send_verify_email(
        request: Request,
        background_tasks: BackgroundTasks,
        user: User = Depends(usable_account),
    ):
        auth_service.send_verification_for_user(
            user.id,
            ip_address=_get_client_ip(request),
            schedule=background_tasks.add_task,
        )
        return success_response({"message": "Verification email sent"})

    return router
