"""
Google OAuth 2.0 client: authorization URL, code exchange, userinfo.

Plain HTTPS calls with requests. Fail-fast: every provider failure is
raised as OAuthProviderError, never swallowed.
"""

import logging
from typing import Any
from urllib.parse import urlencode

import requests

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

SCOPES = [
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
]


class OAuthProviderError(Exception):
    """Identity provider rejected a request or was unreachable."""


class GoogleOAuthClient:
    """Google identity provider calls for the sign-in flow."""

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str, timeout: float = 10):
        if not client_id or not client_secret:
            raise ValueError("client_id and client_secret are required")
        if not redirect_uri:
            raise ValueError("redirect_uri is required")

        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._timeout = timeout

    def build_authorization_url(self, state: str | None = None) -> str:
        """URL the browser is redirected to for consent."""
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def exchange_code_for_tokens(self, code: str) -> dict[str, Any]:
        """Trade an authorization code for provider tokens.

        Raises:
            OAuthProviderError: On HTTP failure or a response without access_token.
        """
        data = self._request(
            "post",
            GOOGLE_TOKEN_URL,
            data={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self._redirect_uri,
            },
        )
        if not data.get("access_token"):
            raise OAuthProviderError("Token response has no access_token")
        return data

    def fetch_profile(self, tokens: dict[str, Any]) -> dict[str, Any]:
        """Fetch the signed-in user's profile.

        Returns:
            Dict with keys: id, email, email_verified, name, picture

        Raises:
            OAuthProviderError: On HTTP failure or a profile without id/email.
        """
        info = self._request(
            "get",
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )
        if not info.get("id") or not info.get("email"):
            raise OAuthProviderError("Userinfo response is missing id or email")

        return {
            "id": str(info["id"]),
            "email": info["email"],
            "email_verified": bool(info.get("verified_email", False)),
            "name": info.get("name"),
            "picture": info.get("picture"),
        }

    def _request(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        try:
            response = requests.request(method, url, timeout=self._timeout, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.HTTPError as e:
            logger.error(f"Google OAuth request failed: {e.response.status_code} {url}")
            raise OAuthProviderError(f"Google OAuth request failed: {e}") from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Google OAuth connection failed: {e}")
            raise OAuthProviderError(f"Google OAuth connection failed: {e}") from e
        except ValueError as e:
            logger.error(f"Google OAuth returned invalid JSON from {url}")
            raise OAuthProviderError("Invalid response from Google OAuth") from e
