"""
Email gateway client for sending templated account emails via HTTP gateway.

Uses HMAC-SHA256 signature for request authentication. Templates are
rendered by the gateway; this client only names the template and passes
its variables.
"""

import hashlib
import hmac
import json
import logging
from typing import Any

import requests

logger = logging.getLogger(__name__)


class EmailTemplate:
    """Template names known to the gateway."""

    VERIFY_EMAIL = "verify_email"
    RECOVER_ACCOUNT = "recover_account"
    REACTIVATE_ACCOUNT = "reactivate_account"

    ALL = frozenset({VERIFY_EMAIL, RECOVER_ACCOUNT, REACTIVATE_ACCOUNT})


class EmailGatewayError(Exception):
    """Raised when email gateway request fails."""


class EmailGatewayClient:
    """Send emails via HTTP gateway with HMAC signature verification."""

    def __init__(self, gateway_url: str, api_key: str, hmac_secret: str, timeout: float = 10):
        """
        Initialize with gateway credentials.

        Args:
            gateway_url: Full URL to the email gateway endpoint
            api_key: API key for X-API-Key header
            hmac_secret: Secret for HMAC-SHA256 signature
            timeout: Request timeout in seconds

        Raises:
            ValueError: If any credential is empty
        """
        if not gateway_url:
            raise ValueError("gateway_url is required")
        if not api_key:
            raise ValueError("api_key is required")
        if not hmac_secret:
            raise ValueError("hmac_secret is required")

        self.gateway_url = gateway_url
        self.api_key = api_key
        self.hmac_secret = hmac_secret
        self.timeout = timeout

    def _sign(self, payload_json: str) -> str:
        return hmac.new(
            self.hmac_secret.encode("utf-8"),
            payload_json.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _sign_and_send(self, payload: dict) -> None:
        """
        Sign payload with HMAC and send to gateway.

        Raises:
            EmailGatewayError: On any failure
        """
        payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True)

        headers = {
            "Content-Type": "application/json",
            "X-API-Key": self.api_key,
            "X-Signature": self._sign(payload_json),
        }

        try:
            response = requests.post(
                self.gateway_url,
                data=payload_json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Email gateway connection failed: {e}")
            raise EmailGatewayError(f"Connection failed: {e}") from e

        try:
            response_data = response.json()
        except ValueError:
            logger.error(f"Email gateway returned invalid JSON: {response.text}")
            raise EmailGatewayError("Invalid response from gateway")

        if response.status_code != 200 or not response_data.get("success"):
            error_msg = response_data.get("message", "Unknown error")
            logger.error(f"Email gateway error: {error_msg}")
            raise EmailGatewayError(f"Gateway error: {error_msg}")

    def send(self, template_name: str, recipient_email: str, variables: dict[str, Any]) -> None:
        """
        Send a templated email.

        Args:
            template_name: One of EmailTemplate.ALL
            recipient_email: Recipient address
            variables: Values interpolated by the template (links, username)

        Raises:
            ValueError: If template is unknown
            EmailGatewayError: On gateway failure
        """
        if template_name not in EmailTemplate.ALL:
            raise ValueError(f"Unknown email template '{template_name}'")

        payload = {
            "type": "template",
            "template": template_name,
            "email": recipient_email,
            "variables": variables,
        }
        self._sign_and_send(payload)
        logger.info(f"Email '{template_name}' sent to {recipient_email}")
