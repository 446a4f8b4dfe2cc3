"""WhatsApp Cloud API side of the relay.

Handles the Meta verification handshake, optional HMAC verification of
inbound notifications, and reply delivery through the Graph API.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any

import httpx

from whatsapp_relay.webhook.errors import (
    DeliveryServiceError,
    delivery_error_from_body,
)

logger = logging.getLogger(__name__)

WHATSAPP_API_BASE = "https://graph.facebook.com/v18.0"


class WhatsAppClient:
    """Verifies inbound webhooks and sends text replies."""

    def __init__(
        self,
        verify_token: str,
        phone_number_id: str,
        access_token: str,
        app_secret: str | None = None,
        api_base: str = WHATSAPP_API_BASE,
        timeout: float = 10.0,
    ) -> None:
        self._verify_token = verify_token
        self._phone_number_id = phone_number_id
        self._access_token = access_token
        self._app_secret = app_secret
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout

    @property
    def verifies_signatures(self) -> bool:
        return bool(self._app_secret)

    def verify_signature(self, headers: dict[str, str], body: bytes) -> bool:
        """Check ``X-Hub-Signature-256`` against the app secret.

        Always True when no app secret is configured.
        """
        if not self._app_secret:
            return True
        signature = headers.get("x-hub-signature-256", "")
        if not signature.startswith("sha256="):
            return False

        expected = hmac.new(
            self._app_secret.encode(), body, hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(signature[7:], expected)

    def handle_verification(self, params: dict[str, str]) -> tuple[int, str]:
        """Answer the Meta subscription handshake (GET).

        Returns ``(200, challenge)`` when mode is ``subscribe`` and the token
        matches, ``(403, reason)`` otherwise.
        """
        if params.get("hub.mode") != "subscribe":
            return 403, "Invalid hub.mode"

        token = params.get("hub.verify_token", "")
        if hmac.compare_digest(token.encode(), self._verify_token.encode()):
            return 200, params.get("hub.challenge", "")
        return 403, "Invalid verify token"

    def build_text_message(self, recipient: str, text: str) -> dict[str, Any]:
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient,
            "type": "text",
            "text": {"body": text},
        }

    async def send_text(self, recipient: str, text: str) -> str:
        """Send ``text`` to ``recipient`` and return the Graph message id.

        Single attempt. Raises ``DeliveryCredentialExpiredError`` when Graph
        reports an expired token and ``DeliveryServiceError`` for any other
        failure.
        """
        url = f"{self._api_base}/{self._phone_number_id}/messages"
        headers = {"Authorization": f"Bearer {self._access_token}"}
        payload = self.build_text_message(recipient, text)

        try:
            async with httpx.AsyncClient(verify=True, timeout=self._timeout) as client:
                resp = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise DeliveryServiceError(f"Delivery timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise DeliveryServiceError(f"Delivery unavailable: {exc}") from exc

        try:
            data: Any = resp.json()
        except ValueError:
            data = None

        if not 200 <= resp.status_code < 300:
            raise delivery_error_from_body(data, resp.status_code)

        try:
            message_id = data["messages"][0]["id"]
        except (TypeError, KeyError, IndexError) as exc:
            raise DeliveryServiceError(
                "Delivery response carried no message id", resp.status_code,
            ) from exc
        logger.debug("Delivered reply to %s as %s", recipient, message_id)
        return str(message_id)
