"""Dialogflow ES intent detection over the REST API."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from whatsapp_relay.webhook.errors import IntentServiceError

logger = logging.getLogger(__name__)

DIALOGFLOW_API_BASE = "https://dialogflow.googleapis.com/v2"


class DialogflowClient:
    """Sends user text to a Dialogflow agent and returns its fulfillment text."""

    def __init__(
        self,
        project_id: str,
        access_token: str,
        language_code: str = "pt-BR",
        api_base: str = DIALOGFLOW_API_BASE,
        timeout: float = 10.0,
    ) -> None:
        self._project_id = project_id
        self._access_token = access_token
        self._language_code = language_code
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout

    def session_path(self, session_id: str) -> str:
        """Session resource for ``session_id``; one session per sender."""
        return (
            f"projects/{self._project_id}/agent/sessions/"
            f"{quote(session_id, safe='')}"
        )

    def build_query(self, text: str) -> dict[str, Any]:
        return {
            "queryInput": {
                "text": {"text": text, "languageCode": self._language_code},
            },
        }

    async def detect_intent(self, text: str, session_id: str) -> str:
        """Run ``text`` through the agent within ``session_id``.

        Single attempt. Raises ``IntentServiceError`` on timeout, transport
        error, non-2xx status or a response without ``queryResult``.
        """
        url = f"{self._api_base}/{self.session_path(session_id)}:detectIntent"
        headers = {"Authorization": f"Bearer {self._access_token}"}

        try:
            async with httpx.AsyncClient(verify=True, timeout=self._timeout) as client:
                resp = await client.post(
                    url, json=self.build_query(text), headers=headers,
                )
        except httpx.TimeoutException as exc:
            raise IntentServiceError(f"Intent detection timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise IntentServiceError(f"Intent service unavailable: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            raise IntentServiceError(
                f"Intent detection failed with HTTP {resp.status_code}: {resp.text}",
                resp.status_code,
            )

        try:
            query_result = resp.json()["queryResult"]
        except (ValueError, TypeError, KeyError) as exc:
            raise IntentServiceError(
                "Intent response carried no queryResult", resp.status_code,
            ) from exc
        if not isinstance(query_result, dict):
            raise IntentServiceError(
                "Intent response carried no queryResult", resp.status_code,
            )

        intent = query_result.get("intent")
        if isinstance(intent, dict):
            logger.debug(
                "Session %s matched intent %s", session_id, intent.get("displayName"),
            )

        fulfillment = query_result.get("fulfillmentText")
        if fulfillment is None:
            return ""
        if not isinstance(fulfillment, str):
            raise IntentServiceError(
                f"Intent response fulfillmentText is not text: {fulfillment!r}",
                resp.status_code,
            )
        return fulfillment
