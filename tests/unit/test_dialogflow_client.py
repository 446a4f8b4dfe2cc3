"""Tests for Dialogflow intent detection."""

from __future__ import annotations

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from whatsapp_relay.webhook.dialogflow import DialogflowClient
from whatsapp_relay.webhook.errors import IntentServiceError


def _make_client(**kwargs: Any) -> DialogflowClient:
    defaults: dict[str, Any] = {
        "project_id": "df-project",
        "access_token": "df_token",
    }
    defaults.update(kwargs)
    return DialogflowClient(**defaults)


def _mock_http(response: Any = None, side_effect: Any = None) -> AsyncMock:
    mock_client = AsyncMock()
    if side_effect is not None:
        mock_client.post.side_effect = side_effect
    else:
        mock_client.post.return_value = response
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=False)
    return mock_client


def _response(status_code: int, body: Any, text: str = "") -> MagicMock:
    resp = MagicMock(status_code=status_code, text=text)
    resp.json.return_value = body
    return resp


class TestRequestShape:

    def test_session_scoped_per_sender(self) -> None:
        client = _make_client(project_id="p1")
        assert client.session_path("5511999") == "projects/p1/agent/sessions/5511999"

    def test_session_id_is_url_safe(self) -> None:
        client = _make_client(project_id="p1")
        assert client.session_path("+55 11/9") == "projects/p1/agent/sessions/%2B55%2011%2F9"

    def test_query_carries_text_and_language(self) -> None:
        client = _make_client(language_code="en")
        assert client.build_query("hello") == {
            "queryInput": {"text": {"text": "hello", "languageCode": "en"}},
        }


class TestDetectIntent:

    @pytest.mark.asyncio
    async def test_returns_fulfillment_text(self) -> None:
        client = _make_client()
        body = {
            "responseId": "r1",
            "queryResult": {
                "queryText": "oi",
                "fulfillmentText": "Olá! Como posso ajudar?",
                "intent": {"displayName": "Default Welcome Intent"},
            },
        }
        mock_http = _mock_http(_response(200, body))

        with patch("whatsapp_relay.webhook.dialogflow.httpx.AsyncClient") as mock_cls:
            mock_cls.return_value = mock_http
            reply = await client.detect_intent("oi", session_id="5511999")

        assert reply == "Olá! Como posso ajudar?"
        url = mock_http.post.call_args[0][0]
        kwargs = mock_http.post.call_args[1]
        assert url == (
            "https://dialogflow.googleapis.com/v2/projects/df-project"
            "/agent/sessions/5511999:detectIntent"
        )
        assert kwargs["headers"]["Authorization"] == "Bearer df_token"
        assert kwargs["json"]["queryInput"]["text"]["text"] == "oi"
        assert kwargs["json"]["queryInput"]["text"]["languageCode"] == "pt-BR"

    @pytest.mark.asyncio
    async def test_timeout_is_configurable(self) -> None:
        client = _make_client(timeout=5.0)
        mock_http = _mock_http(_response(200, {"queryResult": {"fulfillmentText": "x"}}))

        with patch("whatsapp_relay.webhook.dialogflow.httpx.AsyncClient") as mock_cls:
            mock_cls.return_value = mock_http
            await client.detect_intent("hi", session_id="s")

        mock_cls.assert_called_once_with(verify=True, timeout=5.0)

    @pytest.mark.asyncio
    async def test_missing_fulfillment_is_empty_string(self) -> None:
        client = _make_client()
        mock_http = _mock_http(_response(200, {"queryResult": {"queryText": "hi"}}))

        with patch("whatsapp_relay.webhook.dialogflow.httpx.AsyncClient") as mock_cls:
            mock_cls.return_value = mock_http
            assert await client.detect_intent("hi", session_id="s") == ""

    @pytest.mark.asyncio
    async def test_error_status_raises(self) -> None:
        client = _make_client()
        mock_http = _mock_http(_response(403, {}, text="permission denied"))

        with patch("whatsapp_relay.webhook.dialogflow.httpx.AsyncClient") as mock_cls:
            mock_cls.return_value = mock_http
            with pytest.raises(IntentServiceError) as exc_info:
                await client.detect_intent("hi", session_id="s")

        assert exc_info.value.status_code == 403
        assert "permission denied" in str(exc_info.value)
        assert mock_http.post.call_count == 1

    @pytest.mark.asyncio
    async def test_timeout_raises(self) -> None:
        client = _make_client()
        mock_http = _mock_http(side_effect=httpx.ConnectTimeout("slow"))

        with patch("whatsapp_relay.webhook.dialogflow.httpx.AsyncClient") as mock_cls:
            mock_cls.return_value = mock_http
            with pytest.raises(IntentServiceError, match="timed out"):
                await client.detect_intent("hi", session_id="s")

        assert mock_http.post.call_count == 1

    @pytest.mark.asyncio
    async def test_transport_error_raises(self) -> None:
        client = _make_client()
        mock_http = _mock_http(side_effect=httpx.ConnectError("refused"))

        with patch("whatsapp_relay.webhook.dialogflow.httpx.AsyncClient") as mock_cls:
            mock_cls.return_value = mock_http
            with pytest.raises(IntentServiceError, match="unavailable"):
                await client.detect_intent("hi", session_id="s")

    @pytest.mark.asyncio
    async def test_body_without_query_result_raises(self) -> None:
        client = _make_client()
        mock_http = _mock_http(_response(200, {"responseId": "r1"}))

        with patch("whatsapp_relay.webhook.dialogflow.httpx.AsyncClient") as mock_cls:
            mock_cls.return_value = mock_http
            with pytest.raises(IntentServiceError):
                await client.detect_intent("hi", session_id="s")

    @pytest.mark.asyncio
    async def test_redirect_status_raises(self) -> None:
        client = _make_client()
        mock_http = _mock_http(_response(302, {"queryResult": {"fulfillmentText": "x"}}))

        with patch("whatsapp_relay.webhook.dialogflow.httpx.AsyncClient") as mock_cls:
            mock_cls.return_value = mock_http
            with pytest.raises(IntentServiceError) as exc_info:
                await client.detect_intent("hi", session_id="s")

        assert exc_info.value.status_code == 302

    @pytest.mark.asyncio
    async def test_null_fulfillment_is_empty_string(self) -> None:
        client = _make_client()
        mock_http = _mock_http(_response(200, {"queryResult": {"fulfillmentText": None}}))

        with patch("whatsapp_relay.webhook.dialogflow.httpx.AsyncClient") as mock_cls:
            mock_cls.return_value = mock_http
            assert await client.detect_intent("hi", session_id="s") == ""

    @pytest.mark.asyncio
    async def test_non_text_fulfillment_raises(self) -> None:
        client = _make_client()
        mock_http = _mock_http(_response(200, {"queryResult": {"fulfillmentText": {"a": 1}}}))

        with patch("whatsapp_relay.webhook.dialogflow.httpx.AsyncClient") as mock_cls:
            mock_cls.return_value = mock_http
            with pytest.raises(IntentServiceError, match="not text"):
                await client.detect_intent("hi", session_id="s")

    @pytest.mark.asyncio
    async def test_non_object_intent_is_ignored(self) -> None:
        client = _make_client()
        body = {"queryResult": {"intent": "greeting", "fulfillmentText": "Olá"}}
        mock_http = _mock_http(_response(200, body))

        with patch("whatsapp_relay.webhook.dialogflow.httpx.AsyncClient") as mock_cls:
            mock_cls.return_value = mock_http
            assert await client.detect_intent("hi", session_id="s") == "Olá"
