"""Shared test fixtures for whatsapp-relay."""

from __future__ import annotations

from typing import Any

import pytest

from whatsapp_relay.config import RelaySettings

SETTINGS_ENV: dict[str, str] = {
    "WHATSAPP_VERIFY_TOKEN": "wa_verify",
    "WHATSAPP_ACCESS_TOKEN": "wa_token",
    "WHATSAPP_PHONE_NUMBER_ID": "123456",
    "DIALOGFLOW_PROJECT_ID": "df-project",
    "DIALOGFLOW_ACCESS_TOKEN": "df_token",
}


@pytest.fixture
def settings_env() -> dict[str, str]:
    return dict(SETTINGS_ENV)


@pytest.fixture
def make_settings():
    """Factory for RelaySettings with sensible defaults."""

    def _create(**kwargs: Any) -> RelaySettings:
        defaults: dict[str, Any] = {
            "verify_token": "wa_verify",
            "access_token": "wa_token",
            "phone_number_id": "123456",
            "dialogflow_project_id": "df-project",
            "dialogflow_access_token": "df_token",
        }
        defaults.update(kwargs)
        return RelaySettings(**defaults)

    return _create


@pytest.fixture
def make_payload():
    """Factory for a WhatsApp Cloud API text-message notification."""

    def _create(
        message_id: str = "m1",
        sender: str = "5511999",
        text: str | None = "oi",
        msg_type: str = "text",
    ) -> dict[str, Any]:
        message: dict[str, Any] = {
            "from": sender,
            "id": message_id,
            "timestamp": "1700000000",
            "type": msg_type,
        }
        if text is not None:
            message["text"] = {"body": text}
        return {
            "object": "whatsapp_business_account",
            "entry": [
                {
                    "id": "BUSINESS_ID",
                    "changes": [
                        {
                            "value": {
                                "messaging_product": "whatsapp",
                                "metadata": {"phone_number_id": "123456"},
                                "messages": [message],
                            },
                            "field": "messages",
                        }
                    ],
                }
            ],
        }

    return _create
