"""Environment-driven settings for the relay."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from whatsapp_relay.models import EmptyTextPolicy, EvictionPolicy
from whatsapp_relay.webhook.dedup import DEFAULT_CAPACITY
from whatsapp_relay.webhook.dialogflow import DIALOGFLOW_API_BASE
from whatsapp_relay.webhook.whatsapp import WHATSAPP_API_BASE

REQUIRED_KEYS = (
    "WHATSAPP_VERIFY_TOKEN",
    "WHATSAPP_ACCESS_TOKEN",
    "WHATSAPP_PHONE_NUMBER_ID",
    "DIALOGFLOW_PROJECT_ID",
    "DIALOGFLOW_ACCESS_TOKEN",
)

_SECRET_FIELDS = frozenset({
    "verify_token", "access_token", "app_secret", "dialogflow_access_token",
})


class ConfigurationError(Exception):
    """Raised when required configuration is missing or invalid."""


class RelaySettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    verify_token: str = Field(min_length=1)
    access_token: str = Field(min_length=1)
    phone_number_id: str = Field(min_length=1)
    app_secret: str | None = None
    whatsapp_api_base: str = WHATSAPP_API_BASE

    dialogflow_project_id: str = Field(min_length=1)
    dialogflow_access_token: str = Field(min_length=1)
    dialogflow_language_code: str = "pt-BR"
    dialogflow_api_base: str = DIALOGFLOW_API_BASE

    intent_timeout: float = Field(default=10.0, gt=0)
    delivery_timeout: float = Field(default=10.0, gt=0)
    dedup_capacity: int = Field(default=DEFAULT_CAPACITY, ge=1)
    dedup_policy: EvictionPolicy = EvictionPolicy.CLEAR
    on_empty_text: EmptyTextPolicy = EmptyTextPolicy.FORWARD

    audit_log_path: str | None = None
    log_level: str = "INFO"
    port: int = Field(default=3000, ge=1, le=65535)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RelaySettings:
        """Load settings from ``environ`` (default ``os.environ``).

        Raises ``ConfigurationError`` naming every missing or invalid key.
        """
        env = os.environ if environ is None else environ
        missing = [key for key in REQUIRED_KEYS if not env.get(key)]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )

        raw: dict[str, object] = {
            "verify_token": env["WHATSAPP_VERIFY_TOKEN"],
            "access_token": env["WHATSAPP_ACCESS_TOKEN"],
            "phone_number_id": env["WHATSAPP_PHONE_NUMBER_ID"],
            "app_secret": env.get("WHATSAPP_APP_SECRET") or None,
            "dialogflow_project_id": env["DIALOGFLOW_PROJECT_ID"],
            "dialogflow_access_token": env["DIALOGFLOW_ACCESS_TOKEN"],
            "audit_log_path": env.get("AUDIT_LOG_PATH") or None,
        }
        optional = {
            "whatsapp_api_base": "WHATSAPP_API_BASE",
            "dialogflow_language_code": "DIALOGFLOW_LANGUAGE_CODE",
            "dialogflow_api_base": "DIALOGFLOW_API_BASE",
            "intent_timeout": "INTENT_TIMEOUT_SECONDS",
            "delivery_timeout": "DELIVERY_TIMEOUT_SECONDS",
            "dedup_capacity": "DEDUP_CAPACITY",
            "dedup_policy": "DEDUP_POLICY",
            "on_empty_text": "ON_EMPTY_TEXT",
            "log_level": "LOG_LEVEL",
            "port": "PORT",
        }
        for field_name, key in optional.items():
            if env.get(key):
                raw[field_name] = env[key]

        try:
            return cls.model_validate(raw)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc

    def redacted(self) -> dict[str, object]:
        """Settings as a JSON-able dict with secrets masked."""
        data = self.model_dump(mode="json")
        for name in _SECRET_FIELDS:
            if data.get(name):
                data[name] = "***"
        return data
