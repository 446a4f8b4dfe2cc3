"""Data models for the webhook relay pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# --- Inbound WhatsApp Cloud API payload schema ---
# Only fields on the entry[0].changes[0].value.messages[0] path are typed.
# Lists stay untyped so a malformed sibling element never rejects element 0.


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class TextBody(_Lenient):
    body: str = ""


class Message(_Lenient):
    id: str = ""
    from_: str = Field(default="", alias="from")
    type: str = ""
    text: TextBody | None = None


class ChangeValue(_Lenient):
    messages: list[Any] = Field(default_factory=list)


class Change(_Lenient):
    value: ChangeValue | None = None


class Entry(_Lenient):
    changes: list[Any] = Field(default_factory=list)


class WebhookPayload(_Lenient):
    entry: list[Any] = Field(default_factory=list)


# --- Pipeline signals ---


@dataclass(frozen=True)
class Skip:
    """Payload carried nothing to relay. Expected, not an error."""

    reason: str


@dataclass
class WebhookResponse:
    """Pipeline response to return to the webhook sender."""

    body: dict[str, Any]
    status_code: int
