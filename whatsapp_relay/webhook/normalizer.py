"""Payload normalizer: WhatsApp webhook JSON to ``InboundEvent``."""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from whatsapp_relay.models import InboundEvent
from whatsapp_relay.webhook.models import (
    Change,
    Entry,
    Message,
    Skip,
    WebhookPayload,
)

logger = logging.getLogger(__name__)

_M = TypeVar("_M", bound=BaseModel)


def _first(model: type[_M], items: list[Any], level: str) -> _M | Skip:
    """Validate only the first element of ``items``; siblings are never read."""
    if not items:
        return Skip(f"no {level}")
    try:
        return model.model_validate(items[0])
    except ValidationError as exc:
        logger.debug("Webhook %s failed validation: %s", level, exc)
        return Skip(f"malformed {level}")


def normalize(payload: Any) -> InboundEvent | Skip:
    """Extract the first text message of a webhook payload.

    Follows ``entry[0].changes[0].value.messages[0]``. Anything that does not
    lead to a non-empty text message yields ``Skip``; this function never
    raises on malformed input.
    """
    if not isinstance(payload, dict):
        return Skip("payload is not an object")

    try:
        parsed = WebhookPayload.model_validate(payload)
    except ValidationError as exc:
        logger.debug("Webhook payload failed validation: %s", exc)
        return Skip("payload failed schema validation")

    entry = _first(Entry, parsed.entry, "entry")
    if isinstance(entry, Skip):
        return entry
    change = _first(Change, entry.changes, "changes")
    if isinstance(change, Skip):
        return change
    if change.value is None:
        return Skip("no messages")
    # Delivery/read receipts carry no messages
    message = _first(Message, change.value.messages, "messages")
    if isinstance(message, Skip):
        return message

    if message.type != "text":
        return Skip(f"unsupported message type: {message.type or 'missing'}")
    if message.text is None or not message.text.body:
        return Skip("empty text body")
    if not message.id or not message.from_:
        return Skip("message id or sender missing")

    return InboundEvent(
        message_id=message.id,
        sender=message.from_,
        text=message.text.body,
    )
