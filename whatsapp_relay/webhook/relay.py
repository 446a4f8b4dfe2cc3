"""Webhook relay pipeline.

Per inbound notification:
1. Normalize the payload to an ``InboundEvent`` (or skip it)
2. Suppress duplicates via the ``DuplicateCache``
3. Detect intent with Dialogflow
4. Deliver the fulfillment text over WhatsApp
5. Audit log (best effort, off the event loop)

Stages 3 and 4 are single attempts; a failed stage 3 means stage 4 never
runs.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from whatsapp_relay.models import (
    AuditEvent,
    AuditEventType,
    EmptyTextPolicy,
    Freshness,
    GraphErrorKind,
    InboundEvent,
    RelayResult,
    RelayStatus,
    RiskLevel,
)
from whatsapp_relay.webhook.errors import (
    DeliveryCredentialExpiredError,
    DeliveryServiceError,
    IntentServiceError,
)
from whatsapp_relay.webhook.models import Skip, WebhookResponse
from whatsapp_relay.webhook.normalizer import normalize

if TYPE_CHECKING:
    from whatsapp_relay.audit.logger import AuditLogger
    from whatsapp_relay.webhook.dedup import DuplicateCache
    from whatsapp_relay.webhook.dialogflow import DialogflowClient
    from whatsapp_relay.webhook.whatsapp import WhatsAppClient

logger = logging.getLogger(__name__)


class RelayDispatcher:
    """Runs intent detection then reply delivery for one event."""

    def __init__(
        self,
        intent_client: DialogflowClient,
        delivery_client: WhatsAppClient,
        on_empty_text: EmptyTextPolicy = EmptyTextPolicy.FORWARD,
    ) -> None:
        self._intent = intent_client
        self._delivery = delivery_client
        self._on_empty_text = on_empty_text

    async def dispatch(self, event: InboundEvent) -> RelayResult:
        if not event.text and self._on_empty_text == EmptyTextPolicy.SKIP:
            return RelayResult(status=RelayStatus.SUCCESS, detail="skipped_empty_text")

        try:
            reply = await self._intent.detect_intent(event.text, session_id=event.sender)
        except IntentServiceError as exc:
            logger.error(
                "Intent detection failed for message %s: %s", event.message_id, exc,
            )
            return RelayResult(status=RelayStatus.INTENT_FAILURE, detail=str(exc))

        try:
            delivered_id = await self._delivery.send_text(event.sender, reply)
        except DeliveryCredentialExpiredError as exc:
            logger.warning(
                "WhatsApp access token expired or revoked, rotate it: %s", exc,
            )
            return RelayResult(
                status=RelayStatus.DELIVERY_FAILURE,
                detail=str(exc),
                error_kind=GraphErrorKind.TOKEN_EXPIRED,
            )
        except DeliveryServiceError as exc:
            logger.error(
                "Reply delivery failed for message %s: %s", event.message_id, exc,
            )
            return RelayResult(
                status=RelayStatus.DELIVERY_FAILURE,
                detail=str(exc),
                error_kind=exc.kind,
            )

        return RelayResult(status=RelayStatus.SUCCESS, detail=delivered_id)


def _error_body(error: str) -> dict[str, Any]:
    return {"status": "error", "error": error}


class WebhookRelayPipeline:
    """Normalizer, duplicate guard and dispatcher composed per request."""

    def __init__(
        self,
        dispatcher: RelayDispatcher,
        duplicate_cache: DuplicateCache,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._cache = duplicate_cache
        self._audit = audit_logger

    async def handle(self, payload: Any) -> WebhookResponse:
        event = normalize(payload)
        if isinstance(event, Skip):
            logger.debug("Ignoring webhook payload: %s", event.reason)
            return WebhookResponse(body={"status": "ignored"}, status_code=200)

        if self._cache.check_and_record(event.message_id) == Freshness.DUPLICATE:
            logger.info("Duplicate message %s suppressed", event.message_id)
            await self._log(
                AuditEventType.DUPLICATE_EVENT, event, "duplicate", "skipped",
                RiskLevel.LOW,
            )
            return WebhookResponse(body={"status": "duplicate"}, status_code=200)

        logger.info("Message %s from %s received", event.message_id, event.sender)
        result = await self._dispatcher.dispatch(event)
        return await self._to_response(event, result)

    async def _to_response(
        self, event: InboundEvent, result: RelayResult,
    ) -> WebhookResponse:
        if result.status == RelayStatus.SUCCESS:
            await self._log(
                AuditEventType.WEBHOOK_RELAY, event, "relay", "success",
                RiskLevel.INFO,
            )
            return WebhookResponse(body={"status": "success"}, status_code=200)

        if result.status == RelayStatus.INTENT_FAILURE:
            await self._log(
                AuditEventType.WEBHOOK_RELAY, event, "intent_failure", "failure",
                RiskLevel.MEDIUM, {"detail": result.detail},
            )
            return WebhookResponse(
                body=_error_body("intent_service_failure"), status_code=500,
            )

        if result.credential_expired:
            await self._log(
                AuditEventType.CREDENTIAL_EXPIRED, event, "credential_expired",
                "failure", RiskLevel.HIGH, {"detail": result.detail},
            )
            return WebhookResponse(
                body=_error_body("delivery_credential_expired"), status_code=401,
            )

        await self._log(
            AuditEventType.WEBHOOK_RELAY, event, "delivery_failure", "failure",
            RiskLevel.MEDIUM,
            {"detail": result.detail, "error_kind": result.error_kind},
        )
        return WebhookResponse(
            body=_error_body("delivery_service_failure"), status_code=500,
        )

    async def _log(
        self,
        event_type: AuditEventType,
        event: InboundEvent,
        action: str,
        result: str,
        risk_level: RiskLevel,
        details: dict[str, object] | None = None,
    ) -> None:
        """Record an audit event. A failed write never changes the relay outcome."""
        if not self._audit:
            return
        record = AuditEvent(
            event_type=event_type,
            sender=event.sender,
            message_id=event.message_id,
            action=action,
            result=result,
            risk_level=risk_level,
            details=details,
        )
        try:
            await asyncio.to_thread(self._audit.log, record)
        except OSError:
            logger.exception(
                "Audit write failed for message %s (%s)", event.message_id, action,
            )
