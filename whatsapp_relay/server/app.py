"""FastAPI application exposing the WhatsApp webhook."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from whatsapp_relay.audit.logger import AuditLogger
from whatsapp_relay.config import RelaySettings
from whatsapp_relay.webhook.dedup import DuplicateCache
from whatsapp_relay.webhook.dialogflow import DialogflowClient
from whatsapp_relay.webhook.models import WebhookResponse
from whatsapp_relay.webhook.relay import RelayDispatcher, WebhookRelayPipeline
from whatsapp_relay.webhook.whatsapp import WhatsAppClient

logger = logging.getLogger(__name__)


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables.

    Raises ``ConfigurationError`` when required settings are missing, so the
    server refuses to start half-configured.
    """
    settings = RelaySettings.from_env()
    audit_logger = (
        AuditLogger.from_env(settings.audit_log_path)
        if settings.audit_log_path else None
    )
    return create_app(settings, audit_logger=audit_logger)


def build_clients(settings: RelaySettings) -> tuple[DialogflowClient, WhatsAppClient]:
    intent_client = DialogflowClient(
        project_id=settings.dialogflow_project_id,
        access_token=settings.dialogflow_access_token,
        language_code=settings.dialogflow_language_code,
        api_base=settings.dialogflow_api_base,
        timeout=settings.intent_timeout,
    )
    delivery_client = WhatsAppClient(
        verify_token=settings.verify_token,
        phone_number_id=settings.phone_number_id,
        access_token=settings.access_token,
        app_secret=settings.app_secret,
        api_base=settings.whatsapp_api_base,
        timeout=settings.delivery_timeout,
    )
    return intent_client, delivery_client


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    exc = context.get("exception")
    logger.error(
        "Unhandled asyncio error: %s", context.get("message"),
        exc_info=exc if isinstance(exc, BaseException) else None,
    )


def create_app(
    settings: RelaySettings,
    audit_logger: AuditLogger | None = None,
    intent_client: DialogflowClient | None = None,
    delivery_client: WhatsAppClient | None = None,
) -> FastAPI:
    """Create the relay app. Clients default to ones built from ``settings``."""
    if intent_client is None or delivery_client is None:
        default_intent, default_delivery = build_clients(settings)
        intent_client = intent_client or default_intent
        delivery_client = delivery_client or default_delivery

    pipeline = WebhookRelayPipeline(
        dispatcher=RelayDispatcher(
            intent_client, delivery_client, on_empty_text=settings.on_empty_text,
        ),
        duplicate_cache=DuplicateCache(
            capacity=settings.dedup_capacity, policy=settings.dedup_policy,
        ),
        audit_logger=audit_logger,
    )
    inflight: set[asyncio.Task[WebhookResponse]] = set()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
        yield
        if inflight:
            logger.info("Waiting for %d in-flight relays", len(inflight))
            await asyncio.gather(*inflight, return_exceptions=True)

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.pipeline = pipeline
    app.state.inflight = inflight

    async def run_pipeline(payload: Any) -> WebhookResponse:
        try:
            return await pipeline.handle(payload)
        except Exception:
            logger.exception("Unexpected failure while relaying webhook")
            return WebhookResponse(
                body={"status": "error", "error": "internal_error"},
                status_code=500,
            )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/webhook")
    async def verify_webhook(request: Request) -> Response:
        status_code, content = delivery_client.handle_verification(dict(request.query_params))
        if status_code != 200:
            logger.warning("Webhook verification rejected: %s", content)
        return PlainTextResponse(content, status_code=status_code)

    @app.post("/webhook")
    async def receive_webhook(request: Request) -> Response:
        body = await request.body()
        if not delivery_client.verify_signature(dict(request.headers), body):
            return JSONResponse({"error": "Invalid webhook signature"}, status_code=401)

        try:
            payload = json.loads(body)
        except ValueError:
            return JSONResponse({"status": "ignored"}, status_code=200)

        # The relay finishes even if WhatsApp drops the connection early
        task = asyncio.create_task(run_pipeline(payload))
        inflight.add(task)
        task.add_done_callback(inflight.discard)
        result = await asyncio.shield(task)
        return JSONResponse(result.body, status_code=result.status_code)

    return app
