"""Click CLI for running and smoke-testing the relay."""

from __future__ import annotations

import asyncio
import json
import logging

import click
import uvicorn

from whatsapp_relay.config import ConfigurationError, RelaySettings
from whatsapp_relay.models import InboundEvent, RelayStatus
from whatsapp_relay.server.app import build_clients
from whatsapp_relay.webhook.relay import RelayDispatcher


def _load_settings() -> RelaySettings:
    try:
        return RelaySettings.from_env()
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@click.group()
def cli() -> None:
    """WhatsApp to Dialogflow webhook relay."""


@cli.command()
@click.option("--host", default="0.0.0.0", help="Interface to bind.")
@click.option("--port", type=int, default=None, help="Port to bind (default: PORT).")
def serve(host: str, port: int | None) -> None:
    """Run the webhook server."""
    settings = _load_settings()
    _configure_logging(settings.log_level)
    uvicorn.run(
        "whatsapp_relay.server.app:create_app_from_env",
        factory=True,
        host=host,
        port=port or settings.port,
        log_level=settings.log_level.lower(),
    )


@cli.command("check-config")
def check_config() -> None:
    """Validate the environment and print settings with secrets masked."""
    settings = _load_settings()
    click.echo(json.dumps(settings.redacted(), indent=2))


@cli.command()
@click.argument("sender")
@click.argument("text")
@click.option("--message-id", default="cli-test", help="Message id to report.")
def relay(sender: str, text: str, message_id: str) -> None:
    """Send TEXT through Dialogflow and deliver the reply to SENDER."""
    settings = _load_settings()
    _configure_logging(settings.log_level)
    intent_client, delivery_client = build_clients(settings)
    dispatcher = RelayDispatcher(
        intent_client, delivery_client, on_empty_text=settings.on_empty_text,
    )
    event = InboundEvent(message_id=message_id, sender=sender, text=text)
    result = asyncio.run(dispatcher.dispatch(event))
    click.echo(result.model_dump_json(indent=2))
    if result.status != RelayStatus.SUCCESS:
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
