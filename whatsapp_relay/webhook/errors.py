"""Relay exceptions and decoding of remote error bodies."""

from __future__ import annotations

from typing import Any

from whatsapp_relay.models import GraphErrorKind

# Graph API error codes, see
# https://developers.facebook.com/docs/whatsapp/cloud-api/support/error-codes
_GRAPH_CODES: dict[int, GraphErrorKind] = {
    190: GraphErrorKind.TOKEN_EXPIRED,
    4: GraphErrorKind.RATE_LIMITED,
    80007: GraphErrorKind.RATE_LIMITED,
    130429: GraphErrorKind.RATE_LIMITED,
    100: GraphErrorKind.INVALID_PARAMETER,
    131009: GraphErrorKind.INVALID_PARAMETER,
}


class RelayError(Exception):
    """Base class for failures while relaying one inbound event."""


class IntentServiceError(RelayError):
    """Intent detection failed (timeout, transport error, bad response)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class DeliveryServiceError(RelayError):
    """Reply delivery failed."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        kind: GraphErrorKind = GraphErrorKind.UNKNOWN,
    ) -> None:
        self.status_code = status_code
        self.kind = kind
        super().__init__(message)


class DeliveryCredentialExpiredError(DeliveryServiceError):
    """The delivery access token is expired or revoked and must be rotated."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message, status_code, GraphErrorKind.TOKEN_EXPIRED)


def decode_graph_error(body: Any) -> tuple[GraphErrorKind, str]:
    """Map a Graph API error body to ``(kind, message)``.

    Accepts whatever the response decoded to; non-conforming bodies map to
    ``UNKNOWN``.
    """
    if not isinstance(body, dict) or not isinstance(body.get("error"), dict):
        return GraphErrorKind.UNKNOWN, ""
    error = body["error"]
    message = str(error.get("message", ""))
    code = error.get("code")
    if not isinstance(code, int):
        return GraphErrorKind.UNKNOWN, message
    return _GRAPH_CODES.get(code, GraphErrorKind.UNKNOWN), message


def delivery_error_from_body(
    body: Any, status_code: int | None,
) -> DeliveryServiceError:
    """Build the matching delivery exception for a failed Graph response."""
    kind, message = decode_graph_error(body)
    text = message or f"Delivery failed with HTTP {status_code}"
    if kind == GraphErrorKind.TOKEN_EXPIRED:
        return DeliveryCredentialExpiredError(text, status_code)
    return DeliveryServiceError(text, status_code, kind)
