"""Shared Pydantic data models for whatsapp-relay."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# --- Enums ---


class RelayStatus(str, Enum):
    SUCCESS = "success"
    INTENT_FAILURE = "intent_failure"
    DELIVERY_FAILURE = "delivery_failure"


class GraphErrorKind(str, Enum):
    """Delivery failures decoded from a Graph API ``error`` object."""

    TOKEN_EXPIRED = "token_expired"
    RATE_LIMITED = "rate_limited"
    INVALID_PARAMETER = "invalid_parameter"
    UNKNOWN = "unknown"


class Freshness(str, Enum):
    FRESH = "fresh"
    DUPLICATE = "duplicate"


class EmptyTextPolicy(str, Enum):
    FORWARD = "forward"
    SKIP = "skip"


class EvictionPolicy(str, Enum):
    CLEAR = "clear"
    LRU = "lru"


class AuditEventType(str, Enum):
    WEBHOOK_RELAY = "webhook_relay"
    DUPLICATE_EVENT = "duplicate_event"
    CREDENTIAL_EXPIRED = "credential_expired"


class RiskLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


# --- Relay Models ---


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class InboundEvent(BaseModel):
    """One actionable text message extracted from a webhook call."""

    model_config = ConfigDict(frozen=True)

    message_id: str
    sender: str
    text: str
    received_at: str = Field(default_factory=_now_iso)


class RelayResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: RelayStatus
    detail: str = ""
    error_kind: GraphErrorKind | None = None

    @property
    def credential_expired(self) -> bool:
        return self.error_kind == GraphErrorKind.TOKEN_EXPIRED


# --- Audit Models ---


class AuditEvent(BaseModel):
    timestamp: str = Field(default_factory=_now_iso)
    event_type: AuditEventType
    sender: str | None = None
    message_id: str | None = None
    action: str
    result: str  # "success" | "failure" | "skipped"
    risk_level: RiskLevel
    details: dict[str, object] | None = None
