"""Domain event types for settlement operations.

All events are:
- Immutable (frozen dataclasses)
- Typed with explicit payloads
- Traceable via metadata
- Serializable for queueing
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    PAYMENT = "payment"
    INVOICE = "invoice"
    GATEWAY = "gateway"
    TOKEN = "token"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    tenant_id: str  # tenant database the event originated in
    company_id: UUID
    correlation_id: UUID  # Links events of one settlement
    causation_id: UUID | None
    actor_type: str  # 'contact', 'system', 'scheduler'
    source_service: str
    version: int = 1

    @classmethod
    def create(
        cls,
        tenant_id: str,
        company_id: UUID,
        correlation_id: UUID | None = None,
        causation_id: UUID | None = None,
        actor_type: str = "system",
        source_service: str = "settlement",
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            tenant_id=tenant_id,
            company_id=company_id,
            correlation_id=correlation_id or uuid4(),
            causation_id=causation_id,
            actor_type=actor_type,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        """Event category for filtering."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = serialize_value(asdict(self))
        data["event_type"] = self.event_type
        return data

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def serialize_value(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {k: serialize_value(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [serialize_value(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


# =============================================================================
# Invoice Events
# =============================================================================


@dataclass(frozen=True)
class InvoiceWasPaid(DomainEvent):
    """A payment was attached to an invoice."""

    invoice_id: UUID
    payment_id: UUID
    client_id: UUID
    amount: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.INVOICE


# =============================================================================
# Payment Events
# =============================================================================


@dataclass(frozen=True)
class PaymentWasCreated(DomainEvent):
    """A payment was recorded for a settled charge."""

    payment_id: UUID
    client_id: UUID
    company_gateway_id: UUID | None
    amount: Decimal
    currency: str
    payment_hash: str
    invoice_ids: tuple[UUID, ...] = field(default_factory=tuple)

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


@dataclass(frozen=True)
class PaymentAttemptFailed(DomainEvent):
    """A charge attempt failed at the gateway."""

    client_id: UUID
    payment_hash: str
    gateway_key: str
    error_message: str
    error_code: str | None

    @property
    def category(self) -> EventCategory:
        return EventCategory.PAYMENT


# =============================================================================
# Gateway Fee Events
# =============================================================================


@dataclass(frozen=True)
class GatewayFeeConfirmed(DomainEvent):
    """A speculative gateway fee was marked paid."""

    invoice_id: UUID
    client_id: UUID
    fee_amount: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.GATEWAY


@dataclass(frozen=True)
class GatewayFeesUnwound(DomainEvent):
    """Speculative gateway fees were removed after a failed attempt."""

    payment_hash: str
    invoice_ids: tuple[UUID, ...]
    fee_removed: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.GATEWAY


# =============================================================================
# Token Events
# =============================================================================


@dataclass(frozen=True)
class GatewayTokenStored(DomainEvent):
    """A reusable payment-method token was stored for a client."""

    client_id: UUID
    client_gateway_token_id: UUID
    company_gateway_id: UUID
    is_default: bool

    @property
    def category(self) -> EventCategory:
        return EventCategory.TOKEN
