"""Settlement domain events package.

This package provides:
- Typed domain events for settlement operations
- Event emitter for publishing events to subscribers
"""

from settlement_engine.settlement.events.emitter import (
    EventBatch,
    EventEmitter,
    EventHandler,
)
from settlement_engine.settlement.events.types import (
    DomainEvent,
    EventCategory,
    EventMetadata,
    GatewayFeeConfirmed,
    GatewayFeesUnwound,
    GatewayTokenStored,
    InvoiceWasPaid,
    PaymentAttemptFailed,
    PaymentWasCreated,
)

__all__ = [
    # Base
    "DomainEvent",
    "EventMetadata",
    "EventCategory",
    # Invoice events
    "InvoiceWasPaid",
    # Payment events
    "PaymentWasCreated",
    "PaymentAttemptFailed",
    # Gateway events
    "GatewayFeeConfirmed",
    "GatewayFeesUnwound",
    "GatewayTokenStored",
    # Emitter
    "EventBatch",
    "EventEmitter",
    "EventHandler",
]
