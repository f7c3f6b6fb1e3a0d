"""Tests for domain events and the event emitter."""

import json
from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_engine.settlement.events import (
    EventCategory,
    EventEmitter,
    EventMetadata,
    GatewayFeeConfirmed,
    InvoiceWasPaid,
)


def _metadata() -> EventMetadata:
    return EventMetadata.create(tenant_id="default", company_id=uuid4())


def _invoice_paid() -> InvoiceWasPaid:
    return InvoiceWasPaid(
        metadata=_metadata(),
        invoice_id=uuid4(),
        payment_id=uuid4(),
        client_id=uuid4(),
        amount=Decimal("10.00"),
    )


def _fee_confirmed() -> GatewayFeeConfirmed:
    return GatewayFeeConfirmed(
        metadata=_metadata(),
        invoice_id=uuid4(),
        client_id=uuid4(),
        fee_amount=Decimal("1.00"),
    )


class TestEventTypes:

    def test_type_and_category(self):
        event = _invoice_paid()

        assert event.event_type == "InvoiceWasPaid"
        assert event.category == EventCategory.INVOICE
        assert _fee_confirmed().category == EventCategory.GATEWAY

    def test_serialization(self):
        event = _invoice_paid()

        data = json.loads(event.to_json())

        assert data["event_type"] == "InvoiceWasPaid"
        assert data["amount"] == "10.00"
        assert data["invoice_id"] == str(event.invoice_id)
        assert data["metadata"]["tenant_id"] == "default"

    def test_events_are_immutable(self):
        event = _invoice_paid()

        with pytest.raises(AttributeError):
            event.amount = Decimal("0")  # type: ignore[misc]


class TestEmitter:
    """Routing and handler isolation."""

    def test_type_filter(self):
        emitter = EventEmitter()
        received = []
        emitter.on(InvoiceWasPaid, received.append)

        emitter.emit(_fee_confirmed())
        emitter.emit(_invoice_paid())

        assert [e.event_type for e in received] == ["InvoiceWasPaid"]

    def test_category_filter(self):
        emitter = EventEmitter()
        received = []
        emitter.on_category(EventCategory.GATEWAY, received.append)

        emitter.emit(_invoice_paid())
        emitter.emit(_fee_confirmed())

        assert [e.event_type for e in received] == ["GatewayFeeConfirmed"]

    def test_failing_handler_is_isolated(self):
        emitter = EventEmitter()
        received = []

        def broken(event):
            raise ValueError("listener bug")

        emitter.on_all(broken)
        emitter.on_all(received.append)

        errors = emitter.emit(_invoice_paid())

        assert len(received) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], ValueError)

    def test_off(self):
        emitter = EventEmitter()
        received = []
        handler = received.append
        emitter.on_all(handler)
        emitter.off(handler)

        emitter.emit(_invoice_paid())

        assert received == []


class TestBatch:
    """Batched events are delivered only when the outermost batch succeeds."""

    def test_held_until_exit(self):
        emitter = EventEmitter()
        received = []
        emitter.on_all(received.append)

        with emitter.batch():
            emitter.emit(_invoice_paid())
            emitter.emit(_fee_confirmed())
            assert received == []
            assert emitter.batching

        assert [e.event_type for e in received] == ["InvoiceWasPaid", "GatewayFeeConfirmed"]
        assert not emitter.batching

    def test_discarded_on_error(self):
        emitter = EventEmitter()
        received = []
        emitter.on_all(received.append)

        with pytest.raises(RuntimeError):
            with emitter.batch():
                emitter.emit(_invoice_paid())
                raise RuntimeError("rollback")

        assert received == []
        assert not emitter.batching

    def test_nested_batch_waits_for_outer(self):
        emitter = EventEmitter()
        received = []
        emitter.on_all(received.append)

        with emitter.batch():
            with emitter.batch():
                emitter.emit(_invoice_paid())
            assert received == []

        assert len(received) == 1

    def test_outer_failure_discards_inner_events(self):
        emitter = EventEmitter()
        received = []
        emitter.on_all(received.append)

        with pytest.raises(RuntimeError):
            with emitter.batch():
                with emitter.batch():
                    emitter.emit(_invoice_paid())
                raise RuntimeError("outer rollback")

        assert received == []

    def test_inner_failure_keeps_outer_events(self):
        emitter = EventEmitter()
        received = []
        emitter.on_all(received.append)

        with emitter.batch():
            emitter.emit(_fee_confirmed())
            with pytest.raises(RuntimeError):
                with emitter.batch():
                    emitter.emit(_invoice_paid())
                    raise RuntimeError("inner rollback")

        assert [e.event_type for e in received] == ["GatewayFeeConfirmed"]

    def test_batch_collects_handler_errors(self):
        emitter = EventEmitter()

        def broken(event):
            raise ValueError("listener bug")

        emitter.on_all(broken)

        with emitter.batch() as batch:
            emitter.emit(_invoice_paid())

        assert len(batch.errors) == 1
