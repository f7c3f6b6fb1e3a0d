"""Tests for payment numbering and settlement configuration."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_engine.models import Payment
from settlement_engine.settlement.config import FeeConfig, NumberingConfig
from settlement_engine.settlement.numbering import PaymentNumbering


def _payment(session, client, add=True) -> Payment:
    payment = Payment(
        company_id=client.company_id,
        client_id=client.client_id,
        amount=Decimal("10.00"),
        currency="USD",
        date=datetime.now(timezone.utc),
    )
    if add:
        session.add(payment)
        session.flush()
    return payment


class TestPaymentNumbering:

    def test_sequential_numbers(self, session, client, company):
        numbering = PaymentNumbering(session)

        first = numbering.apply_number(_payment(session, client))
        second = numbering.apply_number(_payment(session, client))

        assert (first.number, second.number) == ("0001", "0002")
        assert company.payment_number_counter == 3

    def test_pattern_and_padding(self, session, client):
        numbering = PaymentNumbering(session, NumberingConfig(pattern="PAY-{counter}", padding=3))

        payment = numbering.apply_number(_payment(session, client))

        assert payment.number == "PAY-001"

    def test_existing_number_kept(self, session, client, company):
        payment = _payment(session, client)
        payment.number = "MANUAL-7"

        PaymentNumbering(session).apply_number(payment)

        assert payment.number == "MANUAL-7"
        assert company.payment_number_counter == 1

    def test_failure_leaves_number_empty(self, session, client):
        payment = _payment(session, client, add=False)
        payment.company_id = uuid4()

        PaymentNumbering(session).apply_number(payment)

        assert payment.number is None


class TestSettlementConfig:

    def test_pattern_needs_counter(self):
        with pytest.raises(ValueError):
            NumberingConfig(pattern="PAY-")

    @pytest.mark.parametrize("padding", [-1, 13])
    def test_padding_bounds(self, padding):
        with pytest.raises(ValueError):
            NumberingConfig(padding=padding)

    def test_fee_label_required(self):
        with pytest.raises(ValueError):
            FeeConfig(fee_line_label="")

    def test_defaults(self):
        fees = FeeConfig()

        assert fees.fee_line_label == "Gateway Fee"
        assert fees.include_fee_in_amount is True
        assert NumberingConfig().padding == 4
