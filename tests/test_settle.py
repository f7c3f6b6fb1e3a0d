"""End-to-end tests for settle(), token billing and refunds."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from settlement_engine.models import Client, LineItemType, Payment, SystemLog
from settlement_engine.settlement.config import FeeConfig, SettlementConfig
from settlement_engine.settlement.errors import HashAlreadySettled, ValidationError
from settlement_engine.settlement.jobs import PAYMENT_FAILURE_MAIL, SYSTEM_LOG
from settlement_engine.settlement.providers import GatewayType, StubGateway
from settlement_engine.settlement.state_machine import SettlementStatus
from settlement_engine.settlement.tokens import GatewayTokenStore
from settlement_engine.settlement.workflow import Err, Ok


class TestSettle:
    """A successful settlement charges, confirms the fee and records the payment."""

    def test_success(self, session, workflow, gateway, payment_hash, invoice, client):
        result = workflow.settle(payment_hash)

        assert isinstance(result, Ok)
        assert result.ok
        assert result.status == SettlementStatus.RECONCILED
        payment = result.payment
        assert payment.amount == Decimal("103.00")
        assert payment.transaction_reference in gateway.charges
        assert gateway.charges[payment.transaction_reference]["attended"] is True
        assert payment_hash.payment_id == payment.payment_id

        assert invoice.balance == Decimal("0.00")
        assert invoice.amount == Decimal("103.00")
        assert [str(i["type_id"]) for i in invoice.line_items][-1] == LineItemType.PAID_FEE.value
        assert client.balance == Decimal("0.00")

    def test_state_history(self, workflow, payment_hash):
        workflow.settle(payment_hash)

        assert workflow.state.history == [
            SettlementStatus.INITIATED,
            SettlementStatus.AUTHORIZED,
            SettlementStatus.CAPTURED,
            SettlementStatus.RECONCILED,
        ]

    def test_events(self, workflow, payment_hash, events):
        workflow.settle(payment_hash)

        assert [e.event_type for e in events] == [
            "GatewayFeeConfirmed",
            "InvoiceWasPaid",
            "PaymentWasCreated",
        ]
        assert len({e.metadata.correlation_id for e in events}) == 1

    def test_fee_excluded_from_amount(self, workflow, gateway, payment_hash, invoice, client):
        """The fee stays on the invoice; the client still owes it."""
        workflow.config = SettlementConfig(fees=FeeConfig(include_fee_in_amount=False))

        result = workflow.settle(payment_hash)

        assert result.ok
        assert result.payment.amount == Decimal("100.00")
        assert invoice.balance == Decimal("3.00")
        assert client.balance == Decimal("3.00")

    def test_consumed_hash_rejected(self, workflow, payment_hash, gateway):
        assert workflow.settle(payment_hash).ok

        result = workflow.settle(payment_hash)

        assert isinstance(result, Err)
        assert isinstance(result.error, HashAlreadySettled)
        assert len(gateway.charges) == 1

    def test_tampered_hash_rejected(self, session, workflow, payment_hash, gateway):
        payment_hash.fee_total = Decimal("0.00")

        result = workflow.settle(payment_hash)

        assert not result.ok
        assert isinstance(result.error, ValidationError)
        assert gateway.charges == {}
        assert session.scalar(select(func.count()).select_from(Payment)) == 0

    def test_hash_of_other_client_rejected(self, session, workflow, hashes, company, gateway):
        other = Client(company_id=company.company_id, name="Initech")
        session.add(other)
        session.flush()
        foreign_hash = hashes.create(client=other, invoices=[])

        result = workflow.settle(foreign_hash)

        assert not result.ok
        assert gateway.charges == {}

    def test_settles_two_hashes_with_one_workflow(
        self, session, workflow, gateway, make_invoice, make_hash
    ):
        second = make_hash([(make_invoice("INV-2"), "100.00")])
        third = make_hash([(make_invoice("INV-3"), "100.00")])

        first = workflow.settle(second)
        again = workflow.settle(third)

        assert first.ok
        assert again.ok
        assert workflow.state.status == SettlementStatus.RECONCILED
        assert len(gateway.charges) == 2
        assert session.scalar(select(func.count()).select_from(Payment)) == 2

    def test_settle_after_failure_starts_fresh(self, workflow, gateway, payment_hash):
        gateway.decline = True
        assert not workflow.settle(payment_hash).ok

        gateway.decline = False
        result = workflow.settle(payment_hash)

        assert result.ok
        assert workflow.state.history[0] == SettlementStatus.INITIATED

    def test_overdrawn_hash_not_charged(
        self, session, workflow, gateway, payment_hash, invoice, queue
    ):
        """The invoice was partly paid since the hash was issued."""
        invoice.balance = Decimal("40.00")
        session.flush()

        result = workflow.settle(payment_hash)

        assert isinstance(result, Err)
        assert isinstance(result.error, ValidationError)
        assert result.error.message == "Payment of 100.00 exceeds balance 40.00 of invoice INV-1"
        assert gateway.charges == {}
        assert session.scalar(select(func.count()).select_from(Payment)) == 0
        assert not invoice.has_unpaid_gateway_fee
        assert invoice.amount == Decimal("100.00")
        assert queue.pending() == []

    def test_pending_fee_not_counted_as_balance(self, workflow, payment_hash, invoice):
        workflow.apply_gateway_fee(payment_hash)
        assert invoice.balance == Decimal("103.00")

        result = workflow.settle(payment_hash)

        assert result.ok
        assert invoice.balance == Decimal("0.00")

    def test_capture_without_record(
        self, session, workflow, gateway, payment_hash, invoice, client, queue, monkeypatch
    ):
        """Recording fails after the charge: the fee is stripped and the charge logged."""

        def settled_elsewhere(payment_hash, payment_id):
            raise HashAlreadySettled(payment_hash.hash)

        monkeypatch.setattr(workflow.hashes, "claim", settled_elsewhere)

        result = workflow.settle(payment_hash)

        assert not result.ok
        assert isinstance(result.error, HashAlreadySettled)
        assert len(gateway.charges) == 1
        assert session.scalar(select(func.count()).select_from(Payment)) == 0
        assert workflow.state.status == SettlementStatus.FAILED

        assert not invoice.has_unpaid_gateway_fee
        assert invoice.amount == Decimal("100.00")
        assert invoice.balance == Decimal("100.00")
        assert client.balance == Decimal("100.00")

        assert queue.pending(PAYMENT_FAILURE_MAIL) == []
        logs = queue.pending(SYSTEM_LOG)
        assert len(logs) == 1
        assert logs[0].payload["event_id"] == SystemLog.EVENT_GATEWAY_FAILURE
        assert logs[0].payload["log"]["transaction_reference"] in gateway.charges
        assert logs[0].payload["log"]["amount"] == "103.00"

    def test_requires_payment_method(self, workflow, payment_hash):
        workflow.driver = None

        result = workflow.settle(payment_hash)

        assert not result.ok
        assert result.error.message == "No payment method selected"

    def test_unsupported_method_rejected(self, workflow):
        with pytest.raises(ValidationError):
            workflow.set_payment_method(GatewayType.PAYPAL)


class TestTokenBilling:
    """Stored-token charges run unattended."""

    def test_bills_default_token(self, workflow, gateway, payment_hash):
        token = workflow.store_gateway_token(
            {"token": "tok_saved", "payment_method_id": GatewayType.CREDIT_CARD}
        )

        result = workflow.token_billing(None, payment_hash)

        assert result.ok
        charge = gateway.charges[result.payment.transaction_reference]
        assert charge["attended"] is False
        assert charge["token"] == token.token

    def test_no_token(self, workflow, payment_hash, gateway):
        result = workflow.token_billing(None, payment_hash)

        assert not result.ok
        assert gateway.charges == {}

    def test_token_of_other_client(
        self, session, workflow, payment_hash, company, company_gateway, gateway
    ):
        other = Client(company_id=company.company_id, name="Initech")
        session.add(other)
        session.flush()
        foreign = GatewayTokenStore(session).store_token(
            other, company_gateway, GatewayType.CREDIT_CARD, "tok_other"
        )

        result = workflow.token_billing(foreign, payment_hash)

        assert not result.ok
        assert gateway.charges == {}

    def test_driver_without_token_billing(self, workflow, payment_hash):
        workflow.driver = StubGateway(token_billing=False)

        result = workflow.token_billing(None, payment_hash)

        assert not result.ok

    def test_authorize_then_store(self, workflow):
        auth = workflow.authorize({"last4": "1111"})

        token = workflow.store_gateway_token(
            {
                "token": auth.token,
                "payment_method_id": auth.payment_method_id,
                "payment_meta": auth.meta,
            }
        )

        assert token.is_default is True
        assert token.meta["last4"] == "1111"


class TestRefund:

    @pytest.fixture
    def payment(self, workflow, payment_hash):
        return workflow.settle(payment_hash).payment

    def test_partial_then_full(self, workflow, payment):
        first = workflow.refund(payment, Decimal("50.00"))
        assert first.success
        assert payment.refunded == Decimal("50.00")

        rest = workflow.refund(payment)
        assert rest.amount == Decimal("53.00")
        assert payment.refunded == Decimal("103.00")

    def test_over_refund_rejected(self, workflow, payment):
        with pytest.raises(ValidationError):
            workflow.refund(payment, Decimal("200.00"))

        assert payment.refunded == Decimal("0")

    def test_nothing_left(self, workflow, payment):
        workflow.refund(payment)

        with pytest.raises(ValidationError):
            workflow.refund(payment)

    def test_gateway_without_refunds(self, workflow, payment):
        workflow.driver = StubGateway(refundable=False)

        with pytest.raises(ValidationError):
            workflow.refund(payment)

    def test_rejected_refund_leaves_payment(self, workflow, payment):
        # A fresh driver does not know the charge
        workflow.driver = StubGateway()

        result = workflow.refund(payment, Decimal("10.00"))

        assert not result.success
        assert payment.refunded == Decimal("0")
