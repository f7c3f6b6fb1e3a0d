"""Tests for payment hash creation, signing and claiming."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_engine.models import Client, Payment
from settlement_engine.settlement.errors import HashAlreadySettled, ValidationError
from settlement_engine.settlement.ids import encode_id
from settlement_engine.settlement.payment_hash import PaymentHashService

TEST_KEY = "test-app-key"


def _payment(session, client) -> Payment:
    payment = Payment(
        company_id=client.company_id,
        client_id=client.client_id,
        amount=Decimal("100.00"),
        currency="USD",
        date=datetime.now(timezone.utc),
    )
    session.add(payment)
    session.flush()
    return payment


class TestCreate:
    """Hash creation."""

    def test_create_records_allocations(self, payment_hash, invoice):
        assert payment_hash.hash
        assert payment_hash.invoice_ids() == [invoice.invoice_id]
        assert payment_hash.invoice_amount(invoice.invoice_id) == Decimal("100.00")
        assert payment_hash.invoice_total == Decimal("100.00")
        assert payment_hash.fee_total == Decimal("3.00")
        assert payment_hash.fee_invoice_id == invoice.invoice_id
        assert payment_hash.gateway_data == {"source": "portal"}
        assert payment_hash.is_consumed is False

    def test_hash_values_are_unique(self, make_hash, invoice):
        first = make_hash([(invoice, "50.00")])
        second = make_hash([(invoice, "50.00")])

        assert first.hash != second.hash

    def test_no_fee_invoice_without_fee(self, make_hash, invoice):
        payment_hash = make_hash([(invoice, "100.00")])

        assert payment_hash.fee_invoice_id is None

    def test_duplicate_invoice_rejected(self, make_hash, invoice):
        with pytest.raises(ValidationError):
            make_hash([(invoice, "50.00"), (invoice, "50.00")])

    def test_negative_fee_rejected(self, hashes, client, invoice):
        with pytest.raises(ValidationError):
            hashes.create(
                client=client,
                invoices=[{"invoice_id": invoice.invoice_id, "amount": "10.00"}],
                fee_total=Decimal("-1.00"),
            )

    def test_negative_amount_rejected(self, hashes, client, invoice):
        with pytest.raises(ValidationError):
            hashes.create(
                client=client,
                invoices=[{"invoice_id": invoice.invoice_id, "amount": "-5.00"}],
            )

    def test_invoice_of_other_client_rejected(self, session, hashes, company, invoice):
        """A hash only covers the paying client's invoices."""
        stranger = Client(company_id=company.company_id, name="Initech")
        session.add(stranger)
        session.flush()

        with pytest.raises(ValidationError):
            hashes.create(
                client=stranger,
                invoices=[{"invoice_id": invoice.invoice_id, "amount": "100.00"}],
            )

    def test_create_from_request_decodes_opaque_ids(self, hashes, client, invoice):
        request = {
            "invoices": [
                {"invoice_id": encode_id(invoice.invoice_id, TEST_KEY), "amount": "40.00"}
            ],
            "fee_total": "1.50",
        }

        payment_hash = hashes.create_from_request(client, request)

        assert payment_hash.invoice_ids() == [invoice.invoice_id]
        assert payment_hash.fee_total == Decimal("1.50")

    def test_create_from_request_rejects_raw_ids(self, hashes, client, invoice):
        request = {"invoices": [{"invoice_id": str(invoice.invoice_id), "amount": "40.00"}]}

        with pytest.raises(ValidationError):
            hashes.create_from_request(client, request)


class TestLookup:

    def test_get_known_hash(self, hashes, payment_hash):
        assert hashes.get(payment_hash.hash) is payment_hash

    def test_get_unknown_hash(self, hashes):
        assert hashes.find("missing") is None
        with pytest.raises(ValidationError):
            hashes.get("missing")


class TestSignature:
    """The signature covers everything that moves money."""

    def test_fresh_hash_verifies(self, hashes, payment_hash):
        assert hashes.verify(payment_hash) is True

    def test_changed_amount_fails_verification(self, hashes, payment_hash, invoice):
        data = dict(payment_hash.data)
        data["invoices"] = [{"invoice_id": str(invoice.invoice_id), "amount": "1.00"}]
        payment_hash.data = data

        assert hashes.verify(payment_hash) is False

    def test_changed_fee_fails_verification(self, hashes, payment_hash):
        payment_hash.fee_total = Decimal("0.00")

        assert hashes.verify(payment_hash) is False

    def test_other_key_fails_verification(self, session, payment_hash):
        assert PaymentHashService(session, key="other").verify(payment_hash) is False

    def test_gateway_data_is_not_signed(self, hashes, payment_hash):
        hashes.set_gateway_data(payment_hash, {"intent": "pi_123"})

        assert payment_hash.gateway_data == {"source": "portal", "intent": "pi_123"}
        assert hashes.verify(payment_hash) is True


class TestClaim:
    """claim() stamps the hash with exactly one payment."""

    def test_claim_sets_payment(self, session, hashes, payment_hash, client):
        payment = _payment(session, client)

        hashes.claim(payment_hash, payment.payment_id)

        assert payment_hash.payment_id == payment.payment_id
        assert payment_hash.is_consumed is True

    def test_second_claim_rejected(self, session, hashes, payment_hash, client):
        first = _payment(session, client)
        second = _payment(session, client)
        hashes.claim(payment_hash, first.payment_id)

        with pytest.raises(HashAlreadySettled) as exc_info:
            hashes.claim(payment_hash, second.payment_id)

        assert exc_info.value.payment_hash == payment_hash.hash
        assert payment_hash.payment_id == first.payment_id

    def test_claim_of_unknown_row_rejected(self, session, hashes, payment_hash):
        session.delete(payment_hash)
        session.flush()

        with pytest.raises(HashAlreadySettled):
            hashes.claim(payment_hash, uuid4())
