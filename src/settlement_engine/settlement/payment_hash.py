"""Payment hash creation, signing and consumption.

A payment hash binds one client-facing charge attempt to the server-side
invoice allocations and fee total. The signature covers everything that
decides how much money moves (client, allocations, fee), so a tampered
row is rejected before settlement. The gateway payload is free-form and
is not signed.

The hash is consumed by exactly one payment. claim() is the
serialization point: a conditional UPDATE that only succeeds while
payment_id is still NULL.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from settlement_engine.config import get_settings
from settlement_engine.models import Client, Invoice, PaymentHash
from settlement_engine.settlement.errors import HashAlreadySettled, ValidationError
from settlement_engine.settlement.schemas import HashInvoice, PaymentHashRequest, parse

logger = logging.getLogger(__name__)


def _money(value: Decimal | str | int) -> str:
    return f"{Decimal(str(value)):.2f}"


class PaymentHashService:
    """Creates, verifies and consumes payment hashes."""

    def __init__(self, db: Session, key: str | None = None):
        self.db = db
        self._key = key or get_settings().app_key

    def create(
        self,
        *,
        client: Client,
        invoices: Iterable[HashInvoice | dict[str, Any]],
        fee_total: Decimal = Decimal("0"),
        gateway_data: dict[str, Any] | None = None,
    ) -> PaymentHash:
        """Create a signed hash for a new payment attempt.

        Args:
            client: Paying client; every invoice must belong to it
            invoices: Raw invoice ids with the amount allocated to each
            fee_total: Gateway fee charged on top of the invoice amounts
            gateway_data: Free-form gateway payload

        Returns:
            The persisted (flushed) PaymentHash
        """
        entries = [parse(HashInvoice, entry) for entry in invoices]
        if fee_total < 0:
            raise ValidationError("fee_total must not be negative")

        ids = [entry.invoice_id for entry in entries]
        if len(set(ids)) != len(ids):
            raise ValidationError("Invoice listed twice in payment hash")

        if ids:
            found = set(
                self.db.scalars(
                    select(Invoice.invoice_id).where(
                        Invoice.invoice_id.in_(ids),
                        Invoice.client_id == client.client_id,
                    )
                )
            )
            missing = [str(i) for i in ids if i not in found]
            if missing:
                raise ValidationError(
                    f"Invoices not found for client: {', '.join(missing)}"
                )

        data = {
            "invoices": [
                {"invoice_id": str(entry.invoice_id), "amount": _money(entry.amount)}
                for entry in entries
            ],
            "gateway": gateway_data or {},
        }

        payment_hash = PaymentHash(
            hash=secrets.token_urlsafe(24),
            client_id=client.client_id,
            data=data,
            fee_total=Decimal(_money(fee_total)),
            fee_invoice_id=ids[0] if ids and fee_total > 0 else None,
        )
        payment_hash.signature = self.sign(payment_hash)

        self.db.add(payment_hash)
        self.db.flush()

        logger.info(
            "Created payment hash %s for client %s (%d invoices, fee %s)",
            payment_hash.hash,
            client.client_id,
            len(entries),
            _money(fee_total),
        )
        return payment_hash

    def create_from_request(
        self,
        client: Client,
        request: PaymentHashRequest | dict[str, Any],
    ) -> PaymentHash:
        """Create a hash from a portal request carrying opaque invoice ids."""
        request = parse(PaymentHashRequest, request)
        return self.create(
            client=client,
            invoices=request.to_invoices(self._key),
            fee_total=request.fee_total,
            gateway_data=request.gateway,
        )

    def find(self, hash_value: str) -> PaymentHash | None:
        """Look up a hash by its public value."""
        return self.db.scalars(
            select(PaymentHash).where(PaymentHash.hash == hash_value)
        ).first()

    def get(self, hash_value: str) -> PaymentHash:
        """Look up a hash, raising ValidationError if it does not exist."""
        payment_hash = self.find(hash_value)
        if payment_hash is None:
            raise ValidationError(f"Unknown payment hash '{hash_value}'")
        return payment_hash

    def sign(self, payment_hash: PaymentHash) -> str:
        """Compute the signature of a hash's money-relevant fields."""
        canonical = json.dumps(
            {
                "hash": payment_hash.hash,
                "client_id": str(payment_hash.client_id),
                "invoices": [
                    [str(entry["invoice_id"]), _money(entry["amount"])]
                    for entry in payment_hash.invoices()
                ],
                "fee_total": _money(payment_hash.fee_total or 0),
            },
            sort_keys=True,
            separators=(",", ":"),
        )
        return hmac.new(
            self._key.encode(), canonical.encode(), hashlib.sha256
        ).hexdigest()

    def verify(self, payment_hash: PaymentHash) -> bool:
        """Check that a hash has not been altered since creation."""
        return hmac.compare_digest(payment_hash.signature, self.sign(payment_hash))

    def set_gateway_data(
        self, payment_hash: PaymentHash, gateway_data: dict[str, Any]
    ) -> None:
        """Merge gateway payload into the hash (unsigned)."""
        data = dict(payment_hash.data or {})
        merged = dict(data.get("gateway", {}))
        merged.update(gateway_data)
        data["gateway"] = merged
        payment_hash.data = data

    def claim(self, payment_hash: PaymentHash, payment_id: UUID) -> None:
        """Stamp the hash with the payment that settles it.

        Raises:
            HashAlreadySettled: another payment already consumed the hash
        """
        result = self.db.execute(
            update(PaymentHash)
            .where(
                PaymentHash.payment_hash_id == payment_hash.payment_hash_id,
                PaymentHash.payment_id.is_(None),
            )
            .values(payment_id=payment_id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise HashAlreadySettled(payment_hash.hash)

        set_committed_value(payment_hash, "payment_id", payment_id)
