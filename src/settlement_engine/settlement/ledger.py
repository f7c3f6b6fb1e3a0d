"""Invoice ledger - balance bookkeeping for invoices and clients.

Every client balance change is mirrored by an append-only ledger_entry
row carrying the resulting balance and a note.

Gateway fees live on the invoice as line items:
- type "3": speculative fee, added before the charge attempt
- type "4": fee confirmed as paid

The "3" -> "4" toggle is the fee-paid flag. toggle_fees_paid() only acts
on "3" items, so calling it again after a successful toggle is a no-op.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from settlement_engine.models import (
    Client,
    Invoice,
    InvoiceStatus,
    LedgerEntry,
    LineItemType,
    Payment,
)
from settlement_engine.settlement.config import FeeConfig
from settlement_engine.settlement.errors import ValidationError

logger = logging.getLogger(__name__)


def _line_total(item: dict[str, Any]) -> Decimal:
    cost = Decimal(str(item.get("cost", "0")))
    quantity = Decimal(str(item.get("quantity", "1")))
    return cost * quantity


class InvoiceLedger:
    """Invoice and client balance mutations.

    Notes:
    - Only the settlement workflow writes fee adjustments.
    - Methods flush nothing; callers own the transaction.
    """

    def __init__(self, db: Session, fees: FeeConfig | None = None):
        self.db = db
        self.fees = fees or FeeConfig()

    def record_adjustment(
        self,
        client: Client,
        adjustment: Decimal,
        *,
        invoice: Invoice | None = None,
        payment: Payment | None = None,
        notes: str | None = None,
    ) -> LedgerEntry:
        """Append a ledger row for a client balance change."""
        entry = LedgerEntry(
            company_id=client.company_id,
            client_id=client.client_id,
            invoice_id=invoice.invoice_id if invoice else None,
            payment_id=payment.payment_id if payment else None,
            adjustment=adjustment,
            balance=client.balance,
            notes=notes,
        )
        self.db.add(entry)
        return entry

    def update_balance(
        self,
        client: Client,
        delta: Decimal,
        *,
        invoice: Invoice | None = None,
        payment: Payment | None = None,
        notes: str | None = None,
    ) -> Decimal:
        """Adjust a client's outstanding balance and record it."""
        client.balance = (client.balance or Decimal("0")) + delta
        self.record_adjustment(
            client, delta, invoice=invoice, payment=payment, notes=notes
        )
        return client.balance

    def apply_payment(self, invoice: Invoice, payment: Payment, amount: Decimal) -> None:
        """Apply part of a payment to an invoice.

        Reduces invoice and client balances, increases paid-to-date on
        both, and counts the amount as applied on the payment.
        """
        if amount < 0:
            raise ValidationError("Applied amount must not be negative")
        if amount == 0:
            return

        if amount > invoice.balance:
            raise ValidationError(
                f"Payment of {amount} exceeds balance {invoice.balance} "
                f"of invoice {invoice.number}"
            )

        invoice.balance = invoice.balance - amount
        invoice.paid_to_date = (invoice.paid_to_date or Decimal("0")) + amount
        invoice.status = (
            InvoiceStatus.PAID.value
            if invoice.balance <= 0
            else InvoiceStatus.PARTIAL.value
        )

        client = invoice.client
        client.paid_to_date = (client.paid_to_date or Decimal("0")) + amount
        payment.applied = (payment.applied or Decimal("0")) + amount

        self.update_balance(
            client,
            -amount,
            invoice=invoice,
            payment=payment,
            notes=f"Payment applied to invoice {invoice.number}",
        )

    def add_gateway_fee(self, invoice: Invoice, fee: Decimal) -> bool:
        """Add a speculative gateway fee line before a charge attempt.

        Returns True if a line was added, False if one is already pending.
        The client balance is untouched until the fee is confirmed.
        """
        if fee <= 0 or invoice.has_unpaid_gateway_fee:
            return False

        items = [dict(item) for item in (invoice.line_items or [])]
        items.append(
            {
                "type_id": LineItemType.UNPAID_FEE.value,
                "product_key": self.fees.fee_line_label,
                "notes": self.fees.fee_line_label,
                "cost": f"{fee:.2f}",
                "quantity": 1,
            }
        )
        invoice.line_items = items
        invoice.amount = invoice.amount + fee
        invoice.balance = invoice.balance + fee
        return True

    def unpaid_fee_total(self, invoice: Invoice) -> Decimal:
        """Sum of speculative fee lines still on the invoice."""
        return sum(
            (
                _line_total(item)
                for item in invoice.line_items or []
                if str(item.get("type_id")) == LineItemType.UNPAID_FEE.value
            ),
            Decimal("0"),
        )

    def toggle_fees_paid(self, invoice: Invoice) -> Decimal:
        """Mark speculative fee lines as paid.

        Returns the fee amount toggled; zero when nothing was pending, which
        makes repeated calls safe.
        """
        toggled = Decimal("0")
        items = []
        for item in invoice.line_items or []:
            item = dict(item)
            if str(item.get("type_id")) == LineItemType.UNPAID_FEE.value:
                item["type_id"] = LineItemType.PAID_FEE.value
                toggled += _line_total(item)
            items.append(item)

        if toggled:
            invoice.line_items = items
        return toggled

    def remove_unpaid_gateway_fees(self, invoice: Invoice) -> Decimal:
        """Strip speculative fee lines and restore the invoice totals."""
        removed = Decimal("0")
        items = []
        for item in invoice.line_items or []:
            if str(item.get("type_id")) == LineItemType.UNPAID_FEE.value:
                removed += _line_total(item)
                continue
            items.append(dict(item))

        if removed:
            invoice.line_items = items
            invoice.amount = invoice.amount - removed
            invoice.balance = invoice.balance - removed
            logger.info(
                "Removed unpaid gateway fee %s from invoice %s",
                removed,
                invoice.number,
            )
        return removed
