"""Invoice, payment and gateway token models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_engine.models.base import Base, Money, TimestampMixin

if TYPE_CHECKING:
    from settlement_engine.models.company import Client, CompanyGateway


class LineItemType(str, Enum):
    """Invoice line item type markers."""

    PRODUCT = "1"
    TASK = "2"
    UNPAID_FEE = "3"
    PAID_FEE = "4"


class InvoiceStatus(str, Enum):
    """Invoice status values."""

    DRAFT = "draft"
    SENT = "sent"
    PARTIAL = "partial"
    PAID = "paid"


class Invoice(Base, TimestampMixin):
    """An invoice with its ledger balance and line items."""

    __tablename__ = "invoice"

    invoice_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    company_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("client.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    number: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=InvoiceStatus.SENT.value
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    paid_to_date: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )
    line_items: Mapped[list[dict[str, Any]]] = mapped_column(
        JSON, nullable=False, default=list
    )
    pdf_touched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        UniqueConstraint("company_id", "number", name="invoice_company_number_unique"),
        CheckConstraint(
            "status IN ('draft', 'sent', 'partial', 'paid')",
            name="invoice_status_check",
        ),
    )

    # Relationships
    client: Mapped[Client] = relationship(back_populates="invoices")

    def fee_items(self, fee_type: LineItemType) -> list[dict[str, Any]]:
        """Line items carrying the given gateway fee marker."""
        return [
            item
            for item in (self.line_items or [])
            if str(item.get("type_id")) == fee_type.value
        ]

    @property
    def has_unpaid_gateway_fee(self) -> bool:
        """Check if a speculative gateway fee is still on the invoice."""
        return bool(self.fee_items(LineItemType.UNPAID_FEE))


class PaymentStatus(str, Enum):
    """Payment status values."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Payment(Base, TimestampMixin):
    """One settlement against one or more invoices."""

    __tablename__ = "payment"

    payment_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    company_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("client.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    company_gateway_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("company_gateway.company_gateway_id"),
        nullable=True,
    )
    client_contact_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("client_contact.client_contact_id"),
        nullable=True,
    )
    number: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(
        String, nullable=False, default=PaymentStatus.COMPLETED.value
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    applied: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    refunded: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    type_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    transaction_reference: Mapped[str | None] = mapped_column(String, nullable=True)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name="payment_status_check",
        ),
        CheckConstraint("amount >= 0", name="payment_amount_non_negative"),
    )

    # Relationships
    client: Mapped[Client] = relationship()
    company_gateway: Mapped[CompanyGateway | None] = relationship()
    paymentables: Mapped[list[Paymentable]] = relationship(
        back_populates="payment",
        cascade="all, delete-orphan",
    )

    @property
    def invoice_ids(self) -> set[UUID]:
        """Ids of invoices currently attached to this payment."""
        return {p.invoice_id for p in self.paymentables}

    @property
    def refundable(self) -> Decimal:
        """Amount still available for refund."""
        return self.amount - self.refunded


class Paymentable(Base, TimestampMixin):
    """Join row attaching a payment to an invoice with the allocated amount."""

    __tablename__ = "paymentable"

    paymentable_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    payment_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payment.payment_id", ondelete="CASCADE"),
        nullable=False,
    )
    invoice_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoice.invoice_id", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    __table_args__ = (
        UniqueConstraint("payment_id", "invoice_id", name="paymentable_unique"),
    )

    # Relationships
    payment: Mapped[Payment] = relationship(back_populates="paymentables")
    invoice: Mapped[Invoice] = relationship()


class PaymentHash(Base, TimestampMixin):
    """Signed correlation record between a charge attempt and invoice state.

    data holds {"invoices": [{"invoice_id": str, "amount": str}, ...],
    "gateway": {...}}. payment_id is set exactly once, by the settlement
    that consumes the hash.
    """

    __tablename__ = "payment_hash"

    payment_hash_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    hash: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    signature: Mapped[str] = mapped_column(String, nullable=False)
    client_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("client.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    fee_total: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    fee_invoice_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoice.invoice_id"),
        nullable=True,
    )
    payment_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payment.payment_id"),
        nullable=True,
    )

    def invoices(self) -> list[dict[str, Any]]:
        """Invoice entries referenced by this hash."""
        return list((self.data or {}).get("invoices", []))

    def invoice_ids(self) -> list[UUID]:
        """Raw invoice ids referenced by this hash."""
        return [UUID(str(entry["invoice_id"])) for entry in self.invoices()]

    def invoice_amount(self, invoice_id: UUID) -> Decimal:
        """Amount allocated to one invoice by this hash."""
        for entry in self.invoices():
            if UUID(str(entry["invoice_id"])) == invoice_id:
                return Decimal(str(entry["amount"]))
        return Decimal("0")

    @property
    def invoice_total(self) -> Decimal:
        """Sum of per-invoice amounts."""
        return sum(
            (Decimal(str(entry["amount"])) for entry in self.invoices()),
            Decimal("0"),
        )

    @property
    def gateway_data(self) -> dict[str, Any]:
        """Raw gateway payload attached to the attempt."""
        return dict((self.data or {}).get("gateway", {}))

    @property
    def is_consumed(self) -> bool:
        """Check if a payment already settled this hash."""
        return self.payment_id is not None


class ClientGatewayToken(Base, TimestampMixin):
    """Reusable payment-method token issued by a gateway for a client."""

    __tablename__ = "client_gateway_token"

    client_gateway_token_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    company_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("client.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    company_gateway_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("company_gateway.company_gateway_id", ondelete="CASCADE"),
        nullable=False,
    )
    gateway_type_id: Mapped[int] = mapped_column(Integer, nullable=False)
    token: Mapped[str] = mapped_column(String, nullable=False)
    meta: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        # At most one default token per client
        Index(
            "client_gateway_token_one_default",
            "client_id",
            unique=True,
            postgresql_where=text("is_default"),
            sqlite_where=text("is_default = 1"),
        ),
    )

    # Relationships
    client: Mapped[Client] = relationship(back_populates="gateway_tokens")


class LedgerEntry(Base, TimestampMixin):
    """Append-only client balance adjustment."""

    __tablename__ = "ledger_entry"

    ledger_entry_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    company_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    client_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("client.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    invoice_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoice.invoice_id"),
        nullable=True,
    )
    payment_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payment.payment_id"),
        nullable=True,
    )
    adjustment: Mapped[Decimal] = mapped_column(Money, nullable=False)
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
