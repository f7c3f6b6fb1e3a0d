"""Company, client and gateway configuration models."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_engine.models.base import Base, Money, TimestampMixin

if TYPE_CHECKING:
    from settlement_engine.models.billing import ClientGatewayToken, Invoice


class Company(Base, TimestampMixin):
    """A company (tenant account) issuing invoices."""

    __tablename__ = "company"

    company_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    # Name of the tenant database holding this company's data
    db: Mapped[str] = mapped_column(String, nullable=False, default="default")
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    payment_number_counter: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )

    # Relationships
    clients: Mapped[list[Client]] = relationship(back_populates="company")
    gateways: Mapped[list[CompanyGateway]] = relationship(back_populates="company")


class Client(Base, TimestampMixin):
    """A customer of a company."""

    __tablename__ = "client"

    client_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    company_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    paid_to_date: Mapped[Decimal] = mapped_column(
        Money, nullable=False, default=Decimal("0")
    )

    # Relationships
    company: Mapped[Company] = relationship(back_populates="clients")
    contacts: Mapped[list[ClientContact]] = relationship(back_populates="client")
    invoices: Mapped[list[Invoice]] = relationship(back_populates="client")
    gateway_tokens: Mapped[list[ClientGatewayToken]] = relationship(
        back_populates="client"
    )

    def get_currency(self) -> str:
        """Client currency, falling back to the company's."""
        return self.currency or self.company.currency


class ClientContact(Base, TimestampMixin):
    """A person who can act for a client in the portal."""

    __tablename__ = "client_contact"

    client_contact_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    client_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("client.client_id", ondelete="CASCADE"),
        nullable=False,
    )
    first_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String, nullable=False, default="")
    email: Mapped[str | None] = mapped_column(String, nullable=True)

    # Relationships
    client: Mapped[Client] = relationship(back_populates="contacts")


class Invitation(Base, TimestampMixin):
    """An invoice invitation sent to a contact."""

    __tablename__ = "invitation"

    invitation_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    invoice_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("invoice.invoice_id", ondelete="CASCADE"),
        nullable=False,
    )
    client_contact_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("client_contact.client_contact_id", ondelete="CASCADE"),
        nullable=False,
    )
    key: Mapped[str] = mapped_column(String, nullable=False, unique=True)

    # Relationships
    contact: Mapped[ClientContact] = relationship()


class CompanyGateway(Base, TimestampMixin):
    """A payment gateway configured for a company."""

    __tablename__ = "company_gateway"

    company_gateway_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    company_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    gateway_key: Mapped[str] = mapped_column(String, nullable=False)
    label: Mapped[str | None] = mapped_column(String, nullable=True)
    config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'disabled')",
            name="company_gateway_status_check",
        ),
    )

    # Relationships
    company: Mapped[Company] = relationship(back_populates="gateways")
