"""ORM models."""

from settlement_engine.models.base import Base, Money, TimestampMixin
from settlement_engine.models.billing import (
    ClientGatewayToken,
    Invoice,
    InvoiceStatus,
    LedgerEntry,
    LineItemType,
    Payment,
    PaymentHash,
    Paymentable,
    PaymentStatus,
)
from settlement_engine.models.company import (
    Client,
    ClientContact,
    Company,
    CompanyGateway,
    Invitation,
)
from settlement_engine.models.logs import Activity, QueuedJob, SystemLog

__all__ = [
    "Activity",
    "Base",
    "Client",
    "ClientContact",
    "ClientGatewayToken",
    "Company",
    "CompanyGateway",
    "Invitation",
    "Invoice",
    "InvoiceStatus",
    "LedgerEntry",
    "LineItemType",
    "Money",
    "Payment",
    "PaymentHash",
    "Paymentable",
    "PaymentStatus",
    "QueuedJob",
    "SystemLog",
    "TimestampMixin",
]
