"""Validated inputs for settlement operations."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from settlement_engine.settlement.errors import ValidationError
from settlement_engine.settlement.ids import decode_id

M = TypeVar("M", bound=BaseModel)


class HashInvoice(BaseModel):
    """One invoice allocation inside a payment hash (raw id)."""

    model_config = ConfigDict(frozen=True)

    invoice_id: UUID
    amount: Decimal = Field(ge=0, decimal_places=2)


class OpaqueHashInvoice(BaseModel):
    """Invoice allocation as received from the client portal."""

    invoice_id: str = Field(min_length=1)
    amount: Decimal = Field(ge=0, decimal_places=2)


class PaymentHashRequest(BaseModel):
    """Client-side request to start a payment attempt."""

    invoices: list[OpaqueHashInvoice]
    fee_total: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    gateway: dict[str, Any] = Field(default_factory=dict)

    def to_invoices(self, key: str | None = None) -> list[HashInvoice]:
        """Decode opaque invoice ids into raw allocations."""
        return [
            HashInvoice(invoice_id=decode_id(entry.invoice_id, key), amount=entry.amount)
            for entry in self.invoices
        ]


class PaymentData(BaseModel):
    """Gateway outcome used to build a Payment row."""

    amount: Decimal = Field(ge=0, decimal_places=2)
    payment_type: int | None = None
    payment_method: str | None = None  # gateway transaction reference


class GatewayTokenData(BaseModel):
    """Token returned by a gateway for a stored payment method."""

    token: str = Field(min_length=1)
    payment_method_id: int
    payment_meta: dict[str, Any] = Field(default_factory=dict)
    make_default: bool = False


def parse(model: type[M], data: M | dict[str, Any]) -> M:
    """Validate raw data into a model, translating pydantic errors."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {model.__name__}: {exc}") from exc
