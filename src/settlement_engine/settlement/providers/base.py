"""Base protocol and types for payment gateway drivers.

All gateway adapters must implement the GatewayDriver protocol.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import IntEnum
from typing import Any, Protocol
from uuid import UUID


class GatewayType(IntEnum):
    """Payment method types a driver can handle."""

    CREDIT_CARD = 1
    BANK_TRANSFER = 2
    PAYPAL = 3
    CRYPTO = 4
    SOFORT = 7
    APPLE_PAY = 8


@dataclass(frozen=True)
class DriverCapabilities:
    """Capabilities supported by a gateway driver."""

    refundable: bool = False
    token_billing: bool = False
    can_authorise_credit_card: bool = False


@dataclass(frozen=True)
class ChargeContext:
    """Who and what a purchase is for."""

    client_id: UUID
    payment_hash: str
    currency: str
    token: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthorizationResult:
    """Reusable payment-method token issued by a gateway."""

    token: str
    payment_method_id: int
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PurchaseResult:
    """Result of a charge attempt."""

    success: bool
    amount: Decimal
    transaction_reference: str | None = None
    payment_type: int | None = None
    message: str = ""
    code: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RefundResult:
    """Result of a refund attempt."""

    success: bool
    amount: Decimal
    transaction_reference: str | None = None
    message: str = ""


class GatewayDriver(Protocol):
    """Protocol for payment gateway drivers.

    Each processor has its own driver implementing this protocol. The
    settlement workflow uses drivers without knowing processor details.
    Drivers signal failure by returning success=False or by raising
    GatewayError (GatewayTimeout, GatewayHttpError).
    """

    gateway_key: str
    system_log_type: int

    def capabilities(self) -> DriverCapabilities:
        """Return capabilities supported by this driver."""
        ...

    def authorize(self, payment_method: int, data: dict[str, Any]) -> AuthorizationResult:
        """Authorize a payment method and return a reusable token.

        Args:
            payment_method: GatewayType of the method being stored
            data: Gateway-specific payload collected from the client

        Returns:
            AuthorizationResult with the token to store.
        """
        ...

    def purchase(
        self,
        amount: Decimal,
        attended: bool,
        *,
        context: ChargeContext,
    ) -> PurchaseResult:
        """Charge an amount.

        Args:
            amount: Amount to collect
            attended: True when a client is waiting for a response; False
                for stored-token or recurring billing, which must never
                block on user interaction
            context: Client, hash and optional stored token

        Returns:
            PurchaseResult with the gateway transaction reference.
        """
        ...

    def refund(
        self,
        transaction_reference: str,
        amount: Decimal,
        attended: bool = False,
    ) -> RefundResult:
        """Refund part or all of a previous charge."""
        ...
