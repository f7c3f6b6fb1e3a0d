"""Stub gateway driver for local development and testing.

Replace with a real processor adapter for production.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from settlement_engine.models import SystemLog
from settlement_engine.settlement.errors import GatewayHttpError, GatewayTimeout
from settlement_engine.settlement.providers.base import (
    AuthorizationResult,
    ChargeContext,
    DriverCapabilities,
    PurchaseResult,
    RefundResult,
)


class StubGateway:
    """Stub gateway.

    Behaviour is chosen at construction:
    - decline: purchases return success=False
    - timeout: purchases raise GatewayTimeout
    - http_error: purchases raise GatewayHttpError with this body
    """

    gateway_key = "stub"
    system_log_type = SystemLog.TYPE_STUB

    def __init__(
        self,
        *,
        decline: bool = False,
        timeout: bool = False,
        http_error: dict[str, Any] | None = None,
        refundable: bool = True,
        token_billing: bool = True,
    ):
        self.decline = decline
        self.timeout = timeout
        self.http_error = http_error
        self._refundable = refundable
        self._token_billing = token_billing
        # In-memory tracking for stub
        self.charges: dict[str, dict[str, Any]] = {}
        self.refunds: list[RefundResult] = []

    def capabilities(self) -> DriverCapabilities:
        """Return stub capabilities."""
        return DriverCapabilities(
            refundable=self._refundable,
            token_billing=self._token_billing,
            can_authorise_credit_card=True,
        )

    def authorize(self, payment_method: int, data: dict[str, Any]) -> AuthorizationResult:
        """Issue a stub token for the payment method."""
        return AuthorizationResult(
            token=f"tok_{uuid.uuid4().hex[:16]}",
            payment_method_id=payment_method,
            meta={
                "brand": data.get("brand", "visa"),
                "last4": str(data.get("last4", "4242")),
                "exp_month": data.get("exp_month", 12),
                "exp_year": data.get("exp_year", 2030),
            },
        )

    def purchase(
        self,
        amount: Decimal,
        attended: bool,
        *,
        context: ChargeContext,
    ) -> PurchaseResult:
        """Charge (stub implementation)."""
        if self.timeout:
            raise GatewayTimeout("Stub gateway timed out")

        if self.http_error is not None:
            raise GatewayHttpError(
                "Stub gateway rejected the request",
                status_code=422,
                body=self.http_error,
            )

        if self.decline:
            return PurchaseResult(
                success=False,
                amount=amount,
                message="Card declined",
                code="card_declined",
                raw={"attended": attended, "payment_hash": context.payment_hash},
            )

        reference = f"STUB-{uuid.uuid4().hex[:12].upper()}"
        self.charges[reference] = {
            "amount": amount,
            "refunded": Decimal("0"),
            "token": context.token,
            "attended": attended,
        }
        return PurchaseResult(
            success=True,
            amount=amount,
            transaction_reference=reference,
            payment_type=1,
            message="Stub charge accepted",
            raw={"attended": attended, "payment_hash": context.payment_hash},
        )

    def refund(
        self,
        transaction_reference: str,
        amount: Decimal,
        attended: bool = False,
    ) -> RefundResult:
        """Refund a stub charge."""
        charge = self.charges.get(transaction_reference)
        if charge is None:
            result = RefundResult(
                success=False,
                amount=amount,
                message=f"Charge {transaction_reference} not found",
            )
        else:
            charge["refunded"] += amount
            result = RefundResult(
                success=True,
                amount=amount,
                transaction_reference=f"RSTUB-{uuid.uuid4().hex[:12].upper()}",
                message="Stub refund accepted",
            )
        self.refunds.append(result)
        return result
