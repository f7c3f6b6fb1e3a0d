"""Settlement error taxonomy.

ValidationError   malformed hash or invoice set, surfaced to the caller
GatewayError      decline or timeout from the processor, triggers unwind
PersistenceError  storage write failure, nothing is partially committed
PaymentFailed     terminal, user-visible, carries message and code
"""

from __future__ import annotations

from typing import Any

from settlement_engine.database import TenantNotFound


class SettlementError(Exception):
    """Base class for settlement failures."""

    code: str = "SETTLEMENT_ERROR"

    def __init__(self, message: str, code: str | None = None):
        self.message = message
        if code is not None:
            self.code = code
        super().__init__(message)


class ValidationError(SettlementError):
    """Malformed payment hash, invoice set or payment data."""

    code = "VALIDATION_ERROR"


class HashAlreadySettled(ValidationError):
    """The payment hash was already consumed by another payment."""

    code = "HASH_ALREADY_SETTLED"

    def __init__(self, payment_hash: str):
        self.payment_hash = payment_hash
        super().__init__(f"Payment hash '{payment_hash}' has already been settled")


class GatewayError(SettlementError):
    """The gateway declined, rejected or failed to answer a request."""

    code = "GATEWAY_ERROR"


class GatewayTimeout(GatewayError):
    """The gateway did not answer in time; handled like a decline."""

    code = "GATEWAY_TIMEOUT"


class GatewayHttpError(GatewayError):
    """Gateway HTTP failure carrying a structured response body."""

    code = "GATEWAY_HTTP_ERROR"

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        body: str | dict[str, Any] | None = None,
        code: str | None = None,
    ):
        self.status_code = status_code
        self.body = body
        super().__init__(message, code)


class PersistenceError(SettlementError):
    """A storage write failed."""

    code = "PERSISTENCE_ERROR"


class PaymentFailed(SettlementError):
    """Terminal payment failure reported back to the client."""

    code = "PAYMENT_FAILED"


__all__ = [
    "GatewayError",
    "GatewayHttpError",
    "GatewayTimeout",
    "HashAlreadySettled",
    "PaymentFailed",
    "PersistenceError",
    "SettlementError",
    "TenantNotFound",
    "ValidationError",
]
