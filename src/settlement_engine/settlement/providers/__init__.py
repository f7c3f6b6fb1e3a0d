"""Gateway driver adapters."""

from settlement_engine.settlement.providers.base import (
    AuthorizationResult,
    ChargeContext,
    DriverCapabilities,
    GatewayDriver,
    GatewayType,
    PurchaseResult,
    RefundResult,
)
from settlement_engine.settlement.providers.registry import (
    DriverFactory,
    DriverRegistration,
    DriverRegistry,
)
from settlement_engine.settlement.providers.stub import StubGateway

__all__ = [
    "AuthorizationResult",
    "ChargeContext",
    "DriverCapabilities",
    "DriverFactory",
    "DriverRegistration",
    "DriverRegistry",
    "GatewayDriver",
    "GatewayType",
    "PurchaseResult",
    "RefundResult",
    "StubGateway",
]
