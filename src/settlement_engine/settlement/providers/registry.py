"""Driver registry - which gateway handles which payment methods.

Built once at startup and passed into the settlement workflow.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable

from settlement_engine.models import CompanyGateway
from settlement_engine.settlement.errors import ValidationError
from settlement_engine.settlement.providers.base import GatewayDriver

DriverFactory = Callable[[CompanyGateway], GatewayDriver]


@dataclass(frozen=True)
class DriverRegistration:
    """Registration of a driver for a gateway key."""

    gateway_key: str
    factory: DriverFactory
    method_types: frozenset[int]


class DriverRegistry:
    """Capability-registration table for gateway drivers.

    Usage:
        registry = DriverRegistry()
        registry.register("stub", lambda gw: StubGateway(), [GatewayType.CREDIT_CARD])
        driver = registry.resolve(company_gateway, GatewayType.CREDIT_CARD)
    """

    def __init__(self) -> None:
        self._registrations: dict[str, DriverRegistration] = {}

    def register(
        self,
        gateway_key: str,
        factory: DriverFactory,
        method_types: Iterable[int],
    ) -> None:
        """Register a driver factory for the methods it supports."""
        methods = frozenset(int(m) for m in method_types)
        if not methods:
            raise ValueError("A driver must support at least one method type")
        self._registrations[gateway_key] = DriverRegistration(
            gateway_key=gateway_key,
            factory=factory,
            method_types=methods,
        )

    def supports(self, gateway_key: str, method_type: int) -> bool:
        """Check if a gateway handles a payment method."""
        reg = self._registrations.get(gateway_key)
        return reg is not None and int(method_type) in reg.method_types

    def methods_for(self, gateway_key: str) -> frozenset[int]:
        """Payment methods handled by a gateway."""
        reg = self._registrations.get(gateway_key)
        return reg.method_types if reg else frozenset()

    def resolve(self, company_gateway: CompanyGateway, method_type: int) -> GatewayDriver:
        """Build the driver for a company gateway and payment method.

        Raises:
            ValidationError: gateway unknown or method not supported
        """
        reg = self._registrations.get(company_gateway.gateway_key)
        if reg is None:
            raise ValidationError(
                f"No driver registered for gateway '{company_gateway.gateway_key}'"
            )
        if int(method_type) not in reg.method_types:
            raise ValidationError(
                f"Gateway '{company_gateway.gateway_key}' does not support "
                f"payment method {method_type}"
            )
        return reg.factory(company_gateway)
