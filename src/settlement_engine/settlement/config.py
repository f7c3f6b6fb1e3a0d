"""Settlement configuration objects.

Explicit configuration passed to the workflow at construction time.

Rules:
    1. No env vars. Configuration is explicit.
    2. No globals. Each workflow instance has its own config.
    3. Immutable after creation (frozen dataclasses).
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class FeeConfig:
    """
    Gateway fee behaviour.

    Attributes:
        fee_line_label: Product key written on speculative fee lines.
        include_fee_in_amount: If True, the charged amount is the invoice
            total plus the hash fee_total. Default True.
    """

    fee_line_label: str = "Gateway Fee"
    include_fee_in_amount: bool = True

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.fee_line_label:
            raise ValueError("fee_line_label is required")


@dataclass(frozen=True)
class NumberingConfig:
    """
    Payment numbering.

    Attributes:
        pattern: Format string applied to the company counter.
        padding: Zero padding of the counter. Default 4.
    """

    pattern: str = "{counter}"
    padding: int = 4

    def __post_init__(self) -> None:
        """Validate configuration."""
        if "{counter}" not in self.pattern:
            raise ValueError("pattern must contain {counter}")
        if self.padding < 0 or self.padding > 12:
            raise ValueError("padding must be between 0 and 12")


@dataclass(frozen=True)
class SettlementConfig:
    """Top-level settlement configuration."""

    fees: FeeConfig = field(default_factory=FeeConfig)
    numbering: NumberingConfig = field(default_factory=NumberingConfig)
    # Require hash signatures to verify before settling
    verify_signatures: bool = True
