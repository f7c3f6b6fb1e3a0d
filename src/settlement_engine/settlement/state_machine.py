"""Settlement attempt state machine with transition validation."""

from __future__ import annotations

from enum import Enum


class SettlementStatus(str, Enum):
    """Settlement attempt status values."""

    INITIATED = "initiated"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    RECONCILED = "reconciled"
    FAILED = "failed"


def _value(status: str) -> str:
    return status.value if isinstance(status, Enum) else str(status)


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class SettlementStateMachine:
    """State machine for one settlement attempt.

    Allowed transitions:
    - initiated → authorized
    - authorized → captured
    - captured → reconciled
    - initiated / authorized / captured → failed
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        SettlementStatus.INITIATED: [SettlementStatus.AUTHORIZED, SettlementStatus.FAILED],
        SettlementStatus.AUTHORIZED: [SettlementStatus.CAPTURED, SettlementStatus.FAILED],
        SettlementStatus.CAPTURED: [SettlementStatus.RECONCILED, SettlementStatus.FAILED],
        SettlementStatus.RECONCILED: [],  # Terminal state
        SettlementStatus.FAILED: [],  # Terminal state
    }

    TERMINAL = {SettlementStatus.RECONCILED, SettlementStatus.FAILED}

    def __init__(self, status: str = SettlementStatus.INITIATED):
        self.status = SettlementStatus(status)
        self.history: list[SettlementStatus] = [self.status]

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(_value(from_status), _value(to_status))

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        """Check if no further transitions are possible."""
        return status in cls.TERMINAL

    def transition(self, to_status: str) -> SettlementStatus:
        """Move this attempt to a new status."""
        target = SettlementStatus(to_status)
        self.validate_transition(self.status.value, target.value)
        self.status = target
        self.history.append(target)
        return target

    def fail(self) -> SettlementStatus:
        """Mark the attempt failed unless it already ended."""
        if self.is_terminal(self.status):
            return self.status
        return self.transition(SettlementStatus.FAILED)
