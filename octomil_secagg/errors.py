"""Exception types raised by the secure aggregation core."""

from __future__ import annotations

from typing import Iterable


class SecAggError(RuntimeError):
    """Base class for every secure aggregation failure."""


class WrongPhaseError(SecAggError):
    """An operation was invoked outside the phase it requires.

    Recoverable: inspect ``current_phase`` and call the operations in order.
    """

    def __init__(self, operation: str, expected: Iterable[object], actual: object) -> None:
        self.operation = operation
        self.expected = tuple(expected)
        self.actual = actual
        wanted = " or ".join(_phase_name(p) for p in self.expected)
        super().__init__(
            f"SecAgg: {operation} requires phase {wanted}, session is in {_phase_name(actual)}"
        )


class DecodingError(SecAggError, ValueError):
    """Malformed bytes or JSON passed to a deserialization routine."""


class DomainError(SecAggError, ArithmeticError):
    """Arithmetic outside the field domain (e.g. inverting zero)."""


class InsufficientSharesError(SecAggError):
    """Fewer shares than the threshold were available for recovery."""


class SecAggClientError(SecAggError):
    """Transport-level failure talking to the aggregation server."""


def _phase_name(phase: object) -> str:
    return str(getattr(phase, "value", phase))
