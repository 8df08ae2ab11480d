"""
Gate error taxonomy.

Component outputs report failures as GateError values. Inside a unit of
work a failure is raised as GateFailure so the transaction rolls back, and
is converted back to a GateError at the component boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ErrorCode = Literal[
    "NOT_FOUND",
    "ALREADY_USED",
    "CONFLICT",
    "TOO_FAST",
    "INSUFFICIENT_BALANCE",
    "UNAUTHORIZED",
    "SELF_REFERRAL",
    "INVALID_CODE",
    "ALREADY_REFERRED",
    "DEVICE_LIMIT",
    "VALIDATION_ERROR",
]

# Codes a caller may retry with the same input (after waiting or topping up).
RETRYABLE_CODES: frozenset[str] = frozenset({"TOO_FAST", "INSUFFICIENT_BALANCE"})


@dataclass(frozen=True)
class GateError:
    """A rejected request outcome."""

    code: ErrorCode
    message: str
    retry_after_seconds: float | None = None

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES


class GateFailure(Exception):
    """Raised inside a transaction to abort it with a GateError."""

    def __init__(self, error: GateError) -> None:
        self.error = error
        super().__init__(f"{error.code}: {error.message}")


def not_found(message: str) -> GateError:
    return GateError("NOT_FOUND", message)


def unauthorized(message: str) -> GateError:
    return GateError("UNAUTHORIZED", message)


def conflict(message: str) -> GateError:
    return GateError("CONFLICT", message)


def insufficient_balance(message: str) -> GateError:
    return GateError("INSUFFICIENT_BALANCE", message)
