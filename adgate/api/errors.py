"""
Mapping from gate errors to HTTP responses.

Body shape: {"detail": {"code", "message", "retryable"}}.
"""

from __future__ import annotations

import math
from typing import TypeVar

from fastapi import HTTPException, status

from adgate.domain.errors import GateError

T = TypeVar("T")

STATUS_BY_CODE: dict[str, int] = {
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "UNAUTHORIZED": status.HTTP_403_FORBIDDEN,
    "ALREADY_USED": status.HTTP_409_CONFLICT,
    "CONFLICT": status.HTTP_409_CONFLICT,
    "TOO_FAST": status.HTTP_425_TOO_EARLY,
    "INSUFFICIENT_BALANCE": status.HTTP_402_PAYMENT_REQUIRED,
}


def error_detail(error: GateError) -> dict[str, object]:
    return {"code": error.code, "message": error.message, "retryable": error.retryable}


def gate_http_error(error: GateError) -> HTTPException:
    headers = None
    if error.retry_after_seconds is not None:
        headers = {"Retry-After": str(max(1, math.ceil(error.retry_after_seconds)))}
    return HTTPException(
        status_code=STATUS_BY_CODE.get(error.code, status.HTTP_400_BAD_REQUEST),
        detail=error_detail(error),
        headers=headers,
    )


def raise_for_errors(errors: list[GateError]) -> None:
    if errors:
        raise gate_http_error(errors[0])


def require_result(value: T | None, name: str) -> T:
    """Unwrap a field a successful output must carry; a missing one is a 500."""
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": "INTERNAL_ERROR", "message": f"Missing {name}", "retryable": False},
        )
    return value
