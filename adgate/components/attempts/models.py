from __future__ import annotations

from dataclasses import dataclass, field

from adgate.domain.entities import AdAttempt, UnlockSession
from adgate.domain.errors import GateError


@dataclass(frozen=True)
class CompleteAttemptInput:
    """
    Token presented at ad completion.

    visitor_id is optional; when given it must match the attempt's owner.
    """

    token: str
    visitor_id: str | None = None


@dataclass(frozen=True)
class CompleteAttemptOutput:
    session: UnlockSession | None = None
    crossed_completion: bool = False
    attempt: AdAttempt | None = None
    errors: list[GateError] = field(default_factory=list)
    success: bool = True
