from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from adgate.domain.entities import AdAttempt
from adgate.domain.errors import GateError


@dataclass(frozen=True)
class IssueAttemptInput:
    """Request to start one ad-watch cycle for a session."""

    visitor_id: str
    content_id: str
    unlock_session_id: UUID


@dataclass(frozen=True)
class IssueAttemptOutput:
    """
    Result of issuing an attempt.

    `token` is the only copy of the raw credential; the repository keeps
    its sha256.
    """

    token: str | None = None
    attempt: AdAttempt | None = None
    started_at: datetime | None = None
    min_watch_seconds: float = 0
    errors: list[GateError] = field(default_factory=list)
    success: bool = True
