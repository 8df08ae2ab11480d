"""
Unlock session tracker input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

from adgate.domain.entities import CompletionSource, ShortcutKind, UnlockSession
from adgate.domain.errors import GateError

# --- Input Models ---


@dataclass(frozen=True)
class GetOrCreateSessionInput:
    visitor_id: str
    content_id: str
    ads_required: int


@dataclass(frozen=True)
class ApplyShortcutInput:
    """
    Reward shortcut against a session.

    full_unlock completes the session; skip_ad grants one skip credit;
    ads_discount grants count credits and records them as discounted.
    """

    session_id: UUID
    kind: ShortcutKind
    source: CompletionSource | None = None
    visitor_id: str | None = None
    count: int = 1


@dataclass(frozen=True)
class GetProgressInput:
    session_id: UUID


# --- Output Models ---


@dataclass(frozen=True)
class SessionProgress:
    ads_watched: int
    ads_required: int
    skip_credits: int
    ads_discounted: int
    remaining: int
    completed: bool


@dataclass(frozen=True)
class SessionOutput:
    session: UnlockSession | None = None
    progress: SessionProgress | None = None
    errors: list[GateError] = field(default_factory=list)
    success: bool = True
