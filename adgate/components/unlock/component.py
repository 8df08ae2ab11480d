"""
Unlock session tracker - per (visitor, content) progress toward the ad
requirement.

Invariants:
- At most one session per (visitor_id, content_id); re-requests never reset
  progress or overwrite ads_required
- ads_watched only grows; skips and discounts add skip_credits instead
- completed is set once the requirement is met and never reverts
"""

from __future__ import annotations

import logging
import math

from adgate.domain.entities import CompletionSource, UnlockSession
from adgate.domain.errors import GateError, conflict, not_found, unauthorized

from .models import (
    ApplyShortcutInput,
    GetOrCreateSessionInput,
    GetProgressInput,
    SessionOutput,
    SessionProgress,
)
from .ports import TimePort, UnlockSessionRepoPort

logger = logging.getLogger(__name__)

DEFAULT_MIN_EFFECTIVE_ADS = 1


# --- Pure Functions (Functional Core) ---


def calculate_effective_ads(
    base_ads: int,
    reduction_percent: int,
    min_effective_ads: int = DEFAULT_MIN_EFFECTIVE_ADS,
) -> int:
    """
    Apply a referral ad reduction to a base requirement.

    Rounds up, and never drops a non-zero requirement below the floor.
    """
    if base_ads <= 0:
        return 0
    reduction = min(max(reduction_percent, 0), 100)
    reduced = math.ceil(base_ads * (100 - reduction) / 100)
    return max(reduced, min(min_effective_ads, base_ads))


def session_progress(session: UnlockSession) -> SessionProgress:
    return SessionProgress(
        ads_watched=session.ads_watched,
        ads_required=session.ads_required,
        skip_credits=session.skip_credits,
        ads_discounted=session.ads_discounted,
        remaining=session.effective_remaining,
        completed=session.completed,
    )


def validate_session_input(inp: GetOrCreateSessionInput) -> list[GateError]:
    errors: list[GateError] = []
    if not inp.visitor_id.strip():
        errors.append(GateError("VALIDATION_ERROR", "visitor_id is required"))
    if not inp.content_id.strip():
        errors.append(GateError("VALIDATION_ERROR", "content_id is required"))
    if inp.ads_required < 0:
        errors.append(GateError("VALIDATION_ERROR", "ads_required cannot be negative"))
    return errors


def default_source(inp: ApplyShortcutInput) -> CompletionSource:
    if inp.source:
        return inp.source
    if inp.kind == "full_unlock":
        return "coins_full_unlock"
    return "skip" if inp.kind == "skip_ad" else "ads_discount"


def _ok(session: UnlockSession) -> SessionOutput:
    return SessionOutput(session=session, progress=session_progress(session))


def _fail(error: GateError) -> SessionOutput:
    return SessionOutput(errors=[error], success=False)


# --- Component Entry Points ---


def run_get_or_create(
    inp: GetOrCreateSessionInput,
    repo: UnlockSessionRepoPort,
    time: TimePort,
) -> SessionOutput:
    """Return the visitor's session for this content, creating it on first request."""
    errors = validate_session_input(inp)
    if errors:
        return SessionOutput(errors=errors, success=False)

    existing = repo.get_by_visitor_content(inp.visitor_id, inp.content_id)
    if existing:
        return _ok(existing)

    now = time.now_utc()
    free = inp.ads_required == 0
    candidate = UnlockSession(
        visitor_id=inp.visitor_id,
        content_id=inp.content_id,
        ads_required=inp.ads_required,
        completed=free,
        completed_via="ads" if free else None,
        created_at=now,
        updated_at=now,
    )
    session = repo.insert_if_absent(candidate)
    if session.id == candidate.id:
        logger.debug(
            "Created session %s for %s/%s (%d ads)",
            session.id,
            inp.visitor_id,
            inp.content_id,
            inp.ads_required,
        )
    return _ok(session)


def run_apply_shortcut(
    inp: ApplyShortcutInput,
    repo: UnlockSessionRepoPort,
    time: TimePort,
) -> SessionOutput:
    """Apply a reward shortcut. Rejected on missing, foreign or completed sessions."""
    session = repo.get_by_id(inp.session_id)
    if session is None:
        return _fail(not_found("Unlock session not found"))
    if inp.visitor_id is not None and session.visitor_id != inp.visitor_id:
        return _fail(unauthorized("Session belongs to another visitor"))
    if session.completed:
        return _fail(conflict("Session already completed"))

    if inp.count < 1:
        return _fail(GateError("VALIDATION_ERROR", "count must be at least 1"))

    updated = repo.apply_shortcut(
        inp.session_id, inp.kind, default_source(inp), time.now_utc(), inp.count
    )
    if updated is None:
        return _fail(conflict("Session already completed"))

    if updated.completed:
        logger.info("Session %s completed via %s", updated.id, updated.completed_via)
    return _ok(updated)


def run_get_progress(inp: GetProgressInput, repo: UnlockSessionRepoPort) -> SessionOutput:
    session = repo.get_by_id(inp.session_id)
    if session is None:
        return _fail(not_found("Unlock session not found"))
    return _ok(session)


def run(
    inp: GetOrCreateSessionInput | ApplyShortcutInput | GetProgressInput,
    *,
    repo: UnlockSessionRepoPort,
    time: TimePort | None = None,
) -> SessionOutput:
    if isinstance(inp, GetProgressInput):
        return run_get_progress(inp, repo)
    if time is None:
        raise ValueError("time port is required")
    if isinstance(inp, GetOrCreateSessionInput):
        return run_get_or_create(inp, repo, time)
    elif isinstance(inp, ApplyShortcutInput):
        return run_apply_shortcut(inp, repo, time)
    else:
        raise ValueError(f"Unknown input type: {type(inp)}")
