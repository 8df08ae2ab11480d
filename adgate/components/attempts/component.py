"""
Attempt validator - turns a watched ad into one unit of session progress.

Invariants:
- A token funds at most one increment (issued -> used compare-and-set)
- Completion before min_watch_seconds is rejected and mutates nothing
- The attempt CAS and the session increment commit together or not at all
"""

from __future__ import annotations

import logging
from datetime import datetime

from adgate.components.tokens import hash_token
from adgate.domain.entities import AdAttempt
from adgate.domain.errors import GateError, GateFailure, not_found, unauthorized
from adgate.domain.state import can_transition, remaining_watch_seconds, transition
from adgate.rules.models import GatingRules

from .models import CompleteAttemptInput, CompleteAttemptOutput
from .ports import TimePort, UnitOfWorkPort

logger = logging.getLogger(__name__)


def check_attempt(
    attempt: AdAttempt | None,
    visitor_id: str | None,
    now: datetime,
    min_watch_seconds: float,
) -> GateError | None:
    """Return the first reason this attempt cannot be completed, or None."""
    if attempt is None:
        return not_found("Unknown attempt token")

    if visitor_id is not None and visitor_id != attempt.visitor_id:
        return unauthorized("Attempt belongs to another visitor")

    if attempt.used:
        return GateError("ALREADY_USED", "Attempt token already used")

    if not can_transition(attempt.state, "used", attempt.started_at, now, min_watch_seconds):
        wait = remaining_watch_seconds(attempt.started_at, now, min_watch_seconds)
        return GateError(
            "TOO_FAST",
            f"Ad must play for at least {min_watch_seconds:g} seconds",
            retry_after_seconds=wait,
        )

    return None


def run_complete(
    inp: CompleteAttemptInput,
    unit_of_work: UnitOfWorkPort,
    time: TimePort,
    config: GatingRules | None = None,
) -> CompleteAttemptOutput:
    """
    Validate a completion token and count the ad.

    Runs inside one transaction; any rejection rolls back.
    """
    config = config or GatingRules()
    token_hash = hash_token(inp.token)
    now = time.now_utc()

    try:
        with unit_of_work.transaction() as tx:
            attempt = tx.attempts.get_by_token_hash(token_hash)
            error = check_attempt(attempt, inp.visitor_id, now, config.min_watch_seconds)
            if error:
                raise GateFailure(error)
            if attempt is None:
                raise GateFailure(not_found("Unknown attempt token"))

            if not tx.attempts.mark_used(attempt.id, now):
                raise GateFailure(GateError("ALREADY_USED", "Attempt token already used"))

            result = tx.sessions.record_ad_watched(attempt.unlock_session_id, now)
            if result is None:
                raise GateFailure(not_found("Unlock session not found"))
            session, crossed = result
    except GateFailure as e:
        logger.warning("Attempt completion rejected: %s", e)
        return CompleteAttemptOutput(errors=[e.error], success=False)

    if crossed:
        logger.info(
            "Session %s completed by ads (%d/%d)",
            session.id,
            session.ads_watched,
            session.ads_required,
        )

    return CompleteAttemptOutput(
        session=session,
        crossed_completion=crossed,
        attempt=transition(attempt, "used", now, config.min_watch_seconds),
    )
