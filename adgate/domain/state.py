from datetime import datetime, timedelta
from typing import Any

from adgate.domain.entities import (
    AdAttempt,
    AttemptState,
    CompletionSource,
    ShortcutKind,
    UnlockSession,
)

# --- Ad attempt: issued -> used ---


def watch_elapsed(started_at: datetime, now: datetime) -> float:
    return (now - started_at).total_seconds()


def can_transition(
    current: AttemptState,
    new: AttemptState,
    started_at: datetime | None = None,
    now: datetime | None = None,
    min_watch_seconds: float = 0,
) -> bool:
    """
    Determine if an attempt state transition is allowed.

    The only legal move is issued -> used, and only once the minimum
    watch window has elapsed since issuance.
    """
    if current == "issued" and new == "used":
        if not started_at or not now:
            return False
        return watch_elapsed(started_at, now) >= min_watch_seconds

    return False


def remaining_watch_seconds(
    started_at: datetime, now: datetime, min_watch_seconds: float
) -> float:
    return max(0.0, min_watch_seconds - watch_elapsed(started_at, now))


def transition(
    attempt: AdAttempt, new_state: AttemptState, now: datetime, min_watch_seconds: float = 0
) -> AdAttempt:
    """
    Return a NEW AdAttempt in the given state.
    Raises ValueError if the transition is invalid.
    """
    if not can_transition(attempt.state, new_state, attempt.started_at, now, min_watch_seconds):
        raise ValueError(f"Invalid transition from {attempt.state} to {new_state}")

    return attempt.model_copy(update={"state": new_state, "completed_at": now})


# --- Unlock session completion ---


def meets_requirement(ads_watched: int, skip_credits: int, ads_required: int) -> bool:
    return ads_watched + skip_credits >= ads_required


def record_ad_watched(session: UnlockSession, now: datetime) -> tuple[UnlockSession, bool]:
    """
    Return (new session, crossed_completion) after one more watched ad.

    Mirrors the SQL increment used by the repositories.
    """
    watched = session.ads_watched + 1
    updates: dict[str, Any] = {"ads_watched": watched, "updated_at": now}
    crossed = False
    if not session.completed and meets_requirement(
        watched, session.skip_credits, session.ads_required
    ):
        updates["completed"] = True
        updates["completed_via"] = "ads"
        crossed = True
    return session.model_copy(update=updates), crossed


def apply_shortcut(
    session: UnlockSession,
    kind: ShortcutKind,
    now: datetime,
    source: CompletionSource | None = None,
    count: int = 1,
) -> UnlockSession:
    """
    Return a NEW session with a reward shortcut applied.

    skip_ad and ads_discount add count skip credits; ads_discount also
    records them as discounted. Raises ValueError on a completed session.
    """
    if session.completed:
        raise ValueError("Session already completed")

    updates: dict[str, Any] = {"updated_at": now}

    if kind == "full_unlock":
        updates["completed"] = True
        updates["completed_via"] = source or "coins_full_unlock"
    else:
        credits = session.skip_credits + count
        updates["skip_credits"] = credits
        if kind == "ads_discount":
            updates["ads_discounted"] = session.ads_discounted + count
        if meets_requirement(session.ads_watched, credits, session.ads_required):
            updates["completed"] = True
            updates["completed_via"] = source or ("skip" if kind == "skip_ad" else kind)

    return session.model_copy(update=updates)


def priority_window_end(
    current_expiry: datetime | None, now: datetime, duration: timedelta
) -> datetime:
    """Extend an active priority window, or open a new one from now."""
    start = current_expiry if current_expiry and current_expiry > now else now
    return start + duration
