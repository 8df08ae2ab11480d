"""
Token issuer - mints single-use ad-attempt credentials.

The raw token goes back to the caller once; only sha256(token) is stored,
so a leaked database cannot be replayed against the validator.
"""

from __future__ import annotations

import hashlib
import logging
import secrets

from adgate.domain.entities import AdAttempt, UnlockSession
from adgate.domain.errors import GateError, conflict, not_found, unauthorized
from adgate.rules.models import GatingRules

from .models import IssueAttemptInput, IssueAttemptOutput
from .ports import AttemptWriterPort, SessionReaderPort, TimePort

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def mint_token(nbytes: int = 32) -> str:
    return secrets.token_urlsafe(nbytes)


def validate_issue(session: UnlockSession | None, inp: IssueAttemptInput) -> list[GateError]:
    """Check that an attempt may be issued against this session."""
    if session is None:
        return [not_found("Unlock session not found")]
    if session.visitor_id != inp.visitor_id or session.content_id != inp.content_id:
        return [unauthorized("Session does not belong to this visitor and content")]
    if session.completed:
        return [conflict("Session already completed")]
    return []


def run_issue(
    inp: IssueAttemptInput,
    attempt_repo: AttemptWriterPort,
    session_repo: SessionReaderPort,
    time: TimePort,
    config: GatingRules | None = None,
) -> IssueAttemptOutput:
    config = config or GatingRules()

    session = session_repo.get_by_id(inp.unlock_session_id)
    errors = validate_issue(session, inp)
    if errors:
        return IssueAttemptOutput(
            min_watch_seconds=config.min_watch_seconds, errors=errors, success=False
        )

    token = mint_token(config.token_bytes)
    now = time.now_utc()
    attempt = AdAttempt(
        token_hash=hash_token(token),
        visitor_id=inp.visitor_id,
        content_id=inp.content_id,
        unlock_session_id=inp.unlock_session_id,
        state="issued",
        started_at=now,
    )
    attempt_repo.save(attempt)
    logger.debug("Issued attempt %s for session %s", attempt.id, inp.unlock_session_id)

    return IssueAttemptOutput(
        token=token,
        attempt=attempt,
        started_at=now,
        min_watch_seconds=config.min_watch_seconds,
    )
