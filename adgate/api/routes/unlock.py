"""
Unlock endpoints: sessions, ad attempts and reward spends.

Endpoints:
- POST /api/unlock/{content_id}/session - Get or create the session
- GET /api/unlock/{content_id}/session - Current progress
- POST /api/unlock/{content_id}/attempts - Issue an ad attempt token
- POST /api/unlock/attempts/complete - Complete an attempt
- POST /api/unlock/{content_id}/spend/quote - Price a spend
- POST /api/unlock/{content_id}/spend - Apply a spend (bonus card, full unlock,
  ad skip or a multi-ad discount)
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from adgate.api.deps import get_gate_service, get_visitor_id
from adgate.api.errors import raise_for_errors, require_result
from adgate.api.schemas import ErrorResponse, SessionResponse
from adgate.components.rewards import Currency, SpendOutput, SpendType
from adgate.services.gate import UnlockGateService

router = APIRouter()


# --- Request/Response Models ---


class AttemptResponse(BaseModel):
    token: str = Field(..., description="Present this token when the ad finishes")
    attempt_id: UUID
    started_at: datetime
    min_watch_seconds: float


class CompleteRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=512)


class CompleteResponse(BaseModel):
    crossed_completion: bool
    session: SessionResponse


class SpendRequest(BaseModel):
    spend_type: SpendType
    ads: int = Field(1, ge=1, le=100, description="Ads to discount (ads_discount only)")


class QuoteResponse(BaseModel):
    spend_type: SpendType
    ads: int = 1
    cost: int
    currency: Currency
    balance_before: int
    balance_after: int


class SpendResponse(BaseModel):
    applied: bool
    celebration: str | None = None
    quote: QuoteResponse
    session: SessionResponse


def _quote(out: SpendOutput) -> QuoteResponse:
    spend = require_result(out.spend, "spend")
    return QuoteResponse(
        spend_type=spend.spend_type,
        ads=spend.ads,
        cost=spend.cost,
        currency=spend.currency,
        balance_before=spend.balance_before,
        balance_after=spend.balance_after,
    )


# --- Sessions ---


@router.post(
    "/{content_id}/session",
    response_model=SessionResponse,
    responses={404: {"model": ErrorResponse, "description": "Unknown content"}},
)
def open_session(
    content_id: str,
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> SessionResponse:
    out = gate.get_or_create_session(visitor_id, content_id)
    raise_for_errors(out.errors)
    return SessionResponse.from_session(require_result(out.session, "session"))


@router.get(
    "/{content_id}/session",
    response_model=SessionResponse,
    responses={404: {"model": ErrorResponse, "description": "No session yet"}},
)
def get_session(
    content_id: str,
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> SessionResponse:
    out = gate.get_session(visitor_id, content_id)
    raise_for_errors(out.errors)
    return SessionResponse.from_session(require_result(out.session, "session"))


# --- Attempts ---


@router.post(
    "/attempts/complete",
    response_model=CompleteResponse,
    responses={
        403: {"model": ErrorResponse, "description": "Attempt belongs to another visitor"},
        404: {"model": ErrorResponse, "description": "Unknown token"},
        409: {"model": ErrorResponse, "description": "Token already used"},
        425: {"model": ErrorResponse, "description": "Ad not watched long enough"},
    },
)
def complete_attempt(
    body: CompleteRequest,
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> CompleteResponse:
    out = gate.complete_attempt(body.token, visitor_id)
    raise_for_errors(out.errors)
    return CompleteResponse(
        crossed_completion=out.crossed_completion,
        session=SessionResponse.from_session(require_result(out.session, "session")),
    )


@router.post(
    "/{content_id}/attempts",
    response_model=AttemptResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Unknown content"},
        409: {"model": ErrorResponse, "description": "Session already complete"},
    },
)
def issue_attempt(
    content_id: str,
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> AttemptResponse:
    out = gate.issue_attempt(visitor_id, content_id)
    raise_for_errors(out.errors)
    return AttemptResponse(
        token=require_result(out.token, "token"),
        attempt_id=require_result(out.attempt, "attempt").id,
        started_at=require_result(out.started_at, "started_at"),
        min_watch_seconds=out.min_watch_seconds,
    )


# --- Spends ---


@router.post(
    "/{content_id}/spend/quote",
    response_model=QuoteResponse,
    responses={402: {"model": ErrorResponse, "description": "Not enough balance"}},
)
def quote_spend(
    content_id: str,
    body: SpendRequest,
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> QuoteResponse:
    out = gate.quote_spend(visitor_id, content_id, body.spend_type, body.ads)
    raise_for_errors(out.errors)
    return _quote(out)


@router.post(
    "/{content_id}/spend",
    response_model=SpendResponse,
    responses={
        402: {"model": ErrorResponse, "description": "Not enough balance"},
        409: {"model": ErrorResponse, "description": "Session already complete"},
    },
)
def spend(
    content_id: str,
    body: SpendRequest,
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> SpendResponse:
    out = gate.spend(visitor_id, content_id, body.spend_type, body.ads)
    raise_for_errors(out.errors)
    return SpendResponse(
        applied=out.applied,
        celebration=out.celebration,
        quote=_quote(out),
        session=SessionResponse.from_session(require_result(out.session, "session")),
    )
