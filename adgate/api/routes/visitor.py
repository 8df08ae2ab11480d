"""
Visitor endpoints: identity, referral claims, engagement and purchases.

Endpoints:
- POST /api/visitor/init - Establish visitor id and ledger
- POST /api/visitor/referral - Claim a referral code
- POST /api/visitor/time/start, /time/stop - Engagement tracking
- GET /api/visitor/stats - Ledger summary
- POST /api/visitor/rewards/check - Credit valid referrals
- GET /api/visitor/transactions - Recent reward transactions
- GET /api/visitor/daily-reward - Daily reward streak and eligibility
- POST /api/visitor/daily-reward/claim - Claim the daily reward
- POST /api/visitor/purchase/unlock-card, /purchase/priority - Coin purchases
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from adgate.api.deps import get_gate_service, get_optional_visitor_id, get_visitor_id
from adgate.api.errors import error_detail, raise_for_errors, require_result
from adgate.api.schemas import ErrorResponse, StatsResponse
from adgate.components.referral import PurchaseOutput
from adgate.services.gate import UnlockGateService

router = APIRouter()


# --- Request/Response Models ---


class InitRequest(BaseModel):
    ref_code: str | None = Field(None, description="Referral code from the ?ref= link")
    device_fingerprint: str | None = Field(None, max_length=256)


class ReferralClaimResult(BaseModel):
    success: bool
    referrer_visitor_id: str | None = None
    welcome_coins: int = 0
    welcome_bonus_unlocks: int = 0
    error: dict[str, object] | None = None


class InitResponse(BaseModel):
    visitor_id: str
    is_new: bool
    referral_code: str
    display_code: str
    referral_link: str
    stats: StatsResponse
    referral: ReferralClaimResult | None = None


class ClaimRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=512)
    device_fingerprint: str | None = Field(None, max_length=256)


class TrackingResponse(BaseModel):
    started: bool = False
    tracked_seconds: int = 0
    total_time_tracked_seconds: int = 0
    promoted: bool = False


class RewardCheckResponse(BaseModel):
    rewarded: int
    coins_earned: int
    bonus_unlocks_earned: int
    deferred: int


class TransactionResponse(BaseModel):
    id: UUID
    type: str
    coins_change: int
    unlock_cards_change: int
    content_id: str | None = None
    description: str
    created_at: datetime


class DailyClaimRequest(BaseModel):
    device_fingerprint: str | None = Field(None, max_length=256)


class DailyStatusResponse(BaseModel):
    enabled: bool
    streak: int
    total_claims: int
    can_claim: bool
    seconds_until_next: int
    next_coins: int
    next_unlock_cards: int


class DailyClaimResponse(BaseModel):
    coins_awarded: int
    unlock_cards_awarded: int
    streak: int
    is_streak_bonus: bool
    next_claim_at: datetime | None = None
    message: str


class PurchaseResponse(BaseModel):
    coins: int
    bonus_unlocks: int
    coins_spent: int
    priority_unlock_expires_at: datetime | None = None


def _purchase_response(out: PurchaseOutput) -> PurchaseResponse:
    raise_for_errors(out.errors)
    ledger = require_result(out.ledger, "ledger")
    return PurchaseResponse(
        coins=ledger.coins,
        bonus_unlocks=ledger.bonus_unlocks,
        coins_spent=out.coins_spent,
        priority_unlock_expires_at=out.priority_unlock_expires_at,
    )


# --- Identity ---


@router.post("/init", response_model=InitResponse)
def init_visitor(
    body: InitRequest | None = None,
    visitor_id: str | None = Depends(get_optional_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> InitResponse:
    """
    Establish the visitor's identity and ledger.

    Without an X-Visitor-Id header a new id is minted; the client keeps it.
    A rejected referral code does not fail initialization.
    """
    body = body or InitRequest()
    result = gate.initialize_visitor(visitor_id, body.ref_code, body.device_fingerprint)

    referral = None
    if result.referral is not None:
        claim = result.referral
        referral = ReferralClaimResult(
            success=claim.success,
            referrer_visitor_id=claim.referrer_visitor_id,
            welcome_coins=claim.welcome_coins,
            welcome_bonus_unlocks=claim.welcome_bonus_unlocks,
            error=error_detail(claim.errors[0]) if claim.errors else None,
        )

    return InitResponse(
        visitor_id=result.visitor_id,
        is_new=result.is_new,
        referral_code=result.identity.referral_code,
        display_code=result.identity.display_code,
        referral_link=result.identity.referral_link,
        stats=StatsResponse.from_stats(result.stats),
        referral=referral,
    )


@router.post(
    "/referral",
    response_model=ReferralClaimResult,
    responses={400: {"model": ErrorResponse, "description": "Referral rejected"}},
)
def claim_referral(
    body: ClaimRequest,
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> ReferralClaimResult:
    gate.referrals.initialize(visitor_id)
    out = gate.referrals.process_incoming_referral(
        visitor_id, body.code, body.device_fingerprint
    )
    raise_for_errors(out.errors)
    return ReferralClaimResult(
        success=True,
        referrer_visitor_id=out.referrer_visitor_id,
        welcome_coins=out.welcome_coins,
        welcome_bonus_unlocks=out.welcome_bonus_unlocks,
    )


# --- Engagement ---


@router.post("/time/start", response_model=TrackingResponse)
def start_time(
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> TrackingResponse:
    out = gate.referrals.start_time_tracking(visitor_id)
    return TrackingResponse(started=out.started)


@router.post("/time/stop", response_model=TrackingResponse)
def stop_time(
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> TrackingResponse:
    out = gate.referrals.stop_time_tracking(visitor_id)
    return TrackingResponse(
        tracked_seconds=out.tracked_seconds,
        total_time_tracked_seconds=out.total_time_tracked_seconds,
        promoted=out.promoted,
    )


# --- Ledger ---


@router.get("/stats", response_model=StatsResponse)
def get_stats(
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> StatsResponse:
    return StatsResponse.from_stats(gate.get_referral_stats(visitor_id))


@router.post("/rewards/check", response_model=RewardCheckResponse)
def check_rewards(
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> RewardCheckResponse:
    out = gate.referrals.check_referrer_rewards(visitor_id)
    raise_for_errors(out.errors)
    return RewardCheckResponse(
        rewarded=out.rewarded,
        coins_earned=out.coins_earned,
        bonus_unlocks_earned=out.bonus_unlocks_earned,
        deferred=out.deferred,
    )


@router.get("/transactions", response_model=list[TransactionResponse])
def list_transactions(
    limit: int = Query(20, ge=1, le=100),
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> list[TransactionResponse]:
    return [
        TransactionResponse(
            id=tx.id,
            type=tx.type,
            coins_change=tx.coins_change,
            unlock_cards_change=tx.unlock_cards_change,
            content_id=tx.content_id,
            description=tx.description,
            created_at=tx.created_at,
        )
        for tx in gate.referrals.list_transactions(visitor_id, limit)
    ]


# --- Daily rewards ---


@router.get("/daily-reward", response_model=DailyStatusResponse)
def daily_reward_status(
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> DailyStatusResponse:
    status = gate.daily_reward_status(visitor_id)
    return DailyStatusResponse(
        enabled=status.enabled,
        streak=status.streak,
        total_claims=status.total_claims,
        can_claim=status.can_claim,
        seconds_until_next=status.seconds_until_next,
        next_coins=status.next_coins,
        next_unlock_cards=status.next_unlock_cards,
    )


@router.post(
    "/daily-reward/claim",
    response_model=DailyClaimResponse,
    responses={425: {"model": ErrorResponse, "description": "Already claimed in this window"}},
)
def claim_daily_reward(
    body: DailyClaimRequest | None = None,
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> DailyClaimResponse:
    """Credit today's reward. Claiming again inside the cooldown answers 425 with Retry-After."""
    body = body or DailyClaimRequest()
    out = gate.claim_daily_reward(visitor_id, body.device_fingerprint)
    raise_for_errors(out.errors)
    return DailyClaimResponse(
        coins_awarded=out.coins_awarded,
        unlock_cards_awarded=out.unlock_cards_awarded,
        streak=out.streak,
        is_streak_bonus=out.is_streak_bonus,
        next_claim_at=out.next_claim_at,
        message=out.message,
    )


# --- Purchases ---


@router.post(
    "/purchase/unlock-card",
    response_model=PurchaseResponse,
    responses={402: {"model": ErrorResponse, "description": "Not enough coins"}},
)
def purchase_unlock_card(
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> PurchaseResponse:
    return _purchase_response(gate.referrals.purchase_unlock_card(visitor_id))


@router.post(
    "/purchase/priority",
    response_model=PurchaseResponse,
    responses={402: {"model": ErrorResponse, "description": "Not enough coins"}},
)
def purchase_priority(
    visitor_id: str = Depends(get_visitor_id),
    gate: UnlockGateService = Depends(get_gate_service),
) -> PurchaseResponse:
    return _purchase_response(gate.referrals.purchase_priority_unlock(visitor_id))
