"""
Shared API response schemas.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from adgate.components.referral import ReferralStats
from adgate.domain.entities import CompletionSource, UnlockSession


class SessionResponse(BaseModel):
    session_id: UUID
    content_id: str
    ads_required: int
    ads_watched: int
    skip_credits: int
    ads_discounted: int = 0
    remaining: int
    completed: bool
    completed_via: CompletionSource | None = None

    @classmethod
    def from_session(cls, session: UnlockSession) -> SessionResponse:
        return cls(
            session_id=session.id,
            content_id=session.content_id,
            ads_required=session.ads_required,
            ads_watched=session.ads_watched,
            skip_credits=session.skip_credits,
            ads_discounted=session.ads_discounted,
            remaining=session.effective_remaining,
            completed=session.completed,
            completed_via=session.completed_via,
        )


class StatsResponse(BaseModel):
    coins: int
    bonus_unlocks: int
    total_referrals: int
    valid_referrals: int
    pending_referrals: int
    ads_reduction_percent: int
    has_priority_unlock: bool
    priority_unlock_expires_at: datetime | None = None
    total_time_tracked_seconds: int
    total_unlocks_completed: int
    referral_code: str
    display_code: str
    is_referred: bool = False

    @classmethod
    def from_stats(cls, stats: ReferralStats) -> StatsResponse:
        return cls(
            coins=stats.coins,
            bonus_unlocks=stats.bonus_unlocks,
            total_referrals=stats.total_referrals,
            valid_referrals=stats.valid_referrals,
            pending_referrals=stats.pending_referrals,
            ads_reduction_percent=stats.ads_reduction_percent,
            has_priority_unlock=stats.has_priority_unlock,
            priority_unlock_expires_at=stats.priority_unlock_expires_at,
            total_time_tracked_seconds=stats.total_time_tracked_seconds,
            total_unlocks_completed=stats.total_unlocks_completed,
            referral_code=stats.referral_code,
            display_code=stats.display_code,
            is_referred=stats.is_referred,
        )


class ErrorDetail(BaseModel):
    code: str
    message: str
    retryable: bool = Field(default=False, description="Same request may succeed later")


class ErrorResponse(BaseModel):
    detail: ErrorDetail
