"""
Referral ledger input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from adgate.domain.entities import ReferralLedgerEntry
from adgate.domain.errors import GateError


@dataclass(frozen=True)
class ReferralIdentity:
    visitor_id: str
    referral_code: str
    display_code: str
    referral_link: str


@dataclass(frozen=True)
class ReferralStats:
    """Read model of a visitor's ledger."""

    coins: int
    bonus_unlocks: int
    total_referrals: int
    valid_referrals: int
    pending_referrals: int
    ads_reduction_percent: int
    has_priority_unlock: bool
    priority_unlock_expires_at: datetime | None
    total_time_tracked_seconds: int
    total_unlocks_completed: int
    referral_code: str
    display_code: str
    is_referred: bool = False


@dataclass(frozen=True)
class ReferralClaimOutput:
    referrer_visitor_id: str | None = None
    welcome_coins: int = 0
    welcome_bonus_unlocks: int = 0
    promoted: bool = False
    errors: list[GateError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class RewardCheckOutput:
    """
    Result of crediting a referrer.

    deferred counts valid referrals held back by the daily cap.
    """

    rewarded: int = 0
    coins_earned: int = 0
    bonus_unlocks_earned: int = 0
    deferred: int = 0
    errors: list[GateError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class TrackingOutput:
    started: bool = False
    tracked_seconds: int = 0
    total_time_tracked_seconds: int = 0
    promoted: bool = False
    errors: list[GateError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class PurchaseOutput:
    ledger: ReferralLedgerEntry | None = None
    coins_spent: int = 0
    priority_unlock_expires_at: datetime | None = None
    errors: list[GateError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class DailyRewardStatus:
    """What the visitor would get by claiming now."""

    streak: int
    total_claims: int
    can_claim: bool
    seconds_until_next: int
    next_coins: int
    next_unlock_cards: int
    enabled: bool = True


@dataclass(frozen=True)
class DailyRewardOutput:
    coins_awarded: int = 0
    unlock_cards_awarded: int = 0
    streak: int = 0
    is_streak_bonus: bool = False
    next_claim_at: datetime | None = None
    message: str = ""
    errors: list[GateError] = field(default_factory=list)
    success: bool = True
