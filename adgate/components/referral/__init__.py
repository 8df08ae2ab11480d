"""
Referral component - opaque referral codes, rewards ledger, daily rewards and
engagement based referral validation.
"""

from ._impl import ReferralLedgerService
from .codes import display_code, make_referral_code, normalize_referral_code, referral_link
from .component import (
    build_stats,
    daily_cooldown_remaining,
    daily_reward_amounts,
    is_referral_valid,
    next_daily_streak,
    tracked_interval_seconds,
    utc_day_start,
    zero_ledger,
)
from .models import (
    DailyRewardOutput,
    DailyRewardStatus,
    PurchaseOutput,
    ReferralClaimOutput,
    ReferralIdentity,
    ReferralStats,
    RewardCheckOutput,
    TrackingOutput,
)
from .ports import LedgerRepoPort, ReferralRepoPort, TimePort, UnitOfWorkPort

__all__ = [
    # Service
    "ReferralLedgerService",
    # Codes
    "make_referral_code",
    "normalize_referral_code",
    "display_code",
    "referral_link",
    # Pure functions
    "is_referral_valid",
    "tracked_interval_seconds",
    "utc_day_start",
    "zero_ledger",
    "build_stats",
    "daily_cooldown_remaining",
    "next_daily_streak",
    "daily_reward_amounts",
    # Output models
    "ReferralIdentity",
    "ReferralStats",
    "ReferralClaimOutput",
    "RewardCheckOutput",
    "TrackingOutput",
    "PurchaseOutput",
    "DailyRewardStatus",
    "DailyRewardOutput",
    # Ports
    "LedgerRepoPort",
    "ReferralRepoPort",
    "TimePort",
    "UnitOfWorkPort",
]
