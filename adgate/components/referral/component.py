"""
Referral ledger - functional core.

Pure rules for referral validity, tracked time, the daily reward streak and
the stats read model.
ReferralLedgerService (_impl.py) applies them against the repositories.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from adgate.domain.entities import ReferralLedgerEntry
from adgate.rules.models import DailyRewardRules, ReferralRules

from .models import ReferralStats


def is_referral_valid(entry: ReferralLedgerEntry, rules: ReferralRules) -> bool:
    """A referred visitor counts once they stayed long enough or unlocked something."""
    return (
        entry.total_time_tracked_seconds >= rules.min_time_for_valid_seconds
        or entry.total_unlocks_completed >= rules.min_unlocks_for_valid
    )


def tracked_interval_seconds(started_at: datetime, now: datetime, cap_seconds: int) -> int:
    elapsed = int((now - started_at).total_seconds())
    return max(0, min(elapsed, cap_seconds))


def utc_day_start(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def zero_ledger(visitor_id: str, referral_code: str, now: datetime) -> ReferralLedgerEntry:
    return ReferralLedgerEntry(
        visitor_id=visitor_id,
        my_referral_code=referral_code,
        created_at=now,
        updated_at=now,
    )


def build_stats(
    entry: ReferralLedgerEntry,
    pending_referrals: int,
    display: str,
    now: datetime,
) -> ReferralStats:
    return ReferralStats(
        coins=entry.coins,
        bonus_unlocks=entry.bonus_unlocks,
        total_referrals=entry.total_referrals,
        valid_referrals=entry.valid_referrals,
        pending_referrals=pending_referrals,
        ads_reduction_percent=entry.ads_reduction_percent,
        has_priority_unlock=entry.has_priority_unlock(now),
        priority_unlock_expires_at=entry.priority_unlock_expires_at,
        total_time_tracked_seconds=entry.total_time_tracked_seconds,
        total_unlocks_completed=entry.total_unlocks_completed,
        referral_code=entry.my_referral_code,
        display_code=display,
        is_referred=entry.referred_by_code is not None,
    )


def clamp_limit(limit: int, maximum: int = 100) -> int:
    return max(1, min(limit, maximum))


# --- Daily reward ---


def daily_cooldown_remaining(
    last_claim_at: datetime | None, now: datetime, rules: DailyRewardRules
) -> int:
    """Whole seconds until the next claim is allowed; 0 when claimable."""
    if last_claim_at is None:
        return 0
    ready_at = last_claim_at + timedelta(hours=rules.cooldown_hours)
    return max(0, math.ceil((ready_at - now).total_seconds()))


def next_daily_streak(last_claim_at: datetime | None, streak: int, now: datetime) -> int:
    """A claim the UTC day after the previous one extends the streak; anything else restarts it."""
    if last_claim_at is None:
        return 1
    if last_claim_at.date() == (now - timedelta(days=1)).date():
        return streak + 1
    return 1


def daily_reward_amounts(streak: int, rules: DailyRewardRules) -> tuple[int, int, bool]:
    """Return (coins, unlock cards, is_streak_bonus) for the claim that reaches streak."""
    milestone = streak % rules.milestone_days == 0
    is_bonus = rules.streak_bonus_enabled and milestone
    multiplier = rules.streak_bonus_multiplier if is_bonus else 1

    coins = cards = 0
    if rules.reward_type in ("coins", "both"):
        coins = math.floor(rules.coins_amount * multiplier)
    if rules.reward_type in ("unlock_cards", "both"):
        cards = math.floor(rules.unlock_cards_amount * multiplier)

    if milestone:
        coins += rules.milestone_bonus_coins
        cards += rules.milestone_bonus_unlocks
    return coins, cards, is_bonus
