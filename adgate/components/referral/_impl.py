"""
ReferralLedgerService - referral relationships, balances and engagement.

Multi-row changes (claims, reward crediting, purchases, daily rewards) run
inside one unit of work. Reads degrade to a zeroed ledger when storage is
unavailable so rewards never stand between a visitor and content.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from adgate.domain.entities import ReferralLedgerEntry, ReferralRecord, RewardTransaction
from adgate.domain.errors import GateError, GateFailure, conflict, insufficient_balance
from adgate.domain.state import priority_window_end
from adgate.rules.models import Rules

from .codes import display_code, make_referral_code, normalize_referral_code, referral_link
from .component import (
    build_stats,
    clamp_limit,
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
from .ports import LedgerRepoPort, ReferralRepoPort, StorageError, TimePort, UnitOfWorkPort

logger = logging.getLogger(__name__)


class ReferralLedgerService:
    """
    Service for the per-visitor referral ledger.

    Holds its collaborators explicitly; create one per application.
    """

    def __init__(
        self,
        unit_of_work: UnitOfWorkPort,
        ledger: LedgerRepoPort,
        referrals: ReferralRepoPort,
        time: TimePort,
        rules: Rules,
        secret: str,
    ) -> None:
        self._uow = unit_of_work
        self._ledger = ledger
        self._referrals = referrals
        self._time = time
        self._rules = rules
        self._secret = secret

    # --- Identity ---

    def code_for(self, visitor_id: str) -> str:
        return make_referral_code(visitor_id, self._secret)

    def identity(self, visitor_id: str, code: str | None = None) -> ReferralIdentity:
        code = code or self.code_for(visitor_id)
        return ReferralIdentity(
            visitor_id=visitor_id,
            referral_code=code,
            display_code=display_code(
                visitor_id, self._secret, self._rules.referral.display_prefix
            ),
            referral_link=referral_link(self._rules.referral.base_url, code),
        )

    def initialize(self, visitor_id: str) -> ReferralIdentity:
        """Load or create the visitor's ledger and return their referral identity."""
        code = self.code_for(visitor_id)
        try:
            entry = self._ledger.insert_if_absent(
                zero_ledger(visitor_id, code, self._time.now_utc())
            )
            code = entry.my_referral_code
        except StorageError as e:
            logger.warning("Ledger unavailable on init for %s: %s", visitor_id, e)
        return self.identity(visitor_id, code)

    # --- Reads ---

    def _read(self, visitor_id: str) -> ReferralLedgerEntry | None:
        try:
            return self._ledger.get(visitor_id)
        except StorageError as e:
            logger.warning("Ledger unavailable for %s, using zeroed view: %s", visitor_id, e)
            return None

    def load(self, visitor_id: str) -> ReferralLedgerEntry:
        """Return the ledger, or a zeroed one if missing or unreadable."""
        entry = self._read(visitor_id)
        return entry or zero_ledger(visitor_id, self.code_for(visitor_id), self._time.now_utc())

    def ads_reduction_percent(self, visitor_id: str) -> int:
        return self.load(visitor_id).ads_reduction_percent

    def get_stats(self, visitor_id: str) -> ReferralStats:
        entry = self.load(visitor_id)
        try:
            pending = len(self._referrals.list_for_referrer(entry.my_referral_code, "pending"))
        except StorageError as e:
            logger.warning("Referral list unavailable for %s: %s", visitor_id, e)
            pending = 0
        return build_stats(
            entry,
            pending,
            display_code(visitor_id, self._secret, self._rules.referral.display_prefix),
            self._time.now_utc(),
        )

    def list_transactions(self, visitor_id: str, limit: int = 20) -> list[RewardTransaction]:
        try:
            return self._ledger.list_transactions(visitor_id, clamp_limit(limit))
        except StorageError as e:
            logger.warning("Transactions unavailable for %s: %s", visitor_id, e)
            return []

    # --- Referral claims ---

    def process_incoming_referral(
        self,
        visitor_id: str,
        code: str,
        device_fingerprint: str | None = None,
    ) -> ReferralClaimOutput:
        """
        Attach visitor_id to the owner of code.

        First claim wins; the referred visitor gets the welcome bonus and the
        referrer gets a pending referral.
        """
        normalized = normalize_referral_code(code)
        if normalized is None:
            logger.warning("Malformed referral code presented by %s", visitor_id)
            return _claim_failed(GateError("INVALID_CODE", "Referral code is not valid"))

        rewards = self._rules.rewards
        now = self._time.now_utc()

        try:
            with self._uow.transaction() as tx:
                referrer = tx.ledger.get_by_code(normalized)
                if referrer is None:
                    raise GateFailure(GateError("INVALID_CODE", "Referral code is not valid"))
                if referrer.visitor_id == visitor_id:
                    raise GateFailure(GateError("SELF_REFERRAL", "You cannot refer yourself"))

                own = tx.ledger.insert_if_absent(
                    zero_ledger(visitor_id, self.code_for(visitor_id), now)
                )
                if own.referred_by_code is not None:
                    raise GateFailure(GateError("ALREADY_REFERRED", "Referral already recorded"))

                if device_fingerprint:
                    claims = tx.referrals.count_claims_by_fingerprint(device_fingerprint)
                    if claims >= self._rules.referral.max_claims_per_device:
                        raise GateFailure(
                            GateError("DEVICE_LIMIT", "Too many referral claims from this device")
                        )

                if not tx.ledger.set_referred_by(
                    visitor_id, referrer.my_referral_code, referrer.visitor_id, now
                ):
                    raise GateFailure(GateError("ALREADY_REFERRED", "Referral already recorded"))

                added = tx.referrals.add(
                    ReferralRecord(
                        referrer_code=referrer.my_referral_code,
                        referrer_visitor_id=referrer.visitor_id,
                        referred_visitor_id=visitor_id,
                        device_fingerprint=device_fingerprint,
                        created_at=now,
                    )
                )
                if not added:
                    raise GateFailure(GateError("ALREADY_REFERRED", "Referral already recorded"))

                tx.ledger.credit(referrer.visitor_id, now, total_referrals=1)
                tx.ledger.credit(
                    visitor_id,
                    now,
                    coins=rewards.welcome_bonus_coins,
                    bonus_unlocks=rewards.welcome_bonus_unlocks,
                )
                tx.ledger.append_transaction(
                    RewardTransaction(
                        visitor_id=visitor_id,
                        type="welcome_bonus",
                        coins_change=rewards.welcome_bonus_coins,
                        unlock_cards_change=rewards.welcome_bonus_unlocks,
                        description="Welcome bonus for joining via referral",
                        created_at=now,
                    )
                )
        except GateFailure as e:
            logger.warning("Referral claim by %s rejected: %s", visitor_id, e)
            return _claim_failed(e.error)

        logger.info("Visitor %s referred by %s", visitor_id, referrer.visitor_id)
        return ReferralClaimOutput(
            referrer_visitor_id=referrer.visitor_id,
            welcome_coins=rewards.welcome_bonus_coins,
            welcome_bonus_unlocks=rewards.welcome_bonus_unlocks,
            promoted=self._evaluate_promotion(visitor_id),
        )

    def _evaluate_promotion(self, visitor_id: str) -> bool:
        """Promote the visitor's own referral to valid once they qualify."""
        try:
            entry = self._ledger.get(visitor_id)
            if entry is None or entry.referred_by_code is None:
                return False
            if not is_referral_valid(entry, self._rules.referral):
                return False
            promoted = self._referrals.promote(visitor_id, self._time.now_utc())
        except StorageError as e:
            logger.warning("Promotion check skipped for %s: %s", visitor_id, e)
            return False

        if promoted:
            logger.info("Referral of %s is now valid", visitor_id)
        return promoted

    # --- Referrer rewards ---

    def check_referrer_rewards(self, visitor_id: str) -> RewardCheckOutput:
        """
        Credit the referrer for each valid referral not yet rewarded.

        Idempotent; at most max_rewards_per_day are credited per UTC day and
        the remainder stay valid for a later call.
        """
        rewards = self._rules.rewards
        now = self._time.now_utc()
        rewarded = 0

        try:
            with self._uow.transaction() as tx:
                entry = tx.ledger.insert_if_absent(
                    zero_ledger(visitor_id, self.code_for(visitor_id), now)
                )
                code = entry.my_referral_code
                already = tx.referrals.count_rewarded_since(code, utc_day_start(now))
                budget = max(0, self._rules.referral.max_rewards_per_day - already)
                valid = tx.referrals.list_for_referrer(code, "valid")

                for record in valid[:budget]:
                    if not tx.referrals.mark_rewarded(record.id, now):
                        continue
                    tx.ledger.credit(
                        visitor_id,
                        now,
                        coins=rewards.coins_per_referral,
                        bonus_unlocks=rewards.bonus_unlocks_per_referral,
                        valid_referrals=1,
                        ads_reduction_percent=rewards.ads_reduction_per_referral,
                        max_ads_reduction=rewards.max_ads_reduction,
                    )
                    tx.ledger.append_transaction(
                        RewardTransaction(
                            visitor_id=visitor_id,
                            type="referral_bonus",
                            coins_change=rewards.coins_per_referral,
                            unlock_cards_change=rewards.bonus_unlocks_per_referral,
                            description="Referral reward",
                            created_at=now,
                        )
                    )
                    rewarded += 1
        except StorageError as e:
            logger.warning("Referrer rewards unavailable for %s: %s", visitor_id, e)
            return RewardCheckOutput()

        if rewarded:
            logger.info("Credited %s for %d referral(s)", visitor_id, rewarded)
        return RewardCheckOutput(
            rewarded=rewarded,
            coins_earned=rewarded * rewards.coins_per_referral,
            bonus_unlocks_earned=rewarded * rewards.bonus_unlocks_per_referral,
            deferred=len(valid) - rewarded,
        )

    # --- Engagement ---

    def start_time_tracking(self, visitor_id: str) -> TrackingOutput:
        now = self._time.now_utc()
        try:
            self._ledger.insert_if_absent(zero_ledger(visitor_id, self.code_for(visitor_id), now))
            started = self._ledger.start_tracking(visitor_id, now)
        except StorageError as e:
            logger.warning("Time tracking unavailable for %s: %s", visitor_id, e)
            return TrackingOutput()
        return TrackingOutput(started=started)

    def stop_time_tracking(self, visitor_id: str) -> TrackingOutput:
        """Add the running interval (capped) to tracked time. No-op when not running."""
        now = self._time.now_utc()
        try:
            entry = self._ledger.get(visitor_id)
            if entry is None or entry.tracking_started_at is None:
                return TrackingOutput(
                    total_time_tracked_seconds=entry.total_time_tracked_seconds if entry else 0
                )

            seconds = tracked_interval_seconds(
                entry.tracking_started_at, now, self._rules.referral.max_tracking_interval_seconds
            )
            if not self._ledger.stop_tracking(visitor_id, entry.tracking_started_at, seconds, now):
                seconds = 0
        except StorageError as e:
            logger.warning("Time tracking unavailable for %s: %s", visitor_id, e)
            return TrackingOutput()

        return TrackingOutput(
            tracked_seconds=seconds,
            total_time_tracked_seconds=entry.total_time_tracked_seconds + seconds,
            promoted=self._evaluate_promotion(visitor_id),
        )

    def record_content_unlock(self, visitor_id: str) -> bool:
        """Count a completed unlock; returns True if it validated the visitor's referral."""
        now = self._time.now_utc()
        try:
            self._ledger.insert_if_absent(zero_ledger(visitor_id, self.code_for(visitor_id), now))
            self._ledger.increment_unlocks(visitor_id, now)
        except StorageError as e:
            logger.warning("Could not record unlock for %s: %s", visitor_id, e)
            return False
        return self._evaluate_promotion(visitor_id)

    # --- Daily reward ---

    def daily_reward_status(self, visitor_id: str) -> DailyRewardStatus:
        daily = self._rules.daily
        entry = self.load(visitor_id)
        now = self._time.now_utc()
        remaining = daily_cooldown_remaining(entry.last_daily_claim_at, now, daily)
        can_claim = daily.enabled and remaining == 0

        streak = entry.daily_streak
        if can_claim:
            streak = next_daily_streak(entry.last_daily_claim_at, entry.daily_streak, now)
        coins, cards, _ = daily_reward_amounts(max(streak, 1), daily)

        return DailyRewardStatus(
            streak=entry.daily_streak,
            total_claims=entry.daily_claims_total,
            can_claim=can_claim,
            seconds_until_next=remaining,
            next_coins=coins,
            next_unlock_cards=cards,
            enabled=daily.enabled,
        )

    def claim_daily_reward(
        self, visitor_id: str, device_fingerprint: str | None = None
    ) -> DailyRewardOutput:
        """
        Grant the daily reward once per cooldown window.

        Claims on consecutive UTC days build a streak; milestone days pay a
        bonus. A device fingerprint may claim at most max_claims_per_device
        times per window across all visitors.
        """
        daily = self._rules.daily
        if not daily.enabled:
            return _daily_failed(GateError("VALIDATION_ERROR", "Daily rewards are disabled"))

        now = self._time.now_utc()
        window = timedelta(hours=daily.cooldown_hours)

        try:
            with self._uow.transaction() as tx:
                entry = tx.ledger.insert_if_absent(
                    zero_ledger(visitor_id, self.code_for(visitor_id), now)
                )
                remaining = daily_cooldown_remaining(entry.last_daily_claim_at, now, daily)
                if remaining > 0:
                    raise GateFailure(
                        GateError(
                            "TOO_FAST",
                            "Daily reward already claimed",
                            retry_after_seconds=remaining,
                        )
                    )

                if device_fingerprint:
                    claims = tx.ledger.count_device_claims_since(device_fingerprint, now - window)
                    if claims >= daily.max_claims_per_device:
                        raise GateFailure(
                            GateError("DEVICE_LIMIT", "Too many daily claims from this device")
                        )

                streak = next_daily_streak(entry.last_daily_claim_at, entry.daily_streak, now)
                coins, cards, is_bonus = daily_reward_amounts(streak, daily)

                if not tx.ledger.record_daily_claim(
                    visitor_id, entry.last_daily_claim_at, streak, now
                ):
                    raise GateFailure(conflict("Daily reward already claimed"))
                tx.ledger.credit(visitor_id, now, coins=coins, bonus_unlocks=cards)
                if device_fingerprint:
                    tx.ledger.log_device_claim(visitor_id, device_fingerprint, now)

                suffix = " (streak bonus)" if is_bonus else ""
                tx.ledger.append_transaction(
                    RewardTransaction(
                        visitor_id=visitor_id,
                        type="daily_reward",
                        coins_change=coins,
                        unlock_cards_change=cards,
                        description=f"Day {streak} daily reward{suffix}",
                        created_at=now,
                    )
                )
        except GateFailure as e:
            logger.warning("Daily reward for %s rejected: %s", visitor_id, e)
            return _daily_failed(e.error)

        logger.info("Visitor %s claimed day %d daily reward", visitor_id, streak)
        return DailyRewardOutput(
            coins_awarded=coins,
            unlock_cards_awarded=cards,
            streak=streak,
            is_streak_bonus=is_bonus,
            next_claim_at=now + window,
            message=(
                f"Streak bonus! Day {streak}!" if is_bonus else f"Day {streak} reward claimed!"
            ),
        )

    # --- Purchases ---

    def purchase_unlock_card(self, visitor_id: str) -> PurchaseOutput:
        cost = self._rules.rewards.coins_to_unlock_card
        now = self._time.now_utc()
        try:
            with self._uow.transaction() as tx:
                if not tx.ledger.debit(visitor_id, now, coins=cost):
                    raise GateFailure(insufficient_balance(f"Need {cost} coins"))
                tx.ledger.credit(visitor_id, now, bonus_unlocks=1)
                tx.ledger.append_transaction(
                    RewardTransaction(
                        visitor_id=visitor_id,
                        type="unlock_card_purchase",
                        coins_change=-cost,
                        unlock_cards_change=1,
                        description="Purchased unlock card",
                        created_at=now,
                    )
                )
                entry = tx.ledger.get(visitor_id)
        except GateFailure as e:
            return PurchaseOutput(errors=[e.error], success=False)

        logger.info("Visitor %s bought an unlock card", visitor_id)
        return PurchaseOutput(ledger=entry, coins_spent=cost)

    def purchase_priority_unlock(self, visitor_id: str) -> PurchaseOutput:
        rewards = self._rules.rewards
        cost = rewards.priority_unlock_coins
        now = self._time.now_utc()
        try:
            with self._uow.transaction() as tx:
                current = tx.ledger.get(visitor_id)
                if current is None or not tx.ledger.debit(visitor_id, now, coins=cost):
                    raise GateFailure(insufficient_balance(f"Need {cost} coins"))
                expires_at = priority_window_end(
                    current.priority_unlock_expires_at,
                    now,
                    timedelta(hours=rewards.priority_unlock_hours),
                )
                tx.ledger.set_priority_expiry(visitor_id, expires_at, now)
                tx.ledger.append_transaction(
                    RewardTransaction(
                        visitor_id=visitor_id,
                        type="priority_unlock_purchase",
                        coins_change=-cost,
                        description=f"Priority unlock for {rewards.priority_unlock_hours}h",
                        created_at=now,
                    )
                )
                entry = tx.ledger.get(visitor_id)
        except GateFailure as e:
            return PurchaseOutput(errors=[e.error], success=False)

        logger.info("Visitor %s bought priority unlock until %s", visitor_id, expires_at)
        return PurchaseOutput(ledger=entry, coins_spent=cost, priority_unlock_expires_at=expires_at)


def _claim_failed(error: GateError) -> ReferralClaimOutput:
    return ReferralClaimOutput(errors=[error], success=False)


def _daily_failed(error: GateError) -> DailyRewardOutput:
    return DailyRewardOutput(errors=[error], success=False)
