"""
Referral component unit tests.

Tests for opaque codes, referral claims, validity promotion, referrer
rewards, daily rewards, purchases and storage degradation.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta

import pytest

from adgate.adapters.memory import InMemoryUnitOfWork
from adgate.components.referral import (
    ReferralLedgerService,
    display_code,
    make_referral_code,
    normalize_referral_code,
    referral_link,
)
from adgate.domain.entities import ReferralLedgerEntry
from adgate.ports.repo import StorageUnavailableError
from adgate.rules.models import DailyRewardRules, ReferralRules, Rules

SECRET = "test-secret"

# --- Mock Implementations ---


class MockTimePort:
    """Mock time port for deterministic testing."""

    def __init__(self, fixed_time: datetime | None = None) -> None:
        self._time = fixed_time or datetime(2024, 6, 15, 12, 0, 0, tzinfo=UTC)

    def now_utc(self) -> datetime:
        return self._time

    def advance(self, delta: timedelta) -> None:
        self._time = self._time + delta


class FailingLedgerRepo:
    """Ledger repo whose backing store is down."""

    def get(self, visitor_id: str) -> ReferralLedgerEntry | None:
        raise StorageUnavailableError("ledger.get", "disk I/O error")

    def insert_if_absent(self, entry: ReferralLedgerEntry) -> ReferralLedgerEntry:
        raise StorageUnavailableError("ledger.insert", "disk I/O error")

    def list_transactions(self, visitor_id: str, limit: int = 20) -> list:
        raise StorageUnavailableError("ledger.list_transactions", "disk I/O error")


class FailingReferralRepo:
    def list_for_referrer(self, referrer_code: str, status: str | None = None) -> list:
        raise StorageUnavailableError("referrals.list_for_referrer", "disk I/O error")


class FailingUnitOfWork:
    """Unit of work that cannot open a transaction."""

    @contextmanager
    def transaction(self) -> Iterator[None]:
        raise StorageUnavailableError("transaction", "database is locked")
        yield


# --- Fixtures ---


@pytest.fixture
def uow() -> InMemoryUnitOfWork:
    return InMemoryUnitOfWork()


@pytest.fixture
def time_port() -> MockTimePort:
    return MockTimePort()


@pytest.fixture
def rules() -> Rules:
    return Rules()


@pytest.fixture
def service(uow: InMemoryUnitOfWork, time_port: MockTimePort, rules: Rules) -> ReferralLedgerService:
    return ReferralLedgerService(uow, uow.ledger, uow.referrals, time_port, rules, SECRET)


def refer(service: ReferralLedgerService, referrer: str, referred: str, fp: str | None = None):
    service.initialize(referrer)
    service.initialize(referred)
    return service.process_incoming_referral(referred, service.code_for(referrer), fp)


# --- Codes ---


class TestCodes:
    def test_code_is_deterministic_hex(self) -> None:
        code = make_referral_code("vis_abc", SECRET)
        assert code == make_referral_code("vis_abc", SECRET)
        assert len(code) == 20
        assert normalize_referral_code(code) == code

    def test_code_depends_on_secret(self) -> None:
        assert make_referral_code("vis_abc", SECRET) != make_referral_code("vis_abc", "other")

    def test_code_does_not_reveal_visitor_id(self) -> None:
        visitor_id = "vis_0123456789abcdef"
        code = make_referral_code(visitor_id, SECRET)
        assert "0123456789abcdef" not in code
        try:
            decoded = base64.urlsafe_b64decode(code + "=" * (-len(code) % 4))
        except (binascii.Error, ValueError):
            decoded = b""
        assert visitor_id.encode() not in decoded

    def test_normalize_accepts_upper_case_and_whitespace(self) -> None:
        code = make_referral_code("vis_abc", SECRET)
        assert normalize_referral_code(f"  {code.upper()} ") == code

    @pytest.mark.parametrize(
        "garbage",
        ["", "   ", "!!!", "dmlzX2FiY3wwMDAwMDAwMA==", "%%%%", "g" * 20, "a" * 21],
    )
    def test_garbage_rejected(self, garbage: str) -> None:
        assert normalize_referral_code(garbage) is None

    def test_display_code(self) -> None:
        shown = display_code("vis_abc", SECRET)
        assert shown.startswith("ADX-")
        assert len(shown) == 12
        assert shown[4:] == shown[4:].upper()

    def test_referral_link(self) -> None:
        assert referral_link("https://x.test/", "abc") == "https://x.test/?ref=abc"


# --- Identity / Reads ---


class TestInitialize:
    def test_creates_zero_ledger(self, service: ReferralLedgerService, uow: InMemoryUnitOfWork) -> None:
        identity = service.initialize("vis_a")
        entry = uow.ledger.get("vis_a")
        assert entry is not None
        assert entry.coins == 0
        assert entry.my_referral_code == identity.referral_code
        assert identity.referral_link.endswith(f"?ref={identity.referral_code}")

    def test_idempotent(self, service: ReferralLedgerService, uow: InMemoryUnitOfWork, time_port: MockTimePort) -> None:
        service.initialize("vis_a")
        uow.ledger.credit("vis_a", time_port.now_utc(), coins=40)
        service.initialize("vis_a")
        assert uow.ledger.get("vis_a").coins == 40  # type: ignore[union-attr]

    def test_stats_for_unknown_visitor_are_zero(self, service: ReferralLedgerService) -> None:
        stats = service.get_stats("vis_new")
        assert stats.coins == 0
        assert stats.pending_referrals == 0
        assert not stats.has_priority_unlock
        assert stats.referral_code == service.code_for("vis_new")


# --- Claims ---


class TestProcessIncomingReferral:
    def test_claim_awards_welcome_bonus(
        self, service: ReferralLedgerService, uow: InMemoryUnitOfWork
    ) -> None:
        out = refer(service, "vis_ref", "vis_new")

        assert out.success
        assert out.referrer_visitor_id == "vis_ref"
        new = uow.ledger.get("vis_new")
        assert new is not None
        assert new.coins == 25
        assert new.bonus_unlocks == 1
        assert new.referred_by_code == service.code_for("vis_ref")
        assert uow.ledger.get("vis_ref").total_referrals == 1  # type: ignore[union-attr]
        assert service.get_stats("vis_ref").pending_referrals == 1

        txs = service.list_transactions("vis_new")
        assert [t.type for t in txs] == ["welcome_bonus"]

    def test_self_referral_rejected(
        self, service: ReferralLedgerService, uow: InMemoryUnitOfWork
    ) -> None:
        service.initialize("vis_a")
        out = service.process_incoming_referral("vis_a", service.code_for("vis_a"))
        assert out.errors[0].code == "SELF_REFERRAL"
        entry = uow.ledger.get("vis_a")
        assert entry is not None and entry.referred_by_code is None
        assert entry.coins == 0

    def test_invalid_code_rejected(self, service: ReferralLedgerService) -> None:
        out = service.process_incoming_referral("vis_a", "not-a-code")
        assert out.errors[0].code == "INVALID_CODE"

    def test_unknown_well_formed_code_rejected(
        self, service: ReferralLedgerService, uow: InMemoryUnitOfWork
    ) -> None:
        service.initialize("vis_ref")
        out = service.process_incoming_referral("vis_a", make_referral_code("vis_ref", "other"))
        assert out.errors[0].code == "INVALID_CODE"
        assert uow.ledger.get("vis_a") is None

    def test_code_resolves_through_ledger_lookup(
        self, service: ReferralLedgerService, uow: InMemoryUnitOfWork
    ) -> None:
        identity = service.initialize("vis_ref")
        referrer = uow.ledger.get_by_code(identity.referral_code)
        assert referrer is not None and referrer.visitor_id == "vis_ref"
        out = service.process_incoming_referral("vis_new", identity.referral_code.upper())
        assert out.referrer_visitor_id == "vis_ref"

    def test_referrer_without_ledger_is_unknown(self, service: ReferralLedgerService) -> None:
        out = service.process_incoming_referral("vis_new", service.code_for("vis_never_seen"))
        assert out.errors[0].code == "INVALID_CODE"

    def test_referrer_is_immutable(
        self, service: ReferralLedgerService, uow: InMemoryUnitOfWork
    ) -> None:
        assert refer(service, "vis_one", "vis_new").success
        second = refer(service, "vis_two", "vis_new")

        assert second.errors[0].code == "ALREADY_REFERRED"
        entry = uow.ledger.get("vis_new")
        assert entry is not None
        assert entry.referred_by_visitor_id == "vis_one"
        assert entry.coins == 25
        assert uow.ledger.get("vis_two").total_referrals == 0  # type: ignore[union-attr]

    def test_device_limit(self, service: ReferralLedgerService) -> None:
        for i in range(3):
            assert refer(service, "vis_ref", f"vis_{i}", fp="device-1").success
        out = refer(service, "vis_ref", "vis_3", fp="device-1")
        assert out.errors[0].code == "DEVICE_LIMIT"
        assert refer(service, "vis_ref", "vis_4", fp="device-2").success


# --- Promotion and rewards ---


class TestPromotionAndRewards:
    def test_time_threshold_credits_referrer_once(
        self,
        service: ReferralLedgerService,
        uow: InMemoryUnitOfWork,
        time_port: MockTimePort,
    ) -> None:
        refer(service, "vis_ref", "vis_new")
        assert service.start_time_tracking("vis_new").started
        time_port.advance(timedelta(seconds=61))
        stopped = service.stop_time_tracking("vis_new")

        assert stopped.tracked_seconds == 61
        assert stopped.promoted

        first = service.check_referrer_rewards("vis_ref")
        second = service.check_referrer_rewards("vis_ref")

        assert first.rewarded == 1
        assert first.coins_earned == 50
        assert second.rewarded == 0
        ref = uow.ledger.get("vis_ref")
        assert ref is not None
        assert ref.coins == 50
        assert ref.bonus_unlocks == 1
        assert ref.valid_referrals == 1
        assert ref.total_referrals == 1
        assert ref.ads_reduction_percent == 10

    def test_short_visit_stays_pending(
        self, service: ReferralLedgerService, time_port: MockTimePort
    ) -> None:
        refer(service, "vis_ref", "vis_new")
        service.start_time_tracking("vis_new")
        time_port.advance(timedelta(seconds=30))
        assert not service.stop_time_tracking("vis_new").promoted
        assert service.check_referrer_rewards("vis_ref").rewarded == 0

    def test_unlock_promotes(self, service: ReferralLedgerService) -> None:
        refer(service, "vis_ref", "vis_new")
        assert service.record_content_unlock("vis_new")
        assert service.check_referrer_rewards("vis_ref").rewarded == 1

    def test_unlock_without_referral_does_not_promote(
        self, service: ReferralLedgerService, uow: InMemoryUnitOfWork
    ) -> None:
        assert not service.record_content_unlock("vis_solo")
        assert uow.ledger.get("vis_solo").total_unlocks_completed == 1  # type: ignore[union-attr]

    def test_tracking_interval_is_capped(
        self, service: ReferralLedgerService, time_port: MockTimePort
    ) -> None:
        service.start_time_tracking("vis_a")
        time_port.advance(timedelta(hours=5))
        out = service.stop_time_tracking("vis_a")
        assert out.tracked_seconds == 1800
        assert out.total_time_tracked_seconds == 1800

    def test_double_start_keeps_first_stamp(
        self, service: ReferralLedgerService, time_port: MockTimePort
    ) -> None:
        assert service.start_time_tracking("vis_a").started
        time_port.advance(timedelta(seconds=10))
        assert not service.start_time_tracking("vis_a").started
        time_port.advance(timedelta(seconds=10))
        assert service.stop_time_tracking("vis_a").tracked_seconds == 20

    def test_stop_without_start_is_noop(self, service: ReferralLedgerService) -> None:
        out = service.stop_time_tracking("vis_a")
        assert out.success
        assert out.tracked_seconds == 0

    def test_ads_reduction_capped(self, service: ReferralLedgerService) -> None:
        for i in range(7):
            refer(service, "vis_ref", f"vis_{i}")
            service.record_content_unlock(f"vis_{i}")
        out = service.check_referrer_rewards("vis_ref")
        assert out.rewarded == 7
        assert service.ads_reduction_percent("vis_ref") == 50

    def test_daily_cap_defers_rewards(
        self,
        uow: InMemoryUnitOfWork,
        time_port: MockTimePort,
    ) -> None:
        rules = Rules(referral=ReferralRules(max_rewards_per_day=2))
        service = ReferralLedgerService(uow, uow.ledger, uow.referrals, time_port, rules, SECRET)
        for i in range(3):
            refer(service, "vis_ref", f"vis_{i}")
            service.record_content_unlock(f"vis_{i}")

        today = service.check_referrer_rewards("vis_ref")
        assert today.rewarded == 2
        assert today.deferred == 1
        assert service.check_referrer_rewards("vis_ref").rewarded == 0

        time_port.advance(timedelta(days=1))
        assert service.check_referrer_rewards("vis_ref").rewarded == 1


# --- Purchases ---


class TestPurchases:
    def test_unlock_card_needs_coins(
        self, service: ReferralLedgerService, uow: InMemoryUnitOfWork
    ) -> None:
        service.initialize("vis_a")
        out = service.purchase_unlock_card("vis_a")
        assert out.errors[0].code == "INSUFFICIENT_BALANCE"
        assert out.errors[0].retryable
        assert uow.ledger.get("vis_a").bonus_unlocks == 0  # type: ignore[union-attr]

    def test_unlock_card_purchase(
        self, service: ReferralLedgerService, uow: InMemoryUnitOfWork, time_port: MockTimePort
    ) -> None:
        service.initialize("vis_a")
        uow.ledger.credit("vis_a", time_port.now_utc(), coins=120)

        out = service.purchase_unlock_card("vis_a")

        assert out.success and out.ledger
        assert out.ledger.coins == 20
        assert out.ledger.bonus_unlocks == 1
        assert service.list_transactions("vis_a")[0].type == "unlock_card_purchase"

    def test_priority_unlock_extends_active_window(
        self, service: ReferralLedgerService, uow: InMemoryUnitOfWork, time_port: MockTimePort
    ) -> None:
        service.initialize("vis_a")
        uow.ledger.credit("vis_a", time_port.now_utc(), coins=300)
        start = time_port.now_utc()

        first = service.purchase_priority_unlock("vis_a")
        time_port.advance(timedelta(hours=1))
        second = service.purchase_priority_unlock("vis_a")

        assert first.priority_unlock_expires_at == start + timedelta(hours=24)
        assert second.priority_unlock_expires_at == start + timedelta(hours=48)
        assert service.get_stats("vis_a").has_priority_unlock
        assert uow.ledger.get("vis_a").coins == 0  # type: ignore[union-attr]

    def test_priority_unlock_unknown_visitor(self, service: ReferralLedgerService) -> None:
        out = service.purchase_priority_unlock("vis_ghost")
        assert out.errors[0].code == "INSUFFICIENT_BALANCE"


# --- Degradation ---


class TestDegradation:
    @pytest.fixture
    def degraded(
        self, uow: InMemoryUnitOfWork, time_port: MockTimePort, rules: Rules
    ) -> ReferralLedgerService:
        return ReferralLedgerService(
            uow,
            FailingLedgerRepo(),  # type: ignore[arg-type]
            FailingReferralRepo(),  # type: ignore[arg-type]
            time_port,
            rules,
            SECRET,
        )

    def test_stats_fall_back_to_zero(self, degraded: ReferralLedgerService) -> None:
        stats = degraded.get_stats("vis_a")
        assert stats.coins == 0
        assert stats.ads_reduction_percent == 0
        assert stats.pending_referrals == 0

    def test_initialize_still_returns_identity(self, degraded: ReferralLedgerService) -> None:
        identity = degraded.initialize("vis_a")
        assert identity.referral_code == make_referral_code("vis_a", SECRET)

    def test_unlock_recording_does_not_raise(self, degraded: ReferralLedgerService) -> None:
        assert degraded.record_content_unlock("vis_a") is False

    def test_transactions_empty(self, degraded: ReferralLedgerService) -> None:
        assert degraded.list_transactions("vis_a") == []

    def test_tracking_start_degrades(self, degraded: ReferralLedgerService) -> None:
        out = degraded.start_time_tracking("vis_a")
        assert out.success
        assert not out.started

    def test_tracking_stop_degrades(
        self, degraded: ReferralLedgerService, time_port: MockTimePort
    ) -> None:
        time_port.advance(timedelta(seconds=90))
        out = degraded.stop_time_tracking("vis_a")
        assert out.success
        assert out.tracked_seconds == 0
        assert not out.promoted

    def test_reward_check_degrades_when_storage_is_down(
        self, uow: InMemoryUnitOfWork, time_port: MockTimePort, rules: Rules
    ) -> None:
        service = ReferralLedgerService(
            FailingUnitOfWork(),  # type: ignore[arg-type]
            uow.ledger,
            uow.referrals,
            time_port,
            rules,
            SECRET,
        )
        out = service.check_referrer_rewards("vis_ref")
        assert out.success
        assert out.rewarded == 0
        assert out.coins_earned == 0

    def test_committed_claim_survives_unreadable_ledger(
        self, degraded: ReferralLedgerService, uow: InMemoryUnitOfWork
    ) -> None:
        code = make_referral_code("vis_ref", SECRET)
        uow.ledger.insert_if_absent(ReferralLedgerEntry(visitor_id="vis_ref", my_referral_code=code))

        out = degraded.process_incoming_referral("vis_new", code)

        assert out.success
        assert not out.promoted
        new = uow.ledger.get("vis_new")
        assert new is not None and new.coins == 25
        assert new.referred_by_visitor_id == "vis_ref"


# --- Daily rewards ---


class TestDailyReward:
    def test_first_claim(self, service: ReferralLedgerService, uow: InMemoryUnitOfWork) -> None:
        out = service.claim_daily_reward("vis_a")

        assert out.success
        assert out.streak == 1
        assert out.coins_awarded == 10
        assert out.unlock_cards_awarded == 0
        assert not out.is_streak_bonus
        assert out.message == "Day 1 reward claimed!"
        entry = uow.ledger.get("vis_a")
        assert entry is not None
        assert entry.coins == 10
        assert entry.daily_claims_total == 1
        tx = service.list_transactions("vis_a")[0]
        assert tx.type == "daily_reward"
        assert tx.description == "Day 1 daily reward"

    def test_second_claim_inside_cooldown_is_too_fast(
        self, service: ReferralLedgerService, uow: InMemoryUnitOfWork, time_port: MockTimePort
    ) -> None:
        service.claim_daily_reward("vis_a")
        time_port.advance(timedelta(hours=23))

        out = service.claim_daily_reward("vis_a")

        assert out.errors[0].code == "TOO_FAST"
        assert out.errors[0].retry_after_seconds == 3600
        assert uow.ledger.get("vis_a").coins == 10  # type: ignore[union-attr]

    def test_consecutive_days_build_streak(
        self, service: ReferralLedgerService, time_port: MockTimePort
    ) -> None:
        service.claim_daily_reward("vis_a")
        time_port.advance(timedelta(hours=24))
        out = service.claim_daily_reward("vis_a")
        assert out.streak == 2

    def test_missed_day_resets_streak(
        self, service: ReferralLedgerService, time_port: MockTimePort
    ) -> None:
        service.claim_daily_reward("vis_a")
        time_port.advance(timedelta(hours=24))
        service.claim_daily_reward("vis_a")
        time_port.advance(timedelta(hours=48))
        assert service.claim_daily_reward("vis_a").streak == 1

    def test_seventh_day_pays_streak_bonus(
        self, service: ReferralLedgerService, uow: InMemoryUnitOfWork, time_port: MockTimePort
    ) -> None:
        for _ in range(6):
            service.claim_daily_reward("vis_a")
            time_port.advance(timedelta(hours=24))

        out = service.claim_daily_reward("vis_a")

        assert out.streak == 7
        assert out.is_streak_bonus
        assert out.coins_awarded == 40
        assert out.unlock_cards_awarded == 1
        assert out.message == "Streak bonus! Day 7!"
        assert service.list_transactions("vis_a")[0].description == (
            "Day 7 daily reward (streak bonus)"
        )
        assert uow.ledger.get("vis_a").coins == 6 * 10 + 40  # type: ignore[union-attr]

    def test_device_limit_spans_visitors(self, service: ReferralLedgerService) -> None:
        for i in range(3):
            assert service.claim_daily_reward(f"vis_{i}", "device-1").success
        out = service.claim_daily_reward("vis_3", "device-1")
        assert out.errors[0].code == "DEVICE_LIMIT"
        assert service.claim_daily_reward("vis_3", "device-2").success

    def test_disabled(
        self, uow: InMemoryUnitOfWork, time_port: MockTimePort
    ) -> None:
        rules = Rules(daily=DailyRewardRules(enabled=False))
        service = ReferralLedgerService(uow, uow.ledger, uow.referrals, time_port, rules, SECRET)
        out = service.claim_daily_reward("vis_a")
        assert out.errors[0].code == "VALIDATION_ERROR"
        assert not service.daily_reward_status("vis_a").can_claim

    def test_status_reports_cooldown_and_next_amount(
        self, service: ReferralLedgerService, time_port: MockTimePort
    ) -> None:
        fresh = service.daily_reward_status("vis_a")
        assert fresh.can_claim
        assert fresh.streak == 0
        assert fresh.next_coins == 10

        service.claim_daily_reward("vis_a")
        time_port.advance(timedelta(hours=20))
        waiting = service.daily_reward_status("vis_a")

        assert not waiting.can_claim
        assert waiting.seconds_until_next == 4 * 3600
        assert waiting.streak == 1
        assert waiting.total_claims == 1
