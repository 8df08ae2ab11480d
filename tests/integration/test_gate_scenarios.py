"""
End-to-end scenarios through UnlockGateService.

Each test runs against both the in-memory and the SQLite adapters.
"""

from __future__ import annotations

from datetime import timedelta

from adgate.services.gate import UnlockGateService


def watch_ads(gate: UnlockGateService, clock, visitor_id: str, content_id: str, n: int):
    out = None
    for _ in range(n):
        issued = gate.issue_attempt(visitor_id, content_id)
        assert issued.success, issued.errors
        clock.advance(6)
        out = gate.complete_attempt(issued.token, visitor_id)  # type: ignore[arg-type]
        assert out.success, out.errors
    return out


def fund(gate: UnlockGateService, clock, visitor_id: str, coins: int = 0, cards: int = 0) -> None:
    gate.referrals.initialize(visitor_id)
    gate._ledger.credit(visitor_id, clock.now_utc(), coins=coins, bonus_unlocks=cards)


class TestAdFlow:
    def test_three_sequential_ads_complete_session(self, gate: UnlockGateService, clock) -> None:
        out = watch_ads(gate, clock, "vis_a", "post-3", 3)

        assert out.crossed_completion
        assert out.session.completed
        assert out.session.completed_via == "ads"
        assert gate.get_referral_stats("vis_a").total_unlocks_completed == 1

    def test_too_fast_then_retry(self, gate: UnlockGateService, clock) -> None:
        issued = gate.issue_attempt("vis_a", "post-3")
        clock.advance(2)

        early = gate.complete_attempt(issued.token, "vis_a")  # type: ignore[arg-type]
        assert early.errors[0].code == "TOO_FAST"
        assert early.errors[0].retry_after_seconds == 3
        assert gate.get_session("vis_a", "post-3").session.ads_watched == 0  # type: ignore[union-attr]

        clock.advance(3)
        late = gate.complete_attempt(issued.token, "vis_a")  # type: ignore[arg-type]
        assert late.success
        assert late.session.ads_watched == 1  # type: ignore[union-attr]

    def test_replay_is_rejected(self, gate: UnlockGateService, clock) -> None:
        issued = gate.issue_attempt("vis_a", "post-3")
        clock.advance(6)
        assert gate.complete_attempt(issued.token, "vis_a").success  # type: ignore[arg-type]

        replay = gate.complete_attempt(issued.token, "vis_a")  # type: ignore[arg-type]
        assert replay.errors[0].code == "ALREADY_USED"
        assert gate.get_session("vis_a", "post-3").session.ads_watched == 1  # type: ignore[union-attr]

    def test_foreign_token_rejected(self, gate: UnlockGateService, clock) -> None:
        issued = gate.issue_attempt("vis_a", "post-3")
        clock.advance(6)
        out = gate.complete_attempt(issued.token, "vis_b")  # type: ignore[arg-type]
        assert out.errors[0].code == "UNAUTHORIZED"

    def test_unknown_token(self, gate: UnlockGateService) -> None:
        assert gate.complete_attempt("not-a-token", "vis_a").errors[0].code == "NOT_FOUND"

    def test_unknown_and_inactive_content(self, gate: UnlockGateService) -> None:
        assert gate.get_or_create_session("vis_a", "nope").errors[0].code == "NOT_FOUND"
        assert gate.issue_attempt("vis_a", "hidden").errors[0].code == "NOT_FOUND"

    def test_free_content_is_unlocked_immediately(self, gate: UnlockGateService) -> None:
        out = gate.get_or_create_session("vis_a", "free")
        assert out.session is not None and out.session.completed
        assert gate.issue_attempt("vis_a", "free").errors[0].code == "CONFLICT"

    def test_default_requirement_from_rules(self, gate: UnlockGateService) -> None:
        out = gate.get_or_create_session("vis_a", "default")
        assert out.session is not None and out.session.ads_required == 3

    def test_session_requirement_is_frozen(self, gate: UnlockGateService, clock) -> None:
        gate.get_or_create_session("vis_a", "post-3")
        fund(gate, clock, "vis_a")
        gate._ledger.credit(
            "vis_a", clock.now_utc(), ads_reduction_percent=50, max_ads_reduction=50
        )

        assert gate.get_or_create_session("vis_a", "post-3").session.ads_required == 3  # type: ignore[union-attr]
        assert gate.get_or_create_session("vis_a", "default").session.ads_required == 2  # type: ignore[union-attr]


class TestSpendFlow:
    def test_bonus_card_completes_fresh_session(self, gate: UnlockGateService, clock) -> None:
        fund(gate, clock, "vis_a", cards=1)

        out = gate.spend("vis_a", "post-3", "bonus_card")

        assert out.applied
        assert out.session.completed and out.session.ads_watched == 0  # type: ignore[union-attr]
        assert gate.get_referral_stats("vis_a").bonus_unlocks == 0
        assert gate.get_referral_stats("vis_a").total_unlocks_completed == 1

    def test_skip_with_no_coins_rejected(self, gate: UnlockGateService, clock) -> None:
        fund(gate, clock, "vis_a")

        out = gate.spend("vis_a", "post-3", "coins_skip_ad")

        assert out.errors[0].code == "INSUFFICIENT_BALANCE"
        assert out.errors[0].retryable
        session = gate.get_session("vis_a", "post-3").session
        assert session is not None and session.skip_credits == 0

    def test_quote_does_not_mutate(self, gate: UnlockGateService, clock) -> None:
        fund(gate, clock, "vis_a", coins=250)

        quote = gate.quote_spend("vis_a", "post-3", "coins_full_unlock")

        assert quote.spend is not None
        assert (quote.spend.balance_before, quote.spend.balance_after) == (250, 50)
        assert gate.get_referral_stats("vis_a").coins == 250

    def test_skip_after_two_ads_completes(self, gate: UnlockGateService, clock) -> None:
        fund(gate, clock, "vis_a", coins=50)
        watch_ads(gate, clock, "vis_a", "post-3", 2)

        out = gate.spend("vis_a", "post-3", "coins_skip_ad")

        assert out.session.completed  # type: ignore[union-attr]
        assert gate.get_referral_stats("vis_a").total_unlocks_completed == 1

    def test_spend_on_completed_session_keeps_balance(
        self, gate: UnlockGateService, clock
    ) -> None:
        fund(gate, clock, "vis_a", coins=400)
        assert gate.spend("vis_a", "post-3", "coins_full_unlock").applied

        out = gate.spend("vis_a", "post-3", "coins_full_unlock")

        assert out.errors[0].code == "CONFLICT"
        assert gate.get_referral_stats("vis_a").coins == 200


class TestReferralFlow:
    def test_referred_visitor_time_credits_referrer_once(
        self, gate: UnlockGateService, clock
    ) -> None:
        referrer = gate.initialize_visitor("vis_ref")
        joined = gate.initialize_visitor("vis_new", ref_code=referrer.identity.referral_code)

        assert joined.referral is not None and joined.referral.success
        assert joined.stats.coins == 25
        assert joined.stats.is_referred

        gate.referrals.start_time_tracking("vis_new")
        clock.advance(timedelta(seconds=61))
        assert gate.referrals.stop_time_tracking("vis_new").promoted

        first = gate.referrals.check_referrer_rewards("vis_ref")
        second = gate.referrals.check_referrer_rewards("vis_ref")

        assert first.rewarded == 1 and second.rewarded == 0
        stats = gate.get_referral_stats("vis_ref")
        assert stats.coins == 50
        assert stats.valid_referrals == 1
        assert stats.ads_reduction_percent == 10

    def test_unlock_validates_referral(self, gate: UnlockGateService, clock) -> None:
        referrer = gate.initialize_visitor("vis_ref")
        gate.initialize_visitor("vis_new", ref_code=referrer.identity.referral_code)

        watch_ads(gate, clock, "vis_new", "post-1", 1)

        assert gate.referrals.check_referrer_rewards("vis_ref").rewarded == 1

    def test_self_referral_rejected(self, gate: UnlockGateService) -> None:
        me = gate.initialize_visitor("vis_me")
        again = gate.initialize_visitor("vis_me", ref_code=me.identity.referral_code)

        assert again.referral is not None
        assert again.referral.errors[0].code == "SELF_REFERRAL"
        assert not again.stats.is_referred

    def test_new_visitor_gets_minted_id(self, gate: UnlockGateService) -> None:
        out = gate.initialize_visitor()
        assert out.is_new
        assert out.visitor_id.startswith("vis_")
        assert out.identity.display_code.startswith("ADX-")
