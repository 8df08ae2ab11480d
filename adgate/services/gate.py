"""
UnlockGateService - composes the gating and rewards components.

Owns its collaborators (repositories, unit of work, catalog, clock, rules)
as explicit state. Completing a session, by ads or by a reward spend, is
reported to the referral ledger and the content catalog.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

from adgate.components.attempts import CompleteAttemptInput, CompleteAttemptOutput, run_complete
from adgate.components.referral import (
    DailyRewardOutput,
    DailyRewardStatus,
    ReferralClaimOutput,
    ReferralIdentity,
    ReferralLedgerService,
    ReferralStats,
)
from adgate.components.rewards import (
    NotifierPort,
    RequestSpendInput,
    RewardSpendCoordinator,
    SpendOutput,
    SpendType,
    check_ads_discount,
)
from adgate.components.tokens import IssueAttemptInput, IssueAttemptOutput, run_issue
from adgate.components.unlock import (
    GetOrCreateSessionInput,
    SessionOutput,
    calculate_effective_ads,
    run_get_or_create,
    session_progress,
)
from adgate.domain.entities import ContentInfo
from adgate.domain.errors import not_found
from adgate.ports.catalog import ContentCatalogPort
from adgate.ports.clock import TimePort
from adgate.ports.repo import (
    AdAttemptRepoPort,
    LedgerRepoPort,
    ReferralRepoPort,
    StorageError,
    UnitOfWorkPort,
    UnlockSessionRepoPort,
)
from adgate.rules.models import Rules

logger = logging.getLogger(__name__)

VISITOR_ID_PREFIX = "vis_"


def new_visitor_id() -> str:
    return f"{VISITOR_ID_PREFIX}{uuid4().hex}"


@dataclass(frozen=True)
class VisitorInit:
    visitor_id: str
    is_new: bool
    identity: ReferralIdentity
    stats: ReferralStats
    referral: ReferralClaimOutput | None = None


class UnlockGateService:
    def __init__(
        self,
        *,
        unit_of_work: UnitOfWorkPort,
        sessions: UnlockSessionRepoPort,
        attempts: AdAttemptRepoPort,
        ledger: LedgerRepoPort,
        referrals: ReferralRepoPort,
        catalog: ContentCatalogPort,
        time: TimePort,
        rules: Rules,
        referral_secret: str,
        notifier: NotifierPort | None = None,
    ) -> None:
        self._uow = unit_of_work
        self._sessions = sessions
        self._attempts = attempts
        self._ledger = ledger
        self._catalog = catalog
        self._time = time
        self._rules = rules
        self._notifier = notifier
        self.referrals = ReferralLedgerService(
            unit_of_work, ledger, referrals, time, rules, referral_secret
        )

    # --- Visitors ---

    def initialize_visitor(
        self,
        visitor_id: str | None = None,
        ref_code: str | None = None,
        device_fingerprint: str | None = None,
    ) -> VisitorInit:
        """
        Establish a visitor identity and ledger, claiming a referral if given.

        A visitor without an id gets a freshly minted one.
        """
        is_new = not visitor_id
        vid = visitor_id or new_visitor_id()
        identity = self.referrals.initialize(vid)

        claim = None
        if ref_code:
            claim = self.referrals.process_incoming_referral(vid, ref_code, device_fingerprint)

        return VisitorInit(
            visitor_id=vid,
            is_new=is_new,
            identity=identity,
            stats=self.referrals.get_stats(vid),
            referral=claim,
        )

    def get_referral_stats(self, visitor_id: str) -> ReferralStats:
        return self.referrals.get_stats(visitor_id)

    # --- Sessions ---

    def _available_content(self, content_id: str) -> ContentInfo | None:
        content = self._catalog.get_content(content_id)
        if content is None or content.status != "active":
            return None
        return content

    def effective_ads_for(self, visitor_id: str, content: ContentInfo) -> int:
        base = content.required_ads
        if base is None:
            base = self._rules.gating.default_required_ads
        return calculate_effective_ads(
            base,
            self.referrals.ads_reduction_percent(visitor_id),
            self._rules.gating.min_effective_ads,
        )

    def get_or_create_session(self, visitor_id: str, content_id: str) -> SessionOutput:
        content = self._available_content(content_id)
        if content is None:
            return SessionOutput(
                errors=[not_found(f"Content '{content_id}' is not available")], success=False
            )

        return run_get_or_create(
            GetOrCreateSessionInput(
                visitor_id=visitor_id,
                content_id=content_id,
                ads_required=self.effective_ads_for(visitor_id, content),
            ),
            self._sessions,
            self._time,
        )

    def get_session(self, visitor_id: str, content_id: str) -> SessionOutput:
        session = self._sessions.get_by_visitor_content(visitor_id, content_id)
        if session is None:
            return SessionOutput(errors=[not_found("No unlock session yet")], success=False)
        return SessionOutput(session=session, progress=session_progress(session))

    # --- Attempts ---

    def issue_attempt(self, visitor_id: str, content_id: str) -> IssueAttemptOutput:
        out = self.get_or_create_session(visitor_id, content_id)
        if not out.success or out.session is None:
            return IssueAttemptOutput(
                min_watch_seconds=self._rules.gating.min_watch_seconds,
                errors=out.errors,
                success=False,
            )

        return run_issue(
            IssueAttemptInput(visitor_id, content_id, out.session.id),
            self._attempts,
            self._sessions,
            self._time,
            self._rules.gating,
        )

    def complete_attempt(self, token: str, visitor_id: str | None = None) -> CompleteAttemptOutput:
        out = run_complete(
            CompleteAttemptInput(token=token, visitor_id=visitor_id),
            self._uow,
            self._time,
            self._rules.gating,
        )
        if out.crossed_completion and out.session is not None:
            self._on_unlocked(out.session.visitor_id, out.session.content_id)
        return out

    # --- Spending ---

    def spend_coordinator(
        self, on_celebrate: Callable[[str], None] | None = None
    ) -> RewardSpendCoordinator:
        return RewardSpendCoordinator(
            self._uow,
            self._ledger,
            self._time,
            self._rules.rewards,
            on_celebrate=on_celebrate,
            notifier=self._notifier,
        )

    def _request(
        self,
        coordinator: RewardSpendCoordinator,
        visitor_id: str,
        content_id: str,
        spend_type: SpendType,
        ads: int,
    ) -> SpendOutput:
        session_out = self.get_or_create_session(visitor_id, content_id)
        if not session_out.success or session_out.session is None:
            return SpendOutput(errors=session_out.errors, success=False)
        session = session_out.session

        if spend_type == "ads_discount":
            error = check_ads_discount(session, ads, self._rules.rewards)
            if error:
                return SpendOutput(errors=[error], success=False)

        return coordinator.request_spend(RequestSpendInput(visitor_id, session.id, spend_type, ads))

    def quote_spend(
        self, visitor_id: str, content_id: str, spend_type: SpendType, ads: int = 1
    ) -> SpendOutput:
        """Price a spend against the current balance without applying it."""
        coordinator = self.spend_coordinator()
        out = self._request(coordinator, visitor_id, content_id, spend_type, ads)
        coordinator.cancel()
        return out

    def spend(
        self, visitor_id: str, content_id: str, spend_type: SpendType, ads: int = 1
    ) -> SpendOutput:
        """Request and immediately confirm a spend."""
        coordinator = self.spend_coordinator()
        quote = self._request(coordinator, visitor_id, content_id, spend_type, ads)
        if not quote.success:
            return quote

        out = coordinator.confirm()
        if out.applied and out.session is not None and out.session.completed:
            self._on_unlocked(visitor_id, content_id)
        return out

    # --- Daily rewards ---

    def daily_reward_status(self, visitor_id: str) -> DailyRewardStatus:
        return self.referrals.daily_reward_status(visitor_id)

    def claim_daily_reward(
        self, visitor_id: str, device_fingerprint: str | None = None
    ) -> DailyRewardOutput:
        return self.referrals.claim_daily_reward(visitor_id, device_fingerprint)

    # --- Observers ---

    def _on_unlocked(self, visitor_id: str, content_id: str) -> None:
        logger.info("Content %s unlocked for %s", content_id, visitor_id)
        self.referrals.record_content_unlock(visitor_id)
        try:
            self._catalog.record_unlock(content_id)
        except StorageError as e:
            logger.warning("Could not bump unlock count for %s: %s", content_id, e)
