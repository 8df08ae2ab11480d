"""
RewardSpendCoordinator - trades ledger balances for gating relief.

One coordinator per UI or request context. It holds at most one pending
spend; confirm() debits and applies the shortcut in a single transaction so
a lost race or a rejected shortcut leaves the balance untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from adgate.components.unlock import ApplyShortcutInput, run_apply_shortcut
from adgate.domain.entities import RewardTransaction, UnlockSession
from adgate.domain.errors import GateError, GateFailure, insufficient_balance
from adgate.rules.models import RewardsRules

from .component import (
    SHORTCUTS,
    TRANSACTION_TYPES,
    balance_of,
    celebration_message,
    check_ads_discount,
    check_affordability,
    check_discount_size,
    debit_amounts,
    shortfall_message,
    spend_cost,
    transaction_description,
)
from .models import CelebrationState, PendingSpend, RequestSpendInput, SpendOutput
from .ports import (
    LedgerReaderPort,
    NoticeLevel,
    NotifierPort,
    StorageError,
    TimePort,
    UnitOfWorkPort,
)

logger = logging.getLogger(__name__)


class RewardSpendCoordinator:
    def __init__(
        self,
        unit_of_work: UnitOfWorkPort,
        ledger: LedgerReaderPort,
        time: TimePort,
        rules: RewardsRules,
        on_celebrate: Callable[[str], None] | None = None,
        notifier: NotifierPort | None = None,
    ) -> None:
        self._uow = unit_of_work
        self._ledger = ledger
        self._time = time
        self._rules = rules
        self._on_celebrate = on_celebrate
        self._notifier = notifier
        self.pending: PendingSpend | None = None
        self.celebration = CelebrationState()

    def request_spend(
        self,
        inp: RequestSpendInput,
        on_success: Callable[[UnlockSession], None] | None = None,
    ) -> SpendOutput:
        """
        Quote a spend and hold it for confirmation.

        A shortfall is reported without touching any state; a new request
        replaces an earlier pending one.
        """
        if inp.spend_type == "ads_discount":
            error = check_discount_size(inp.ads, self._rules)
            if error:
                return SpendOutput(errors=[error], success=False)

        cost, currency = spend_cost(inp.spend_type, self._rules, inp.ads)
        try:
            entry = self._ledger.get(inp.visitor_id)
        except StorageError as e:
            logger.warning("Ledger unavailable for %s, treating as empty: %s", inp.visitor_id, e)
            entry = None
        balance = balance_of(entry, currency)

        error = check_affordability(inp.spend_type, balance, cost, inp.ads)
        if error:
            self._notify("Not enough balance", error.message, "error")
            return SpendOutput(errors=[error], success=False)

        self.pending = PendingSpend(
            spend_type=inp.spend_type,
            visitor_id=inp.visitor_id,
            session_id=inp.session_id,
            cost=cost,
            currency=currency,
            balance_before=balance,
            balance_after=balance - cost,
            ads=inp.ads if inp.spend_type == "ads_discount" else 1,
            on_success=on_success,
        )
        return SpendOutput(spend=self.pending)

    def confirm(self) -> SpendOutput:
        """Debit and apply the pending spend. The pending spend is cleared either way."""
        pending, self.pending = self.pending, None
        if pending is None:
            return SpendOutput(
                errors=[GateError("VALIDATION_ERROR", "No pending spend to confirm")],
                success=False,
            )

        kind, source = SHORTCUTS[pending.spend_type]
        now = self._time.now_utc()

        try:
            with self._uow.transaction() as tx:
                if pending.spend_type == "ads_discount":
                    current = tx.sessions.get_by_id(pending.session_id)
                    if current is not None:
                        error = check_ads_discount(current, pending.ads, self._rules)
                        if error:
                            raise GateFailure(error)

                debited = tx.ledger.debit(
                    pending.visitor_id, now, **debit_amounts(pending.cost, pending.currency)
                )
                if not debited:
                    raise GateFailure(
                        insufficient_balance(
                            shortfall_message(pending.spend_type, pending.cost, pending.ads)
                        )
                    )

                out = run_apply_shortcut(
                    ApplyShortcutInput(
                        session_id=pending.session_id,
                        kind=kind,
                        source=source,
                        visitor_id=pending.visitor_id,
                        count=pending.ads,
                    ),
                    tx.sessions,
                    self._time,
                )
                if not out.success or out.session is None:
                    raise GateFailure(out.errors[0])
                session = out.session

                coins = pending.cost if pending.currency == "coins" else 0
                cards = pending.cost if pending.currency == "bonus_unlocks" else 0
                tx.ledger.append_transaction(
                    RewardTransaction(
                        visitor_id=pending.visitor_id,
                        type=TRANSACTION_TYPES[pending.spend_type],
                        coins_change=-coins,
                        unlock_cards_change=-cards,
                        content_id=session.content_id,
                        description=transaction_description(
                            pending.spend_type, pending.cost, pending.ads
                        ),
                        created_at=now,
                    )
                )
        except GateFailure as e:
            logger.warning(
                "Spend %s by %s rejected: %s", pending.spend_type, pending.visitor_id, e
            )
            self._notify("Failed to process reward", e.error.message, "error")
            return SpendOutput(spend=pending, errors=[e.error], success=False)

        logger.info(
            "Spend %s applied for %s on session %s",
            pending.spend_type,
            pending.visitor_id,
            session.id,
        )

        if pending.on_success:
            pending.on_success(session)

        message = celebration_message(pending.spend_type)
        self.celebration = CelebrationState(active=True, message=message)
        if self._on_celebrate:
            self._on_celebrate(message)
        self._notify(message, f"Spent {pending.cost} {pending.currency}", "success")

        return SpendOutput(applied=True, session=session, spend=pending, celebration=message)

    def cancel(self) -> None:
        self.pending = None

    def dismiss_celebration(self) -> None:
        self.celebration = CelebrationState(active=False, message=self.celebration.message)

    def _notify(self, title: str, message: str, level: NoticeLevel) -> None:
        if self._notifier:
            self._notifier.notify(title, message, level)
