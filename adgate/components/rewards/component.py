"""
Reward spend coordinator - functional core.

Maps each spend type to its cost, the gating shortcut it buys, the ledger
transaction it writes and the celebration it shows.
"""

from __future__ import annotations

from adgate.domain.entities import (
    CompletionSource,
    ReferralLedgerEntry,
    ShortcutKind,
    TransactionType,
    UnlockSession,
)
from adgate.domain.errors import GateError, conflict, insufficient_balance
from adgate.rules.models import RewardsRules

from .models import Currency, SpendType

MIN_ADS_AFTER_DISCOUNT = 1

CELEBRATIONS: dict[SpendType, str] = {
    "bonus_card": "Unlocked with Card!",
    "coins_full_unlock": "Full Unlock Complete!",
    "coins_skip_ad": "Ad Skipped!",
    "ads_discount": "Ads Reduced!",
}

SHORTCUTS: dict[SpendType, tuple[ShortcutKind, CompletionSource]] = {
    "bonus_card": ("full_unlock", "bonus_card"),
    "coins_full_unlock": ("full_unlock", "coins_full_unlock"),
    "coins_skip_ad": ("skip_ad", "skip"),
    "ads_discount": ("ads_discount", "ads_discount"),
}

TRANSACTION_TYPES: dict[SpendType, TransactionType] = {
    "bonus_card": "unlock_card_used",
    "coins_full_unlock": "full_unlock",
    "coins_skip_ad": "ad_skip",
    "ads_discount": "ad_discount",
}


def spend_cost(spend_type: SpendType, rules: RewardsRules, ads: int = 1) -> tuple[int, Currency]:
    if spend_type == "bonus_card":
        return 1, "bonus_unlocks"
    if spend_type == "coins_full_unlock":
        return rules.coins_for_full_unlock, "coins"
    if spend_type == "ads_discount":
        return ads * rules.coins_per_ad_discount, "coins"
    return rules.coins_per_ad_skip, "coins"


def balance_of(entry: ReferralLedgerEntry | None, currency: Currency) -> int:
    if entry is None:
        return 0
    return entry.coins if currency == "coins" else entry.bonus_unlocks


def shortfall_message(spend_type: SpendType, cost: int, ads: int = 1) -> str:
    if spend_type == "bonus_card":
        return "You don't have any unlock cards"
    if spend_type == "coins_full_unlock":
        return f"You need {cost} coins for full unlock"
    if spend_type == "ads_discount":
        return f"You need {cost} coins to reduce {ads} ads"
    return f"You need {cost} coins to skip an ad"


def check_affordability(
    spend_type: SpendType, balance: int, cost: int, ads: int = 1
) -> GateError | None:
    if balance >= cost:
        return None
    return insufficient_balance(shortfall_message(spend_type, cost, ads))


def check_discount_size(ads: int, rules: RewardsRules) -> GateError | None:
    """Bounds that hold for any session; check_ads_discount adds the per-session ones."""
    if ads < 1:
        return GateError("VALIDATION_ERROR", "Discount at least 1 ad")
    if ads > rules.max_ads_discount_per_session:
        return GateError(
            "VALIDATION_ERROR",
            f"Maximum {rules.max_ads_discount_per_session} ads can be discounted",
        )
    return None


def check_ads_discount(session: UnlockSession, ads: int, rules: RewardsRules) -> GateError | None:
    """
    A discount may not take the requirement below one ad, and one session
    sheds at most max_ads_discount_per_session ads in total.
    """
    if session.completed:
        return conflict("Session already completed")
    error = check_discount_size(ads, rules)
    if error:
        return error
    if session.ads_discounted + ads > rules.max_ads_discount_per_session:
        return GateError(
            "VALIDATION_ERROR",
            f"Maximum {rules.max_ads_discount_per_session} ads can be discounted",
        )
    if session.ads_required - session.ads_discounted - ads < MIN_ADS_AFTER_DISCOUNT:
        return GateError("VALIDATION_ERROR", "Cannot reduce all ads")
    return None


def debit_amounts(cost: int, currency: Currency) -> dict[str, int]:
    return {"coins": cost} if currency == "coins" else {"bonus_unlocks": cost}


def celebration_message(spend_type: SpendType) -> str:
    return CELEBRATIONS[spend_type]


def transaction_description(spend_type: SpendType, cost: int, ads: int = 1) -> str:
    if spend_type == "ads_discount":
        return f"Reduced {ads} ads for {cost} coins"
    return celebration_message(spend_type)
