"""
Rewards component - spend coins and unlock cards for gating relief with a
request / confirm / cancel contract.
"""

from ._impl import RewardSpendCoordinator
from .component import (
    CELEBRATIONS,
    balance_of,
    celebration_message,
    check_ads_discount,
    check_affordability,
    check_discount_size,
    spend_cost,
)
from .models import (
    CelebrationState,
    Currency,
    PendingSpend,
    RequestSpendInput,
    SpendOutput,
    SpendType,
)
from .ports import LedgerReaderPort, NoticeLevel, NotifierPort, TimePort, UnitOfWorkPort

__all__ = [
    # Coordinator
    "RewardSpendCoordinator",
    # Pure functions
    "CELEBRATIONS",
    "spend_cost",
    "balance_of",
    "check_affordability",
    "check_discount_size",
    "check_ads_discount",
    "celebration_message",
    # Models
    "SpendType",
    "Currency",
    "RequestSpendInput",
    "PendingSpend",
    "CelebrationState",
    "SpendOutput",
    # Ports
    "LedgerReaderPort",
    "NoticeLevel",
    "NotifierPort",
    "TimePort",
    "UnitOfWorkPort",
]
