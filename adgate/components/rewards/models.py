"""
Reward spend coordinator models.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal
from uuid import UUID

from adgate.domain.entities import UnlockSession
from adgate.domain.errors import GateError

SpendType = Literal["bonus_card", "coins_full_unlock", "coins_skip_ad", "ads_discount"]
Currency = Literal["coins", "bonus_unlocks"]


@dataclass(frozen=True)
class RequestSpendInput:
    visitor_id: str
    session_id: UUID
    spend_type: SpendType
    ads: int = 1


@dataclass(frozen=True)
class PendingSpend:
    """A quoted spend awaiting confirm() or cancel(). Never persisted."""

    spend_type: SpendType
    visitor_id: str
    session_id: UUID
    cost: int
    currency: Currency
    balance_before: int
    balance_after: int
    ads: int = 1
    on_success: Callable[[UnlockSession], None] | None = None


@dataclass
class CelebrationState:
    active: bool = False
    message: str | None = None


@dataclass(frozen=True)
class SpendOutput:
    applied: bool = False
    session: UnlockSession | None = None
    spend: PendingSpend | None = None
    celebration: str | None = None
    errors: list[GateError] = field(default_factory=list)
    success: bool = True
