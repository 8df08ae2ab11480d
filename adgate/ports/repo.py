"""
Repository and unit-of-work interfaces shared by the gating and rewards
components.

Every method that mutates a counter or a state field is a conditional
update: it reports whether it won (bool / None) instead of reading and
writing back, so concurrent callers never lose an update.
"""

from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID

from adgate.domain.entities import (
    AdAttempt,
    CompletionSource,
    ReferralLedgerEntry,
    ReferralRecord,
    RewardTransaction,
    ShortcutKind,
    UnlockSession,
)


class UnlockSessionRepoPort(Protocol):
    def get_by_id(self, session_id: UUID) -> UnlockSession | None:
        ...

    def get_by_visitor_content(self, visitor_id: str, content_id: str) -> UnlockSession | None:
        ...

    def insert_if_absent(self, session: UnlockSession) -> UnlockSession:
        """Insert unless (visitor_id, content_id) exists; return the stored session."""
        ...

    def record_ad_watched(
        self, session_id: UUID, now: datetime
    ) -> tuple[UnlockSession, bool] | None:
        """
        Atomically add one watched ad.

        Returns (session after, crossed_completion), or None if missing.
        """
        ...

    def apply_shortcut(
        self,
        session_id: UUID,
        kind: ShortcutKind,
        source: CompletionSource,
        now: datetime,
        count: int = 1,
    ) -> UnlockSession | None:
        """Apply a reward shortcut unless completed; None when not applied."""
        ...


class AdAttemptRepoPort(Protocol):
    def save(self, attempt: AdAttempt) -> AdAttempt:
        ...

    def get_by_token_hash(self, token_hash: str) -> AdAttempt | None:
        ...

    def mark_used(self, attempt_id: UUID, now: datetime) -> bool:
        """Compare-and-set issued -> used. False if already used."""
        ...

    def list_by_session(self, session_id: UUID) -> list[AdAttempt]:
        ...


class LedgerRepoPort(Protocol):
    def get(self, visitor_id: str) -> ReferralLedgerEntry | None:
        ...

    def get_by_code(self, referral_code: str) -> ReferralLedgerEntry | None:
        ...

    def insert_if_absent(self, entry: ReferralLedgerEntry) -> ReferralLedgerEntry:
        ...

    def set_referred_by(
        self, visitor_id: str, code: str, referrer_visitor_id: str, now: datetime
    ) -> bool:
        """First-write-wins. False if a referrer is already set."""
        ...

    def credit(
        self,
        visitor_id: str,
        now: datetime,
        *,
        coins: int = 0,
        bonus_unlocks: int = 0,
        total_referrals: int = 0,
        valid_referrals: int = 0,
        ads_reduction_percent: int = 0,
        max_ads_reduction: int = 100,
    ) -> None:
        ...

    def debit(
        self, visitor_id: str, now: datetime, *, coins: int = 0, bonus_unlocks: int = 0
    ) -> bool:
        """Conditional debit. False (and no change) if any balance is short."""
        ...

    def set_priority_expiry(self, visitor_id: str, expires_at: datetime, now: datetime) -> None:
        ...

    def start_tracking(self, visitor_id: str, now: datetime) -> bool:
        ...

    def stop_tracking(
        self, visitor_id: str, started_at: datetime, seconds: int, now: datetime
    ) -> bool:
        ...

    def increment_unlocks(self, visitor_id: str, now: datetime) -> None:
        ...

    def record_daily_claim(
        self,
        visitor_id: str,
        previous_claim_at: datetime | None,
        streak: int,
        now: datetime,
    ) -> bool:
        """Compare-and-set on last_daily_claim_at. False if another claim won."""
        ...

    def log_device_claim(self, visitor_id: str, device_fingerprint: str, now: datetime) -> None:
        ...

    def count_device_claims_since(self, device_fingerprint: str, since: datetime) -> int:
        ...

    def append_transaction(self, tx: RewardTransaction) -> None:
        ...

    def list_transactions(self, visitor_id: str, limit: int = 20) -> list[RewardTransaction]:
        ...


class ReferralRepoPort(Protocol):
    def add(self, record: ReferralRecord) -> bool:
        """Insert unless the referred visitor already has a record."""
        ...

    def get_for_referred(self, referred_visitor_id: str) -> ReferralRecord | None:
        ...

    def list_for_referrer(
        self, referrer_code: str, status: str | None = None
    ) -> list[ReferralRecord]:
        ...

    def promote(self, referred_visitor_id: str, now: datetime) -> bool:
        """Compare-and-set pending -> valid."""
        ...

    def mark_rewarded(self, record_id: UUID, now: datetime) -> bool:
        """Compare-and-set valid -> rewarded."""
        ...

    def count_rewarded_since(self, referrer_code: str, since: datetime) -> int:
        ...

    def count_claims_by_fingerprint(self, device_fingerprint: str) -> int:
        ...


@dataclass(frozen=True)
class TransactionContext:
    """Repositories bound to one atomic transaction."""

    sessions: UnlockSessionRepoPort
    attempts: AdAttemptRepoPort
    ledger: LedgerRepoPort
    referrals: ReferralRepoPort


class UnitOfWorkPort(Protocol):
    def transaction(self) -> AbstractContextManager[TransactionContext]:
        """
        Open an atomic transaction.

        Commits when the block exits normally; rolls back every write made
        through the context when it raises.
        """
        ...


# --- Errors ---


class StorageError(Exception):
    """Base class for storage errors."""


class StorageUnavailableError(StorageError):
    """Raised when the backing store cannot be read or written."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"Storage unavailable during {operation}: {reason}")
