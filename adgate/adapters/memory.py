"""
In-memory adapters for the gating and rewards ports.

Used for development and tests. One InMemoryStore holds every table; a
re-entrant lock serializes writers and InMemoryUnitOfWork snapshots the store
so a failed transaction leaves no trace.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from adgate.domain.entities import (
    AdAttempt,
    CompletionSource,
    ContentInfo,
    ReferralLedgerEntry,
    ReferralRecord,
    RewardTransaction,
    ShortcutKind,
    UnlockSession,
)
from adgate.domain.state import apply_shortcut, record_ad_watched
from adgate.ports.repo import TransactionContext


@dataclass
class InMemoryStore:
    sessions: dict[UUID, UnlockSession] = field(default_factory=dict)
    attempts: dict[UUID, AdAttempt] = field(default_factory=dict)
    ledgers: dict[str, ReferralLedgerEntry] = field(default_factory=dict)
    referrals: dict[UUID, ReferralRecord] = field(default_factory=dict)
    transactions: list[RewardTransaction] = field(default_factory=list)
    device_claims: list[tuple[str, str, datetime]] = field(default_factory=list)
    lock: threading.RLock = field(default_factory=threading.RLock)

    def snapshot(self) -> dict[str, object]:
        return {
            "sessions": copy.deepcopy(self.sessions),
            "attempts": copy.deepcopy(self.attempts),
            "ledgers": copy.deepcopy(self.ledgers),
            "referrals": copy.deepcopy(self.referrals),
            "transactions": list(self.transactions),
            "device_claims": list(self.device_claims),
        }

    def restore(self, snap: dict[str, object]) -> None:
        for name, value in snap.items():
            setattr(self, name, value)


class InMemoryUnlockSessionRepo:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def get_by_id(self, session_id: UUID) -> UnlockSession | None:
        with self._store.lock:
            return self._store.sessions.get(session_id)

    def get_by_visitor_content(self, visitor_id: str, content_id: str) -> UnlockSession | None:
        with self._store.lock:
            return next(
                (
                    s
                    for s in self._store.sessions.values()
                    if s.visitor_id == visitor_id and s.content_id == content_id
                ),
                None,
            )

    def insert_if_absent(self, session: UnlockSession) -> UnlockSession:
        with self._store.lock:
            existing = self.get_by_visitor_content(session.visitor_id, session.content_id)
            if existing:
                return existing
            self._store.sessions[session.id] = session
            return session

    def record_ad_watched(
        self, session_id: UUID, now: datetime
    ) -> tuple[UnlockSession, bool] | None:
        with self._store.lock:
            session = self._store.sessions.get(session_id)
            if session is None:
                return None
            updated, crossed = record_ad_watched(session, now)
            self._store.sessions[session_id] = updated
            return updated, crossed

    def apply_shortcut(
        self,
        session_id: UUID,
        kind: ShortcutKind,
        source: CompletionSource,
        now: datetime,
        count: int = 1,
    ) -> UnlockSession | None:
        with self._store.lock:
            session = self._store.sessions.get(session_id)
            if session is None or session.completed:
                return None
            updated = apply_shortcut(session, kind, now, source, count)
            self._store.sessions[session_id] = updated
            return updated


class InMemoryAdAttemptRepo:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def save(self, attempt: AdAttempt) -> AdAttempt:
        with self._store.lock:
            self._store.attempts[attempt.id] = attempt
        return attempt

    def get_by_token_hash(self, token_hash: str) -> AdAttempt | None:
        with self._store.lock:
            return next(
                (a for a in self._store.attempts.values() if a.token_hash == token_hash), None
            )

    def mark_used(self, attempt_id: UUID, now: datetime) -> bool:
        with self._store.lock:
            attempt = self._store.attempts.get(attempt_id)
            if attempt is None or attempt.state != "issued":
                return False
            self._store.attempts[attempt_id] = attempt.model_copy(
                update={"state": "used", "completed_at": now}
            )
            return True

    def list_by_session(self, session_id: UUID) -> list[AdAttempt]:
        with self._store.lock:
            attempts = [
                a for a in self._store.attempts.values() if a.unlock_session_id == session_id
            ]
        return sorted(attempts, key=lambda a: a.started_at)


class InMemoryLedgerRepo:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def get(self, visitor_id: str) -> ReferralLedgerEntry | None:
        with self._store.lock:
            return self._store.ledgers.get(visitor_id)

    def get_by_code(self, referral_code: str) -> ReferralLedgerEntry | None:
        with self._store.lock:
            return next(
                (e for e in self._store.ledgers.values() if e.my_referral_code == referral_code),
                None,
            )

    def insert_if_absent(self, entry: ReferralLedgerEntry) -> ReferralLedgerEntry:
        with self._store.lock:
            return self._store.ledgers.setdefault(entry.visitor_id, entry)

    def _update(self, visitor_id: str, **updates: object) -> None:
        entry = self._store.ledgers[visitor_id]
        self._store.ledgers[visitor_id] = entry.model_copy(update=updates)

    def set_referred_by(
        self, visitor_id: str, code: str, referrer_visitor_id: str, now: datetime
    ) -> bool:
        with self._store.lock:
            entry = self._store.ledgers.get(visitor_id)
            if entry is None or entry.referred_by_code is not None:
                return False
            self._update(
                visitor_id,
                referred_by_code=code,
                referred_by_visitor_id=referrer_visitor_id,
                updated_at=now,
            )
            return True

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
        with self._store.lock:
            entry = self._store.ledgers[visitor_id]
            self._update(
                visitor_id,
                coins=entry.coins + coins,
                bonus_unlocks=entry.bonus_unlocks + bonus_unlocks,
                total_referrals=entry.total_referrals + total_referrals,
                valid_referrals=entry.valid_referrals + valid_referrals,
                ads_reduction_percent=min(
                    entry.ads_reduction_percent + ads_reduction_percent, max_ads_reduction
                ),
                updated_at=now,
            )

    def debit(
        self, visitor_id: str, now: datetime, *, coins: int = 0, bonus_unlocks: int = 0
    ) -> bool:
        with self._store.lock:
            entry = self._store.ledgers.get(visitor_id)
            if entry is None or entry.coins < coins or entry.bonus_unlocks < bonus_unlocks:
                return False
            self._update(
                visitor_id,
                coins=entry.coins - coins,
                bonus_unlocks=entry.bonus_unlocks - bonus_unlocks,
                updated_at=now,
            )
            return True

    def set_priority_expiry(self, visitor_id: str, expires_at: datetime, now: datetime) -> None:
        with self._store.lock:
            self._update(visitor_id, priority_unlock_expires_at=expires_at, updated_at=now)

    def start_tracking(self, visitor_id: str, now: datetime) -> bool:
        with self._store.lock:
            entry = self._store.ledgers.get(visitor_id)
            if entry is None or entry.tracking_started_at is not None:
                return False
            self._update(visitor_id, tracking_started_at=now, updated_at=now)
            return True

    def stop_tracking(
        self, visitor_id: str, started_at: datetime, seconds: int, now: datetime
    ) -> bool:
        with self._store.lock:
            entry = self._store.ledgers.get(visitor_id)
            if entry is None or entry.tracking_started_at != started_at:
                return False
            self._update(
                visitor_id,
                tracking_started_at=None,
                total_time_tracked_seconds=entry.total_time_tracked_seconds + seconds,
                updated_at=now,
            )
            return True

    def increment_unlocks(self, visitor_id: str, now: datetime) -> None:
        with self._store.lock:
            entry = self._store.ledgers[visitor_id]
            self._update(
                visitor_id,
                total_unlocks_completed=entry.total_unlocks_completed + 1,
                updated_at=now,
            )

    def record_daily_claim(
        self,
        visitor_id: str,
        previous_claim_at: datetime | None,
        streak: int,
        now: datetime,
    ) -> bool:
        with self._store.lock:
            entry = self._store.ledgers.get(visitor_id)
            if entry is None or entry.last_daily_claim_at != previous_claim_at:
                return False
            self._update(
                visitor_id,
                daily_streak=streak,
                daily_claims_total=entry.daily_claims_total + 1,
                last_daily_claim_at=now,
                updated_at=now,
            )
            return True

    def log_device_claim(self, visitor_id: str, device_fingerprint: str, now: datetime) -> None:
        with self._store.lock:
            self._store.device_claims.append((visitor_id, device_fingerprint, now))

    def count_device_claims_since(self, device_fingerprint: str, since: datetime) -> int:
        with self._store.lock:
            return sum(
                1
                for _, fingerprint, claimed_at in self._store.device_claims
                if fingerprint == device_fingerprint and claimed_at >= since
            )

    def append_transaction(self, tx: RewardTransaction) -> None:
        with self._store.lock:
            self._store.transactions.append(tx)

    def list_transactions(self, visitor_id: str, limit: int = 20) -> list[RewardTransaction]:
        with self._store.lock:
            mine = [t for t in self._store.transactions if t.visitor_id == visitor_id]
        return list(reversed(mine))[:limit]


class InMemoryReferralRepo:
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def add(self, record: ReferralRecord) -> bool:
        with self._store.lock:
            if self.get_for_referred(record.referred_visitor_id):
                return False
            self._store.referrals[record.id] = record
            return True

    def get_for_referred(self, referred_visitor_id: str) -> ReferralRecord | None:
        with self._store.lock:
            return next(
                (
                    r
                    for r in self._store.referrals.values()
                    if r.referred_visitor_id == referred_visitor_id
                ),
                None,
            )

    def list_for_referrer(
        self, referrer_code: str, status: str | None = None
    ) -> list[ReferralRecord]:
        with self._store.lock:
            records = [
                r
                for r in self._store.referrals.values()
                if r.referrer_code == referrer_code and (status is None or r.status == status)
            ]
        return sorted(records, key=lambda r: r.created_at)

    def promote(self, referred_visitor_id: str, now: datetime) -> bool:
        with self._store.lock:
            record = self.get_for_referred(referred_visitor_id)
            if record is None or record.status != "pending":
                return False
            self._store.referrals[record.id] = record.model_copy(
                update={"status": "valid", "validated_at": now}
            )
            return True

    def mark_rewarded(self, record_id: UUID, now: datetime) -> bool:
        with self._store.lock:
            record = self._store.referrals.get(record_id)
            if record is None or record.status != "valid":
                return False
            self._store.referrals[record_id] = record.model_copy(
                update={"status": "rewarded", "rewarded_at": now}
            )
            return True

    def count_rewarded_since(self, referrer_code: str, since: datetime) -> int:
        with self._store.lock:
            return sum(
                1
                for r in self._store.referrals.values()
                if r.referrer_code == referrer_code
                and r.rewarded_at is not None
                and r.rewarded_at >= since
            )

    def count_claims_by_fingerprint(self, device_fingerprint: str) -> int:
        with self._store.lock:
            return sum(
                1
                for r in self._store.referrals.values()
                if r.device_fingerprint == device_fingerprint
            )


class InMemoryUnitOfWork:
    """UnitOfWorkPort over an InMemoryStore."""

    def __init__(self, store: InMemoryStore | None = None) -> None:
        self.store = store or InMemoryStore()
        self.sessions = InMemoryUnlockSessionRepo(self.store)
        self.attempts = InMemoryAdAttemptRepo(self.store)
        self.ledger = InMemoryLedgerRepo(self.store)
        self.referrals = InMemoryReferralRepo(self.store)

    @contextmanager
    def transaction(self) -> Iterator[TransactionContext]:
        with self.store.lock:
            snap = self.store.snapshot()
            try:
                yield TransactionContext(
                    sessions=self.sessions,
                    attempts=self.attempts,
                    ledger=self.ledger,
                    referrals=self.referrals,
                )
            except BaseException:
                self.store.restore(snap)
                raise


class InMemoryContentCatalog:
    """ContentCatalogPort backed by a dict."""

    def __init__(self, items: list[ContentInfo] | None = None) -> None:
        self._items = {c.id: c for c in items or []}
        self.unlocks: dict[str, int] = {}

    def add(self, item: ContentInfo) -> None:
        self._items[item.id] = item

    def get_content(self, content_id: str) -> ContentInfo | None:
        return self._items.get(content_id)

    def record_unlock(self, content_id: str) -> None:
        self.unlocks[content_id] = self.unlocks.get(content_id, 0) + 1
