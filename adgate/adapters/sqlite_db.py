"""
SQLite adapter for the gating and rewards ports.

Repositories open one connection per call unless bound to an external
connection, in which case the owner (SQLiteUnitOfWork) commits or rolls back.
Counter and state changes are single conditional UPDATEs whose rowcount tells
the caller whether it won.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any
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
from adgate.ports.repo import StorageUnavailableError, TransactionContext

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0

SCHEMA = """
CREATE TABLE IF NOT EXISTS unlock_sessions (
    id TEXT PRIMARY KEY,
    visitor_id TEXT NOT NULL,
    content_id TEXT NOT NULL,
    ads_required INTEGER NOT NULL,
    ads_watched INTEGER NOT NULL DEFAULT 0,
    skip_credits INTEGER NOT NULL DEFAULT 0,
    ads_discounted INTEGER NOT NULL DEFAULT 0,
    completed INTEGER NOT NULL DEFAULT 0,
    completed_via TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (visitor_id, content_id)
);

CREATE TABLE IF NOT EXISTS ad_attempts (
    id TEXT PRIMARY KEY,
    token_hash TEXT NOT NULL UNIQUE,
    visitor_id TEXT NOT NULL,
    content_id TEXT NOT NULL,
    unlock_session_id TEXT NOT NULL REFERENCES unlock_sessions(id),
    state TEXT NOT NULL DEFAULT 'issued',
    started_at TEXT NOT NULL,
    completed_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_ad_attempts_session ON ad_attempts(unlock_session_id);

CREATE TABLE IF NOT EXISTS referral_ledgers (
    visitor_id TEXT PRIMARY KEY,
    my_referral_code TEXT NOT NULL,
    referred_by_code TEXT,
    referred_by_visitor_id TEXT,
    total_referrals INTEGER NOT NULL DEFAULT 0,
    valid_referrals INTEGER NOT NULL DEFAULT 0,
    coins INTEGER NOT NULL DEFAULT 0 CHECK (coins >= 0),
    bonus_unlocks INTEGER NOT NULL DEFAULT 0 CHECK (bonus_unlocks >= 0),
    ads_reduction_percent INTEGER NOT NULL DEFAULT 0,
    priority_unlock_expires_at TEXT,
    total_time_tracked_seconds INTEGER NOT NULL DEFAULT 0,
    total_unlocks_completed INTEGER NOT NULL DEFAULT 0,
    tracking_started_at TEXT,
    daily_streak INTEGER NOT NULL DEFAULT 0,
    daily_claims_total INTEGER NOT NULL DEFAULT 0,
    last_daily_claim_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_referral_ledgers_code
    ON referral_ledgers(my_referral_code);

CREATE TABLE IF NOT EXISTS daily_device_claims (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    visitor_id TEXT NOT NULL,
    device_fingerprint TEXT NOT NULL,
    claimed_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_daily_device_claims_device
    ON daily_device_claims(device_fingerprint, claimed_at);

CREATE TABLE IF NOT EXISTS referrals (
    id TEXT PRIMARY KEY,
    referrer_code TEXT NOT NULL,
    referrer_visitor_id TEXT NOT NULL,
    referred_visitor_id TEXT NOT NULL UNIQUE,
    status TEXT NOT NULL DEFAULT 'pending',
    device_fingerprint TEXT,
    created_at TEXT NOT NULL,
    validated_at TEXT,
    rewarded_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_referrals_referrer ON referrals(referrer_code, status);
CREATE INDEX IF NOT EXISTS idx_referrals_fingerprint ON referrals(device_fingerprint);

CREATE TABLE IF NOT EXISTS reward_transactions (
    id TEXT PRIMARY KEY,
    visitor_id TEXT NOT NULL,
    type TEXT NOT NULL,
    coins_change INTEGER NOT NULL DEFAULT 0,
    unlock_cards_change INTEGER NOT NULL DEFAULT 0,
    content_id TEXT,
    description TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_reward_transactions_visitor
    ON reward_transactions(visitor_id, created_at);

CREATE TABLE IF NOT EXISTS contents (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL DEFAULT '',
    required_ads INTEGER,
    status TEXT NOT NULL DEFAULT 'active',
    unlock_count INTEGER NOT NULL DEFAULT 0
);
"""

# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """Convert SQLite row to dictionary."""
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


def parse_dt(s: str | None) -> datetime | None:
    """Parse ISO datetime string."""
    return datetime.fromisoformat(s) if s else None


def fmt_dt(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def connect(db_path: str, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, timeout=timeout)
    conn.row_factory = dict_factory
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def init_schema(db_path: str) -> None:
    """Create tables if missing. Safe to call on every startup."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
        conn.executescript(SCHEMA)
        conn.commit()
    finally:
        conn.close()
    logger.info("Schema ready at %s", db_path)


# -----------------------------------------------------------------------------
# Base SQLite Repository
# -----------------------------------------------------------------------------


class SQLiteRepoBase:
    """Base class for SQLite repositories."""

    def __init__(
        self,
        db_path: str,
        connection: sqlite3.Connection | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.db_path = db_path
        self.timeout = timeout
        self._external_conn = connection

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection (uses external if provided)."""
        if self._external_conn is not None:
            return self._external_conn
        return connect(self.db_path, self.timeout)

    def _should_close(self) -> bool:
        """Whether to close connection after use."""
        return self._external_conn is None


# -----------------------------------------------------------------------------
# Unlock Session Repository
# -----------------------------------------------------------------------------


class SQLiteUnlockSessionRepo(SQLiteRepoBase):
    """SQLite implementation of UnlockSessionRepoPort."""

    def get_by_id(self, session_id: UUID) -> UnlockSession | None:
        conn = self._get_conn()
        try:
            return self._get(conn, session_id)
        finally:
            if self._should_close():
                conn.close()

    def get_by_visitor_content(self, visitor_id: str, content_id: str) -> UnlockSession | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM unlock_sessions WHERE visitor_id = ? AND content_id = ?",
                (visitor_id, content_id),
            ).fetchone()
            return self._map_row(row) if row else None
        finally:
            if self._should_close():
                conn.close()

    def insert_if_absent(self, session: UnlockSession) -> UnlockSession:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO unlock_sessions (
                    id, visitor_id, content_id, ads_required, ads_watched,
                    skip_credits, ads_discounted, completed, completed_via,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(visitor_id, content_id) DO NOTHING
                """,
                (
                    str(session.id),
                    session.visitor_id,
                    session.content_id,
                    session.ads_required,
                    session.ads_watched,
                    session.skip_credits,
                    session.ads_discounted,
                    1 if session.completed else 0,
                    session.completed_via,
                    session.created_at.isoformat(),
                    session.updated_at.isoformat(),
                ),
            )
            row = conn.execute(
                "SELECT * FROM unlock_sessions WHERE visitor_id = ? AND content_id = ?",
                (session.visitor_id, session.content_id),
            ).fetchone()
            if self._should_close():
                conn.commit()
            return self._map_row(row)
        finally:
            if self._should_close():
                conn.close()

    def record_ad_watched(
        self, session_id: UUID, now: datetime
    ) -> tuple[UnlockSession, bool] | None:
        conn = self._get_conn()
        try:
            result = conn.execute(
                """
                UPDATE unlock_sessions
                SET ads_watched = ads_watched + 1, updated_at = ?
                WHERE id = ?
                """,
                (now.isoformat(), str(session_id)),
            )
            if result.rowcount == 0:
                return None

            crossed = self._complete_if_met(conn, session_id, "ads", now)
            session = self._get(conn, session_id)
            if self._should_close():
                conn.commit()
            if session is None:
                return None
            return session, crossed
        finally:
            if self._should_close():
                conn.close()

    def apply_shortcut(
        self,
        session_id: UUID,
        kind: ShortcutKind,
        source: CompletionSource,
        now: datetime,
        count: int = 1,
    ) -> UnlockSession | None:
        conn = self._get_conn()
        try:
            if kind == "full_unlock":
                result = conn.execute(
                    """
                    UPDATE unlock_sessions
                    SET completed = 1, completed_via = ?, updated_at = ?
                    WHERE id = ? AND completed = 0
                    """,
                    (source, now.isoformat(), str(session_id)),
                )
            else:
                discounted = count if kind == "ads_discount" else 0
                result = conn.execute(
                    """
                    UPDATE unlock_sessions
                    SET skip_credits = skip_credits + ?,
                        ads_discounted = ads_discounted + ?,
                        updated_at = ?
                    WHERE id = ? AND completed = 0
                    """,
                    (count, discounted, now.isoformat(), str(session_id)),
                )
            if result.rowcount == 0:
                return None

            if kind != "full_unlock":
                self._complete_if_met(conn, session_id, source, now)
            session = self._get(conn, session_id)
            if self._should_close():
                conn.commit()
            return session
        finally:
            if self._should_close():
                conn.close()

    def _complete_if_met(
        self,
        conn: sqlite3.Connection,
        session_id: UUID,
        source: CompletionSource,
        now: datetime,
    ) -> bool:
        result = conn.execute(
            """
            UPDATE unlock_sessions
            SET completed = 1, completed_via = ?, updated_at = ?
            WHERE id = ? AND completed = 0
              AND ads_watched + skip_credits >= ads_required
            """,
            (source, now.isoformat(), str(session_id)),
        )
        return result.rowcount == 1

    def _get(self, conn: sqlite3.Connection, session_id: UUID) -> UnlockSession | None:
        row = conn.execute(
            "SELECT * FROM unlock_sessions WHERE id = ?", (str(session_id),)
        ).fetchone()
        return self._map_row(row) if row else None

    def _map_row(self, row: dict[str, Any]) -> UnlockSession:
        return UnlockSession(
            id=UUID(row["id"]),
            visitor_id=row["visitor_id"],
            content_id=row["content_id"],
            ads_required=row["ads_required"],
            ads_watched=row["ads_watched"],
            skip_credits=row["skip_credits"],
            ads_discounted=row["ads_discounted"],
            completed=bool(row["completed"]),
            completed_via=row["completed_via"],
            created_at=parse_dt(row["created_at"]),  # type: ignore[arg-type]
            updated_at=parse_dt(row["updated_at"]),  # type: ignore[arg-type]
        )


# -----------------------------------------------------------------------------
# Ad Attempt Repository
# -----------------------------------------------------------------------------


class SQLiteAdAttemptRepo(SQLiteRepoBase):
    """SQLite implementation of AdAttemptRepoPort."""

    def save(self, attempt: AdAttempt) -> AdAttempt:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO ad_attempts (
                    id, token_hash, visitor_id, content_id, unlock_session_id,
                    state, started_at, completed_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(attempt.id),
                    attempt.token_hash,
                    attempt.visitor_id,
                    attempt.content_id,
                    str(attempt.unlock_session_id),
                    attempt.state,
                    attempt.started_at.isoformat(),
                    fmt_dt(attempt.completed_at),
                ),
            )
            if self._should_close():
                conn.commit()
            return attempt
        finally:
            if self._should_close():
                conn.close()

    def get_by_token_hash(self, token_hash: str) -> AdAttempt | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT * FROM ad_attempts WHERE token_hash = ?", (token_hash,)
            ).fetchone()
            return self._map_row(row) if row else None
        finally:
            if self._should_close():
                conn.close()

    def mark_used(self, attempt_id: UUID, now: datetime) -> bool:
        conn = self._get_conn()
        try:
            result = conn.execute(
                """
                UPDATE ad_attempts SET state = 'used', completed_at = ?
                WHERE id = ? AND state = 'issued'
                """,
                (now.isoformat(), str(attempt_id)),
            )
            if self._should_close():
                conn.commit()
            return result.rowcount == 1
        finally:
            if self._should_close():
                conn.close()

    def list_by_session(self, session_id: UUID) -> list[AdAttempt]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM ad_attempts WHERE unlock_session_id = ? ORDER BY started_at",
                (str(session_id),),
            ).fetchall()
            return [self._map_row(r) for r in rows]
        finally:
            if self._should_close():
                conn.close()

    def _map_row(self, row: dict[str, Any]) -> AdAttempt:
        return AdAttempt(
            id=UUID(row["id"]),
            token_hash=row["token_hash"],
            visitor_id=row["visitor_id"],
            content_id=row["content_id"],
            unlock_session_id=UUID(row["unlock_session_id"]),
            state=row["state"],
            started_at=parse_dt(row["started_at"]),  # type: ignore[arg-type]
            completed_at=parse_dt(row["completed_at"]),
        )


# -----------------------------------------------------------------------------
# Ledger Repositories
# -----------------------------------------------------------------------------


class SQLiteLedgerRepoBase(SQLiteRepoBase):
    """Ledger repos report any sqlite3 fault as StorageUnavailableError."""

    @contextmanager
    def _scope(self, operation: str) -> Iterator[sqlite3.Connection]:
        try:
            conn = self._get_conn()
        except sqlite3.Error as e:
            raise StorageUnavailableError(operation, str(e)) from e
        try:
            yield conn
            if self._should_close():
                conn.commit()
        except sqlite3.Error as e:
            raise StorageUnavailableError(operation, str(e)) from e
        finally:
            if self._should_close():
                conn.close()


class SQLiteLedgerRepo(SQLiteLedgerRepoBase):
    """SQLite implementation of LedgerRepoPort."""

    def get(self, visitor_id: str) -> ReferralLedgerEntry | None:
        with self._scope("ledger.get") as conn:
            row = conn.execute(
                "SELECT * FROM referral_ledgers WHERE visitor_id = ?", (visitor_id,)
            ).fetchone()
            return self._map_row(row) if row else None

    def get_by_code(self, referral_code: str) -> ReferralLedgerEntry | None:
        with self._scope("ledger.get_by_code") as conn:
            row = conn.execute(
                "SELECT * FROM referral_ledgers WHERE my_referral_code = ?", (referral_code,)
            ).fetchone()
            return self._map_row(row) if row else None

    def insert_if_absent(self, entry: ReferralLedgerEntry) -> ReferralLedgerEntry:
        with self._scope("ledger.insert") as conn:
            conn.execute(
                """
                INSERT INTO referral_ledgers (
                    visitor_id, my_referral_code, referred_by_code, referred_by_visitor_id,
                    total_referrals, valid_referrals, coins, bonus_unlocks,
                    ads_reduction_percent, priority_unlock_expires_at,
                    total_time_tracked_seconds, total_unlocks_completed,
                    tracking_started_at, daily_streak, daily_claims_total,
                    last_daily_claim_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(visitor_id) DO NOTHING
                """,
                (
                    entry.visitor_id,
                    entry.my_referral_code,
                    entry.referred_by_code,
                    entry.referred_by_visitor_id,
                    entry.total_referrals,
                    entry.valid_referrals,
                    entry.coins,
                    entry.bonus_unlocks,
                    entry.ads_reduction_percent,
                    fmt_dt(entry.priority_unlock_expires_at),
                    entry.total_time_tracked_seconds,
                    entry.total_unlocks_completed,
                    fmt_dt(entry.tracking_started_at),
                    entry.daily_streak,
                    entry.daily_claims_total,
                    fmt_dt(entry.last_daily_claim_at),
                    entry.created_at.isoformat(),
                    entry.updated_at.isoformat(),
                ),
            )
            row = conn.execute(
                "SELECT * FROM referral_ledgers WHERE visitor_id = ?", (entry.visitor_id,)
            ).fetchone()
            return self._map_row(row)

    def set_referred_by(
        self, visitor_id: str, code: str, referrer_visitor_id: str, now: datetime
    ) -> bool:
        with self._scope("ledger.set_referred_by") as conn:
            result = conn.execute(
                """
                UPDATE referral_ledgers
                SET referred_by_code = ?, referred_by_visitor_id = ?, updated_at = ?
                WHERE visitor_id = ? AND referred_by_code IS NULL
                """,
                (code, referrer_visitor_id, now.isoformat(), visitor_id),
            )
            return result.rowcount == 1

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
        with self._scope("ledger.credit") as conn:
            conn.execute(
                """
                UPDATE referral_ledgers
                SET coins = coins + ?,
                    bonus_unlocks = bonus_unlocks + ?,
                    total_referrals = total_referrals + ?,
                    valid_referrals = valid_referrals + ?,
                    ads_reduction_percent = MIN(ads_reduction_percent + ?, ?),
                    updated_at = ?
                WHERE visitor_id = ?
                """,
                (
                    coins,
                    bonus_unlocks,
                    total_referrals,
                    valid_referrals,
                    ads_reduction_percent,
                    max_ads_reduction,
                    now.isoformat(),
                    visitor_id,
                ),
            )

    def debit(
        self, visitor_id: str, now: datetime, *, coins: int = 0, bonus_unlocks: int = 0
    ) -> bool:
        with self._scope("ledger.debit") as conn:
            result = conn.execute(
                """
                UPDATE referral_ledgers
                SET coins = coins - ?, bonus_unlocks = bonus_unlocks - ?, updated_at = ?
                WHERE visitor_id = ? AND coins >= ? AND bonus_unlocks >= ?
                """,
                (coins, bonus_unlocks, now.isoformat(), visitor_id, coins, bonus_unlocks),
            )
            return result.rowcount == 1

    def set_priority_expiry(self, visitor_id: str, expires_at: datetime, now: datetime) -> None:
        with self._scope("ledger.set_priority_expiry") as conn:
            conn.execute(
                """
                UPDATE referral_ledgers
                SET priority_unlock_expires_at = ?, updated_at = ?
                WHERE visitor_id = ?
                """,
                (expires_at.isoformat(), now.isoformat(), visitor_id),
            )

    def start_tracking(self, visitor_id: str, now: datetime) -> bool:
        with self._scope("ledger.start_tracking") as conn:
            result = conn.execute(
                """
                UPDATE referral_ledgers
                SET tracking_started_at = ?, updated_at = ?
                WHERE visitor_id = ? AND tracking_started_at IS NULL
                """,
                (now.isoformat(), now.isoformat(), visitor_id),
            )
            return result.rowcount == 1

    def stop_tracking(
        self, visitor_id: str, started_at: datetime, seconds: int, now: datetime
    ) -> bool:
        with self._scope("ledger.stop_tracking") as conn:
            result = conn.execute(
                """
                UPDATE referral_ledgers
                SET total_time_tracked_seconds = total_time_tracked_seconds + ?,
                    tracking_started_at = NULL,
                    updated_at = ?
                WHERE visitor_id = ? AND tracking_started_at = ?
                """,
                (seconds, now.isoformat(), visitor_id, started_at.isoformat()),
            )
            return result.rowcount == 1

    def increment_unlocks(self, visitor_id: str, now: datetime) -> None:
        with self._scope("ledger.increment_unlocks") as conn:
            conn.execute(
                """
                UPDATE referral_ledgers
                SET total_unlocks_completed = total_unlocks_completed + 1, updated_at = ?
                WHERE visitor_id = ?
                """,
                (now.isoformat(), visitor_id),
            )

    def record_daily_claim(
        self,
        visitor_id: str,
        previous_claim_at: datetime | None,
        streak: int,
        now: datetime,
    ) -> bool:
        with self._scope("ledger.record_daily_claim") as conn:
            result = conn.execute(
                """
                UPDATE referral_ledgers
                SET daily_streak = ?,
                    daily_claims_total = daily_claims_total + 1,
                    last_daily_claim_at = ?,
                    updated_at = ?
                WHERE visitor_id = ? AND last_daily_claim_at IS ?
                """,
                (streak, now.isoformat(), now.isoformat(), visitor_id, fmt_dt(previous_claim_at)),
            )
            return result.rowcount == 1

    def log_device_claim(self, visitor_id: str, device_fingerprint: str, now: datetime) -> None:
        with self._scope("ledger.log_device_claim") as conn:
            conn.execute(
                """
                INSERT INTO daily_device_claims (visitor_id, device_fingerprint, claimed_at)
                VALUES (?, ?, ?)
                """,
                (visitor_id, device_fingerprint, now.isoformat()),
            )

    def count_device_claims_since(self, device_fingerprint: str, since: datetime) -> int:
        with self._scope("ledger.count_device_claims") as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS n FROM daily_device_claims
                WHERE device_fingerprint = ? AND claimed_at >= ?
                """,
                (device_fingerprint, since.isoformat()),
            ).fetchone()
            return row["n"]

    def append_transaction(self, tx: RewardTransaction) -> None:
        with self._scope("ledger.append_transaction") as conn:
            conn.execute(
                """
                INSERT INTO reward_transactions (
                    id, visitor_id, type, coins_change, unlock_cards_change,
                    content_id, description, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(tx.id),
                    tx.visitor_id,
                    tx.type,
                    tx.coins_change,
                    tx.unlock_cards_change,
                    tx.content_id,
                    tx.description,
                    tx.created_at.isoformat(),
                ),
            )

    def list_transactions(self, visitor_id: str, limit: int = 20) -> list[RewardTransaction]:
        with self._scope("ledger.list_transactions") as conn:
            rows = conn.execute(
                """
                SELECT * FROM reward_transactions
                WHERE visitor_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (visitor_id, limit),
            ).fetchall()
            return [
                RewardTransaction(
                    id=UUID(r["id"]),
                    visitor_id=r["visitor_id"],
                    type=r["type"],
                    coins_change=r["coins_change"],
                    unlock_cards_change=r["unlock_cards_change"],
                    content_id=r["content_id"],
                    description=r["description"],
                    created_at=parse_dt(r["created_at"]),  # type: ignore[arg-type]
                )
                for r in rows
            ]

    def _map_row(self, row: dict[str, Any]) -> ReferralLedgerEntry:
        return ReferralLedgerEntry(
            visitor_id=row["visitor_id"],
            my_referral_code=row["my_referral_code"],
            referred_by_code=row["referred_by_code"],
            referred_by_visitor_id=row["referred_by_visitor_id"],
            total_referrals=row["total_referrals"],
            valid_referrals=row["valid_referrals"],
            coins=row["coins"],
            bonus_unlocks=row["bonus_unlocks"],
            ads_reduction_percent=row["ads_reduction_percent"],
            priority_unlock_expires_at=parse_dt(row["priority_unlock_expires_at"]),
            total_time_tracked_seconds=row["total_time_tracked_seconds"],
            total_unlocks_completed=row["total_unlocks_completed"],
            tracking_started_at=parse_dt(row["tracking_started_at"]),
            daily_streak=row["daily_streak"],
            daily_claims_total=row["daily_claims_total"],
            last_daily_claim_at=parse_dt(row["last_daily_claim_at"]),
            created_at=parse_dt(row["created_at"]),  # type: ignore[arg-type]
            updated_at=parse_dt(row["updated_at"]),  # type: ignore[arg-type]
        )


class SQLiteReferralRepo(SQLiteLedgerRepoBase):
    """SQLite implementation of ReferralRepoPort."""

    def add(self, record: ReferralRecord) -> bool:
        with self._scope("referrals.add") as conn:
            result = conn.execute(
                """
                INSERT INTO referrals (
                    id, referrer_code, referrer_visitor_id, referred_visitor_id,
                    status, device_fingerprint, created_at, validated_at, rewarded_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(referred_visitor_id) DO NOTHING
                """,
                (
                    str(record.id),
                    record.referrer_code,
                    record.referrer_visitor_id,
                    record.referred_visitor_id,
                    record.status,
                    record.device_fingerprint,
                    record.created_at.isoformat(),
                    fmt_dt(record.validated_at),
                    fmt_dt(record.rewarded_at),
                ),
            )
            return result.rowcount == 1

    def get_for_referred(self, referred_visitor_id: str) -> ReferralRecord | None:
        with self._scope("referrals.get_for_referred") as conn:
            row = conn.execute(
                "SELECT * FROM referrals WHERE referred_visitor_id = ?", (referred_visitor_id,)
            ).fetchone()
            return self._map_row(row) if row else None

    def list_for_referrer(
        self, referrer_code: str, status: str | None = None
    ) -> list[ReferralRecord]:
        query = "SELECT * FROM referrals WHERE referrer_code = ?"
        params: list[Any] = [referrer_code]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at"

        with self._scope("referrals.list_for_referrer") as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._map_row(r) for r in rows]

    def promote(self, referred_visitor_id: str, now: datetime) -> bool:
        with self._scope("referrals.promote") as conn:
            result = conn.execute(
                """
                UPDATE referrals SET status = 'valid', validated_at = ?
                WHERE referred_visitor_id = ? AND status = 'pending'
                """,
                (now.isoformat(), referred_visitor_id),
            )
            return result.rowcount == 1

    def mark_rewarded(self, record_id: UUID, now: datetime) -> bool:
        with self._scope("referrals.mark_rewarded") as conn:
            result = conn.execute(
                """
                UPDATE referrals SET status = 'rewarded', rewarded_at = ?
                WHERE id = ? AND status = 'valid'
                """,
                (now.isoformat(), str(record_id)),
            )
            return result.rowcount == 1

    def count_rewarded_since(self, referrer_code: str, since: datetime) -> int:
        with self._scope("referrals.count_rewarded_since") as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS n FROM referrals
                WHERE referrer_code = ? AND rewarded_at IS NOT NULL AND rewarded_at >= ?
                """,
                (referrer_code, since.isoformat()),
            ).fetchone()
            return int(row["n"])

    def count_claims_by_fingerprint(self, device_fingerprint: str) -> int:
        with self._scope("referrals.count_claims_by_fingerprint") as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM referrals WHERE device_fingerprint = ?",
                (device_fingerprint,),
            ).fetchone()
            return int(row["n"])

    def _map_row(self, row: dict[str, Any]) -> ReferralRecord:
        return ReferralRecord(
            id=UUID(row["id"]),
            referrer_code=row["referrer_code"],
            referrer_visitor_id=row["referrer_visitor_id"],
            referred_visitor_id=row["referred_visitor_id"],
            status=row["status"],
            device_fingerprint=row["device_fingerprint"],
            created_at=parse_dt(row["created_at"]),  # type: ignore[arg-type]
            validated_at=parse_dt(row["validated_at"]),
            rewarded_at=parse_dt(row["rewarded_at"]),
        )


# -----------------------------------------------------------------------------
# Unit of Work
# -----------------------------------------------------------------------------


class SQLiteUnitOfWork:
    """
    UnitOfWorkPort over one SQLite connection.

    BEGIN IMMEDIATE takes the write lock up front, so concurrent transactions
    queue on the busy timeout instead of failing mid-way on upgrade.
    """

    def __init__(self, db_path: str, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.db_path = db_path
        self.timeout = timeout

    @contextmanager
    def transaction(self) -> Iterator[TransactionContext]:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = dict_factory
        try:
            conn.execute("PRAGMA foreign_keys = ON;")
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield TransactionContext(
                    sessions=SQLiteUnlockSessionRepo(self.db_path, conn),
                    attempts=SQLiteAdAttemptRepo(self.db_path, conn),
                    ledger=SQLiteLedgerRepo(self.db_path, conn),
                    referrals=SQLiteReferralRepo(self.db_path, conn),
                )
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()


# -----------------------------------------------------------------------------
# Content Catalog
# -----------------------------------------------------------------------------


class SQLiteContentCatalog(SQLiteRepoBase):
    """ContentCatalogPort over the local contents table."""

    def get_content(self, content_id: str) -> ContentInfo | None:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT id, title, required_ads, status FROM contents WHERE id = ?",
                (content_id,),
            ).fetchone()
            return ContentInfo(**row) if row else None
        finally:
            if self._should_close():
                conn.close()

    def upsert(self, item: ContentInfo) -> None:
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO contents (id, title, required_ads, status)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title=excluded.title,
                    required_ads=excluded.required_ads,
                    status=excluded.status
                """,
                (item.id, item.title, item.required_ads, item.status),
            )
            if self._should_close():
                conn.commit()
        finally:
            if self._should_close():
                conn.close()

    def record_unlock(self, content_id: str) -> None:
        try:
            conn = self._get_conn()
            try:
                conn.execute(
                    "UPDATE contents SET unlock_count = unlock_count + 1 WHERE id = ?",
                    (content_id,),
                )
                if self._should_close():
                    conn.commit()
            finally:
                if self._should_close():
                    conn.close()
        except sqlite3.Error as e:
            raise StorageUnavailableError("contents.record_unlock", str(e)) from e

    def unlock_count(self, content_id: str) -> int:
        conn = self._get_conn()
        try:
            row = conn.execute(
                "SELECT unlock_count FROM contents WHERE id = ?", (content_id,)
            ).fetchone()
            return int(row["unlock_count"]) if row else 0
        finally:
            if self._should_close():
                conn.close()
