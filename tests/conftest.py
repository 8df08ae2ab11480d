from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from adgate.adapters.memory import InMemoryContentCatalog, InMemoryUnitOfWork
from adgate.adapters.notifier import LoggingNotifier
from adgate.adapters.sqlite_db import (
    SQLiteAdAttemptRepo,
    SQLiteContentCatalog,
    SQLiteLedgerRepo,
    SQLiteReferralRepo,
    SQLiteUnitOfWork,
    SQLiteUnlockSessionRepo,
    init_schema,
)
from adgate.domain.entities import ContentInfo
from adgate.rules.loader import load_rules
from adgate.rules.models import Rules
from adgate.services.gate import UnlockGateService

PROJECT_ROOT = Path(__file__).parent.parent
TEST_SECRET = "test-referral-secret"

CATALOG = [
    ContentInfo(id="post-3", title="Three ad post", required_ads=3),
    ContentInfo(id="post-1", title="One ad post", required_ads=1),
    ContentInfo(id="free", title="Free post", required_ads=0),
    ContentInfo(id="default", title="Default requirement"),
    ContentInfo(id="hidden", title="Retired post", required_ads=2, status="inactive"),
]


class FrozenClock:
    """Deterministic TimePort; tests move time with advance()."""

    def __init__(self, fixed_time: datetime | None = None) -> None:
        self._time = fixed_time or datetime(2024, 6, 15, 12, 0, 0, tzinfo=UTC)

    def now_utc(self) -> datetime:
        return self._time

    def advance(self, delta: timedelta | float) -> None:
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        self._time = self._time + delta


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def rules() -> Rules:
    """The real rules file from the project root."""
    return load_rules(PROJECT_ROOT / "rules.yaml")


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    path = str(tmp_path / "adgate.db")
    init_schema(path)
    catalog = SQLiteContentCatalog(path)
    for item in CATALOG:
        catalog.upsert(item)
    return path


@pytest.fixture
def sqlite_gate(db_path: str, clock: FrozenClock, rules: Rules) -> UnlockGateService:
    """Gate service over a fresh SQLite database."""
    return UnlockGateService(
        unit_of_work=SQLiteUnitOfWork(db_path),
        sessions=SQLiteUnlockSessionRepo(db_path),
        attempts=SQLiteAdAttemptRepo(db_path),
        ledger=SQLiteLedgerRepo(db_path),
        referrals=SQLiteReferralRepo(db_path),
        catalog=SQLiteContentCatalog(db_path),
        time=clock,
        rules=rules,
        referral_secret=TEST_SECRET,
        notifier=LoggingNotifier(),
    )


@pytest.fixture
def memory_uow() -> InMemoryUnitOfWork:
    return InMemoryUnitOfWork()


@pytest.fixture
def memory_catalog() -> InMemoryContentCatalog:
    return InMemoryContentCatalog(list(CATALOG))


@pytest.fixture
def memory_gate(
    memory_uow: InMemoryUnitOfWork,
    memory_catalog: InMemoryContentCatalog,
    clock: FrozenClock,
    rules: Rules,
) -> UnlockGateService:
    """Gate service over the in-memory adapters."""
    return UnlockGateService(
        unit_of_work=memory_uow,
        sessions=memory_uow.sessions,
        attempts=memory_uow.attempts,
        ledger=memory_uow.ledger,
        referrals=memory_uow.referrals,
        catalog=memory_catalog,
        time=clock,
        rules=rules,
        referral_secret=TEST_SECRET,
    )


@pytest.fixture(params=["memory", "sqlite"])
def gate(request: pytest.FixtureRequest) -> UnlockGateService:
    """Gate service over each adapter set."""
    return request.getfixturevalue(f"{request.param}_gate")
