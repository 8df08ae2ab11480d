"""
Attempts component unit tests.

Tests for token validation, minimum watch duration, replay protection and
the atomic session increment.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from adgate.adapters.memory import InMemoryUnitOfWork
from adgate.components.attempts import CompleteAttemptInput, run_complete
from adgate.components.tokens import IssueAttemptInput, run_issue
from adgate.domain.entities import UnlockSession
from adgate.rules.models import GatingRules


class MockTimePort:
    """Mock time port for deterministic testing."""

    def __init__(self, fixed_time: datetime | None = None) -> None:
        self._time = fixed_time or datetime(2024, 6, 15, 12, 0, 0, tzinfo=UTC)

    def now_utc(self) -> datetime:
        return self._time

    def advance(self, delta: timedelta) -> None:
        self._time = self._time + delta


# --- Fixtures ---


@pytest.fixture
def uow() -> InMemoryUnitOfWork:
    return InMemoryUnitOfWork()


@pytest.fixture
def time_port() -> MockTimePort:
    return MockTimePort()


@pytest.fixture
def config() -> GatingRules:
    return GatingRules(min_watch_seconds=5)


@pytest.fixture
def session(uow: InMemoryUnitOfWork) -> UnlockSession:
    return uow.sessions.insert_if_absent(
        UnlockSession(visitor_id="vis_a", content_id="post-1", ads_required=3)
    )


def issue(uow: InMemoryUnitOfWork, session: UnlockSession, time_port: MockTimePort) -> str:
    out = run_issue(
        IssueAttemptInput(session.visitor_id, session.content_id, session.id),
        uow.attempts,
        uow.sessions,
        time_port,
    )
    assert out.token
    return out.token


# --- Tests ---


class TestComplete:
    """Tests for run_complete."""

    def test_valid_completion_increments(
        self,
        uow: InMemoryUnitOfWork,
        time_port: MockTimePort,
        config: GatingRules,
        session: UnlockSession,
    ) -> None:
        token = issue(uow, session, time_port)
        time_port.advance(timedelta(seconds=5))

        out = run_complete(CompleteAttemptInput(token, "vis_a"), uow, time_port, config)

        assert out.success
        assert out.session is not None
        assert out.session.ads_watched == 1
        assert not out.crossed_completion
        assert out.attempt is not None and out.attempt.state == "used"
        assert out.attempt.completed_at == time_port.now_utc()

    def test_replay_is_already_used(
        self,
        uow: InMemoryUnitOfWork,
        time_port: MockTimePort,
        config: GatingRules,
        session: UnlockSession,
    ) -> None:
        token = issue(uow, session, time_port)
        time_port.advance(timedelta(seconds=6))
        assert run_complete(CompleteAttemptInput(token), uow, time_port, config).success

        again = run_complete(CompleteAttemptInput(token), uow, time_port, config)

        assert not again.success
        assert again.errors[0].code == "ALREADY_USED"
        assert uow.sessions.get_by_id(session.id).ads_watched == 1  # type: ignore[union-attr]

    def test_too_fast_does_not_mutate(
        self,
        uow: InMemoryUnitOfWork,
        time_port: MockTimePort,
        config: GatingRules,
        session: UnlockSession,
    ) -> None:
        token = issue(uow, session, time_port)
        time_port.advance(timedelta(seconds=2))

        out = run_complete(CompleteAttemptInput(token), uow, time_port, config)

        assert out.errors[0].code == "TOO_FAST"
        assert out.errors[0].retryable
        assert out.errors[0].retry_after_seconds == pytest.approx(3.0)
        assert uow.sessions.get_by_id(session.id).ads_watched == 0  # type: ignore[union-attr]

        # Token stays usable once the window passes
        time_port.advance(timedelta(seconds=3))
        assert run_complete(CompleteAttemptInput(token), uow, time_port, config).success

    def test_unknown_token(
        self, uow: InMemoryUnitOfWork, time_port: MockTimePort, config: GatingRules
    ) -> None:
        out = run_complete(CompleteAttemptInput("nope"), uow, time_port, config)
        assert out.errors[0].code == "NOT_FOUND"

    def test_foreign_visitor(
        self,
        uow: InMemoryUnitOfWork,
        time_port: MockTimePort,
        config: GatingRules,
        session: UnlockSession,
    ) -> None:
        token = issue(uow, session, time_port)
        time_port.advance(timedelta(seconds=10))

        out = run_complete(CompleteAttemptInput(token, "vis_b"), uow, time_port, config)

        assert out.errors[0].code == "UNAUTHORIZED"
        # Rejection leaves the attempt issued
        assert run_complete(CompleteAttemptInput(token, "vis_a"), uow, time_port, config).success

    def test_three_ads_complete_session(
        self,
        uow: InMemoryUnitOfWork,
        time_port: MockTimePort,
        config: GatingRules,
        session: UnlockSession,
    ) -> None:
        crossings = []
        for _ in range(3):
            token = issue(uow, session, time_port)
            time_port.advance(timedelta(seconds=5))
            out = run_complete(CompleteAttemptInput(token), uow, time_port, config)
            crossings.append(out.crossed_completion)

        assert crossings == [False, False, True]
        final = uow.sessions.get_by_id(session.id)
        assert final is not None
        assert final.completed
        assert final.completed_via == "ads"

    def test_interleaved_tokens_both_count(
        self,
        uow: InMemoryUnitOfWork,
        time_port: MockTimePort,
        config: GatingRules,
        session: UnlockSession,
    ) -> None:
        first = issue(uow, session, time_port)
        second = issue(uow, session, time_port)
        time_port.advance(timedelta(seconds=5))

        assert run_complete(CompleteAttemptInput(first), uow, time_port, config).success
        assert run_complete(CompleteAttemptInput(second), uow, time_port, config).success
        assert uow.sessions.get_by_id(session.id).ads_watched == 2  # type: ignore[union-attr]

    def test_completion_after_done_counts_without_crossing(
        self,
        uow: InMemoryUnitOfWork,
        time_port: MockTimePort,
        config: GatingRules,
    ) -> None:
        one = uow.sessions.insert_if_absent(
            UnlockSession(visitor_id="vis_a", content_id="post-9", ads_required=1)
        )
        first = issue(uow, one, time_port)
        second = issue(uow, one, time_port)
        time_port.advance(timedelta(seconds=5))

        assert run_complete(CompleteAttemptInput(first), uow, time_port, config).crossed_completion
        out = run_complete(CompleteAttemptInput(second), uow, time_port, config)

        assert out.success
        assert not out.crossed_completion
        assert out.session is not None and out.session.ads_watched == 2
