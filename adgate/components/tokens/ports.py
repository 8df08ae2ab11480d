from typing import Protocol
from uuid import UUID

from adgate.domain.entities import AdAttempt, UnlockSession
from adgate.ports.clock import TimePort


class AttemptWriterPort(Protocol):
    def save(self, attempt: AdAttempt) -> AdAttempt: ...


class SessionReaderPort(Protocol):
    def get_by_id(self, session_id: UUID) -> UnlockSession | None: ...


__all__ = ["AttemptWriterPort", "SessionReaderPort", "TimePort"]
