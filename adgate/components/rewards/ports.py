from typing import Literal, Protocol

from adgate.domain.entities import ReferralLedgerEntry
from adgate.ports.clock import TimePort
from adgate.ports.repo import StorageError, UnitOfWorkPort

NoticeLevel = Literal["success", "error", "info"]


class LedgerReaderPort(Protocol):
    def get(self, visitor_id: str) -> ReferralLedgerEntry | None: ...


class NotifierPort(Protocol):
    """User-facing notices (toasts in a UI, logs in a server)."""

    def notify(self, title: str, message: str, level: NoticeLevel = "info") -> None: ...


__all__ = [
    "LedgerReaderPort",
    "NoticeLevel",
    "NotifierPort",
    "StorageError",
    "TimePort",
    "UnitOfWorkPort",
]
