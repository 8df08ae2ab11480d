from datetime import datetime
from typing import Protocol
from uuid import UUID

from adgate.domain.entities import CompletionSource, ShortcutKind, UnlockSession
from adgate.ports.clock import TimePort


class UnlockSessionRepoPort(Protocol):
    def get_by_id(self, session_id: UUID) -> UnlockSession | None: ...

    def get_by_visitor_content(
        self, visitor_id: str, content_id: str
    ) -> UnlockSession | None: ...

    def insert_if_absent(self, session: UnlockSession) -> UnlockSession: ...

    def apply_shortcut(
        self,
        session_id: UUID,
        kind: ShortcutKind,
        source: CompletionSource,
        now: datetime,
    ) -> UnlockSession | None: ...


__all__ = ["TimePort", "UnlockSessionRepoPort"]
