from typing import Protocol

from adgate.domain.entities import ContentInfo


class ContentCatalogPort(Protocol):
    """Read-only view of the content catalog, plus the unlock counter."""

    def get_content(self, content_id: str) -> ContentInfo | None:
        ...

    def record_unlock(self, content_id: str) -> None:
        ...
