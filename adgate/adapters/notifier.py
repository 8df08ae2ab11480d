"""
Logging notifier.

Server-side stand-in for UI toasts: writes each notice to the log and keeps
the most recent ones in memory for inspection.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_LEVELS = {"success": logging.INFO, "info": logging.INFO, "error": logging.WARNING}


@dataclass
class LoggingNotifier:
    history_size: int = 50
    notices: deque[tuple[str, str, str]] = field(init=False)

    def __post_init__(self) -> None:
        self.notices = deque(maxlen=self.history_size)

    def notify(self, title: str, message: str, level: str = "info") -> None:
        self.notices.append((title, message, level))
        logger.log(_LEVELS.get(level, logging.INFO), "[%s] %s: %s", level, title, message)
