"""User-visible toast messages."""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Deque, List, Optional

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Notice:
    level: str
    message: str
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class Notifier:
    def __init__(self, limit: int = 50):
        self.history: Deque[Notice] = deque(maxlen=limit)
        self._listeners: List[Callable[[Notice], None]] = []

    def subscribe(self, listener: Callable[[Notice], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _push(self, level: str, message: str) -> Notice:
        notice = Notice(level, message)
        self.history.append(notice)
        logger.info("toast", level=level, message=message)
        for listener in list(self._listeners):
            listener(notice)
        return notice

    def success(self, message: str) -> Notice:
        return self._push("success", message)

    def info(self, message: str) -> Notice:
        return self._push("info", message)

    def error(self, message: str) -> Notice:
        return self._push("error", message)

    @property
    def latest(self) -> Optional[Notice]:
        return self.history[-1] if self.history else None

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [n.message for n in self.history if level is None or n.level == level]
