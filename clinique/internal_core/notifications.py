from __future__ import annotations

"""
User-facing notification sinks.

Design intent:
- Every user-visible failure surfaces as a notification, never as a crash.
- The UI drains a bounded queue; server logs get the same stream.
"""

import datetime as _dt
import logging
from collections import deque
from threading import RLock
from typing import List, Protocol

from .contracts import Notification, NotificationVariant

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, title: str, description: str, variant: NotificationVariant = "default") -> None: ...


def build_notification(title: str, description: str, variant: NotificationVariant = "default") -> Notification:
    return Notification(
        title=title,
        description=description,
        variant=variant,
        ts_iso=_dt.datetime.now(_dt.timezone.utc).isoformat(),
    )


class LogNotifier:
    def notify(self, title: str, description: str, variant: NotificationVariant = "default") -> None:
        level = logging.WARNING if variant == "destructive" else logging.INFO
        logger.log(level, "notification title=%s description=%s", title, description)


class QueueNotifier:
    def __init__(self, maxlen: int = 100) -> None:
        self._lock = RLock()
        self._items: deque[Notification] = deque(maxlen=maxlen)
        self._log = LogNotifier()

    def notify(self, title: str, description: str, variant: NotificationVariant = "default") -> None:
        self._log.notify(title, description, variant)
        with self._lock:
            self._items.append(build_notification(title, description, variant))

    def peek(self) -> List[Notification]:
        with self._lock:
            return list(self._items)

    def drain(self) -> List[Notification]:
        with self._lock:
            items = list(self._items)
            self._items.clear()
        return items
