from __future__ import annotations

import threading
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_sec: float, fn: Callable[[], None]) -> TimerHandle: ...


class ThreadTimerScheduler:
    """Runs each callback on a daemon `threading.Timer`."""

    def call_later(self, delay_sec: float, fn: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(max(0.0, float(delay_sec)), fn)
        timer.daemon = True
        timer.start()
        return timer
