from dataclasses import replace
from typing import Callable, List

import pytest

from clinique.internal_core.config import AppConfig, load_config

_CLEARED_ENV = (
    "CLINIQUE_SPEECH_PROVIDER",
    "CLINIQUE_LANGUAGE",
    "CLINIQUE_SPEECH_API_KEY",
    "CLINIQUE_MEDICAL_ENDPOINT",
    "CLINIQUE_ENTITY_LLM",
    "CLINIQUE_REPORTS_PATH",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
)


class ManualTimer:
    def __init__(self, due: float, fn: Callable[[], None]) -> None:
        self.due = due
        self.fn = fn
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler double: callbacks fire only when the test advances the clock."""

    def __init__(self) -> None:
        self.now = 0.0
        self.timers: List[ManualTimer] = []

    def call_later(self, delay_sec: float, fn: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self.now + float(delay_sec), fn)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> List[ManualTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)
        while True:
            due = sorted((t for t in self.pending if t.due <= self.now), key=lambda t: t.due)
            if not due:
                return
            due[0].fired = True
            due[0].fn()


class RecordingNotifier:
    def __init__(self) -> None:
        self.items: List[tuple] = []

    def notify(self, title: str, description: str, variant: str = "default") -> None:
        self.items.append((title, description, variant))

    @property
    def titles(self) -> List[str]:
        return [title for title, _, _ in self.items]


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def app_config(monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    for name in _CLEARED_ENV:
        monkeypatch.delenv(name, raising=False)
    return replace(load_config(), CLINIQUE_SPEECH_PROVIDER="auto", CLINIQUE_LANGUAGE="en-US")


@pytest.fixture
def inline_dispatch() -> Callable[[Callable[[], None]], None]:
    def _dispatch(fn: Callable[[], None]) -> None:
        fn()

    return _dispatch
