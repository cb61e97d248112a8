from __future__ import annotations

"""
Recognition session state machine around a single provider.

Design intent:
- idle -> starting -> listening, with error/ended as transient stops on the way
  back to starting (auto-restart) or idle.
- Fatal errors stop immediately with an actionable notification; aborted stops
  quietly; everything else restarts with backoff up to a bounded attempt count.
- Exactly one restart timer outstanding; the provider's audio is released before
  every restart attempt.
- Subscribers are notified after the session lock is released.
"""

import logging
from threading import RLock
from typing import Callable, List, Optional

from ..contracts import ConnectionStatus, NotificationVariant, RecognitionResult, SessionState
from ..notifications import Notifier
from ..timers import Scheduler, TimerHandle
from .base import (
    EventEmitter,
    SpeechError,
    SpeechPermissionError,
    SpeechProvider,
    Unsubscribe,
    classify_error_code,
)

logger = logging.getLogger(__name__)

SESSION_EVENTS = ("state", "result", "speaker_detected", "stopped")

_Deferred = List[Callable[[], None]]


def _fatal_message(error: SpeechError) -> tuple[str, str]:
    if isinstance(error, SpeechPermissionError) or error.code in {"not-allowed", "service-not-allowed", "permission-denied"}:
        return (
            "Microphone Access Denied",
            "Allow microphone access for this site in your browser settings, then start recording again.",
        )
    if error.code == "language-not-supported":
        return (
            "Language Not Supported",
            f"The {error.provider_name} speech service cannot recognize this language. Choose another language or provider.",
        )
    return (
        "Speech Recognition Not Supported",
        f"The {error.provider_name} speech service is not available here. Choose a different speech provider.",
    )


class RecognitionSession:
    def __init__(
        self,
        provider: SpeechProvider,
        *,
        scheduler: Scheduler,
        notifier: Notifier,
        continuous: bool = True,
        restart_delay_continuous_sec: float = 1.0,
        restart_delay_discrete_sec: float = 2.0,
        restart_delay_end_sec: float = 0.5,
        max_restart_attempts: int = 5,
    ):
        self._provider = provider
        self._scheduler = scheduler
        self._notifier = notifier
        self._continuous = continuous
        self._restart_delay_continuous_sec = float(restart_delay_continuous_sec)
        self._restart_delay_discrete_sec = float(restart_delay_discrete_sec)
        self._restart_delay_end_sec = float(restart_delay_end_sec)
        self._max_restart_attempts = int(max_restart_attempts)

        self._lock = RLock()
        self._events = EventEmitter(SESSION_EVENTS)
        self._state: SessionState = "idle"
        self._status: ConnectionStatus = "disconnected"
        self._active = False
        self._restart_attempts = 0
        self._restart_handle: Optional[TimerHandle] = None
        self._restart_token = 0
        self._last_error_code: Optional[str] = None
        self._starting_inline = False

        self._unsubscribers: List[Unsubscribe] = [
            provider.on_start(self._on_provider_start),
            provider.on_result(self._on_provider_result),
            provider.on_error(self._on_provider_error),
            provider.on_end(self._on_provider_end),
            provider.on_speaker_detected(self._on_provider_speaker),
        ]

    @property
    def provider(self) -> SpeechProvider:
        return self._provider

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def connection_status(self) -> ConnectionStatus:
        with self._lock:
            return self._status

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._active

    @property
    def restart_attempts(self) -> int:
        with self._lock:
            return self._restart_attempts

    @property
    def restart_pending(self) -> bool:
        with self._lock:
            return self._restart_handle is not None

    @property
    def last_error_code(self) -> Optional[str]:
        with self._lock:
            return self._last_error_code

    def on(self, event: str, fn: Callable[..., None]) -> Unsubscribe:
        return self._events.subscribe(event, fn)

    @staticmethod
    def _run(deferred: _Deferred) -> None:
        for fn in deferred:
            fn()

    def _transition(self, state: SessionState, status: ConnectionStatus, deferred: _Deferred) -> None:
        if state == self._state and status == self._status:
            return
        self._state = state
        self._status = status
        deferred.append(lambda: self._events.emit("state", state, status))

    def _notify(
        self,
        deferred: _Deferred,
        title: str,
        description: str,
        variant: NotificationVariant = "default",
    ) -> None:
        deferred.append(lambda: self._notifier.notify(title, description, variant))

    def _cancel_restart(self) -> None:
        self._restart_token += 1
        handle = self._restart_handle
        self._restart_handle = None
        if handle is not None:
            handle.cancel()

    def start(self) -> bool:
        deferred: _Deferred = []
        with self._lock:
            if self._state != "idle":
                self._notify(
                    deferred,
                    "Speech Service Not Ready",
                    "Speech recognition is already running or still initializing.",
                    "destructive",
                )
                started = False
            else:
                self._active = True
                self._restart_attempts = 0
                self._last_error_code = None
                self._begin_start(deferred)
                started = self._active
        self._run(deferred)
        return started

    def _begin_start(self, deferred: _Deferred) -> None:
        self._transition("starting", "connecting", deferred)
        self._starting_inline = True
        try:
            self._provider.start()
        except SpeechError as e:
            logger.warning("provider start failed provider=%s code=%s", self._provider.name(), e.code)
            self._handle_error(e, deferred)
            return
        finally:
            self._starting_inline = False
        if self._active and self._state == "starting" and self._provider.is_running:
            self._transition("listening", "connected", deferred)

    def stop(self) -> None:
        deferred: _Deferred = []
        with self._lock:
            self._active = False
            self._cancel_restart()
            self._provider.stop()
            self._transition("idle", "disconnected", deferred)
            deferred.append(lambda: self._events.emit("stopped"))
        self._run(deferred)

    def dispose(self) -> None:
        self.stop()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._events.clear()

    def _on_provider_start(self) -> None:
        deferred: _Deferred = []
        with self._lock:
            # A synchronous start event is folded into _begin_start.
            if self._active and not self._starting_inline:
                self._transition("listening", "connected", deferred)
        self._run(deferred)

    def _on_provider_result(self, result: RecognitionResult) -> None:
        with self._lock:
            if not self._active:
                return
            self._restart_attempts = 0
        self._events.emit("result", result)

    def _on_provider_speaker(self, label: str) -> None:
        with self._lock:
            if not self._active:
                return
        self._events.emit("speaker_detected", label)

    def _on_provider_error(self, error: SpeechError) -> None:
        deferred: _Deferred = []
        with self._lock:
            if not self._active:
                return
            self._handle_error(error, deferred)
        self._run(deferred)

    def _handle_error(self, error: SpeechError, deferred: _Deferred) -> None:
        self._last_error_code = error.code
        kind = classify_error_code(error.code)
        if kind == "fatal":
            logger.warning("fatal speech error provider=%s code=%s", error.provider_name, error.code)
            self._active = False
            self._cancel_restart()
            self._provider.stop()
            self._transition("idle", "error", deferred)
            title, description = _fatal_message(error)
            self._notify(deferred, title, description, "destructive")
            return
        if kind == "aborted":
            logger.info("speech recognition aborted provider=%s", error.provider_name)
            self._active = False
            self._cancel_restart()
            self._provider.stop()
            self._transition("idle", "disconnected", deferred)
            return

        logger.info("transient speech error provider=%s code=%s", error.provider_name, error.code)
        self._provider.stop()
        self._transition("error", "error", deferred)
        delay = self._restart_delay_continuous_sec if self._continuous else self._restart_delay_discrete_sec
        self._schedule_restart(delay, counted=True, deferred=deferred)

    def _on_provider_end(self) -> None:
        deferred: _Deferred = []
        with self._lock:
            if not self._active:
                return
            self._provider.stop()
            if self._continuous:
                self._transition("ended", "disconnected", deferred)
                self._schedule_restart(self._restart_delay_end_sec, counted=False, deferred=deferred)
            else:
                self._active = False
                self._cancel_restart()
                self._transition("idle", "disconnected", deferred)
        self._run(deferred)

    def _schedule_restart(self, delay_sec: float, *, counted: bool, deferred: _Deferred) -> None:
        if counted:
            if self._restart_attempts >= self._max_restart_attempts:
                logger.warning(
                    "restart attempts exhausted provider=%s attempts=%d",
                    self._provider.name(),
                    self._restart_attempts,
                )
                self._active = False
                self._cancel_restart()
                self._transition("idle", "error", deferred)
                self._notify(
                    deferred,
                    "Speech Recognition Error",
                    f"Recognition stopped after {self._restart_attempts} restart attempts "
                    f"({self._last_error_code or 'unknown error'}). Start recording again to retry.",
                    "destructive",
                )
                return
            self._restart_attempts += 1

        self._cancel_restart()
        token = self._restart_token
        self._restart_handle = self._scheduler.call_later(delay_sec, lambda: self._on_restart_timer(token))
        logger.info(
            "restart scheduled provider=%s delay_sec=%.2f attempt=%d",
            self._provider.name(),
            delay_sec,
            self._restart_attempts,
        )

    def _on_restart_timer(self, token: int) -> None:
        deferred: _Deferred = []
        with self._lock:
            if token != self._restart_token or not self._active:
                return
            self._restart_handle = None
            self._begin_start(deferred)
        self._run(deferred)
