from __future__ import annotations

"""
Speech provider contract shared by every recognition backend.

Design intent:
- One ingestion boundary: native engine payloads, errors and end signals are
  pushed in through `ingest*` and come out as typed events.
- Events fan out to any number of subscribers; a stopped provider emits nothing.
- Error codes are classified once here so the session state machine and the
  API agree on what is fatal and what is retried.
"""

import logging
from abc import ABC, abstractmethod
from threading import RLock
from typing import Any, Callable, Dict, List, Literal, Optional

from clinique.asr.language import canonical_language_tag

from ..contracts import RecognitionResult, SpeechConfig

logger = logging.getLogger(__name__)

FATAL_ERROR_CODES = frozenset(
    {
        "not-allowed",
        "service-not-allowed",
        "permission-denied",
        "unsupported",
        "language-not-supported",
    }
)
ABORTED_ERROR_CODE = "aborted"

ErrorClass = Literal["fatal", "aborted", "transient"]


class SpeechError(RuntimeError):
    def __init__(self, code: str, message: str, provider_name: str):
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider_name = provider_name


class SpeechPermissionError(SpeechError):
    pass


class SpeechUnsupportedError(SpeechError):
    pass


class TransientRecognitionError(SpeechError):
    pass


class NormalizationError(SpeechError):
    pass


def classify_error_code(code: str) -> ErrorClass:
    normalized = str(code or "").strip().lower()
    if normalized in FATAL_ERROR_CODES:
        return "fatal"
    if normalized == ABORTED_ERROR_CODE:
        return "aborted"
    return "transient"


def error_for_code(code: str, message: str, provider_name: str) -> SpeechError:
    normalized = str(code or "").strip().lower() or "unknown"
    if normalized in {"not-allowed", "service-not-allowed", "permission-denied"}:
        return SpeechPermissionError(normalized, message, provider_name)
    if normalized in {"unsupported", "language-not-supported"}:
        return SpeechUnsupportedError(normalized, message, provider_name)
    if normalized == ABORTED_ERROR_CODE:
        return SpeechError(normalized, message, provider_name)
    return TransientRecognitionError(normalized, message, provider_name)


Unsubscribe = Callable[[], None]


class EventEmitter:
    """
    Multi-subscriber event fan-out.

    Subscriber failures are logged and do not stop delivery to the others.
    """

    def __init__(self, event_names: tuple[str, ...]) -> None:
        self._lock = RLock()
        self._names = frozenset(event_names)
        self._subscribers: Dict[str, List[Callable[..., None]]] = {}

    def subscribe(self, event: str, fn: Callable[..., None]) -> Unsubscribe:
        if event not in self._names:
            raise ValueError(f"Unknown event: {event}")
        with self._lock:
            self._subscribers.setdefault(event, []).append(fn)

        def _unsubscribe() -> None:
            with self._lock:
                handlers = self._subscribers.get(event, [])
                if fn in handlers:
                    handlers.remove(fn)

        return _unsubscribe

    def emit(self, event: str, *args: Any) -> None:
        with self._lock:
            handlers = list(self._subscribers.get(event, []))
        for fn in handlers:
            try:
                fn(*args)
            except Exception:
                logger.exception("event subscriber failed event=%s", event)

    def subscriber_count(self, event: Optional[str] = None) -> int:
        with self._lock:
            if event is not None:
                return len(self._subscribers.get(event, []))
            return sum(len(v) for v in self._subscribers.values())

    def clear(self) -> None:
        with self._lock:
            self._subscribers.clear()


PROVIDER_EVENTS = ("start", "result", "error", "end", "language_detected", "speaker_detected")


class MicrophoneGrant:
    """
    Client-reported microphone permission plus the exclusively owned capture handle.

    `state` follows the browser permission vocabulary: granted, denied, prompt.
    """

    def __init__(self, state: str = "granted") -> None:
        self._lock = RLock()
        self._state = state
        self._held = False
        self.acquisitions = 0
        self.releases = 0

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    @property
    def held(self) -> bool:
        with self._lock:
            return self._held

    def set_state(self, state: str) -> None:
        if state not in {"granted", "denied", "prompt"}:
            raise ValueError(f"Unknown permission state: {state}")
        with self._lock:
            self._state = state

    def acquire(self, provider_name: str) -> None:
        with self._lock:
            if self._state != "granted":
                raise SpeechPermissionError(
                    "not-allowed",
                    f"Microphone permission is {self._state}",
                    provider_name,
                )
            if self._held:
                return
            self._held = True
            self.acquisitions += 1

    def release(self) -> None:
        with self._lock:
            if not self._held:
                return
            self._held = False
            self.releases += 1


class SpeechProvider(ABC):
    def __init__(self, config: SpeechConfig, microphone: Optional[MicrophoneGrant] = None):
        self._config = config
        self._microphone = microphone or MicrophoneGrant()
        self._events = EventEmitter(PROVIDER_EVENTS)
        self._lock = RLock()
        self._running = False
        self._language = canonical_language_tag(config.language)

    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def is_supported(self) -> bool: ...

    @abstractmethod
    def _normalize(self, payload: Dict[str, Any]) -> Optional[RecognitionResult]: ...

    def _open(self) -> None:
        pass

    def _close(self) -> None:
        pass

    @property
    def config(self) -> SpeechConfig:
        return self._config

    @property
    def microphone(self) -> MicrophoneGrant:
        return self._microphone

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def current_language(self) -> str:
        with self._lock:
            return self._language

    def on_start(self, fn: Callable[[], None]) -> Unsubscribe:
        return self._events.subscribe("start", fn)

    def on_result(self, fn: Callable[[RecognitionResult], None]) -> Unsubscribe:
        return self._events.subscribe("result", fn)

    def on_error(self, fn: Callable[[SpeechError], None]) -> Unsubscribe:
        return self._events.subscribe("error", fn)

    def on_end(self, fn: Callable[[], None]) -> Unsubscribe:
        return self._events.subscribe("end", fn)

    def on_language_detected(self, fn: Callable[[str], None]) -> Unsubscribe:
        return self._events.subscribe("language_detected", fn)

    def on_speaker_detected(self, fn: Callable[[str], None]) -> Unsubscribe:
        return self._events.subscribe("speaker_detected", fn)

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            if not self.is_supported():
                raise SpeechUnsupportedError(
                    "unsupported",
                    f"{self.name()} speech recognition is not available in this runtime",
                    self.name(),
                )
            self._microphone.acquire(self.name())
            try:
                self._open()
            except SpeechError:
                self._microphone.release()
                raise
            except Exception as e:
                self._microphone.release()
                raise TransientRecognitionError("startup_error", str(e), self.name()) from e
            self._running = True
        logger.info("speech provider started provider=%s language=%s", self.name(), self._language)
        self._events.emit("start")

    def stop(self) -> None:
        with self._lock:
            was_running = self._running
            self._running = False
        if not was_running:
            return
        try:
            self._close()
        finally:
            self._microphone.release()
        logger.info("speech provider stopped provider=%s", self.name())

    def dispose(self) -> None:
        self.stop()
        self._events.clear()

    def _emit(self, event: str, *args: Any) -> bool:
        if not self.is_running:
            return False
        self._events.emit(event, *args)
        return True

    def _publish(self, result: RecognitionResult) -> None:
        changed = False
        with self._lock:
            if result.language and result.language != self._language:
                self._language = result.language
                changed = True
        if changed:
            self._emit("language_detected", result.language)
        if result.speaker:
            self._emit("speaker_detected", result.speaker)
        self._emit("result", result)

    def ingest(self, payload: Dict[str, Any]) -> Optional[RecognitionResult]:
        if not self.is_running:
            logger.debug("dropping payload for stopped provider=%s", self.name())
            return None
        try:
            result = self._normalize(payload)
        except NormalizationError as e:
            logger.warning("dropping malformed payload provider=%s code=%s: %s", self.name(), e.code, e.message)
            return None
        if result is None:
            return None
        self._publish(result)
        return result

    def ingest_error(self, code: str, message: str = "") -> None:
        self._emit("error", error_for_code(code, message or code, self.name()))

    def ingest_end(self) -> None:
        self._emit("end")

    def ingest_audio(self, chunk: Any) -> None:
        logger.debug("provider=%s does not consume raw audio; chunk ignored", self.name())
