from __future__ import annotations

"""
Consultation-level glue between a recognition session and the transcript.

Design intent:
- One active recognition stream per orchestrator; a second start is refused.
- Every new recording gets a fresh profile registry, attributor and entry counter.
- Each final result becomes exactly one TranscriptEntry, delivered to the
  transcript sink off the caller thread, in order; sink failures are logged.
- Interim results only reach UI subscribers.
"""

import datetime as _dt
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from threading import RLock
from typing import Callable, List, Optional

from clinique.asr.language import LanguageTracker, canonical_language_tag
from clinique.asr.role_mapping import SpeakerAttributor, speaker_display_label
from clinique.asr.voice_profiles import SpeakerProfileRegistry

from .config import AppConfig
from .contracts import (
    ConnectionStatus,
    OrchestratorState,
    RecognitionResult,
    SessionState,
    SpeakerProfile,
    SpeakerRole,
    SpeechConfig,
    TranscriptEntry,
)
from .notifications import LogNotifier, Notifier
from .speech.base import EventEmitter, MicrophoneGrant, SpeechProvider, Unsubscribe
from .speech.controller import RecognitionSession
from .speech.medical import TranscriptionJobClient
from .speech.registry import ProviderCapabilities, create_provider, probe_capabilities, select_provider
from .timers import Scheduler, ThreadTimerScheduler

logger = logging.getLogger(__name__)

UI_EVENTS = ("entry", "interim", "language", "speaker", "status")

TranscriptSink = Callable[[TranscriptEntry], None]
Dispatch = Callable[[Callable[[], None]], None]


def confidence_percent(confidence: float) -> int:
    return max(0, min(100, int(round(float(confidence) * 100))))


class SessionOrchestrator:
    def __init__(
        self,
        config: SpeechConfig,
        app_config: AppConfig,
        *,
        capabilities: Optional[ProviderCapabilities] = None,
        transcript_sink: Optional[TranscriptSink] = None,
        notifier: Optional[Notifier] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.time,
        dispatch: Optional[Dispatch] = None,
        microphone: Optional[MicrophoneGrant] = None,
        job_client: Optional[TranscriptionJobClient] = None,
    ):
        self._lock = RLock()
        self._config = config
        self._app_config = app_config
        self._job_client = job_client
        self._microphone = microphone or MicrophoneGrant()
        self._capabilities = capabilities or probe_capabilities(
            config, job_client=job_client, microphone=self._microphone.state
        )
        self._transcript_sink = transcript_sink
        self._notifier: Notifier = notifier or LogNotifier()
        self._scheduler: Scheduler = scheduler or ThreadTimerScheduler()
        self._clock = clock
        self._dispatch = dispatch
        self._executor: Optional[ThreadPoolExecutor] = None
        self._events = EventEmitter(UI_EVENTS)

        self._session: Optional[RecognitionSession] = None
        self._session_unsubscribers: List[Unsubscribe] = []
        self._provider_name = select_provider(config, self._capabilities)
        self._counter = 0
        self._transcript: List[TranscriptEntry] = []
        self._roles_attributed: List[SpeakerRole] = []
        self._profiles = self._new_profiles()
        self._attributor = self._new_attributor(self._profiles)
        self._language = LanguageTracker(canonical_language_tag(config.language))

    def _new_profiles(self) -> SpeakerProfileRegistry:
        return SpeakerProfileRegistry(
            match_threshold=self._app_config.CLINIQUE_PROFILE_MATCH_THRESHOLD,
            recency_window_sec=self._app_config.CLINIQUE_PROFILE_RECENCY_SEC,
            clock=self._clock,
        )

    def _new_attributor(self, profiles: SpeakerProfileRegistry) -> SpeakerAttributor:
        return SpeakerAttributor(
            profiles,
            silence_threshold_ms=self._app_config.CLINIQUE_SILENCE_THRESHOLD_MS,
            clock=self._clock,
        )

    # Read-only surface

    @property
    def config(self) -> SpeechConfig:
        with self._lock:
            return self._config

    @property
    def capabilities(self) -> ProviderCapabilities:
        return self._capabilities

    @property
    def microphone(self) -> MicrophoneGrant:
        return self._microphone

    @property
    def is_recording(self) -> bool:
        session = self._current_session()
        return session is not None and session.is_active

    @property
    def session_state(self) -> SessionState:
        session = self._current_session()
        return session.state if session is not None else "idle"

    @property
    def connection_status(self) -> ConnectionStatus:
        session = self._current_session()
        return session.connection_status if session is not None else "disconnected"

    @property
    def current_speaker(self) -> SpeakerRole:
        with self._lock:
            return self._attributor.current_speaker

    @property
    def total_speakers_detected(self) -> int:
        with self._lock:
            return len(self._roles_attributed)

    @property
    def voice_profiles(self) -> List[SpeakerProfile]:
        with self._lock:
            return self._profiles.profiles()

    @property
    def service_provider_name(self) -> str:
        with self._lock:
            return self._provider_name

    @property
    def last_error_code(self) -> Optional[str]:
        session = self._current_session()
        return session.last_error_code if session is not None else None

    @property
    def detected_language(self) -> str:
        return self._language.current

    @property
    def transcript(self) -> tuple[TranscriptEntry, ...]:
        with self._lock:
            return tuple(self._transcript)

    def snapshot(self) -> OrchestratorState:
        with self._lock:
            return OrchestratorState(
                is_recording=self.is_recording,
                session_state=self.session_state,
                connection_status=self.connection_status,
                current_speaker=self._attributor.current_speaker,
                total_speakers_detected=len(self._roles_attributed),
                voice_profiles_detected=len(self._profiles),
                service_provider_name=self._provider_name,
                detected_language=self._language.current,
                transcript_count=len(self._transcript),
            )

    def on(self, event: str, fn: Callable[..., None]) -> Unsubscribe:
        return self._events.subscribe(event, fn)

    # Recording control

    def _current_session(self) -> Optional[RecognitionSession]:
        with self._lock:
            return self._session

    def toggle_recording(self) -> bool:
        if self.is_recording:
            self.stop_recording()
        else:
            self.start_recording()
        return self.is_recording

    def start_recording(self) -> bool:
        with self._lock:
            active = self._session if self._session is not None and self._session.is_active else None
        if active is not None:
            logger.warning("start refused; a recognition stream is already active")
            # Refused by the session itself, which raises the not-ready notification.
            return active.start()
        with self._lock:
            self._counter = 0
            self._transcript = []
            self._roles_attributed = []
            self._profiles = self._new_profiles()
            self._attributor = self._new_attributor(self._profiles)
            self._language.reset(canonical_language_tag(self._config.language))
            session = self._build_session()
        started = session.start()
        if started:
            self._notifier.notify(
                "Recording Started",
                f"Using {self._provider_name} speech recognition ({self._language.current}).",
            )
        return started

    def stop_recording(self) -> bool:
        session = self._current_session()
        if session is None or not session.is_active:
            return False
        session.stop()
        with self._lock:
            count = self._counter
        self._notifier.notify(
            "Recording Stopped",
            f"Captured {count} entries in {self._language.current.upper()}",
        )
        return True

    def set_language(self, language: str) -> bool:
        """Switch recognition language; an active stream is stopped, rebuilt and restarted."""
        tag = canonical_language_tag(language) if language != "auto" else "auto"
        with self._lock:
            if tag == self._config.language:
                return False
            self._config = self._config.model_copy(update={"language": tag})
            session = self._session
            was_active = session is not None and session.is_active
        if was_active and session is not None:
            session.stop()
            with self._lock:
                rebuilt = self._build_session()
            rebuilt.start()
        else:
            with self._lock:
                self._provider_name = select_provider(self._config, self._capabilities)
        self._language.update(tag if tag != "auto" else self._language.current)
        return True

    def _build_session(self) -> RecognitionSession:
        if self._session is not None:
            self._session.dispose()
        for unsubscribe in self._session_unsubscribers:
            unsubscribe()
        self._provider_name = select_provider(self._config, self._capabilities)
        provider = create_provider(
            self._provider_name,
            self._config,
            self._capabilities,
            microphone=self._microphone,
            app_config=self._app_config,
            job_client=self._job_client,
        )
        cfg = self._app_config
        session = RecognitionSession(
            provider,
            scheduler=self._scheduler,
            notifier=self._notifier,
            continuous=self._config.continuous,
            restart_delay_continuous_sec=cfg.CLINIQUE_RESTART_DELAY_CONTINUOUS_SEC,
            restart_delay_discrete_sec=cfg.CLINIQUE_RESTART_DELAY_DISCRETE_SEC,
            restart_delay_end_sec=cfg.CLINIQUE_RESTART_DELAY_END_SEC,
            max_restart_attempts=cfg.CLINIQUE_MAX_RESTART_ATTEMPTS,
        )
        self._session_unsubscribers = [
            session.on("result", self._on_result),
            session.on("state", self._on_state),
        ]
        self._session = session
        logger.info("recognition session built provider=%s language=%s", self._provider_name, self._config.language)
        return session

    # Native payload passthroughs

    def _active_provider(self) -> Optional[SpeechProvider]:
        session = self._current_session()
        return session.provider if session is not None else None

    def ingest(self, payload: dict) -> Optional[RecognitionResult]:
        provider = self._active_provider()
        return provider.ingest(payload) if provider is not None else None

    def ingest_error(self, code: str, message: str = "") -> None:
        provider = self._active_provider()
        if provider is not None:
            provider.ingest_error(code, message)

    def ingest_end(self) -> None:
        provider = self._active_provider()
        if provider is not None:
            provider.ingest_end()

    def ingest_audio(self, chunk) -> None:
        provider = self._active_provider()
        if provider is not None:
            provider.ingest_audio(chunk)

    # Session callbacks

    def _on_state(self, state: SessionState, status: ConnectionStatus) -> None:
        self._events.emit("status", state, status)

    def _on_result(self, result: RecognitionResult) -> None:
        if not result.is_final:
            if self.config.interim_results:
                self._events.emit("interim", result)
            return

        text = result.transcript.strip()
        if not text:
            return
        now = self._clock()
        with self._lock:
            detection = self._attributor.detect_speaker(
                text,
                provider_label=result.speaker,
                now=now,
                language=result.language,
            )
            new_role = detection.speaker not in self._roles_attributed
            if new_role:
                self._roles_attributed.append(detection.speaker)
            self._counter += 1
            entry = TranscriptEntry(
                id=f"{int(now * 1000)}-{self._counter}",
                speaker=detection.speaker,
                text=text,
                timestamp=_dt.datetime.fromtimestamp(now).strftime("%H:%M:%S"),
                language=result.language,
                confidence=confidence_percent(result.confidence),
                voice_signature=(detection.provider_label or "voice_pattern")
                if detection.source == "provider"
                else "voice_pattern",
                voice_profile_id=detection.profile_id,
            )
            self._transcript.append(entry)

        if self._language.update(result.language):
            self._events.emit("language", result.language)
            self._notifier.notify("Language Detected", f"Switched to {result.language.upper()}")
        self._events.emit("speaker", detection)
        if new_role and detection.speaker.startswith("guest"):
            self._notifier.notify(
                "New Speaker Detected",
                f"{speaker_display_label(detection.speaker)} joined the conversation",
            )
        self._events.emit("entry", entry)
        self._deliver(entry)

    def _deliver(self, entry: TranscriptEntry) -> None:
        sink = self._transcript_sink
        if sink is None:
            return

        def _call() -> None:
            try:
                sink(entry)
            except Exception:
                logger.exception("transcript sink failed entry_id=%s", entry.id)

        if self._dispatch is not None:
            self._dispatch(_call)
            return
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="transcript-sink")
            executor = self._executor
        executor.submit(_call)

    def close(self) -> None:
        session = self._current_session()
        if session is not None:
            session.dispose()
        with self._lock:
            executor = self._executor
            self._executor = None
        if executor is not None:
            executor.shutdown(wait=False)
        self._events.clear()
