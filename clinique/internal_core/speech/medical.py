from __future__ import annotations

"""
Medical-grade cloud backend: chunked audio submitted as transcription jobs.

Design intent:
- Buffer streamed PCM, cut fixed-length chunks, skip silent ones (RMS guard).
- Submit each chunk as a job and poll it to settlement on a worker thread.
- Settled jobs carry provider-native speaker labels; those bypass text heuristics.
"""

import base64
import logging
import queue
import threading
import uuid
from typing import Any, Dict, List, Optional, Protocol

import numpy as np
import requests

from ..audio_utils import compute_rms, decode_pcm16, encode_wav_bytes
from ..contracts import RecognitionResult, SpeechConfig
from .base import (
    MicrophoneGrant,
    SpeechError,
    SpeechProvider,
    SpeechUnsupportedError,
    TransientRecognitionError,
)
from .normalization import normalize_job_result

logger = logging.getLogger(__name__)

MEDICAL_SPECIALTIES: tuple[tuple[str, str], ...] = (
    ("PRIMARYCARE", "Primary Care"),
    ("CARDIOLOGY", "Cardiology"),
    ("NEUROLOGY", "Neurology"),
    ("ORTHOPEDICS", "Orthopedics"),
    ("RADIOLOGY", "Radiology"),
    ("UROLOGY", "Urology"),
    ("DERMATOLOGY", "Dermatology"),
    ("ONCOLOGY", "Oncology"),
    ("PEDIATRICS", "Pediatrics"),
    ("EMERGENCY", "Emergency Medicine"),
)

_SPECIALTY_CODES = frozenset(code for code, _ in MEDICAL_SPECIALTIES)


class TranscriptionJobClient(Protocol):
    def start_job(
        self,
        job_name: str,
        audio_wav: bytes,
        *,
        language: str,
        specialty: str,
        sample_rate: int,
    ) -> None: ...

    def get_job(self, job_name: str) -> Dict[str, Any]: ...


class HttpTranscriptionJobClient:
    """
    Thin JSON-over-HTTP job client.

    POST {endpoint}/jobs submits a base64 WAV; GET {endpoint}/jobs/{name} returns
    `{"status", "results", "language_code", "failure_reason"}`.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        api_key: Optional[str] = None,
        region: Optional[str] = None,
        timeout_sec: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        if not endpoint:
            raise ValueError("endpoint is required")
        self._endpoint = endpoint.rstrip("/")
        self._timeout_sec = timeout_sec
        self._session = session or requests.Session()
        self._headers = {"Content-Type": "application/json"}
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"
        if region:
            self._headers["X-Region"] = region

    def start_job(
        self,
        job_name: str,
        audio_wav: bytes,
        *,
        language: str,
        specialty: str,
        sample_rate: int,
    ) -> None:
        payload = {
            "job_name": job_name,
            "language_code": language,
            "specialty": specialty,
            "type": "CONVERSATION",
            "show_speaker_labels": True,
            "media_format": "wav",
            "media_sample_rate_hz": int(sample_rate),
            "media": base64.b64encode(audio_wav).decode("ascii"),
        }
        try:
            response = self._session.post(
                f"{self._endpoint}/jobs", json=payload, headers=self._headers, timeout=self._timeout_sec
            )
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise TransientRecognitionError("network", f"job submit failed: {e}", "medical") from e

    def get_job(self, job_name: str) -> Dict[str, Any]:
        try:
            response = self._session.get(
                f"{self._endpoint}/jobs/{job_name}", headers=self._headers, timeout=self._timeout_sec
            )
            response.raise_for_status()
            body = response.json()
        except requests.exceptions.RequestException as e:
            raise TransientRecognitionError("network", f"job poll failed: {e}", "medical") from e
        except ValueError as e:
            raise TransientRecognitionError("transcription_error", f"job poll returned non-JSON: {e}", "medical") from e
        if not isinstance(body, dict):
            raise TransientRecognitionError("transcription_error", "job poll returned a non-object body", "medical")
        return body


_STOP = object()


class MedicalSpeechProvider(SpeechProvider):
    def __init__(
        self,
        config: SpeechConfig,
        microphone: Optional[MicrophoneGrant] = None,
        *,
        client: Optional[TranscriptionJobClient] = None,
        sample_rate: int = 16000,
        chunk_sec: float = 3.0,
        silence_rms: float = 0.008,
        poll_interval_sec: float = 2.0,
        poll_max_attempts: int = 30,
        hint_threshold: float = 0.7,
        background: bool = True,
    ):
        super().__init__(config, microphone)
        self._client = client
        self._sample_rate = int(sample_rate)
        self._chunk_samples = max(1, int(float(chunk_sec) * self._sample_rate))
        self._silence_rms = float(silence_rms)
        self._poll_interval_sec = float(poll_interval_sec)
        self._poll_max_attempts = max(1, int(poll_max_attempts))
        self._hint_threshold = hint_threshold
        self._background = background
        self._buffer: List[np.ndarray] = []
        self._buffered = 0
        self._jobs: "queue.Queue[Any]" = queue.Queue()
        self._halt = threading.Event()
        self._worker: Optional[threading.Thread] = None
        self._job_counter = 0
        self._session_prefix = ""
        self.skipped_silent_chunks = 0

    def name(self) -> str:
        return "medical"

    def is_supported(self) -> bool:
        if not self._config.has_cloud_credentials():
            return False
        return self._client is not None or bool(self._config.endpoint)

    def specialty(self) -> str:
        specialty = (self._config.specialty or "PRIMARYCARE").upper()
        return specialty if specialty in _SPECIALTY_CODES else "PRIMARYCARE"

    def _open(self) -> None:
        if self._client is None:
            if not self._config.endpoint:
                raise SpeechUnsupportedError("unsupported", "no transcription endpoint configured", self.name())
            self._client = HttpTranscriptionJobClient(
                self._config.endpoint,
                api_key=self._config.api_key,
                region=self._config.region,
            )
        self._session_prefix = f"session_{uuid.uuid4().hex[:12]}"
        self._buffer = []
        self._buffered = 0
        self._halt = threading.Event()
        self._jobs = queue.Queue()
        if self._background:
            self._worker = threading.Thread(
                target=self._run_worker,
                args=(self._jobs, self._halt),
                name=f"medical-jobs-{self._session_prefix}",
                daemon=True,
            )
            self._worker.start()

    def _close(self) -> None:
        # No join: the worker may be blocked delivering into the caller stopping us.
        self._halt.set()
        self._jobs.put(_STOP)
        self._worker = None
        self._buffer = []
        self._buffered = 0

    def _normalize(self, payload: Dict[str, Any]) -> Optional[RecognitionResult]:
        return normalize_job_result(payload, provider=self.name(), hint_threshold=self._hint_threshold)

    def ingest_audio(self, chunk: Any) -> None:
        if not self.is_running:
            return
        try:
            audio = decode_pcm16(chunk)
        except ValueError as e:
            logger.warning("dropping undecodable audio chunk provider=%s: %s", self.name(), e)
            return
        ready: List[np.ndarray] = []
        with self._lock:
            self._buffer.append(audio)
            self._buffered += int(audio.size)
            if self._buffered >= self._chunk_samples:
                joined = np.concatenate(self._buffer) if len(self._buffer) > 1 else self._buffer[0]
                for start in range(0, joined.size - self._chunk_samples + 1, self._chunk_samples):
                    ready.append(joined[start : start + self._chunk_samples])
                rest = joined[len(ready) * self._chunk_samples :]
                self._buffer = [rest] if rest.size else []
                self._buffered = int(rest.size)
        for piece in ready:
            self._submit(piece)

    def _submit(self, audio: np.ndarray) -> None:
        rms = compute_rms(audio)
        if rms < self._silence_rms:
            self.skipped_silent_chunks += 1
            logger.debug("skipping silent chunk provider=%s rms=%.5f", self.name(), rms)
            return
        if self._background:
            self._jobs.put(audio)
        else:
            self._process_chunk(audio, self._halt)

    def _run_worker(self, jobs: "queue.Queue[Any]", halt: threading.Event) -> None:
        while not halt.is_set():
            item = jobs.get()
            if item is _STOP:
                return
            self._process_chunk(item, halt)

    def _next_job_name(self) -> str:
        with self._lock:
            self._job_counter += 1
            return f"{self._session_prefix}_{self._job_counter:04d}"

    def _process_chunk(self, audio: np.ndarray, halt: threading.Event) -> None:
        client = self._client
        if client is None:
            return
        job_name = self._next_job_name()
        try:
            client.start_job(
                job_name,
                encode_wav_bytes(audio, self._sample_rate),
                language=self.current_language(),
                specialty=self.specialty(),
                sample_rate=self._sample_rate,
            )
            job = self._poll(client, job_name, halt)
        except SpeechError as e:
            logger.warning("transcription job failed provider=%s job=%s code=%s", self.name(), job_name, e.code)
            self.ingest_error(e.code, e.message)
            return
        except Exception as e:
            logger.exception("transcription job crashed provider=%s job=%s", self.name(), job_name)
            self.ingest_error("transcription_error", str(e))
            return
        if job is not None:
            self.ingest(job)

    def _poll(self, client: TranscriptionJobClient, job_name: str, halt: threading.Event) -> Optional[Dict[str, Any]]:
        for attempt in range(self._poll_max_attempts):
            if halt.is_set():
                return None
            job = client.get_job(job_name)
            status = str(job.get("status") or "").upper()
            if status == "COMPLETED":
                return job
            if status == "FAILED":
                reason = str(job.get("failure_reason") or "unknown failure")
                raise TransientRecognitionError("transcription_error", f"job {job_name} failed: {reason}", self.name())
            if attempt + 1 < self._poll_max_attempts and halt.wait(self._poll_interval_sec):
                return None
        raise TransientRecognitionError("network", f"job {job_name} timed out while polling", self.name())
