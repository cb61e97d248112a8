from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from ..contracts import RecognitionResult, SpeechConfig
from .base import MicrophoneGrant, SpeechProvider
from .normalization import normalize_stream_frame

DEFAULT_SCRIPT: tuple[str, ...] = (
    "Hello doctor, I have a headache since yesterday.",
    "How long have you had this headache? Any other symptoms?",
    "I feel tired and I cannot sleep well.",
    "Let me examine you. I will prescribe paracetamol and we will follow up next week.",
)


class MockSpeechProvider(SpeechProvider):
    """Scripted backend for demos and tests; accepts stream-frame payloads too."""

    def __init__(
        self,
        config: SpeechConfig,
        microphone: Optional[MicrophoneGrant] = None,
        *,
        script: Sequence[str] = DEFAULT_SCRIPT,
    ):
        super().__init__(config, microphone)
        self._script = tuple(script)
        self._counter = 0

    def name(self) -> str:
        return "mock"

    def is_supported(self) -> bool:
        return True

    def _normalize(self, payload: Dict[str, Any]) -> Optional[RecognitionResult]:
        return normalize_stream_frame(payload, provider=self.name())

    def play_next(self) -> Optional[RecognitionResult]:
        if not self._script:
            return None
        with self._lock:
            text = self._script[self._counter % len(self._script)]
            self._counter += 1
        return self.ingest({"transcript": text, "isFinal": True, "confidence": 0.9})
