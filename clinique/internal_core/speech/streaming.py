from __future__ import annotations

from typing import Any, Dict, Optional

from ..contracts import RecognitionResult, SpeechConfig
from .base import MicrophoneGrant, SpeechProvider
from .normalization import normalize_stream_frame


class StreamingSpeechProvider(SpeechProvider):
    """
    Streamed-frame backend: a recognition socket that tags frames with a language.

    Frames carry `transcript`/`interimTranscript` plus an optional
    `detectedLanguage`; a frame is final only when `isFinal` is literally true.
    """

    def __init__(
        self,
        config: SpeechConfig,
        microphone: Optional[MicrophoneGrant] = None,
        *,
        socket_available: bool = True,
        hint_threshold: float = 0.7,
    ):
        super().__init__(config, microphone)
        self._socket_available = socket_available
        self._hint_threshold = hint_threshold

    def name(self) -> str:
        return "streaming"

    def is_supported(self) -> bool:
        return self._socket_available and bool(self._config.api_key)

    def _normalize(self, payload: Dict[str, Any]) -> Optional[RecognitionResult]:
        return normalize_stream_frame(payload, provider=self.name(), hint_threshold=self._hint_threshold)
