from __future__ import annotations

from typing import Any, Dict, Optional

from ..contracts import RecognitionResult, SpeechConfig
from .base import MicrophoneGrant, SpeechProvider
from .normalization import normalize_browser_event


class BrowserSpeechProvider(SpeechProvider):
    """
    Universal fallback backend: the client's native recognition engine.

    The engine runs client-side; its result events are relayed into `ingest`.
    The engine reports no language of its own, so language comes from script detection.
    """

    def __init__(
        self,
        config: SpeechConfig,
        microphone: Optional[MicrophoneGrant] = None,
        *,
        engine_available: bool = True,
        hint_threshold: float = 0.7,
    ):
        super().__init__(config, microphone)
        self._engine_available = engine_available
        self._hint_threshold = hint_threshold

    def name(self) -> str:
        return "browser"

    def is_supported(self) -> bool:
        return self._engine_available

    def _normalize(self, payload: Dict[str, Any]) -> Optional[RecognitionResult]:
        return normalize_browser_event(payload, provider=self.name(), hint_threshold=self._hint_threshold)
