from __future__ import annotations

"""
Regional-language backend for Indian languages.

Design intent:
- Ride on the client's native engine, locked to a regional language model.
- The model's own confidence makes the configured language a trusted hint.
- Optionally render common clinical words in the native script for final results.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..contracts import RecognitionResult, SpeechConfig
from .base import MicrophoneGrant, SpeechProvider
from .normalization import normalize_browser_event


@dataclass(frozen=True)
class RegionalLanguageModel:
    code: str
    name: str
    native_name: str
    model: str
    confidence: float


REGIONAL_MODELS: tuple[RegionalLanguageModel, ...] = (
    RegionalLanguageModel("or-IN", "Odia", "ଓଡ଼ିଆ", "regional-or-IN-v2", 0.95),
    RegionalLanguageModel("hi-IN", "Hindi", "हिंदी", "regional-hi-IN-v2", 0.94),
    RegionalLanguageModel("bn-IN", "Bengali", "বাংলা", "regional-bn-IN-v2", 0.93),
    RegionalLanguageModel("ta-IN", "Tamil", "தமிழ்", "regional-ta-IN-v2", 0.92),
    RegionalLanguageModel("te-IN", "Telugu", "తెలుగు", "regional-te-IN-v2", 0.91),
    RegionalLanguageModel("ml-IN", "Malayalam", "മലയാളം", "regional-ml-IN-v2", 0.90),
    RegionalLanguageModel("kn-IN", "Kannada", "ಕನ್ನಡ", "regional-kn-IN-v2", 0.89),
    RegionalLanguageModel("gu-IN", "Gujarati", "ગુજરાતી", "regional-gu-IN-v2", 0.88),
    RegionalLanguageModel("mr-IN", "Marathi", "मराठी", "regional-mr-IN-v2", 0.87),
    RegionalLanguageModel("pa-IN", "Punjabi", "ਪੰਜਾਬੀ", "regional-pa-IN-v2", 0.86),
    RegionalLanguageModel("ur-IN", "Urdu", "اردو", "regional-ur-IN-v2", 0.85),
)

REGIONAL_LANGUAGES: frozenset[str] = frozenset(m.code for m in REGIONAL_MODELS)

NATIVE_SCRIPT_WORDS: Dict[str, Dict[str, str]] = {
    "hi-IN": {
        "hello": "नमस्ते",
        "doctor": "डॉक्टर",
        "patient": "मरीज़",
        "medicine": "दवा",
        "fever": "बुखार",
        "pain": "दर्द",
        "headache": "सिरदर्द",
        "stomach": "पेट",
        "blood": "खून",
        "symptoms": "लक्षण",
        "treatment": "इलाज",
        "hospital": "अस्पताल",
        "tablet": "गोली",
        "diagnosis": "निदान",
        "allergy": "एलर्जी",
        "infection": "संक्रमण",
    },
    "or-IN": {
        "hello": "ନମସ୍କାର",
        "doctor": "ଡାକ୍ତର",
        "patient": "ରୋଗୀ",
        "medicine": "ଔଷଧ",
        "fever": "ଜ୍ୱର",
        "pain": "ଯନ୍ତ୍ରଣା",
        "headache": "ମୁଣ୍ଡବିନ୍ଧା",
        "stomach": "ପେଟ",
        "blood": "ରକ୍ତ",
        "symptoms": "ଲକ୍ଷଣ",
        "treatment": "ଚିକିତ୍ସା",
        "hospital": "ଡାକ୍ତରଖାନା",
        "tablet": "ବଟିକା",
        "infection": "ସଂକ୍ରମଣ",
    },
    "bn-IN": {
        "hello": "হ্যালো",
        "doctor": "ডাক্তার",
        "patient": "রোগী",
        "medicine": "ঔষধ",
        "fever": "জ্বর",
        "pain": "ব্যথা",
        "headache": "মাথাব্যথা",
        "stomach": "পেট",
        "blood": "রক্ত",
        "symptoms": "লক্ষণ",
        "treatment": "চিকিৎসা",
        "hospital": "হাসপাতাল",
        "tablet": "ট্যাবলেট",
        "infection": "সংক্রমণ",
    },
}


def regional_model(code: str) -> Optional[RegionalLanguageModel]:
    for model in REGIONAL_MODELS:
        if model.code == code:
            return model
    return None


def to_native_script(text: str, language: str) -> str:
    mapping = NATIVE_SCRIPT_WORDS.get(language)
    if not mapping:
        return text
    out = text
    # Longest first so multi-word keys are not split by shorter ones.
    for english in sorted(mapping, key=len, reverse=True):
        out = re.sub(rf"\b{re.escape(english)}\b", mapping[english], out, flags=re.IGNORECASE)
    return out


class RegionalSpeechProvider(SpeechProvider):
    def __init__(
        self,
        config: SpeechConfig,
        microphone: Optional[MicrophoneGrant] = None,
        *,
        engine_available: bool = True,
        native_script: bool = True,
        hint_threshold: float = 0.7,
    ):
        super().__init__(config, microphone)
        self._engine_available = engine_available
        self._native_script = native_script
        self._hint_threshold = hint_threshold
        self._model = regional_model(self._language)

    def name(self) -> str:
        return "regional"

    def is_supported(self) -> bool:
        return self._engine_available

    @property
    def model(self) -> Optional[RegionalLanguageModel]:
        return self._model

    def _normalize(self, payload: Dict[str, Any]) -> Optional[RecognitionResult]:
        model = self._model
        result = normalize_browser_event(
            payload,
            provider=self.name(),
            language_hint=model.code if model else None,
            hint_confidence=model.confidence if model else None,
            hint_threshold=self._hint_threshold,
        )
        if result is None or not result.is_final or not self._native_script:
            return result
        native = to_native_script(result.transcript, result.language)
        if native == result.transcript:
            return result
        return result.model_copy(
            update={"transcript": native, "alternatives": [result.transcript] + list(result.alternatives)}
        )
