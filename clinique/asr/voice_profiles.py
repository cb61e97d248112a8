from __future__ import annotations

"""
Heuristic speaker-profile registry for returning-speaker continuity.

Design intent:
- Profiles are text heuristics, not voice biometrics; pitch/tempo/volume are
  fixed placeholders that only keep the record shape.
- Matching is a weighted similarity with a strict acceptance threshold.
- One registry per recording: a new recording constructs a new instance, so no
  profile can leak from one patient into the next.
"""

import re
import time
from threading import RLock
from typing import Callable, List, Optional

from clinique.asr.language import detect_language
from clinique.internal_core.contracts import SpeakerFeatures, SpeakerProfile, SpeakingPattern

CLINICIAN_TERMS: tuple[str, ...] = (
    "diagnosis",
    "treatment",
    "prescription",
    "medication",
    "symptoms",
    "examination",
    "blood pressure",
    "temperature",
    "heart rate",
    "pulse",
    "oxygen",
    "x-ray",
    "test results",
    "follow up",
    "appointment",
    "referral",
    "consultation",
)
PATIENT_TERMS: tuple[str, ...] = (
    "pain",
    "hurt",
    "sick",
    "fever",
    "headache",
    "stomach",
    "nausea",
    "dizzy",
    "tired",
    "weak",
    "cough",
    "cold",
    "allergy",
    "rash",
    "swelling",
    "bleeding",
    "can't sleep",
    "appetite",
    "weight",
    "mood",
    "stress",
    "anxiety",
)
MEDICAL_TERMS: tuple[str, ...] = CLINICIAN_TERMS + PATIENT_TERMS

WEIGHT_TERMS = 0.30
WEIGHT_LANGUAGE = 0.25
WEIGHT_PATTERN = 0.20
WEIGHT_ACCENT = 0.15
WEIGHT_RECENCY = 0.10

NEW_PROFILE_CONFIDENCE = 0.85

_ACCENT_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("indian", re.compile(r"[aeiou]{2,}|[bcdfghjklmnpqrstvwxyz]{3,}", re.IGNORECASE)),
    ("american", re.compile(r"\b(like|you know|um|uh)\b", re.IGNORECASE)),
    ("british", re.compile(r"\b(brilliant|cheers|mate|bloody)\b", re.IGNORECASE)),
)
_QUESTION_START_RE = re.compile(r"^(what|how|why|when|where|can|could|would|should)\b", re.IGNORECASE)


def extract_medical_terms(text: str) -> List[str]:
    lowered = (text or "").lower()
    return [term for term in MEDICAL_TERMS if term in lowered]


def detect_accent(text: str) -> str:
    for accent, pattern in _ACCENT_PATTERNS:
        if pattern.search(text or ""):
            return accent
    return "neutral"


def speaking_pattern(text: str) -> SpeakingPattern:
    words = (text or "").split()
    avg_word_len = sum(len(w) for w in words) / len(words) if words else 0.0
    has_terms = bool(extract_medical_terms(text))
    is_question = "?" in (text or "") or bool(_QUESTION_START_RE.match((text or "").strip()))
    if has_terms and avg_word_len > 8:
        return "professional"
    if is_question and has_terms:
        return "inquisitive"
    if avg_word_len < 5:
        return "casual"
    return "formal"


def _display_name(index: int) -> str:
    if index <= 26:
        return f"Voice {chr(ord('A') + index - 1)}"
    return f"Voice {index}"


class SpeakerProfileRegistry:
    def __init__(
        self,
        *,
        match_threshold: float = 0.7,
        recency_window_sec: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self._lock = RLock()
        self._match_threshold = float(match_threshold)
        self._recency_window_sec = float(recency_window_sec)
        self._clock = clock
        self._profiles: List[SpeakerProfile] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._profiles)

    def profiles(self) -> List[SpeakerProfile]:
        with self._lock:
            return [p.model_copy(deep=True) for p in self._profiles]

    def get(self, profile_id: str) -> Optional[SpeakerProfile]:
        with self._lock:
            for profile in self._profiles:
                if profile.id == profile_id:
                    return profile.model_copy(deep=True)
        return None

    def match_score(
        self,
        profile: SpeakerProfile,
        text: str,
        *,
        language: Optional[str] = None,
        now: Optional[float] = None,
    ) -> float:
        now = self._clock() if now is None else now
        features = profile.features
        terms = extract_medical_terms(text)
        if not terms and not features.medical_terms:
            # Neither side names a term: full agreement on this factor.
            score = WEIGHT_TERMS
        else:
            overlap = sum(1 for term in terms if term in features.medical_terms)
            score = WEIGHT_TERMS * (overlap / max(len(terms), 1))
        if features.language == (language or detect_language(text)):
            score += WEIGHT_LANGUAGE
        if features.speaking_pattern == speaking_pattern(text):
            score += WEIGHT_PATTERN
        if features.accent == detect_accent(text):
            score += WEIGHT_ACCENT
        if self._recency_window_sec > 0:
            elapsed = max(0.0, now - profile.last_seen)
            score += WEIGHT_RECENCY * max(0.0, 1.0 - elapsed / self._recency_window_sec)
        return score

    def observe(
        self,
        text: str,
        *,
        language: Optional[str] = None,
        now: Optional[float] = None,
    ) -> tuple[SpeakerProfile, bool]:
        """
        Match the utterance against known profiles or register a new one.

        Returns a copy of the matched/created profile and whether it is new.
        """
        now = self._clock() if now is None else now
        language = language or detect_language(text)
        with self._lock:
            best: Optional[SpeakerProfile] = None
            best_score = 0.0
            for profile in self._profiles:
                score = self.match_score(profile, text, language=language, now=now)
                if score > self._match_threshold and score > best_score:
                    best = profile
                    best_score = score

            if best is not None:
                best.total_utterances += 1
                best.last_seen = now
                best.confidence = min(1.0, best_score)
                for term in extract_medical_terms(text):
                    if term not in best.features.medical_terms:
                        best.features.medical_terms.append(term)
                return best.model_copy(deep=True), False

            index = len(self._profiles) + 1
            profile = SpeakerProfile(
                id=f"speaker_{index}",
                display_name=_display_name(index),
                features=SpeakerFeatures(
                    # Placeholders inside the nominal ranges; nothing is measured.
                    pitch_hz=100.0 + float((index * 53) % 200),
                    tempo_wpm=120.0 + float((index * 17) % 50),
                    volume_db=60.0 + float((index * 7) % 20),
                    accent=detect_accent(text),
                    language=language,
                    medical_terms=extract_medical_terms(text),
                    speaking_pattern=speaking_pattern(text),
                ),
                confidence=NEW_PROFILE_CONFIDENCE,
                last_seen=now,
                total_utterances=1,
            )
            self._profiles.append(profile)
            return profile.model_copy(deep=True), True
