from __future__ import annotations

"""
Per-recording speaker attribution for finalized utterances.

Design intent:
- Provider-native diarization labels win and bypass text heuristics.
- Otherwise score clinician vs patient phrases; only a strictly higher side flips the role.
- On a tie, a long silence rotates to the next speaker seen; a short one keeps
  the current speaker (no flips on ambiguous input).
- Voice-profile matching runs alongside and never overrides the role.
"""

import time
from threading import RLock
from typing import Callable, Dict, List, Optional

from clinique.asr.voice_profiles import SpeakerProfileRegistry
from clinique.internal_core.contracts import GUEST_ROLES, SPEAKER_ROLES, SpeakerDetection, SpeakerRole

CLINICIAN_PHRASES: tuple[str, ...] = (
    "may i know your name",
    "what brings you here",
    "how are you feeling",
    "can you describe",
    "let me check",
    "i need to examine",
    "take this medication",
    "come back in",
    "any other symptoms",
    "how long",
    "when did this start",
    "please tell me",
    "excuse me",
    "let me examine",
    "i will prescribe",
    "follow up",
    "treatment plan",
)
PATIENT_PHRASES: tuple[str, ...] = (
    "hello doctor",
    "my name is",
    "i am feeling",
    "i have pain",
    "it hurts",
    "i am experiencing",
    "thank you doctor",
    "since yesterday",
    "since last week",
    "yes doctor",
    "no doctor",
    "i think",
    "i feel",
    "my symptoms",
    "the pain",
    "i cannot",
    "i need help",
)
PHRASE_WEIGHT = 2

PROVIDER_LABEL_CONFIDENCE = 0.95
TURN_TAKING_CONFIDENCE = 0.6
STICKY_CONFIDENCE = 0.5


def score_roles(text: str) -> tuple[int, int]:
    """Return (clinician_score, patient_score) from phrase hits."""
    lowered = " ".join((text or "").lower().split())
    clinician = sum(PHRASE_WEIGHT for phrase in CLINICIAN_PHRASES if phrase in lowered)
    patient = sum(PHRASE_WEIGHT for phrase in PATIENT_PHRASES if phrase in lowered)
    return clinician, patient


def speaker_display_label(role: str) -> str:
    if role == "doctor":
        return "Doctor"
    if role == "patient":
        return "Patient"
    if role.startswith("guest") and role[5:].isdigit():
        return f"Guest {role[5:]}"
    return role


class ProviderLabelMap:
    """
    Stable provider-label -> role lookup.

    First label seen is the doctor, second the patient, later labels take the
    next free guest slot. Once all guest slots are taken, a new label reuses the
    least-recently-seen guest slot.
    """

    def __init__(self) -> None:
        self._roles: Dict[str, SpeakerRole] = {}
        self._guest_last_seen: Dict[str, float] = {}

    def role_for(self, label: str, now: float) -> SpeakerRole:
        key = str(label).strip()
        lowered = key.lower()
        if lowered in SPEAKER_ROLES:
            role: SpeakerRole = lowered  # type: ignore[assignment]
        elif key in self._roles:
            role = self._roles[key]
        else:
            role = self._assign(key)
        if role in GUEST_ROLES:
            self._guest_last_seen[role] = now
        return role

    def _assign(self, key: str) -> SpeakerRole:
        taken = set(self._roles.values())
        for candidate in ("doctor", "patient") + GUEST_ROLES:
            if candidate not in taken:
                self._roles[key] = candidate  # type: ignore[assignment]
                return self._roles[key]
        reuse = min(GUEST_ROLES, key=lambda g: self._guest_last_seen.get(g, 0.0))
        for old_label, old_role in list(self._roles.items()):
            if old_role == reuse:
                del self._roles[old_label]
        self._roles[key] = reuse  # type: ignore[assignment]
        return self._roles[key]

    def labels(self) -> Dict[str, str]:
        return dict(self._roles)


class SpeakerAttributor:
    def __init__(
        self,
        profiles: SpeakerProfileRegistry,
        *,
        silence_threshold_ms: int = 2000,
        initial_speaker: SpeakerRole = "doctor",
        clock: Callable[[], float] = time.time,
    ):
        self._lock = RLock()
        self._profiles = profiles
        self._silence_threshold_ms = int(silence_threshold_ms)
        self._clock = clock
        self._current: SpeakerRole = initial_speaker
        self._seen: List[SpeakerRole] = []
        self._last_final_at: Optional[float] = None
        self._labels = ProviderLabelMap()

    @property
    def profiles(self) -> SpeakerProfileRegistry:
        return self._profiles

    @property
    def current_speaker(self) -> SpeakerRole:
        with self._lock:
            return self._current

    def provider_labels(self) -> Dict[str, str]:
        with self._lock:
            return self._labels.labels()

    def _rotate(self) -> SpeakerRole:
        if len(self._seen) < 2:
            return "patient" if self._current == "doctor" else "doctor"
        if self._current not in self._seen:
            return self._seen[0]
        idx = self._seen.index(self._current)
        return self._seen[(idx + 1) % len(self._seen)]

    def detect_speaker(
        self,
        text: str,
        provider_label: Optional[str] = None,
        now: Optional[float] = None,
        *,
        language: Optional[str] = None,
    ) -> SpeakerDetection:
        now = self._clock() if now is None else now
        profile, is_new = self._profiles.observe(text, language=language, now=now)
        label = str(provider_label).strip() if provider_label is not None else ""

        with self._lock:
            if label:
                role = self._labels.role_for(label, now)
                source = "provider"
                confidence = PROVIDER_LABEL_CONFIDENCE
            else:
                clinician, patient = score_roles(text)
                if clinician != patient:
                    role = "doctor" if clinician > patient else "patient"
                    source = "lexical"
                    confidence = max(clinician, patient) / float(clinician + patient)
                else:
                    gap_ms = None if self._last_final_at is None else (now - self._last_final_at) * 1000.0
                    if gap_ms is not None and gap_ms > self._silence_threshold_ms:
                        role = self._rotate()
                        source = "turn_taking"
                        confidence = TURN_TAKING_CONFIDENCE
                    else:
                        role = self._current
                        source = "sticky"
                        confidence = STICKY_CONFIDENCE

            self._current = role
            if role not in self._seen:
                self._seen.append(role)
            self._last_final_at = now

        return SpeakerDetection(
            speaker=role,
            confidence=confidence,
            is_new_speaker=is_new,
            profile_id=profile.id,
            source=source,  # type: ignore[arg-type]
            provider_label=label or None,
        )
