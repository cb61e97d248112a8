from __future__ import annotations

"""
Spoken-language resolution for finalized utterances.

Design intent:
- Trust a provider language tag only above a confidence threshold.
- Otherwise match Unicode script ranges in a fixed priority order.
- Keep one canonical representation (full BCP-47 tag) past adapter boundaries.
"""

import re
from threading import RLock
from typing import Callable, Optional

DEFAULT_LANGUAGE = "en-US"
DEFAULT_HINT_THRESHOLD = 0.7

# Order matters: Devanagari also covers Marathi, and hi-IN wins.
SCRIPT_RANGES: tuple[tuple[str, str, int, int], ...] = (
    ("Devanagari", "hi-IN", 0x0900, 0x097F),
    ("Odia", "or-IN", 0x0B00, 0x0B7F),
    ("Bengali", "bn-IN", 0x0980, 0x09FF),
    ("Tamil", "ta-IN", 0x0B80, 0x0BFF),
    ("Telugu", "te-IN", 0x0C00, 0x0C7F),
    ("Malayalam", "ml-IN", 0x0D00, 0x0D7F),
    ("Kannada", "kn-IN", 0x0C80, 0x0CFF),
    ("Gujarati", "gu-IN", 0x0A80, 0x0AFF),
    ("Gurmukhi", "pa-IN", 0x0A00, 0x0A7F),
    ("Arabic", "ur-IN", 0x0600, 0x06FF),
)

_SCRIPT_PATTERNS = tuple(
    (tag, re.compile(f"[{chr(lo)}-{chr(hi)}]")) for _, tag, lo, hi in SCRIPT_RANGES
)

SUPPORTED_LANGUAGES: tuple[tuple[str, str], ...] = (
    ("en-US", "English (US)"),
    ("hi-IN", "Hindi (India)"),
    ("or-IN", "Odia (India)"),
    ("bn-IN", "Bengali (India)"),
    ("ta-IN", "Tamil (India)"),
    ("te-IN", "Telugu (India)"),
    ("ml-IN", "Malayalam (India)"),
    ("kn-IN", "Kannada (India)"),
    ("gu-IN", "Gujarati (India)"),
    ("mr-IN", "Marathi (India)"),
    ("pa-IN", "Punjabi (India)"),
    ("ur-IN", "Urdu (India)"),
)

_SHORT_CODES = {tag.split("-")[0]: tag for tag, _ in SUPPORTED_LANGUAGES}

_LANGUAGE_NAMES = {
    "english": "en-US",
    "hindi": "hi-IN",
    "odia": "or-IN",
    "oriya": "or-IN",
    "bengali": "bn-IN",
    "bangla": "bn-IN",
    "tamil": "ta-IN",
    "telugu": "te-IN",
    "malayalam": "ml-IN",
    "kannada": "kn-IN",
    "gujarati": "gu-IN",
    "marathi": "mr-IN",
    "punjabi": "pa-IN",
    "urdu": "ur-IN",
}


def canonical_language_tag(value: Optional[str]) -> str:
    """
    Translate provider language spellings into a full BCP-47 tag.

    Accepts full tags in any case or separator (`hi_in`), two-letter codes (`hi`)
    and English language names (`hindi`). Empty input and `auto` map to the default.
    """
    raw = str(value or "").strip()
    if not raw or raw.lower() == "auto":
        return DEFAULT_LANGUAGE
    lowered = raw.lower().replace("_", "-")
    if lowered in _LANGUAGE_NAMES:
        return _LANGUAGE_NAMES[lowered]
    parts = lowered.split("-")
    if len(parts) == 1:
        return _SHORT_CODES.get(parts[0], parts[0])
    return "-".join([parts[0]] + [p.upper() if len(p) == 2 else p.title() for p in parts[1:]])


def detect_script_language(text: str) -> Optional[str]:
    for tag, pattern in _SCRIPT_PATTERNS:
        if pattern.search(text or ""):
            return tag
    return None


def detect_language(
    text: str,
    provider_hint: Optional[str] = None,
    hint_confidence: Optional[float] = None,
    *,
    threshold: float = DEFAULT_HINT_THRESHOLD,
) -> str:
    if provider_hint and hint_confidence is not None and float(hint_confidence) > threshold:
        return canonical_language_tag(provider_hint)
    return detect_script_language(text) or DEFAULT_LANGUAGE


def language_display_name(tag: str) -> str:
    canonical = canonical_language_tag(tag)
    for code, name in SUPPORTED_LANGUAGES:
        if code == canonical:
            return name
    return canonical


class LanguageTracker:
    """Holds the last resolved language; `update` reports only real changes."""

    def __init__(
        self,
        initial: str = DEFAULT_LANGUAGE,
        on_change: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._lock = RLock()
        self._current = canonical_language_tag(initial)
        self._on_change = on_change

    @property
    def current(self) -> str:
        with self._lock:
            return self._current

    def update(self, tag: str) -> bool:
        canonical = canonical_language_tag(tag)
        with self._lock:
            if canonical == self._current:
                return False
            self._current = canonical
        if self._on_change is not None:
            self._on_change(canonical)
        return True

    def reset(self, initial: str = DEFAULT_LANGUAGE) -> None:
        with self._lock:
            self._current = canonical_language_tag(initial)
