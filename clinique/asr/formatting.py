from __future__ import annotations

"""
Format transcript entries into compact display lines.

Design intent:
- Keep UI and report-facing transcript deterministic.
- Normalize punctuation and role labels for readability.
"""

import re
from typing import Sequence

from clinique.asr.role_mapping import speaker_display_label
from clinique.internal_core.contracts import TranscriptEntry

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?।])\s+")


def _ensure_terminal_punctuation(text: str) -> str:
    trimmed = text.strip()
    if not trimmed:
        return ""
    if trimmed[-1] in ".!?।":
        return trimmed
    return f"{trimmed}."


def _split_sentences(text: str, *, split_sentences: bool) -> list[str]:
    normalized = " ".join(text.split()).strip()
    if not normalized:
        return []
    if not split_sentences:
        return [normalized]
    return [part.strip() for part in _SENTENCE_SPLIT_RE.split(normalized) if part.strip()]


def format_for_display(
    entries: Sequence[TranscriptEntry],
    *,
    split_sentences: bool = False,
    with_timestamps: bool = True,
) -> str:
    if not entries:
        return ""

    lines: list[str] = []
    for entry in entries:
        speaker = speaker_display_label(entry.speaker)
        prefix = f"[{entry.timestamp}] {speaker}" if with_timestamps else speaker
        for sentence in _split_sentences(entry.text, split_sentences=split_sentences):
            normalized = _ensure_terminal_punctuation(sentence)
            if normalized:
                lines.append(f"{prefix}: {normalized}")

    return "\n".join(lines)
