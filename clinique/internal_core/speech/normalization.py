from __future__ import annotations

"""
Normalize heterogeneous provider payloads into `RecognitionResult`.

Design intent:
- Three wire shapes: browser result events, settled transcription jobs,
  streamed socket frames.
- Missing confidence falls back to a per-provider default; values are
  rescaled per provider and clamped to [0, 1].
- Empty transcripts yield nothing; malformed payloads raise `NormalizationError`.
"""

from typing import Any, Dict, List, Optional

from clinique.asr.language import detect_language

from ..contracts import RecognitionResult
from .base import NormalizationError

DEFAULT_CONFIDENCE: Dict[str, float] = {
    "browser": 0.8,
    "regional": 0.9,
    "medical": 0.95,
    "streaming": 0.9,
    "mock": 0.9,
}
INTERIM_CONFIDENCE = 0.7


def clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _malformed(provider: str, message: str) -> NormalizationError:
    return NormalizationError("malformed_payload", message, provider)


def _require_dict(payload: Any, provider: str, what: str) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise _malformed(provider, f"{what} must be an object, got {type(payload).__name__}")
    return payload


def _require_list(value: Any, provider: str, what: str) -> List[Any]:
    if not isinstance(value, list):
        raise _malformed(provider, f"{what} must be a list")
    return value


def _number_or_none(value: Any, provider: str, what: str) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _malformed(provider, f"{what} must be a number")
    return float(value)


def _text(value: Any, provider: str, what: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise _malformed(provider, f"{what} must be a string")
    return value.strip()


def _alternative_texts(alternatives: List[Any], provider: str) -> List[str]:
    out: List[str] = []
    for alt in alternatives:
        if isinstance(alt, str):
            text = alt.strip()
        else:
            text = _text(_require_dict(alt, provider, "alternative").get("transcript"), provider, "alternative.transcript")
        if text:
            out.append(text)
    return out


def default_confidence(provider: str, is_final: bool) -> float:
    if not is_final:
        return INTERIM_CONFIDENCE
    return DEFAULT_CONFIDENCE.get(provider, DEFAULT_CONFIDENCE["browser"])


def normalize_browser_event(
    payload: Any,
    *,
    provider: str = "browser",
    language_hint: Optional[str] = None,
    hint_confidence: Optional[float] = None,
    hint_threshold: float = 0.7,
) -> Optional[RecognitionResult]:
    """
    Browser result event: `{"results": [{"isFinal", "alternatives": [{"transcript", "confidence"}]}]}`.

    Only the last result of the event is considered.
    """
    event = _require_dict(payload, provider, "result event")
    results = _require_list(event.get("results"), provider, "results")
    if not results:
        return None
    last = _require_dict(results[-1], provider, "result")
    alternatives = _require_list(last.get("alternatives"), provider, "alternatives")
    if not alternatives:
        return None
    top = _require_dict(alternatives[0], provider, "alternative")
    transcript = _text(top.get("transcript"), provider, "transcript")
    if not transcript:
        return None

    is_final = last.get("isFinal") is True
    confidence = _number_or_none(top.get("confidence"), provider, "confidence")
    if confidence is None:
        confidence = default_confidence(provider, is_final)

    return RecognitionResult(
        transcript=transcript,
        confidence=clamp_confidence(confidence),
        is_final=is_final,
        language=detect_language(transcript, language_hint, hint_confidence, threshold=hint_threshold),
        alternatives=_alternative_texts(alternatives[1:], provider),
        provider=provider,
    )


def normalize_job_result(
    payload: Any,
    *,
    provider: str = "medical",
    hint_threshold: float = 0.7,
) -> Optional[RecognitionResult]:
    """
    Settled transcription job: `{"status": "COMPLETED", "results": [...], "language_code": ...}`.

    Job confidence is reported on a 0-100 scale. A settled job is always final.
    """
    job = _require_dict(payload, provider, "job")
    status = str(job.get("status") or "").upper()
    if status != "COMPLETED":
        raise _malformed(provider, f"job is not settled (status={status or 'missing'})")
    results = _require_list(job.get("results"), provider, "results")
    if not results:
        return None
    last = _require_dict(results[-1], provider, "result")
    alternatives = _require_list(last.get("alternatives"), provider, "alternatives")
    if not alternatives:
        return None
    top = _require_dict(alternatives[0], provider, "alternative")
    transcript = _text(top.get("transcript"), provider, "transcript")
    if not transcript:
        return None

    raw_confidence = _number_or_none(top.get("confidence"), provider, "confidence")
    confidence = default_confidence(provider, True) if raw_confidence is None else raw_confidence / 100.0
    confidence = clamp_confidence(confidence)

    speaker: Optional[str] = None
    labels = last.get("speaker_labels")
    if labels is not None:
        labels = _require_list(labels, provider, "speaker_labels")
        if labels:
            label = labels[-1]
            if isinstance(label, dict):
                label = label.get("speaker")
            if label is not None and str(label).strip():
                speaker = str(label).strip()

    language_code = job.get("language_code")
    return RecognitionResult(
        transcript=transcript,
        confidence=confidence,
        is_final=True,
        language=detect_language(
            transcript,
            str(language_code) if language_code else None,
            confidence,
            threshold=hint_threshold,
        ),
        speaker=speaker,
        alternatives=_alternative_texts(alternatives[1:], provider),
        provider=provider,
    )


def normalize_stream_frame(
    payload: Any,
    *,
    provider: str = "streaming",
    hint_threshold: float = 0.7,
) -> Optional[RecognitionResult]:
    """
    Streamed frame: `{"transcript", "isFinal", "confidence", "interimTranscript",
    "detectedLanguage", "languageConfidence", "alternatives", "speaker"}`.

    `isFinal` must be literally true; `interimTranscript` is never final.
    """
    frame = _require_dict(payload, provider, "frame")
    transcript = _text(frame.get("transcript"), provider, "transcript")
    is_final = bool(transcript) and frame.get("isFinal") is True
    if not transcript:
        transcript = _text(frame.get("interimTranscript"), provider, "interimTranscript")
        is_final = False
    if not transcript:
        return None

    confidence = _number_or_none(frame.get("confidence"), provider, "confidence")
    if confidence is None:
        confidence = default_confidence(provider, is_final)
    confidence = clamp_confidence(confidence)

    detected = frame.get("detectedLanguage")
    language_confidence = _number_or_none(frame.get("languageConfidence"), provider, "languageConfidence")
    hint_confidence = confidence if language_confidence is None else language_confidence

    alternatives = frame.get("alternatives")
    alt_texts = _alternative_texts(_require_list(alternatives, provider, "alternatives"), provider) if alternatives is not None else []

    speaker = frame.get("speaker")
    return RecognitionResult(
        transcript=transcript,
        confidence=confidence,
        is_final=is_final,
        language=detect_language(
            transcript,
            str(detected) if detected else None,
            hint_confidence,
            threshold=hint_threshold,
        ),
        speaker=str(speaker).strip() if speaker is not None and str(speaker).strip() else None,
        alternatives=alt_texts,
        provider=provider,
    )
