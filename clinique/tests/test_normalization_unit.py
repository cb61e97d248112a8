import pytest

from clinique.internal_core.contracts import SpeechConfig
from clinique.internal_core.speech.base import NormalizationError
from clinique.internal_core.speech.mock import MockSpeechProvider
from clinique.internal_core.speech.normalization import (
    normalize_browser_event,
    normalize_job_result,
    normalize_stream_frame,
)
from clinique.internal_core.speech.regional import RegionalSpeechProvider


def test_browser_event_uses_last_result_and_top_alternative() -> None:
    payload = {
        "results": [
            {"isFinal": True, "alternatives": [{"transcript": "ignored", "confidence": 0.1}]},
            {
                "isFinal": True,
                "alternatives": [{"transcript": "  I have a cough ", "confidence": 0.55}, {"transcript": "I have a cold"}],
            },
        ]
    }

    result = normalize_browser_event(payload)

    assert result is not None
    assert result.transcript == "I have a cough"
    assert result.confidence == pytest.approx(0.55)
    assert result.is_final is True
    assert result.alternatives == ["I have a cold"]
    assert result.language == "en-US"


def test_browser_event_default_confidence_depends_on_finality() -> None:
    final = normalize_browser_event({"results": [{"isFinal": True, "alternatives": [{"transcript": "hello"}]}]})
    interim = normalize_browser_event({"results": [{"isFinal": False, "alternatives": [{"transcript": "hel"}]}]})

    assert final is not None and final.confidence == pytest.approx(0.8)
    assert interim is not None and interim.confidence == pytest.approx(0.7)
    assert interim.is_final is False


def test_browser_event_empty_transcript_yields_nothing() -> None:
    assert normalize_browser_event({"results": []}) is None
    assert normalize_browser_event({"results": [{"isFinal": True, "alternatives": [{"transcript": "  "}]}]}) is None


def test_malformed_browser_event_raises() -> None:
    with pytest.raises(NormalizationError):
        normalize_browser_event({"results": "not-a-list"})
    with pytest.raises(NormalizationError):
        normalize_browser_event({"results": [{"isFinal": True, "alternatives": [{"transcript": "x", "confidence": "high"}]}]})


def test_job_result_rescales_confidence_and_keeps_speaker_label() -> None:
    job = {
        "status": "COMPLETED",
        "language_code": "hi-IN",
        "results": [
            {
                "alternatives": [{"transcript": "namaste doctor", "confidence": 95}],
                "speaker_labels": [{"speaker": "spk_0"}, {"speaker": "spk_1"}],
            }
        ],
    }

    result = normalize_job_result(job)

    assert result is not None
    assert result.is_final is True
    assert result.confidence == pytest.approx(0.95)
    assert result.speaker == "spk_1"
    assert result.language == "hi-IN"


def test_unsettled_job_is_rejected() -> None:
    with pytest.raises(NormalizationError):
        normalize_job_result({"status": "IN_PROGRESS", "results": []})


def test_stream_frame_requires_literal_true_for_finality() -> None:
    quoted = normalize_stream_frame({"transcript": "I feel dizzy", "isFinal": "true"})
    missing = normalize_stream_frame({"transcript": "I feel dizzy"})
    final = normalize_stream_frame({"transcript": "I feel dizzy", "isFinal": True})

    assert quoted is not None and quoted.is_final is False
    assert missing is not None and missing.is_final is False
    assert final is not None and final.is_final is True


def test_stream_frame_interim_transcript_is_never_final() -> None:
    result = normalize_stream_frame({"interimTranscript": "I feel", "isFinal": True})

    assert result is not None
    assert result.is_final is False
    assert result.transcript == "I feel"


def test_stream_frame_language_hint_and_clamping() -> None:
    result = normalize_stream_frame(
        {
            "transcript": "vanakkam",
            "isFinal": True,
            "confidence": 1.4,
            "detectedLanguage": "ta",
            "languageConfidence": 0.9,
            "speaker": " A ",
        }
    )

    assert result is not None
    assert result.confidence == 1.0
    assert result.language == "ta-IN"
    assert result.speaker == "A"


def test_provider_drops_malformed_payload_without_emitting() -> None:
    provider = MockSpeechProvider(SpeechConfig(provider="mock"))
    seen: list = []
    provider.on_result(seen.append)
    provider.start()

    assert provider.ingest({"transcript": 42, "isFinal": True}) is None
    assert seen == []
    assert provider.is_running is True


def test_regional_provider_converts_final_text_to_native_script() -> None:
    provider = RegionalSpeechProvider(SpeechConfig(provider="regional", language="hi-IN"))
    provider.start()

    result = provider.ingest(
        {"results": [{"isFinal": True, "alternatives": [{"transcript": "doctor I have fever", "confidence": 0.9}]}]}
    )

    assert result is not None
    assert result.language == "hi-IN"
    assert "बुखार" in result.transcript
    assert result.alternatives[0] == "doctor I have fever"
