from __future__ import annotations

from .base import (
    EventEmitter,
    MicrophoneGrant,
    NormalizationError,
    SpeechError,
    SpeechPermissionError,
    SpeechProvider,
    SpeechUnsupportedError,
    TransientRecognitionError,
    classify_error_code,
)
from .browser import BrowserSpeechProvider
from .controller import RecognitionSession
from .medical import MedicalSpeechProvider
from .mock import MockSpeechProvider
from .regional import RegionalSpeechProvider
from .registry import ProviderCapabilities, create_provider, probe_capabilities, select_provider
from .streaming import StreamingSpeechProvider

__all__ = [
    "BrowserSpeechProvider",
    "EventEmitter",
    "MedicalSpeechProvider",
    "MicrophoneGrant",
    "MockSpeechProvider",
    "NormalizationError",
    "ProviderCapabilities",
    "RecognitionSession",
    "RegionalSpeechProvider",
    "SpeechError",
    "SpeechPermissionError",
    "SpeechProvider",
    "SpeechUnsupportedError",
    "StreamingSpeechProvider",
    "TransientRecognitionError",
    "classify_error_code",
    "create_provider",
    "probe_capabilities",
    "select_provider",
]
