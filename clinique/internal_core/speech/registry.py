from __future__ import annotations

"""
Capability probing and deterministic backend selection.

Design intent:
- Probe once per orchestrator and pass the record down; no ambient globals.
- Selection is a pure function of (config, capabilities).
- Construction stays in one factory so callers never branch on provider names.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from clinique.asr.language import SUPPORTED_LANGUAGES, canonical_language_tag

from ..config import AppConfig
from ..contracts import SpeechConfig
from .base import MicrophoneGrant, SpeechProvider
from .browser import BrowserSpeechProvider
from .medical import MEDICAL_SPECIALTIES, MedicalSpeechProvider, TranscriptionJobClient
from .mock import MockSpeechProvider
from .regional import REGIONAL_LANGUAGES, RegionalSpeechProvider
from .streaming import StreamingSpeechProvider

logger = logging.getLogger(__name__)

PROVIDER_NAMES: tuple[str, ...] = ("browser", "regional", "medical", "streaming", "mock")


@dataclass(frozen=True)
class ProviderCapabilities:
    native_engine: bool
    streaming_socket: bool
    medical_backend: bool
    microphone: str = "granted"


def probe_capabilities(
    config: SpeechConfig,
    *,
    native_engine: bool = True,
    streaming_socket: bool = True,
    job_client: Optional[TranscriptionJobClient] = None,
    microphone: str = "granted",
) -> ProviderCapabilities:
    """
    Record what this runtime can do.

    `native_engine` and `streaming_socket` are reported by the client; the
    medical backend needs credentials plus an endpoint or an injected job client.
    """
    medical = config.has_cloud_credentials() and (job_client is not None or bool(config.endpoint))
    return ProviderCapabilities(
        native_engine=bool(native_engine),
        streaming_socket=bool(streaming_socket),
        medical_backend=bool(medical),
        microphone=microphone,
    )


def provider_supported(name: str, config: SpeechConfig, capabilities: ProviderCapabilities) -> bool:
    if name == "mock":
        return True
    if name in {"browser", "regional"}:
        return capabilities.native_engine
    if name == "streaming":
        return capabilities.streaming_socket and bool(config.api_key)
    if name == "medical":
        return capabilities.medical_backend and config.has_cloud_credentials()
    return False


def select_provider(config: SpeechConfig, capabilities: ProviderCapabilities) -> str:
    requested = config.provider
    if requested != "auto":
        if provider_supported(requested, config, capabilities):
            return requested
        logger.warning("requested speech provider=%s is not supported here; applying selection policy", requested)

    if config.has_cloud_credentials() and provider_supported("medical", config, capabilities):
        return "medical"
    if canonical_language_tag(config.language) in REGIONAL_LANGUAGES:
        return "regional"
    return "browser"


def create_provider(
    name: str,
    config: SpeechConfig,
    capabilities: ProviderCapabilities,
    *,
    microphone: Optional[MicrophoneGrant] = None,
    app_config: Optional[AppConfig] = None,
    job_client: Optional[TranscriptionJobClient] = None,
) -> SpeechProvider:
    hint_threshold = app_config.CLINIQUE_LANGUAGE_HINT_THRESHOLD if app_config else 0.7
    if name == "browser":
        return BrowserSpeechProvider(
            config, microphone, engine_available=capabilities.native_engine, hint_threshold=hint_threshold
        )
    if name == "regional":
        return RegionalSpeechProvider(
            config, microphone, engine_available=capabilities.native_engine, hint_threshold=hint_threshold
        )
    if name == "streaming":
        return StreamingSpeechProvider(
            config, microphone, socket_available=capabilities.streaming_socket, hint_threshold=hint_threshold
        )
    if name == "medical":
        kwargs: Dict[str, Any] = {}
        if app_config is not None:
            kwargs = {
                "sample_rate": app_config.CLINIQUE_SAMPLE_RATE_HZ,
                "chunk_sec": app_config.CLINIQUE_MEDICAL_CHUNK_SEC,
                "silence_rms": app_config.CLINIQUE_SILENCE_RMS,
                "poll_interval_sec": app_config.CLINIQUE_MEDICAL_POLL_INTERVAL_SEC,
                "poll_max_attempts": app_config.CLINIQUE_MEDICAL_POLL_MAX_ATTEMPTS,
            }
        return MedicalSpeechProvider(
            config, microphone, client=job_client, hint_threshold=hint_threshold, **kwargs
        )
    if name == "mock":
        return MockSpeechProvider(config, microphone)
    raise ValueError(f"Unknown speech provider: {name}")


def supported_languages() -> List[Dict[str, str]]:
    return [{"code": code, "name": name} for code, name in SUPPORTED_LANGUAGES]


def medical_specialties() -> List[Dict[str, str]]:
    return [{"code": code, "name": name} for code, name in MEDICAL_SPECIALTIES]


def service_capabilities(provider_name: str, capabilities: ProviderCapabilities) -> Dict[str, Any]:
    return {
        "provider": provider_name,
        "enhanced": provider_name in {"medical", "regional", "streaming"},
        "multilingual": provider_name in {"regional", "streaming"},
        "medical_entity_extraction": provider_name == "medical",
        "speaker_detection": True,
        "native_diarization": provider_name in {"medical", "streaming"},
        "real_time_processing": provider_name != "medical",
        "medical_specialty": provider_name == "medical",
        "native_engine": capabilities.native_engine,
        "streaming_socket": capabilities.streaming_socket,
        "medical_backend": capabilities.medical_backend,
        "microphone": capabilities.microphone,
    }
