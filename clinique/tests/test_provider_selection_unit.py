import pytest

from clinique.internal_core.contracts import SpeechConfig
from clinique.internal_core.speech.medical import MedicalSpeechProvider
from clinique.internal_core.speech.regional import RegionalSpeechProvider
from clinique.internal_core.speech.registry import (
    create_provider,
    probe_capabilities,
    select_provider,
    service_capabilities,
    supported_languages,
)

_CLOUD = {"access_key_id": "AKIAEXAMPLE", "secret_access_key": "secret", "endpoint": "http://jobs.local"}


def test_cloud_credentials_select_medical_backend() -> None:
    config = SpeechConfig(language="hi-IN", **_CLOUD)
    caps = probe_capabilities(config)

    assert caps.medical_backend is True
    assert select_provider(config, caps) == "medical"


def test_regional_language_without_credentials_selects_regional() -> None:
    config = SpeechConfig(language="ta-IN")

    assert select_provider(config, probe_capabilities(config)) == "regional"


def test_english_without_credentials_falls_back_to_browser() -> None:
    config = SpeechConfig(language="en-US")

    assert select_provider(config, probe_capabilities(config)) == "browser"


def test_credentials_without_endpoint_or_client_do_not_enable_medical() -> None:
    config = SpeechConfig(language="en-US", access_key_id="AKIAEXAMPLE", secret_access_key="secret")

    caps = probe_capabilities(config)

    assert caps.medical_backend is False
    assert select_provider(config, caps) == "browser"


def test_explicit_supported_provider_is_honored() -> None:
    config = SpeechConfig(provider="streaming", api_key="key-123")

    assert select_provider(config, probe_capabilities(config)) == "streaming"


def test_explicit_unsupported_provider_falls_through_to_policy() -> None:
    config = SpeechConfig(provider="streaming", language="bn-IN")

    assert select_provider(config, probe_capabilities(config)) == "regional"


def test_create_provider_builds_matching_backend() -> None:
    config = SpeechConfig(language="or-IN", **_CLOUD)
    caps = probe_capabilities(config)

    regional = create_provider("regional", config, caps)
    medical = create_provider("medical", config, caps)

    assert isinstance(regional, RegionalSpeechProvider)
    assert regional.model is not None and regional.model.code == "or-IN"
    assert isinstance(medical, MedicalSpeechProvider)
    assert medical.is_supported() is True
    with pytest.raises(ValueError):
        create_provider("telepathy", config, caps)


def test_service_capabilities_and_languages() -> None:
    config = SpeechConfig()
    caps = probe_capabilities(config, streaming_socket=False)

    info = service_capabilities("regional", caps)

    assert info["multilingual"] is True
    assert info["native_diarization"] is False
    assert info["streaming_socket"] is False
    codes = [item["code"] for item in supported_languages()]
    assert "en-US" in codes and "ur-IN" in codes
