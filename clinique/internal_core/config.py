from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from clinique.asr.language import canonical_language_tag

from .contracts import SpeechConfig


def _project_root() -> Path:
    # clinique/internal_core/config.py -> clinique -> project root
    return Path(__file__).resolve().parents[2]


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_opt_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


@dataclass(frozen=True)
class AppConfig:
    CLINIQUE_SPEECH_PROVIDER: str
    CLINIQUE_LANGUAGE: str
    CLINIQUE_CONTINUOUS: bool
    CLINIQUE_INTERIM_RESULTS: bool
    CLINIQUE_SPEECH_API_KEY: Optional[str]
    CLINIQUE_SPEECH_REGION: str
    CLINIQUE_MEDICAL_ENDPOINT: str
    CLINIQUE_MEDICAL_SPECIALTY: str
    AWS_ACCESS_KEY_ID: Optional[str]
    AWS_SECRET_ACCESS_KEY: Optional[str]
    AWS_SESSION_TOKEN: Optional[str]
    CLINIQUE_RESTART_DELAY_CONTINUOUS_SEC: float
    CLINIQUE_RESTART_DELAY_DISCRETE_SEC: float
    CLINIQUE_RESTART_DELAY_END_SEC: float
    CLINIQUE_MAX_RESTART_ATTEMPTS: int
    CLINIQUE_SILENCE_THRESHOLD_MS: int
    CLINIQUE_PROFILE_MATCH_THRESHOLD: float
    CLINIQUE_PROFILE_RECENCY_SEC: float
    CLINIQUE_LANGUAGE_HINT_THRESHOLD: float
    CLINIQUE_MEDICAL_POLL_INTERVAL_SEC: float
    CLINIQUE_MEDICAL_POLL_MAX_ATTEMPTS: int
    CLINIQUE_MEDICAL_CHUNK_SEC: float
    CLINIQUE_SAMPLE_RATE_HZ: int
    CLINIQUE_SILENCE_RMS: float
    CLINIQUE_ENTITY_LLM: bool
    CLINIQUE_LLAMA_CPP_MODEL: str
    CLINIQUE_LLAMA_CPP_CHAT_FORMAT: str
    CLINIQUE_LLM_MAX_TOKENS: int
    CLINIQUE_REPORTS_PATH: str
    CLINIQUE_SESSION_TTL_SECONDS: int
    CLINIQUE_LOG_LEVEL: str

    def reports_path(self, repo_root: Optional[Path] = None) -> Path:
        return ((repo_root or _project_root()) / self.CLINIQUE_REPORTS_PATH).resolve()

    def has_cloud_credentials(self) -> bool:
        return bool(self.AWS_ACCESS_KEY_ID and self.AWS_SECRET_ACCESS_KEY)

    def speech_config(self, language: Optional[str] = None, provider: Optional[str] = None) -> SpeechConfig:
        language = (language or self.CLINIQUE_LANGUAGE).strip()
        return SpeechConfig(
            provider=provider or self.CLINIQUE_SPEECH_PROVIDER,
            language=language if language.lower() == "auto" else canonical_language_tag(language),
            continuous=self.CLINIQUE_CONTINUOUS,
            interim_results=self.CLINIQUE_INTERIM_RESULTS,
            api_key=self.CLINIQUE_SPEECH_API_KEY,
            region=self.CLINIQUE_SPEECH_REGION,
            endpoint=self.CLINIQUE_MEDICAL_ENDPOINT or None,
            access_key_id=self.AWS_ACCESS_KEY_ID,
            secret_access_key=self.AWS_SECRET_ACCESS_KEY,
            session_token=self.AWS_SESSION_TOKEN,
            specialty=self.CLINIQUE_MEDICAL_SPECIALTY,
        )


def load_config() -> AppConfig:
    return AppConfig(
        CLINIQUE_SPEECH_PROVIDER=_getenv_str("CLINIQUE_SPEECH_PROVIDER", "auto"),
        CLINIQUE_LANGUAGE=_getenv_str("CLINIQUE_LANGUAGE", "en-US"),
        CLINIQUE_CONTINUOUS=_getenv_bool("CLINIQUE_CONTINUOUS", True),
        CLINIQUE_INTERIM_RESULTS=_getenv_bool("CLINIQUE_INTERIM_RESULTS", False),
        CLINIQUE_SPEECH_API_KEY=_getenv_opt_str("CLINIQUE_SPEECH_API_KEY"),
        CLINIQUE_SPEECH_REGION=_getenv_str(
            "CLINIQUE_SPEECH_REGION",
            _getenv_str("AWS_REGION", "us-east-1"),
        ),
        CLINIQUE_MEDICAL_ENDPOINT=_getenv_str("CLINIQUE_MEDICAL_ENDPOINT", ""),
        CLINIQUE_MEDICAL_SPECIALTY=_getenv_str("CLINIQUE_MEDICAL_SPECIALTY", "PRIMARYCARE"),
        AWS_ACCESS_KEY_ID=_getenv_opt_str("AWS_ACCESS_KEY_ID"),
        AWS_SECRET_ACCESS_KEY=_getenv_opt_str("AWS_SECRET_ACCESS_KEY"),
        AWS_SESSION_TOKEN=_getenv_opt_str("AWS_SESSION_TOKEN"),
        CLINIQUE_RESTART_DELAY_CONTINUOUS_SEC=_getenv_float("CLINIQUE_RESTART_DELAY_CONTINUOUS_SEC", 1.0),
        CLINIQUE_RESTART_DELAY_DISCRETE_SEC=_getenv_float("CLINIQUE_RESTART_DELAY_DISCRETE_SEC", 2.0),
        CLINIQUE_RESTART_DELAY_END_SEC=_getenv_float("CLINIQUE_RESTART_DELAY_END_SEC", 0.5),
        CLINIQUE_MAX_RESTART_ATTEMPTS=_getenv_int("CLINIQUE_MAX_RESTART_ATTEMPTS", 5),
        CLINIQUE_SILENCE_THRESHOLD_MS=_getenv_int("CLINIQUE_SILENCE_THRESHOLD_MS", 2000),
        CLINIQUE_PROFILE_MATCH_THRESHOLD=_getenv_float("CLINIQUE_PROFILE_MATCH_THRESHOLD", 0.7),
        CLINIQUE_PROFILE_RECENCY_SEC=_getenv_float("CLINIQUE_PROFILE_RECENCY_SEC", 300.0),
        CLINIQUE_LANGUAGE_HINT_THRESHOLD=_getenv_float("CLINIQUE_LANGUAGE_HINT_THRESHOLD", 0.7),
        CLINIQUE_MEDICAL_POLL_INTERVAL_SEC=_getenv_float("CLINIQUE_MEDICAL_POLL_INTERVAL_SEC", 2.0),
        CLINIQUE_MEDICAL_POLL_MAX_ATTEMPTS=_getenv_int("CLINIQUE_MEDICAL_POLL_MAX_ATTEMPTS", 30),
        CLINIQUE_MEDICAL_CHUNK_SEC=_getenv_float("CLINIQUE_MEDICAL_CHUNK_SEC", 3.0),
        CLINIQUE_SAMPLE_RATE_HZ=_getenv_int("CLINIQUE_SAMPLE_RATE_HZ", 16000),
        CLINIQUE_SILENCE_RMS=_getenv_float("CLINIQUE_SILENCE_RMS", 0.008),
        CLINIQUE_ENTITY_LLM=_getenv_bool("CLINIQUE_ENTITY_LLM", False),
        CLINIQUE_LLAMA_CPP_MODEL=_getenv_str("CLINIQUE_LLAMA_CPP_MODEL", ""),
        CLINIQUE_LLAMA_CPP_CHAT_FORMAT=_getenv_str("CLINIQUE_LLAMA_CPP_CHAT_FORMAT", "gemma"),
        CLINIQUE_LLM_MAX_TOKENS=_getenv_int("CLINIQUE_LLM_MAX_TOKENS", 512),
        CLINIQUE_REPORTS_PATH=_getenv_str("CLINIQUE_REPORTS_PATH", "./tmp/patient_reports.json"),
        CLINIQUE_SESSION_TTL_SECONDS=_getenv_int("CLINIQUE_SESSION_TTL_SECONDS", 14400),
        CLINIQUE_LOG_LEVEL=_getenv_str("CLINIQUE_LOG_LEVEL", "INFO"),
    )
