from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ProviderName = Literal["auto", "browser", "regional", "medical", "streaming", "mock"]

SpeakerRole = Literal["doctor", "patient", "guest1", "guest2", "guest3", "guest4"]

SPEAKER_ROLES: tuple[str, ...] = ("doctor", "patient", "guest1", "guest2", "guest3", "guest4")
GUEST_ROLES: tuple[str, ...] = ("guest1", "guest2", "guest3", "guest4")

ConnectionStatus = Literal["disconnected", "connecting", "connected", "error"]

SessionState = Literal["idle", "starting", "listening", "error", "ended"]

SpeakingPattern = Literal["professional", "casual", "inquisitive", "formal"]

DetectionSource = Literal["provider", "lexical", "turn_taking", "sticky"]


class SpeechConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    provider: ProviderName = "auto"
    language: str = "en-US"
    continuous: bool = True
    interim_results: bool = False
    api_key: Optional[str] = None
    region: Optional[str] = None
    endpoint: Optional[str] = None
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    specialty: str = "PRIMARYCARE"

    def has_cloud_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)


class RecognitionResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    transcript: str
    confidence: float
    is_final: bool
    language: str
    speaker: Optional[str] = None
    alternatives: List[str] = Field(default_factory=list)
    provider: str = ""


class TranscriptEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    speaker: SpeakerRole
    text: str
    timestamp: str
    language: str
    confidence: int = Field(ge=0, le=100)
    voice_signature: str
    voice_profile_id: Optional[str] = None


class SpeakerFeatures(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Placeholder values; nothing here is derived from the audio signal.
    pitch_hz: float
    tempo_wpm: float
    volume_db: float
    accent: str
    language: str
    medical_terms: List[str] = Field(default_factory=list)
    speaking_pattern: SpeakingPattern


class SpeakerProfile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    display_name: str
    features: SpeakerFeatures
    confidence: float = Field(ge=0.0, le=1.0)
    last_seen: float
    total_utterances: int = Field(ge=1)


class SpeakerDetection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    speaker: SpeakerRole
    confidence: float = Field(ge=0.0, le=1.0)
    is_new_speaker: bool
    profile_id: Optional[str] = None
    source: DetectionSource
    provider_label: Optional[str] = None


EntityType = Literal[
    "symptom",
    "condition",
    "medication",
    "date",
    "location",
    "procedure",
    "vital_sign",
    "anatomy",
    "test",
]


class MedicalEntity(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str
    type: EntityType
    confidence: float = Field(default=0.85, ge=0.0, le=1.0)


ReportStatus = Literal["draft", "completed", "archived"]


class ReportSummary(BaseModel):
    model_config = ConfigDict(extra="forbid")

    main_concerns: List[str] = Field(default_factory=list)
    discussed_symptoms: List[str] = Field(default_factory=list)
    mentioned_medications: List[str] = Field(default_factory=list)
    identified_conditions: List[str] = Field(default_factory=list)


class PatientReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str
    patient_name: str
    visit_date: str
    visit_time: str
    language: str
    transcript_entries: List[TranscriptEntry] = Field(default_factory=list)
    medical_entities: List[MedicalEntity] = Field(default_factory=list)
    summary: ReportSummary = Field(default_factory=ReportSummary)
    next_steps: List[str] = Field(default_factory=list)
    important_notes: List[str] = Field(default_factory=list)
    status: ReportStatus = "completed"
    report_url: str
    created_at: str
    updated_at: str


NotificationVariant = Literal["default", "destructive"]


class Notification(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    description: str
    variant: NotificationVariant = "default"
    ts_iso: str = ""


class OrchestratorState(BaseModel):
    model_config = ConfigDict(extra="forbid")

    is_recording: bool
    session_state: SessionState
    connection_status: ConnectionStatus
    current_speaker: SpeakerRole
    total_speakers_detected: int
    voice_profiles_detected: int
    service_provider_name: str
    detected_language: str
    transcript_count: int


AuditEventType = Literal[
    "SESSION_CREATED",
    "RECORDING_STARTED",
    "RECORDING_STOPPED",
    "PROVIDER_SELECTED",
    "PROVIDER_ERROR",
    "LANGUAGE_CHANGED",
    "ENTRY_APPENDED",
    "REPORT_GENERATED",
    "SESSION_DESTROYED",
    "ERROR",
]


class AuditEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ts_iso: str
    session_id: str
    type: AuditEventType
    code: str
    detail: str
    meta: Dict[str, Any] = Field(default_factory=dict)
