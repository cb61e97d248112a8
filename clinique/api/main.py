from __future__ import annotations

"""
HTTP and WebSocket surface for live consultation sessions.

Design intent:
- Keep API orchestration thin and typed.
- One SessionOrchestrator per consultation; the consultation store is its
  transcript consumer and audit trail.
- Provider payloads arrive over the session WebSocket; UI state is polled or
  pushed back on the same socket.
"""

import base64
import json
import logging
from collections import deque
from threading import RLock
from typing import Any, Deque, Dict, List, Literal, Optional

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from clinique.asr.formatting import format_for_display
from clinique.events.extractor import EntityExtractorError, extract_transcript_entities, load_llm
from clinique.internal_core import audit
from clinique.internal_core.config import AppConfig, load_config
from clinique.internal_core.contracts import (
    MedicalEntity,
    Notification,
    OrchestratorState,
    PatientReport,
    ProviderName,
    TranscriptEntry,
)
from clinique.internal_core.notifications import QueueNotifier
from clinique.internal_core.orchestrator import SessionOrchestrator
from clinique.internal_core.session_store import ConsultationStore
from clinique.internal_core.speech.registry import (
    medical_specialties,
    probe_capabilities,
    select_provider,
    service_capabilities,
    supported_languages,
)
from clinique.note.reports import ReportsStore


class SessionCreateRequest(BaseModel):
    patient_name: str = Field(default="", max_length=200)
    language: str = Field(default="", max_length=32)
    provider: Optional[ProviderName] = None
    continuous: Optional[bool] = None
    native_engine: bool = True
    streaming_socket: bool = True
    microphone: Literal["granted", "denied", "prompt"] = "granted"


class SessionCreateResponse(BaseModel):
    session_id: str
    provider: str
    language: str
    capabilities: Dict[str, Any] = Field(default_factory=dict)


class SessionStatusResponse(BaseModel):
    session_id: str
    state: OrchestratorState
    last_error_code: Optional[str] = None


class LanguageChangeRequest(BaseModel):
    language: str = Field(min_length=2, max_length=32)


class TranscriptResponse(BaseModel):
    session_id: str
    entries: List[TranscriptEntry] = Field(default_factory=list)


class NotificationsResponse(BaseModel):
    session_id: str
    notifications: List[Notification] = Field(default_factory=list)


class EntitiesResponse(BaseModel):
    session_id: str
    engine: Literal["llm", "keyword"]
    entities: List[MedicalEntity] = Field(default_factory=list)


class ReportGenerateRequest(BaseModel):
    patient_name: Optional[str] = Field(default=None, max_length=200)
    extract_entities: bool = True


class ReportListResponse(BaseModel):
    reports: List[PatientReport] = Field(default_factory=list)


class ReportUpdateRequest(BaseModel):
    patient_name: Optional[str] = Field(default=None, max_length=200)
    status: Optional[Literal["draft", "completed", "archived"]] = None
    next_steps: Optional[List[str]] = None
    important_notes: Optional[List[str]] = None


class ReportImportRequest(BaseModel):
    data: str = Field(min_length=1)


app = FastAPI(title="clinique speech service")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_state_lock = RLock()


def _get_config() -> AppConfig:
    existing = getattr(app.state, "config", None)
    if isinstance(existing, AppConfig):
        return existing
    created = load_config()
    logging.getLogger("clinique").setLevel(created.CLINIQUE_LOG_LEVEL.upper())
    setattr(app.state, "config", created)
    return created


def _get_store() -> ConsultationStore:
    existing = getattr(app.state, "consultation_store", None)
    if isinstance(existing, ConsultationStore):
        return existing
    created = ConsultationStore(ttl_seconds=_get_config().CLINIQUE_SESSION_TTL_SECONDS)
    setattr(app.state, "consultation_store", created)
    return created


def _get_reports_store() -> ReportsStore:
    existing = getattr(app.state, "reports_store", None)
    if isinstance(existing, ReportsStore):
        return existing
    created = ReportsStore(_get_config().reports_path())
    setattr(app.state, "reports_store", created)
    return created


def _get_orchestrators() -> Dict[str, SessionOrchestrator]:
    existing = getattr(app.state, "orchestrators", None)
    if isinstance(existing, dict):
        return existing
    created: Dict[str, SessionOrchestrator] = {}
    setattr(app.state, "orchestrators", created)
    return created


def _get_notifiers() -> Dict[str, QueueNotifier]:
    existing = getattr(app.state, "notifiers", None)
    if isinstance(existing, dict):
        return existing
    created: Dict[str, QueueNotifier] = {}
    setattr(app.state, "notifiers", created)
    return created


def _get_entity_llm() -> Any:
    cfg = _get_config()
    if not cfg.CLINIQUE_ENTITY_LLM:
        return None
    with _state_lock:
        if hasattr(app.state, "entity_llm"):
            return app.state.entity_llm
        try:
            llm = load_llm(cfg.CLINIQUE_LLAMA_CPP_MODEL, chat_format=cfg.CLINIQUE_LLAMA_CPP_CHAT_FORMAT)
        except (EntityExtractorError, OSError, ValueError) as exc:
            logger.warning("entity llm unavailable, keyword extraction only: %s", exc)
            llm = None
        setattr(app.state, "entity_llm", llm)
        return llm


def _require_orchestrator(session_id: str) -> SessionOrchestrator:
    orchestrator = _get_orchestrators().get(session_id)
    if orchestrator is None or not _get_store().has_session(session_id):
        raise HTTPException(status_code=404, detail=f"Unknown session_id: {session_id}")
    return orchestrator


def _close_session(session_id: str, reason: str) -> bool:
    with _state_lock:
        orchestrator = _get_orchestrators().pop(session_id, None)
        _get_notifiers().pop(session_id, None)
    if orchestrator is not None:
        orchestrator.close()
    store = _get_store()
    if store.has_session(session_id):
        audit.log_event(store, session_id, "SESSION_DESTROYED", "destroyed", reason)
    return store.destroy_session(session_id, reason=reason) or orchestrator is not None


def _cleanup_expired() -> None:
    for session_id in _get_store().expired_session_ids():
        logger.info("expiring consultation session_id=%s", session_id)
        _close_session(session_id, reason="ttl_expired")


def _status_response(session_id: str, orchestrator: SessionOrchestrator) -> SessionStatusResponse:
    return SessionStatusResponse(
        session_id=session_id,
        state=orchestrator.snapshot(),
        last_error_code=orchestrator.last_error_code,
    )


def _transcript_sink(session_id: str):
    store = _get_store()

    def _append(entry: TranscriptEntry) -> None:
        if not store.has_session(session_id):
            logger.debug("dropping entry for closed session_id=%s", session_id)
            return
        store.append_transcript_entry(session_id, entry)
        audit.log_event(
            store,
            session_id,
            "ENTRY_APPENDED",
            "entry",
            f"id={entry.id} speaker={entry.speaker} language={entry.language}",
        )

    return _append


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/speech/languages")
async def speech_languages() -> dict[str, Any]:
    return {"languages": supported_languages()}


@app.get("/speech/specialties")
async def speech_specialties() -> dict[str, Any]:
    return {"specialties": medical_specialties()}


@app.get("/speech/capabilities")
async def speech_capabilities(
    language: str = Query(default=""),
    provider: Optional[str] = Query(default=None),
) -> dict[str, Any]:
    cfg = _get_config()
    try:
        speech_config = cfg.speech_config(language=language or None, provider=provider)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    caps = probe_capabilities(speech_config)
    return service_capabilities(select_provider(speech_config, caps), caps)


@app.post("/sessions", response_model=SessionCreateResponse)
async def create_session(payload: SessionCreateRequest) -> SessionCreateResponse:
    _cleanup_expired()
    cfg = _get_config()
    speech_config = cfg.speech_config(language=payload.language or None, provider=payload.provider)
    if payload.continuous is not None:
        speech_config = speech_config.model_copy(update={"continuous": payload.continuous})

    store = _get_store()
    session_id = store.create_session(patient_name=payload.patient_name, language=speech_config.language)
    notifier = QueueNotifier()
    orchestrator = SessionOrchestrator(
        speech_config,
        cfg,
        capabilities=probe_capabilities(
            speech_config,
            native_engine=payload.native_engine,
            streaming_socket=payload.streaming_socket,
            microphone=payload.microphone,
        ),
        transcript_sink=_transcript_sink(session_id),
        notifier=notifier,
        dispatch=getattr(app.state, "sink_dispatch", None),
    )
    orchestrator.microphone.set_state(payload.microphone)
    with _state_lock:
        _get_orchestrators()[session_id] = orchestrator
        _get_notifiers()[session_id] = notifier

    audit.log_event(store, session_id, "SESSION_CREATED", "created", f"language={speech_config.language}")
    audit.log_event(
        store,
        session_id,
        "PROVIDER_SELECTED",
        orchestrator.service_provider_name,
        f"requested={speech_config.provider}",
    )
    logger.info(
        "consultation created session_id=%s provider=%s language=%s",
        session_id,
        orchestrator.service_provider_name,
        speech_config.language,
    )
    return SessionCreateResponse(
        session_id=session_id,
        provider=orchestrator.service_provider_name,
        language=orchestrator.detected_language,
        capabilities=service_capabilities(orchestrator.service_provider_name, orchestrator.capabilities),
    )


@app.get("/sessions/{session_id}")
async def get_session(session_id: str) -> dict[str, Any]:
    _require_orchestrator(session_id)
    record = _get_store().get_session(session_id)
    return {
        "session_id": session_id,
        "patient_name": record["patient_name"],
        "language": record["language"],
        "transcript_count": len(record["transcript_entries"]),
        "entity_count": len(record["medical_entities"]),
        "report_id": record["report_id"],
        "error": record["error"],
        "audit_events": [e.model_dump() for e in record["audit_events"]],
    }


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str) -> dict[str, Any]:
    if not _close_session(session_id, reason="client_request"):
        raise HTTPException(status_code=404, detail=f"Unknown session_id: {session_id}")
    return {"session_id": session_id, "deleted": True}


@app.post("/sessions/{session_id}/toggle", response_model=SessionStatusResponse)
async def toggle_recording(session_id: str) -> SessionStatusResponse:
    orchestrator = _require_orchestrator(session_id)
    store = _get_store()
    was_recording = orchestrator.is_recording
    recording = orchestrator.toggle_recording()
    if not was_recording and recording:
        store.clear_transcript(session_id)
        audit.log_event(
            store, session_id, "RECORDING_STARTED", orchestrator.service_provider_name, orchestrator.detected_language
        )
    elif was_recording and not recording:
        audit.log_event(
            store, session_id, "RECORDING_STOPPED", "stopped", f"entries={len(orchestrator.transcript)}"
        )
    elif not was_recording:
        last_error = orchestrator.last_error_code
        store.set_error(session_id, last_error or "start_failed")
        audit.log_event(store, session_id, "ERROR", last_error or "start_failed", orchestrator.service_provider_name)
    return _status_response(session_id, orchestrator)


@app.post("/sessions/{session_id}/language", response_model=SessionStatusResponse)
async def change_language(session_id: str, payload: LanguageChangeRequest) -> SessionStatusResponse:
    orchestrator = _require_orchestrator(session_id)
    store = _get_store()
    previous = orchestrator.config.language
    if orchestrator.set_language(payload.language):
        store.set_language(session_id, orchestrator.config.language)
        audit.log_event(
            store,
            session_id,
            "LANGUAGE_CHANGED",
            orchestrator.config.language,
            f"from={previous} provider={orchestrator.service_provider_name}",
        )
    return _status_response(session_id, orchestrator)


@app.get("/sessions/{session_id}/status", response_model=SessionStatusResponse)
async def session_status(session_id: str) -> SessionStatusResponse:
    orchestrator = _require_orchestrator(session_id)
    return _status_response(session_id, orchestrator)


@app.get("/sessions/{session_id}/transcript", response_model=None)
async def session_transcript(
    session_id: str,
    format: Literal["json", "text"] = Query(default="json"),
    split_sentences: bool = Query(default=False),
) -> Any:
    orchestrator = _require_orchestrator(session_id)
    entries = list(orchestrator.transcript)
    if format == "text":
        return PlainTextResponse(format_for_display(entries, split_sentences=split_sentences))
    return TranscriptResponse(session_id=session_id, entries=entries)


@app.get("/sessions/{session_id}/notifications", response_model=NotificationsResponse)
async def session_notifications(session_id: str, drain: bool = Query(default=True)) -> NotificationsResponse:
    _require_orchestrator(session_id)
    notifier = _get_notifiers().get(session_id)
    if notifier is None:
        return NotificationsResponse(session_id=session_id)
    items = notifier.drain() if drain else notifier.peek()
    return NotificationsResponse(session_id=session_id, notifications=items)


@app.post("/sessions/{session_id}/entities", response_model=EntitiesResponse)
async def session_entities(session_id: str) -> EntitiesResponse:
    orchestrator = _require_orchestrator(session_id)
    llm = _get_entity_llm()
    entities = extract_transcript_entities(
        [entry.text for entry in orchestrator.transcript],
        use_llm=llm is not None,
        llm=llm,
        max_tokens=_get_config().CLINIQUE_LLM_MAX_TOKENS,
    )
    _get_store().set_medical_entities(session_id, entities)
    return EntitiesResponse(session_id=session_id, engine="llm" if llm is not None else "keyword", entities=entities)


@app.post("/sessions/{session_id}/report", response_model=PatientReport)
async def session_report(session_id: str, payload: ReportGenerateRequest) -> PatientReport:
    orchestrator = _require_orchestrator(session_id)
    store = _get_store()
    record = store.get_session(session_id)
    entries = list(orchestrator.transcript)
    if not entries:
        raise HTTPException(status_code=400, detail="No transcript entries captured for this session.")

    entities: List[MedicalEntity] = list(record["medical_entities"])
    if payload.extract_entities and not entities:
        llm = _get_entity_llm()
        entities = extract_transcript_entities(
            [e.text for e in entries],
            use_llm=llm is not None,
            llm=llm,
            max_tokens=_get_config().CLINIQUE_LLM_MAX_TOKENS,
        )
        store.set_medical_entities(session_id, entities)

    report = _get_reports_store().generate_report(
        payload.patient_name if payload.patient_name is not None else record["patient_name"],
        entries,
        entities,
        orchestrator.detected_language,
    )
    store.set_report_id(session_id, report.id)
    audit.log_event(store, session_id, "REPORT_GENERATED", report.id, f"entries={len(entries)} entities={len(entities)}")
    return report


@app.get("/reports", response_model=ReportListResponse)
async def list_reports(
    patient: Optional[str] = Query(default=None),
    language: Optional[str] = Query(default=None),
) -> ReportListResponse:
    reports_store = _get_reports_store()
    if patient:
        reports = reports_store.reports_by_patient(patient)
    else:
        reports = reports_store.list_reports()
    if language:
        wanted = language.lower()
        reports = [r for r in reports if r.language.lower() == wanted]
    return ReportListResponse(reports=reports)


@app.get("/reports/stats")
async def reports_stats() -> dict[str, Any]:
    stats = _get_reports_store().stats()
    stats["recent_reports"] = [r.model_dump() for r in stats["recent_reports"]]
    return stats


@app.get("/reports/export", response_class=PlainTextResponse)
async def export_reports() -> str:
    return _get_reports_store().export_json()


@app.post("/reports/import")
async def import_reports(payload: ReportImportRequest) -> dict[str, Any]:
    reports_store = _get_reports_store()
    if not reports_store.import_json(payload.data):
        raise HTTPException(status_code=400, detail="Invalid reports payload.")
    return {"imported": True, "total": len(reports_store.list_reports())}


@app.get("/reports/{report_id}", response_model=PatientReport)
async def get_report(report_id: str) -> PatientReport:
    report = _get_reports_store().get_report(report_id)
    if report is None:
        raise HTTPException(status_code=404, detail=f"Report not found: {report_id}")
    return report


@app.patch("/reports/{report_id}", response_model=PatientReport)
async def update_report(report_id: str, payload: ReportUpdateRequest) -> PatientReport:
    updates = payload.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No report fields to update.")
    try:
        report = _get_reports_store().update_report(report_id, updates)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if report is None:
        raise HTTPException(status_code=404, detail=f"Report not found: {report_id}")
    return report


@app.delete("/reports/{report_id}")
async def delete_report(report_id: str) -> dict[str, Any]:
    if not _get_reports_store().delete_report(report_id):
        raise HTTPException(status_code=404, detail=f"Report not found: {report_id}")
    return {"report_id": report_id, "deleted": True}


def _subscribe_outbox(orchestrator: SessionOrchestrator, outbox: Deque[Dict[str, Any]]) -> list:
    return [
        orchestrator.on("entry", lambda entry: outbox.append({"type": "entry", "entry": entry.model_dump()})),
        orchestrator.on(
            "interim",
            lambda result: outbox.append(
                {"type": "interim", "transcript": result.transcript, "language": result.language}
            ),
        ),
        orchestrator.on("language", lambda tag: outbox.append({"type": "language", "language": tag})),
        orchestrator.on(
            "status", lambda state, status: outbox.append({"type": "status", "state": state, "status": status})
        ),
    ]


@app.websocket("/ws/speech/{session_id}")
async def speech_ws(websocket: WebSocket, session_id: str) -> None:
    await websocket.accept()
    orchestrator = _get_orchestrators().get(session_id)
    if orchestrator is None:
        await websocket.send_json({"type": "error", "detail": "unknown_session"})
        await websocket.close(code=1008)
        return

    store = _get_store()
    outbox: Deque[Dict[str, Any]] = deque()
    unsubscribers = _subscribe_outbox(orchestrator, outbox)

    async def _flush() -> None:
        while outbox:
            await websocket.send_json(outbox.popleft())

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "detail": "invalid_json"})
                continue
            if not isinstance(message, dict):
                await websocket.send_json({"type": "error", "detail": "invalid_message"})
                continue

            message_type = str(message.get("type", "")).strip().lower()
            if message_type == "permission":
                try:
                    orchestrator.microphone.set_state(str(message.get("state", "")).strip().lower())
                except ValueError as exc:
                    await websocket.send_json({"type": "error", "detail": str(exc)})
                    continue
                await websocket.send_json({"type": "ack_permission", "state": orchestrator.microphone.state})
                continue

            if message_type in {"result", "frame", "job"}:
                payload = message.get("payload")
                if not isinstance(payload, dict):
                    await websocket.send_json({"type": "error", "detail": "missing_payload"})
                    continue
                orchestrator.ingest(payload)
                await _flush()
                continue

            if message_type == "error":
                code = str(message.get("code", "")).strip() or "unknown"
                orchestrator.ingest_error(code, str(message.get("message", "")))
                audit.log_event(store, session_id, "PROVIDER_ERROR", code, orchestrator.service_provider_name)
                await _flush()
                continue

            if message_type == "end":
                orchestrator.ingest_end()
                await _flush()
                continue

            if message_type == "audio_chunk":
                data_b64 = str(message.get("data_b64", "")).strip()
                if not data_b64:
                    await websocket.send_json({"type": "error", "detail": "missing_data_b64"})
                    continue
                try:
                    chunk_bytes = base64.b64decode(data_b64, validate=True)
                except ValueError:
                    await websocket.send_json({"type": "error", "detail": "invalid_base64"})
                    continue
                orchestrator.ingest_audio(chunk_bytes)
                await _flush()
                continue

            await websocket.send_json({"type": "error", "detail": "unknown_message_type"})
    except WebSocketDisconnect:
        logger.info("speech socket disconnected session_id=%s", session_id)
    finally:
        for unsubscribe in unsubscribers:
            unsubscribe()
