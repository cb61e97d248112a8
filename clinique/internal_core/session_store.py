from __future__ import annotations

import time
import uuid
from threading import RLock
from typing import Any, Dict, List, Optional

from .contracts import AuditEvent, MedicalEntity, TranscriptEntry


class ConsultationStore:
    """
    In-memory consultation records keyed by session id.

    The store is the default transcript consumer: the orchestrator forwards
    each finalized entry through `append_transcript_entry`.
    """

    def __init__(self, ttl_seconds: int):
        self._ttl_seconds = ttl_seconds
        self._lock = RLock()
        self._sessions: Dict[str, Dict[str, Any]] = {}

    def create_session(self, patient_name: str = "", language: str = "en-US") -> str:
        session_id = uuid.uuid4().hex
        now = time.time()
        with self._lock:
            self._sessions[session_id] = {
                "session_id": session_id,
                "created_at": now,
                "updated_at": now,
                "expires_at": now + self._ttl_seconds,
                "patient_name": patient_name,
                "language": language,
                "transcript_entries": [],
                "medical_entities": [],
                "audit_events": [],
                "report_id": None,
                "error": None,
            }
        return session_id

    def _touch(self, session_id: str) -> None:
        now = time.time()
        session = self._sessions[session_id]
        session["updated_at"] = now
        session["expires_at"] = now + self._ttl_seconds

    def _require(self, session_id: str) -> Dict[str, Any]:
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Unknown session_id: {session_id}")
        return session

    def has_session(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def set_language(self, session_id: str, language: str) -> None:
        with self._lock:
            self._require(session_id)["language"] = language
            self._touch(session_id)

    def set_error(self, session_id: str, message: Optional[str]) -> None:
        with self._lock:
            self._require(session_id)["error"] = message
            self._touch(session_id)

    def append_transcript_entry(self, session_id: str, entry: TranscriptEntry) -> None:
        with self._lock:
            self._require(session_id)["transcript_entries"].append(entry)
            self._touch(session_id)

    def transcript_entries(self, session_id: str) -> List[TranscriptEntry]:
        with self._lock:
            return list(self._require(session_id)["transcript_entries"])

    def clear_transcript(self, session_id: str) -> None:
        with self._lock:
            session = self._require(session_id)
            session["transcript_entries"] = []
            session["medical_entities"] = []
            self._touch(session_id)

    def set_medical_entities(self, session_id: str, entities: List[MedicalEntity]) -> None:
        with self._lock:
            self._require(session_id)["medical_entities"] = list(entities)
            self._touch(session_id)

    def set_report_id(self, session_id: str, report_id: str) -> None:
        with self._lock:
            self._require(session_id)["report_id"] = report_id
            self._touch(session_id)

    def append_audit_event(self, session_id: str, event: AuditEvent) -> None:
        with self._lock:
            self._require(session_id)["audit_events"].append(event)
            self._touch(session_id)

    def get_session(self, session_id: str) -> Dict[str, Any]:
        with self._lock:
            session = self._require(session_id)
            return {
                "session_id": session["session_id"],
                "created_at": session["created_at"],
                "updated_at": session["updated_at"],
                "expires_at": session["expires_at"],
                "patient_name": session["patient_name"],
                "language": session["language"],
                "transcript_entries": list(session["transcript_entries"]),
                "medical_entities": list(session["medical_entities"]),
                "audit_events": list(session["audit_events"]),
                "report_id": session["report_id"],
                "error": session["error"],
            }

    def destroy_session(self, session_id: str, reason: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        return session is not None

    def expired_session_ids(self, now: Optional[float] = None) -> List[str]:
        now = time.time() if now is None else now
        with self._lock:
            return [sid for sid, s in self._sessions.items() if s["expires_at"] <= now]

    def cleanup_expired_sessions(self) -> int:
        expired = self.expired_session_ids()
        for session_id in expired:
            self.destroy_session(session_id, reason="ttl_expired")
        return len(expired)
