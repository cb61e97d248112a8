from __future__ import annotations

"""
Patient report generation and a JSON-file backed report collection.

Design intent:
- A report is a snapshot of one consultation: transcript entries, extracted
  entities and a summary derived from entity types.
- The collection is ordered newest first and persisted after every change.
- Storage failures are logged; the in-memory collection stays authoritative
  for the running process.
"""

import datetime as _dt
import json
import logging
import time
from pathlib import Path
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Sequence

from pydantic import ValidationError

from clinique.internal_core.contracts import MedicalEntity, PatientReport, ReportSummary, TranscriptEntry

logger = logging.getLogger(__name__)

DEFAULT_NEXT_STEPS: tuple[str, ...] = (
    "Continue taking prescribed medications as directed",
    "Monitor symptoms and report any changes",
    "Schedule follow-up appointment as recommended",
    "Contact us if you have any questions or concerns",
)
DEFAULT_IMPORTANT_NOTES: tuple[str, ...] = (
    "This report is generated from your consultation with AI assistance",
    "Keep this report for your personal health records",
    "Share with family members or caregivers as needed",
    "If you have urgent concerns, contact your healthcare provider immediately",
)
GENERAL_CONCERN = "General consultation"
RECENT_REPORTS_LIMIT = 5

# Fields a caller may not overwrite through update_report.
_IMMUTABLE_FIELDS = frozenset({"id", "created_at", "updated_at"})


def build_summary(entities: Sequence[MedicalEntity]) -> ReportSummary:
    symptoms = [e.text for e in entities if e.type == "symptom"]
    return ReportSummary(
        main_concerns=list(symptoms) if symptoms else [GENERAL_CONCERN],
        discussed_symptoms=symptoms,
        mentioned_medications=[e.text for e in entities if e.type == "medication"],
        identified_conditions=[e.text for e in entities if e.type == "condition"],
    )


def _parse_ts(value: str) -> Optional[_dt.datetime]:
    try:
        parsed = _dt.datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_dt.timezone.utc)
    return parsed


def _as_aware(value: _dt.datetime) -> _dt.datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=_dt.timezone.utc)


class ReportsStore:
    def __init__(self, path: Optional[Path] = None, *, clock: Callable[[], float] = time.time):
        self._lock = RLock()
        self._path = Path(path) if path is not None else None
        self._clock = clock
        self._reports: List[PatientReport] = []
        self._load()

    @property
    def path(self) -> Optional[Path]:
        return self._path

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            self._reports = [PatientReport.model_validate(item) for item in raw]
        except (OSError, ValueError, TypeError) as exc:
            logger.error("failed to load reports path=%s err=%s", self._path, exc)
            self._reports = []

    def _save(self) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(self._dump(), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as exc:
            logger.error("failed to save reports path=%s err=%s", self._path, exc)

    def _dump(self) -> str:
        return json.dumps([r.model_dump(mode="json") for r in self._reports], ensure_ascii=False, indent=2)

    def _new_id(self, now: float) -> str:
        base = f"RPT_{int(now * 1000)}"
        taken = {r.id for r in self._reports}
        report_id = base
        n = 1
        while report_id in taken:
            n += 1
            report_id = f"{base}_{n}"
        return report_id

    def generate_report(
        self,
        patient_name: str,
        transcript_entries: Sequence[TranscriptEntry],
        medical_entities: Sequence[MedicalEntity],
        language: str,
    ) -> PatientReport:
        now = self._clock()
        local = _dt.datetime.fromtimestamp(now)
        ts_iso = _dt.datetime.fromtimestamp(now, _dt.timezone.utc).isoformat()
        with self._lock:
            report_id = self._new_id(now)
            report = PatientReport(
                id=report_id,
                patient_name=patient_name,
                visit_date=local.strftime("%Y-%m-%d"),
                visit_time=local.strftime("%H:%M:%S"),
                language=language,
                transcript_entries=list(transcript_entries),
                medical_entities=list(medical_entities),
                summary=build_summary(medical_entities),
                next_steps=list(DEFAULT_NEXT_STEPS),
                important_notes=list(DEFAULT_IMPORTANT_NOTES),
                status="completed",
                report_url=f"/report/{report_id}",
                created_at=ts_iso,
                updated_at=ts_iso,
            )
            self._reports.insert(0, report)
            self._save()
        logger.info("report generated id=%s entries=%d entities=%d", report_id, len(transcript_entries), len(medical_entities))
        return report.model_copy(deep=True)

    def list_reports(self) -> List[PatientReport]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._reports]

    def get_report(self, report_id: str) -> Optional[PatientReport]:
        with self._lock:
            for report in self._reports:
                if report.id == report_id:
                    return report.model_copy(deep=True)
        return None

    def update_report(self, report_id: str, updates: Dict[str, Any]) -> Optional[PatientReport]:
        """
        Merge `updates` into the stored report and bump `updated_at`.

        Returns None for an unknown id. Raises ValueError when the merged report
        does not validate (the stored copy is left unchanged).
        """
        with self._lock:
            for idx, report in enumerate(self._reports):
                if report.id != report_id:
                    continue
                merged = report.model_dump()
                merged.update({k: v for k, v in updates.items() if k not in _IMMUTABLE_FIELDS})
                merged["updated_at"] = _dt.datetime.fromtimestamp(self._clock(), _dt.timezone.utc).isoformat()
                try:
                    updated = PatientReport.model_validate(merged)
                except ValidationError as exc:
                    raise ValueError(f"invalid report update: {exc.error_count()} error(s)") from exc
                self._reports[idx] = updated
                self._save()
                return updated.model_copy(deep=True)
        return None

    def delete_report(self, report_id: str) -> bool:
        with self._lock:
            for idx, report in enumerate(self._reports):
                if report.id == report_id:
                    del self._reports[idx]
                    self._save()
                    return True
        return False

    def reports_by_patient(self, patient_name: str) -> List[PatientReport]:
        needle = (patient_name or "").lower()
        with self._lock:
            return [r.model_copy(deep=True) for r in self._reports if needle in r.patient_name.lower()]

    def reports_by_language(self, language: str) -> List[PatientReport]:
        wanted = (language or "").lower()
        with self._lock:
            return [r.model_copy(deep=True) for r in self._reports if r.language.lower() == wanted]

    def reports_by_date_range(self, start: _dt.datetime, end: _dt.datetime) -> List[PatientReport]:
        lo, hi = _as_aware(start), _as_aware(end)
        out: List[PatientReport] = []
        with self._lock:
            for report in self._reports:
                created = _parse_ts(report.created_at)
                if created is not None and lo <= created <= hi:
                    out.append(report.model_copy(deep=True))
        return out

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "total": len(self._reports),
                "completed": sum(1 for r in self._reports if r.status == "completed"),
                "languages": len({r.language for r in self._reports}),
                "patients": len({r.patient_name for r in self._reports}),
                "recent_reports": [r.model_copy(deep=True) for r in self._reports[:RECENT_REPORTS_LIMIT]],
            }

    def clear(self) -> None:
        with self._lock:
            self._reports = []
            self._save()

    def export_json(self) -> str:
        with self._lock:
            return self._dump()

    def import_json(self, data: str) -> bool:
        """Replace the collection with `data`; returns False and keeps the current one on bad input."""
        try:
            raw = json.loads(data)
            if not isinstance(raw, list):
                raise ValueError("expected a JSON array of reports")
            reports = [PatientReport.model_validate(item) for item in raw]
        except (ValueError, TypeError) as exc:
            logger.warning("report import rejected: %s", exc)
            return False
        with self._lock:
            self._reports = reports
            self._save()
        return True
