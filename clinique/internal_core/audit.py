from __future__ import annotations

import datetime as _dt
from typing import Any, Dict, Optional

from .contracts import AuditEvent, AuditEventType
from .session_store import ConsultationStore


def _ts_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


def _sanitize_detail(detail: str) -> str:
    # IMPORTANT: Never include transcript text or audio bytes in detail.
    detail = (detail or "").replace("\n", " ").strip()
    if len(detail) > 200:
        detail = detail[:200] + "..."
    return detail


def log_event(
    store: ConsultationStore,
    session_id: str,
    event_type: AuditEventType,
    code: str,
    detail: str,
    meta: Optional[Dict[str, Any]] = None,
) -> None:
    event = AuditEvent(
        ts_iso=_ts_iso(),
        session_id=session_id,
        type=event_type,
        code=code,
        detail=_sanitize_detail(detail),
        meta=dict(meta or {}),
    )
    store.append_audit_event(session_id, event)
