import base64
import json

import pytest
from fastapi.testclient import TestClient

from clinique.api.main import app
from clinique.events.extractor import clear_cache

_APP_STATE_KEYS = (
    "config",
    "consultation_store",
    "reports_store",
    "orchestrators",
    "notifiers",
    "entity_llm",
    "sink_dispatch",
)
PATIENT_LINE = "Hello doctor, I have a headache since yesterday"


def _reset_app_state() -> None:
    for key in _APP_STATE_KEYS:
        if hasattr(app.state, key):
            delattr(app.state, key)


@pytest.fixture
def client(tmp_path, monkeypatch, app_config, inline_dispatch):
    monkeypatch.setenv("CLINIQUE_REPORTS_PATH", str(tmp_path / "reports.json"))
    _reset_app_state()
    app.state.sink_dispatch = inline_dispatch
    try:
        yield TestClient(app)
    finally:
        for orchestrator in list(getattr(app.state, "orchestrators", {}).values()):
            orchestrator.close()
        _reset_app_state()


def _create(client: TestClient, **body) -> str:
    payload = {"patient_name": "Asha Rao", "provider": "mock"}
    payload.update(body)
    response = client.post("/sessions", json=payload)
    assert response.status_code == 200
    return response.json()["session_id"]


def test_healthz(client: TestClient) -> None:
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_speech_catalogs(client: TestClient) -> None:
    languages = client.get("/speech/languages").json()["languages"]
    specialties = client.get("/speech/specialties").json()["specialties"]
    caps = client.get("/speech/capabilities", params={"language": "hi-IN"}).json()

    assert {"code": "hi-IN", "name": "Hindi (India)"} in languages
    assert specialties[0]["code"] == "PRIMARYCARE"
    assert caps["provider"] == "regional"


def test_create_session_reports_selected_provider(client: TestClient) -> None:
    response = client.post("/sessions", json={"language": "ta"})

    assert response.status_code == 200
    body = response.json()
    assert body["provider"] == "regional"
    assert body["language"] == "ta-IN"
    assert body["capabilities"]["multilingual"] is True


def test_recording_flow_over_websocket(client: TestClient) -> None:
    session_id = _create(client)

    toggled = client.post(f"/sessions/{session_id}/toggle").json()
    assert toggled["state"]["is_recording"] is True
    assert toggled["state"]["session_state"] == "listening"

    with client.websocket_connect(f"/ws/speech/{session_id}") as ws:
        ws.send_text(
            json.dumps({"type": "frame", "payload": {"transcript": PATIENT_LINE, "isFinal": True, "confidence": 0.9}})
        )
        message = ws.receive_json()
        assert message["type"] == "entry"
        assert message["entry"]["speaker"] == "patient"
        assert message["entry"]["confidence"] == 90

        ws.send_text(json.dumps({"type": "permission", "state": "prompt"}))
        assert ws.receive_json() == {"type": "ack_permission", "state": "prompt"}

        ws.send_text(json.dumps({"type": "telepathy"}))
        assert ws.receive_json()["detail"] == "unknown_message_type"

        ws.send_text("not json")
        assert ws.receive_json()["detail"] == "invalid_json"

    transcript = client.get(f"/sessions/{session_id}/transcript").json()
    assert [e["speaker"] for e in transcript["entries"]] == ["patient"]
    text = client.get(f"/sessions/{session_id}/transcript", params={"format": "text"}).text
    assert "Patient: Hello doctor" in text

    record = client.get(f"/sessions/{session_id}").json()
    assert record["transcript_count"] == 1
    assert "ENTRY_APPENDED" in [e["type"] for e in record["audit_events"]]

    stopped = client.post(f"/sessions/{session_id}/toggle").json()
    assert stopped["state"]["is_recording"] is False
    titles = [n["title"] for n in client.get(f"/sessions/{session_id}/notifications").json()["notifications"]]
    assert titles == ["Recording Started", "Recording Stopped"]
    assert client.get(f"/sessions/{session_id}/notifications").json()["notifications"] == []


def test_fatal_error_frame_stops_recording(client: TestClient) -> None:
    session_id = _create(client)
    client.post(f"/sessions/{session_id}/toggle")

    with client.websocket_connect(f"/ws/speech/{session_id}") as ws:
        ws.send_text(json.dumps({"type": "error", "code": "not-allowed"}))
        message = ws.receive_json()
        assert message == {"type": "status", "state": "idle", "status": "error"}

    status = client.get(f"/sessions/{session_id}/status").json()
    assert status["state"]["is_recording"] is False
    assert status["last_error_code"] == "not-allowed"


def test_denied_microphone_surfaces_notification(client: TestClient) -> None:
    session_id = _create(client, microphone="denied")

    body = client.post(f"/sessions/{session_id}/toggle").json()

    assert body["state"]["is_recording"] is False
    assert body["last_error_code"] == "not-allowed"
    titles = [n["title"] for n in client.get(f"/sessions/{session_id}/notifications").json()["notifications"]]
    assert "Microphone Access Denied" in titles


def test_audio_chunk_validation(client: TestClient) -> None:
    session_id = _create(client)

    with client.websocket_connect(f"/ws/speech/{session_id}") as ws:
        ws.send_text(json.dumps({"type": "audio_chunk"}))
        assert ws.receive_json()["detail"] == "missing_data_b64"
        ws.send_text(json.dumps({"type": "audio_chunk", "data_b64": "%%%"}))
        assert ws.receive_json()["detail"] == "invalid_base64"
        ws.send_text(json.dumps({"type": "result"}))
        assert ws.receive_json()["detail"] == "missing_payload"
        chunk = base64.b64encode(b"\x00\x00" * 160).decode("ascii")
        ws.send_text(json.dumps({"type": "audio_chunk", "data_b64": chunk}))
        ws.send_text(json.dumps({"type": "telepathy"}))
        assert ws.receive_json()["detail"] == "unknown_message_type"


def test_language_change_switches_provider(client: TestClient) -> None:
    session_id = _create(client, provider=None)

    body = client.post(f"/sessions/{session_id}/language", json={"language": "hi-IN"}).json()

    assert body["state"]["service_provider_name"] == "regional"
    record = client.get(f"/sessions/{session_id}").json()
    assert record["language"] == "hi-IN"
    assert "LANGUAGE_CHANGED" in [e["type"] for e in record["audit_events"]]


def test_entities_report_and_report_crud(client: TestClient) -> None:
    session_id = _create(client)
    assert client.post(f"/sessions/{session_id}/report", json={}).status_code == 400

    client.post(f"/sessions/{session_id}/toggle")
    with client.websocket_connect(f"/ws/speech/{session_id}") as ws:
        ws.send_text(json.dumps({"type": "frame", "payload": {"transcript": PATIENT_LINE, "isFinal": True}}))
        ws.receive_json()

    entities = client.post(f"/sessions/{session_id}/entities").json()
    assert entities["engine"] == "keyword"
    assert ("symptom", "headache") in {(e["type"], e["text"]) for e in entities["entities"]}

    report = client.post(f"/sessions/{session_id}/report", json={}).json()
    assert report["patient_name"] == "Asha Rao"
    assert "headache" in report["summary"]["discussed_symptoms"]
    report_id = report["id"]

    assert [r["id"] for r in client.get("/reports").json()["reports"]] == [report_id]
    assert client.get("/reports", params={"patient": "asha"}).json()["reports"][0]["id"] == report_id
    assert client.get("/reports", params={"language": "hi-IN"}).json()["reports"] == []
    assert client.get("/reports/stats").json()["total"] == 1

    patched = client.patch(f"/reports/{report_id}", json={"status": "archived"})
    assert patched.status_code == 200
    assert patched.json()["status"] == "archived"
    assert client.patch(f"/reports/{report_id}", json={}).status_code == 400

    exported = client.get("/reports/export").text
    assert client.delete(f"/reports/{report_id}").json() == {"report_id": report_id, "deleted": True}
    assert client.get(f"/reports/{report_id}").status_code == 404
    assert client.post("/reports/import", json={"data": exported}).json()["total"] == 1
    assert client.post("/reports/import", json={"data": "{bad"}).status_code == 400


def test_unknown_session_paths(client: TestClient) -> None:
    assert client.get("/sessions/missing/status").status_code == 404
    assert client.post("/sessions/missing/toggle").status_code == 404
    assert client.delete("/sessions/missing").status_code == 404

    with client.websocket_connect("/ws/speech/missing") as ws:
        assert ws.receive_json() == {"type": "error", "detail": "unknown_session"}


def test_delete_session_closes_orchestrator(client: TestClient) -> None:
    session_id = _create(client)
    client.post(f"/sessions/{session_id}/toggle")

    response = client.delete(f"/sessions/{session_id}")

    assert response.json() == {"session_id": session_id, "deleted": True}
    assert client.get(f"/sessions/{session_id}/status").status_code == 404


class _RecordingLlm:
    def __init__(self) -> None:
        self.max_tokens: list = []

    def create_chat_completion(self, **kwargs):
        self.max_tokens.append(kwargs["max_tokens"])
        return {"choices": [{"message": {"content": '{"entities": [{"text": "migraine", "type": "condition"}]}'}}]}


def test_entity_llm_receives_configured_token_budget(client: TestClient, monkeypatch) -> None:
    monkeypatch.setenv("CLINIQUE_ENTITY_LLM", "1")
    monkeypatch.setenv("CLINIQUE_LLM_MAX_TOKENS", "64")
    clear_cache()
    llm = _RecordingLlm()
    app.state.entity_llm = llm
    session_id = _create(client)
    client.post(f"/sessions/{session_id}/toggle")
    with client.websocket_connect(f"/ws/speech/{session_id}") as ws:
        ws.send_text(json.dumps({"type": "frame", "payload": {"transcript": "My migraine came back", "isFinal": True}}))
        ws.receive_json()

    body = client.post(f"/sessions/{session_id}/entities").json()

    clear_cache()
    assert body["engine"] == "llm"
    assert [e["text"] for e in body["entities"]] == ["migraine"]
    assert llm.max_tokens == [64]
