import datetime as dt

import pytest

from clinique.internal_core.contracts import MedicalEntity, TranscriptEntry
from clinique.note.reports import GENERAL_CONCERN, ReportsStore

NOW = 1_700_000_000.0


def _entries() -> list:
    return [
        TranscriptEntry(
            id="1-1",
            speaker="patient",
            text="Hello doctor, I have a headache since yesterday",
            timestamp="10:00:00",
            language="en-US",
            confidence=92,
            voice_signature="voice_pattern",
        )
    ]


def _entities() -> list:
    return [
        MedicalEntity(text="headache", type="symptom", confidence=0.9),
        MedicalEntity(text="paracetamol", type="medication", confidence=0.93),
        MedicalEntity(text="asthma", type="condition", confidence=0.94),
    ]


def _store(tmp_path, clock=lambda: NOW) -> ReportsStore:
    return ReportsStore(tmp_path / "reports.json", clock=clock)


def test_generate_report_builds_summary_and_persists(tmp_path) -> None:
    store = _store(tmp_path)

    report = store.generate_report("Asha Rao", _entries(), _entities(), "en-US")

    assert report.id == "RPT_1700000000000"
    assert report.report_url == f"/report/{report.id}"
    assert report.status == "completed"
    assert report.summary.main_concerns == ["headache"]
    assert report.summary.mentioned_medications == ["paracetamol"]
    assert report.summary.identified_conditions == ["asthma"]
    assert len(report.next_steps) == 4
    assert (tmp_path / "reports.json").exists()

    reloaded = _store(tmp_path)
    assert [r.id for r in reloaded.list_reports()] == [report.id]
    assert reloaded.get_report(report.id).transcript_entries[0].speaker == "patient"


def test_report_without_symptoms_uses_general_concern(tmp_path) -> None:
    report = _store(tmp_path).generate_report("Asha Rao", _entries(), [], "en-US")

    assert report.summary.main_concerns == [GENERAL_CONCERN]
    assert report.summary.discussed_symptoms == []


def test_reports_are_listed_newest_first_with_unique_ids(tmp_path) -> None:
    store = _store(tmp_path)

    first = store.generate_report("Asha Rao", _entries(), [], "en-US")
    second = store.generate_report("Ravi Kumar", _entries(), [], "hi-IN")

    assert second.id != first.id
    assert [r.id for r in store.list_reports()] == [second.id, first.id]


def test_update_report_merges_fields_and_protects_identity(tmp_path) -> None:
    times = iter([NOW, NOW + 60])
    store = _store(tmp_path, clock=lambda: next(times))
    report = store.generate_report("Asha Rao", _entries(), [], "en-US")

    updated = store.update_report(report.id, {"status": "archived", "id": "RPT_other"})

    assert updated is not None
    assert updated.id == report.id
    assert updated.status == "archived"
    assert updated.created_at == report.created_at
    assert updated.updated_at != report.updated_at
    assert store.update_report("RPT_missing", {"status": "draft"}) is None


def test_invalid_update_is_rejected_and_leaves_report_unchanged(tmp_path) -> None:
    store = _store(tmp_path)
    report = store.generate_report("Asha Rao", _entries(), [], "en-US")

    with pytest.raises(ValueError):
        store.update_report(report.id, {"status": "shredded"})

    assert store.get_report(report.id).status == "completed"


def test_delete_and_clear(tmp_path) -> None:
    store = _store(tmp_path)
    report = store.generate_report("Asha Rao", _entries(), [], "en-US")
    store.generate_report("Ravi Kumar", _entries(), [], "hi-IN")

    assert store.delete_report(report.id) is True
    assert store.delete_report(report.id) is False
    assert len(store.list_reports()) == 1

    store.clear()
    assert store.list_reports() == []
    assert _store(tmp_path).list_reports() == []


def test_filters_and_stats(tmp_path) -> None:
    store = _store(tmp_path)
    store.generate_report("Asha Rao", _entries(), [], "en-US")
    store.generate_report("Ravi Kumar", _entries(), [], "hi-IN")
    store.generate_report("asha rao", _entries(), [], "EN-us")

    assert len(store.reports_by_patient("ASHA")) == 2
    assert len(store.reports_by_language("en-us")) == 2
    start = dt.datetime.fromtimestamp(NOW - 1, dt.timezone.utc)
    end = dt.datetime.fromtimestamp(NOW + 1, dt.timezone.utc)
    assert len(store.reports_by_date_range(start, end)) == 3
    assert store.reports_by_date_range(end, end + dt.timedelta(days=1)) == []

    stats = store.stats()
    assert stats["total"] == 3
    assert stats["completed"] == 3
    assert stats["languages"] == 3
    assert stats["patients"] == 3
    assert len(stats["recent_reports"]) == 3


def test_import_replaces_collection_and_rejects_bad_payload(tmp_path) -> None:
    source = _store(tmp_path / "a")
    source.generate_report("Asha Rao", _entries(), _entities(), "en-US")
    exported = source.export_json()

    target = _store(tmp_path / "b")
    target.generate_report("Ravi Kumar", _entries(), [], "hi-IN")

    assert target.import_json("{not json") is False
    assert target.import_json('{"id": "x"}') is False
    assert [r.patient_name for r in target.list_reports()] == ["Ravi Kumar"]

    assert target.import_json(exported) is True
    assert [r.patient_name for r in target.list_reports()] == ["Asha Rao"]


def test_storage_failure_keeps_in_memory_reports(tmp_path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    store = ReportsStore(blocker / "reports.json", clock=lambda: NOW)

    report = store.generate_report("Asha Rao", _entries(), [], "en-US")

    assert store.get_report(report.id) is not None
    assert not (blocker / "reports.json").exists()


def test_corrupt_file_loads_as_empty(tmp_path) -> None:
    path = tmp_path / "reports.json"
    path.write_text("[{broken", encoding="utf-8")

    assert ReportsStore(path).list_reports() == []
