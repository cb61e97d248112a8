from clinique.internal_core.contracts import SpeechConfig
from clinique.internal_core.orchestrator import SessionOrchestrator, confidence_percent

PATIENT_LINE = "Hello doctor, I have a headache since yesterday"


def _orchestrator(app_config, scheduler, notifier, inline_dispatch, sink=None, **config):
    values = {"provider": "mock", "language": "en-US"}
    values.update(config)
    return SessionOrchestrator(
        SpeechConfig(**values),
        app_config,
        transcript_sink=sink,
        notifier=notifier,
        scheduler=scheduler,
        clock=lambda: 1_700_000_000.0,
        dispatch=inline_dispatch,
    )


def test_confidence_percent_clamps() -> None:
    assert confidence_percent(1.4) == 100
    assert confidence_percent(-0.1) == 0
    assert confidence_percent(0.874) == 87


def test_final_utterance_becomes_one_attributed_entry(app_config, scheduler, notifier, inline_dispatch) -> None:
    delivered: list = []
    orch = _orchestrator(app_config, scheduler, notifier, inline_dispatch, sink=delivered.append)

    assert orch.start_recording() is True
    orch.ingest({"transcript": PATIENT_LINE, "isFinal": True, "confidence": 0.92})

    assert len(delivered) == 1
    entry = delivered[0]
    assert entry.speaker == "patient"
    assert entry.language == "en-US"
    assert entry.confidence == 92
    assert entry.text == PATIENT_LINE
    assert entry.voice_signature == "voice_pattern"
    assert entry.id.endswith("-1")
    profiles = orch.voice_profiles
    assert len(profiles) == 1
    assert profiles[0].total_utterances == 1
    assert orch.current_speaker == "patient"
    assert orch.total_speakers_detected == 1
    assert "Recording Started" in notifier.titles


def test_interim_results_do_not_create_entries(app_config, scheduler, notifier, inline_dispatch) -> None:
    delivered: list = []
    interim: list = []
    orch = _orchestrator(app_config, scheduler, notifier, inline_dispatch, sink=delivered.append, interim_results=True)
    orch.on("interim", interim.append)
    orch.start_recording()

    orch.ingest({"interimTranscript": "Hello doc"})
    orch.ingest({"transcript": PATIENT_LINE, "isFinal": "true"})

    assert delivered == []
    assert orch.transcript == ()
    assert len(interim) == 2


def test_interim_results_are_suppressed_when_disabled(app_config, scheduler, notifier, inline_dispatch) -> None:
    interim: list = []
    orch = _orchestrator(app_config, scheduler, notifier, inline_dispatch, interim_results=False)
    orch.on("interim", interim.append)
    orch.start_recording()

    orch.ingest({"interimTranscript": "Hello doc"})
    orch.ingest({"transcript": PATIENT_LINE, "isFinal": True})

    assert interim == []
    assert len(orch.transcript) == 1


def test_out_of_range_confidence_is_clamped_in_entry(app_config, scheduler, notifier, inline_dispatch) -> None:
    orch = _orchestrator(app_config, scheduler, notifier, inline_dispatch)
    orch.start_recording()

    orch.ingest({"transcript": "first", "isFinal": True, "confidence": 1.4})
    orch.ingest({"transcript": "second", "isFinal": True, "confidence": -0.1})

    assert [e.confidence for e in orch.transcript] == [100, 0]


def test_new_recording_starts_with_fresh_profiles(app_config, scheduler, notifier, inline_dispatch) -> None:
    detections: list = []
    orch = _orchestrator(app_config, scheduler, notifier, inline_dispatch)
    orch.on("speaker", detections.append)

    orch.start_recording()
    orch.ingest({"transcript": PATIENT_LINE, "isFinal": True})
    orch.ingest({"transcript": PATIENT_LINE, "isFinal": True})
    orch.stop_recording()
    orch.start_recording()
    orch.ingest({"transcript": PATIENT_LINE, "isFinal": True})

    assert [d.is_new_speaker for d in detections] == [True, False, True]
    assert len(orch.voice_profiles) == 1
    assert len(orch.transcript) == 1
    assert orch.transcript[0].id.endswith("-1")


def test_stop_reports_captured_entry_count(app_config, scheduler, notifier, inline_dispatch) -> None:
    orch = _orchestrator(app_config, scheduler, notifier, inline_dispatch)
    orch.start_recording()
    orch.ingest({"transcript": PATIENT_LINE, "isFinal": True})

    assert orch.stop_recording() is True

    assert notifier.items[-1][0] == "Recording Stopped"
    assert "Captured 1 entries in EN-US" in notifier.items[-1][1]
    assert orch.is_recording is False
    assert orch.stop_recording() is False


def test_second_start_while_active_is_refused(app_config, scheduler, notifier, inline_dispatch) -> None:
    orch = _orchestrator(app_config, scheduler, notifier, inline_dispatch)
    orch.start_recording()

    assert orch.start_recording() is False
    assert "Speech Service Not Ready" in notifier.titles
    assert orch.is_recording is True


def test_toggle_recording(app_config, scheduler, notifier, inline_dispatch) -> None:
    orch = _orchestrator(app_config, scheduler, notifier, inline_dispatch)

    assert orch.toggle_recording() is True
    assert orch.session_state == "listening"
    assert orch.toggle_recording() is False
    assert orch.session_state == "idle"


def test_language_change_rebuilds_active_provider(app_config, scheduler, notifier, inline_dispatch) -> None:
    orch = _orchestrator(app_config, scheduler, notifier, inline_dispatch, provider="auto")
    orch.start_recording()
    assert orch.service_provider_name == "browser"

    assert orch.set_language("hi") is True

    assert orch.service_provider_name == "regional"
    assert orch.is_recording is True
    assert orch.detected_language == "hi-IN"
    assert orch.microphone.acquisitions == 2
    assert orch.microphone.releases == 1


def test_language_change_while_idle_only_reselects(app_config, scheduler, notifier, inline_dispatch) -> None:
    orch = _orchestrator(app_config, scheduler, notifier, inline_dispatch, provider="auto")

    orch.set_language("ta-IN")

    assert orch.service_provider_name == "regional"
    assert orch.is_recording is False


def test_detected_language_change_notifies(app_config, scheduler, notifier, inline_dispatch) -> None:
    languages: list = []
    orch = _orchestrator(app_config, scheduler, notifier, inline_dispatch)
    orch.on("language", languages.append)
    orch.start_recording()

    orch.ingest({"transcript": "मुझे सिर दर्द है", "isFinal": True})

    assert languages == ["hi-IN"]
    assert orch.detected_language == "hi-IN"
    assert "Language Detected" in notifier.titles
    assert orch.transcript[0].language == "hi-IN"


def test_provider_labels_drive_roles_and_guest_notification(app_config, scheduler, notifier, inline_dispatch) -> None:
    orch = _orchestrator(app_config, scheduler, notifier, inline_dispatch)
    orch.start_recording()

    for label in ("A", "B", "C"):
        orch.ingest({"transcript": "okay", "isFinal": True, "speaker": label})

    assert [e.speaker for e in orch.transcript] == ["doctor", "patient", "guest1"]
    assert orch.transcript[0].voice_signature == "A"
    assert orch.total_speakers_detected == 3
    assert "New Speaker Detected" in notifier.titles


def test_sink_failure_is_logged_and_swallowed(app_config, scheduler, notifier, inline_dispatch) -> None:
    def _broken_sink(_entry) -> None:
        raise RuntimeError("store unavailable")

    orch = _orchestrator(app_config, scheduler, notifier, inline_dispatch, sink=_broken_sink)
    orch.start_recording()

    orch.ingest({"transcript": PATIENT_LINE, "isFinal": True})

    assert len(orch.transcript) == 1


def test_transient_error_restart_keeps_transcript(app_config, scheduler, notifier, inline_dispatch) -> None:
    orch = _orchestrator(app_config, scheduler, notifier, inline_dispatch)
    orch.start_recording()
    orch.ingest({"transcript": PATIENT_LINE, "isFinal": True})

    orch.ingest_error("network")
    assert orch.connection_status == "error"
    scheduler.advance(1.0)

    assert orch.connection_status == "connected"
    orch.ingest({"transcript": "How long have you had this?", "isFinal": True})
    assert [e.speaker for e in orch.transcript] == ["patient", "doctor"]


def test_snapshot_reflects_state(app_config, scheduler, notifier, inline_dispatch) -> None:
    orch = _orchestrator(app_config, scheduler, notifier, inline_dispatch)
    orch.start_recording()
    orch.ingest({"transcript": PATIENT_LINE, "isFinal": True})

    snap = orch.snapshot()

    assert snap.is_recording is True
    assert snap.session_state == "listening"
    assert snap.connection_status == "connected"
    assert snap.service_provider_name == "mock"
    assert snap.transcript_count == 1
    assert snap.voice_profiles_detected == 1
    orch.close()


def test_speech_config_uses_canonical_language(app_config) -> None:
    assert app_config.speech_config(language="hi").language == "hi-IN"
    assert app_config.speech_config(language="tamil").language == "ta-IN"
    assert app_config.speech_config(language="auto").language == "auto"


def test_same_language_in_another_spelling_does_not_restart(app_config, scheduler, notifier, inline_dispatch) -> None:
    orch = SessionOrchestrator(
        app_config.speech_config(language="hi", provider="mock"),
        app_config,
        notifier=notifier,
        scheduler=scheduler,
        dispatch=inline_dispatch,
    )
    orch.start_recording()

    assert orch.set_language("hi-IN") is False

    assert orch.is_recording is True
    assert orch.microphone.acquisitions == 1
    assert orch.microphone.releases == 0
    orch.close()
