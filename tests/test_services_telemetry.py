"""Tests for the telemetry hooks and logging helpers."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from dotpreview.services import telemetry as telemetry_service
from dotpreview.services.telemetry import TelemetryRecorder
from dotpreview.utils import logging as logging_utils


def test_emit_reaches_registered_listeners_only() -> None:
    recorder = TelemetryRecorder(capacity=10)
    telemetry_service.register_event_listener("preview.render.end", recorder)
    telemetry_service.register_event_listener("preview.render.end", recorder)

    telemetry_service.emit("preview.render.end", {"surface_id": "s1", "generation": 2})
    telemetry_service.emit("preview.render.start", {"surface_id": "s1"})

    assert recorder.tail() == [{"event": "preview.render.end", "surface_id": "s1", "generation": 2}]

    telemetry_service.unregister_event_listener("preview.render.end", recorder)
    telemetry_service.emit("preview.render.end", {"surface_id": "s2"})
    assert len(recorder) == 1


def test_listener_failures_are_isolated() -> None:
    recorder = TelemetryRecorder()

    def _boom(payload: dict) -> None:
        raise RuntimeError("listener failed")

    telemetry_service.register_event_listener("preview.surface.created", _boom)
    telemetry_service.register_event_listener("preview.surface.created", recorder)

    telemetry_service.emit("preview.surface.created", {"surface_id": "s1"})

    assert recorder.named("preview.surface.created")[0]["surface_id"] == "s1"


def test_recorder_keeps_most_recent_events() -> None:
    recorder = TelemetryRecorder(capacity=10)
    for index in range(15):
        recorder({"event": "tick", "index": index})

    assert len(recorder) == 10
    assert [payload["index"] for payload in recorder.tail(2)] == [13, 14]


def test_resolve_level_honors_names_and_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    assert logging_utils.resolve_level("debug") == logging.DEBUG
    assert logging_utils.resolve_level(logging.WARNING) == logging.WARNING
    assert logging_utils.resolve_level("nonsense") == logging.INFO

    monkeypatch.setenv("DOTPREVIEW_LOG_LEVEL", "ERROR")
    assert logging_utils.resolve_level(None) == logging.ERROR


def test_setup_logging_writes_rotating_log_file(tmp_path: Path) -> None:
    root = logging.getLogger()
    previous_handlers = list(root.handlers)
    previous_level = root.level
    try:
        log_path = logging_utils.setup_logging(logging.INFO, log_dir=tmp_path, console=False, force=True)
        logging.getLogger("dotpreview.test").info("render finished")
        for handler in root.handlers:
            handler.flush()

        assert log_path == tmp_path / "dotpreview.log"
        assert logging_utils.get_log_path() == log_path
        assert "render finished" in log_path.read_text(encoding="utf-8")
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in previous_handlers:
            root.addHandler(handler)
        root.setLevel(previous_level)
