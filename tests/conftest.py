"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from dotpreview.services import telemetry as telemetry_service
from dotpreview.services.telemetry import TelemetryRecorder


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path):
    for name in (
        "DOTPREVIEW_LAYOUT_ENGINE",
        "DOTPREVIEW_OUTPUT_FORMAT",
        "DOTPREVIEW_DOT_EXECUTABLE",
        "DOTPREVIEW_RENDER_BACKEND",
        "DOTPREVIEW_REMOTE_BASE_URL",
        "DOTPREVIEW_THEME",
        "DOTPREVIEW_OPEN_AUTOMATICALLY",
        "DOTPREVIEW_ALLOW_MULTIPLE_PANELS",
        "DOTPREVIEW_DEBUG_LOGGING",
        "DOTPREVIEW_DEBOUNCE_SECONDS",
        "DOTPREVIEW_RENDER_TIMEOUT",
        "DOTPREVIEW_READY_TIMEOUT",
        "DOTPREVIEW_LOG_LEVEL",
        "DOTPREVIEW_DEBUG",
        "DOTPREVIEW_SETTINGS_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DOTPREVIEW_LOG_DIR", str(tmp_path / "logs"))
    yield
    telemetry_service.clear_event_listeners()


@pytest.fixture
def telemetry() -> TelemetryRecorder:
    """Record every preview telemetry event emitted during a test."""

    recorder = TelemetryRecorder()
    for name in (
        "preview.surface.created",
        "preview.surface.disposed",
        "preview.render.start",
        "preview.render.end",
        "preview.render.dropped",
    ):
        telemetry_service.register_event_listener(name, recorder)
    return recorder
