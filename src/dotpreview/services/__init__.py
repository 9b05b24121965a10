"""Service layer helpers (settings, telemetry)."""

from .settings import Settings, SettingsStore, parse_setting
from .telemetry import TelemetryRecorder, emit, register_event_listener

__all__ = [
    "Settings",
    "SettingsStore",
    "TelemetryRecorder",
    "emit",
    "parse_setting",
    "register_event_listener",
]
