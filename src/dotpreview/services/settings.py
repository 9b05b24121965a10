"""Settings dataclasses and persistence helpers."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping

__all__ = ["Settings", "SettingsStore", "RENDER_BACKEND_CHOICES", "parse_setting"]

LOGGER = logging.getLogger(__name__)
_SETTINGS_DIR = Path.home() / ".dotpreview"
_DEFAULT_SETTINGS_PATH = _SETTINGS_DIR / "settings.json"
_SETTINGS_VERSION = 1
_ENV_FIELDS: Mapping[str, str] = {
    "DOTPREVIEW_OPEN_AUTOMATICALLY": "open_automatically",
    "DOTPREVIEW_ALLOW_MULTIPLE_PANELS": "allow_multiple_panels",
    "DOTPREVIEW_DEBOUNCE_SECONDS": "debounce_seconds",
    "DOTPREVIEW_READY_TIMEOUT": "ready_timeout_seconds",
    "DOTPREVIEW_RENDER_TIMEOUT": "render_timeout_seconds",
    "DOTPREVIEW_LAYOUT_ENGINE": "layout_engine",
    "DOTPREVIEW_OUTPUT_FORMAT": "output_format",
    "DOTPREVIEW_DOT_EXECUTABLE": "dot_executable",
    "DOTPREVIEW_RENDER_BACKEND": "render_backend",
    "DOTPREVIEW_REMOTE_BASE_URL": "remote_base_url",
    "DOTPREVIEW_THEME": "theme",
    "DOTPREVIEW_DEBUG_LOGGING": "debug_logging",
}
# Keys used by the editor-extension flavour of the settings file.
_LEGACY_KEYS: Mapping[str, str] = {
    "openAutomatically": "open_automatically",
    "codeCompletion.enable": "code_completion_enabled",
    "allowMultiplePanels": "allow_multiple_panels",
}
_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "debug"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", "disabled"})
RENDER_BACKEND_CHOICES: tuple[str, ...] = ("local", "remote")


@dataclass(slots=True)
class Settings:
    """User-configurable settings persisted between sessions."""

    open_automatically: bool = False
    code_completion_enabled: bool = True
    allow_multiple_panels: bool = False
    debounce_seconds: float = 0.05
    ready_timeout_seconds: float = 10.0
    render_timeout_seconds: float = 10.0
    layout_engine: str = "dot"
    output_format: str = "svg"
    dot_executable: str = "dot"
    render_backend: str = "local"
    remote_base_url: str = "https://kroki.io"
    theme: str = "default"
    debug_logging: bool = False


class SettingsStore:
    """Persistence adapter for :class:`Settings`."""

    def __init__(self, path: Path | None = None) -> None:
        self._path = path or _DEFAULT_SETTINGS_PATH

    @property
    def path(self) -> Path:
        """Return the resolved path backing this store."""

        return self._path

    def load(self, *, overrides: Mapping[str, Any] | None = None) -> Settings:
        """Load settings from disk, applying CLI/environment overrides when present."""

        payload = self._read_payload()
        settings = Settings()
        if payload:
            data = _filter_fields(_translate_legacy_keys(payload))
            try:
                settings = Settings(**data)
            except TypeError as exc:
                LOGGER.warning("Settings payload contained unexpected data: %s", exc)
                settings = Settings()
            LOGGER.debug("Settings loaded from %s: %s", self._path, sorted(data))

        if overrides:
            settings = self._apply_overrides(settings, overrides, source="CLI")

        settings = self._apply_env_overrides(settings)
        return _normalize(settings)

    def save(self, settings: Settings) -> Path:
        """Persist settings to disk with atomic file writes."""

        payload = asdict(settings)
        payload["version"] = _SETTINGS_VERSION
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)
        LOGGER.debug("Settings saved to %s", self._path)
        return self._path

    def _read_payload(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
            payload = json.loads(text)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Settings file %s is not valid JSON: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            LOGGER.warning("Settings file %s does not contain an object", self._path)
            return {}
        return payload

    def _apply_overrides(
        self,
        settings: Settings,
        overrides: Mapping[str, Any],
        *,
        source: str = "runtime",
    ) -> Settings:
        allowed = {field.name for field in fields(Settings)}
        filtered: Dict[str, Any] = {}
        for key, value in _translate_legacy_keys(overrides).items():
            if key not in allowed or value is None:
                continue
            filtered[key] = value
        if filtered:
            LOGGER.debug("Applying %s settings overrides: %s", source, sorted(filtered))
            settings = replace(settings, **filtered)
        return settings

    def _apply_env_overrides(self, settings: Settings) -> Settings:
        overrides: Dict[str, Any] = {}
        for env_name, field_name in _ENV_FIELDS.items():
            raw = os.environ.get(env_name)
            if raw is None:
                continue
            try:
                overrides[field_name] = parse_setting(field_name, raw)
            except ValueError as exc:
                LOGGER.warning("Ignoring environment override %s: %s", env_name, exc)
        if overrides:
            settings = self._apply_overrides(settings, overrides, source="environment")
        return settings


def parse_setting(name: str, raw: str) -> Any:
    """Convert the textual *raw* value into the type declared for field *name*.

    Raises :class:`ValueError` for unknown fields and unparsable values.
    """

    declared = _FIELD_TYPES.get(name)
    if declared is None:
        raise ValueError(f"Unknown setting '{name}'.")
    text = raw.strip()
    if declared == "bool":
        lowered = text.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValueError(f"'{raw}' is not a boolean for {name}.")
    if declared == "float":
        try:
            return float(text)
        except ValueError:
            raise ValueError(f"'{raw}' is not a number for {name}.") from None
    return text


def _type_name(annotation: Any) -> str:
    return annotation if isinstance(annotation, str) else getattr(annotation, "__name__", str(annotation))


_FIELD_TYPES: Mapping[str, str] = {field.name: _type_name(field.type) for field in fields(Settings)}


def _translate_legacy_keys(payload: Mapping[str, Any]) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for key, value in payload.items():
        if key == "codeCompletion" and isinstance(value, Mapping):
            if "enable" in value:
                data["code_completion_enabled"] = value["enable"]
            continue
        data[_LEGACY_KEYS.get(key, key)] = value
    return data


def _filter_fields(payload: Mapping[str, Any]) -> Dict[str, Any]:
    allowed = {field.name for field in fields(Settings)}
    return {key: value for key, value in payload.items() if key in allowed}


def _normalize(settings: Settings) -> Settings:
    updates: Dict[str, Any] = {}
    for name in ("debounce_seconds", "ready_timeout_seconds", "render_timeout_seconds"):
        value = getattr(settings, name)
        try:
            coerced = max(0.0, float(value))
        except (TypeError, ValueError):
            coerced = getattr(Settings(), name)
        if coerced != value:
            updates[name] = coerced
    backend = str(settings.render_backend or "").strip().lower()
    if backend not in RENDER_BACKEND_CHOICES:
        LOGGER.warning("Unknown render backend %r; using 'local'", settings.render_backend)
        backend = "local"
    if backend != settings.render_backend:
        updates["render_backend"] = backend
    return replace(settings, **updates) if updates else settings
