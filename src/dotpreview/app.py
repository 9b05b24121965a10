"""Application bootstrap for the dotpreview desktop previewer."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO

from .core.events import DocumentClosed, DocumentOpened, DocumentSaved, EventBus
from .documents.document_model import Document
from .preview.controller import PreviewController
from .preview.coordinator import RenderCoordinator
from .preview.engine import RenderEngine, RenderOptions, build_engine
from .preview.errors import CreationFailed
from .preview.registry import PanelRegistry, SurfaceFactory
from .preview.surface import PreviewSurface
from .services.settings import Settings, SettingsStore, parse_setting
from .utils import logging as logging_utils

_TRUE_VALUES = frozenset({"1", "true", "yes", "on", "debug"})
_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class QtRuntime:
    """Container returned by :func:`create_qapp`."""

    app: Any
    loop: asyncio.AbstractEventLoop


@dataclass(slots=True)
class PreviewStack:
    """The wired preview services of one host process."""

    settings: Settings
    event_bus: EventBus
    engine: RenderEngine
    coordinator: RenderCoordinator
    registry: PanelRegistry
    controller: PreviewController

    async def aclose(self) -> None:
        await self.controller.aclose()
        await self.registry.aclose()
        await self.coordinator.aclose()
        close = getattr(self.engine, "aclose", None)
        if close is not None:
            await close()


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    """Configure structured logging for the application."""

    level = logging.DEBUG if debug else None
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(logging.getLogger().level))
    _install_qt_message_handler()


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except OSError as exc:
        _LOGGER.warning("Unable to read settings from %s: %s", active_store.path, exc)
        return Settings()


def build_preview_stack(
    settings: Settings,
    surface_factory: SurfaceFactory,
    *,
    engine: RenderEngine | None = None,
    event_bus: EventBus | None = None,
    reveal_handler: Any = None,
    active_document: Any = None,
    loop: asyncio.AbstractEventLoop | None = None,
) -> PreviewStack:
    """Wire engine, coordinator, registry and controller from *settings*."""

    bus = event_bus or EventBus()
    render_engine = engine or build_engine(settings)
    coordinator = RenderCoordinator(
        render_engine,
        debounce_seconds=settings.debounce_seconds,
        options=RenderOptions(
            layout=settings.layout_engine,
            format=settings.output_format,
            timeout_seconds=settings.render_timeout_seconds,
        ),
        loop=loop,
    )
    registry = PanelRegistry(
        coordinator,
        surface_factory,
        allow_multiple_panels=settings.allow_multiple_panels,
        ready_timeout_seconds=settings.ready_timeout_seconds,
        reveal_handler=reveal_handler,
        event_bus=bus,
    )
    controller = PreviewController(
        registry,
        settings=settings,
        active_document=active_document,
        event_bus=bus,
        loop=loop,
    )
    return PreviewStack(
        settings=settings,
        event_bus=bus,
        engine=render_engine,
        coordinator=coordinator,
        registry=registry,
        controller=controller,
    )


def create_qapp(settings: Settings) -> QtRuntime:
    """Create the QApplication and install a qasync loop as the asyncio loop."""

    from PySide6.QtWidgets import QApplication
    from qasync import QEventLoop

    app = QApplication.instance() or QApplication(sys.argv)
    app.setApplicationName("dotpreview")
    app.setApplicationDisplayName("Graphviz Preview")
    if settings.theme.lower() == "dark":
        app.setStyle("Fusion")

    loop = QEventLoop(app)
    asyncio.set_event_loop(loop)
    app.aboutToQuit.connect(loop.stop)
    return QtRuntime(app=app, loop=loop)


class DocumentWatcher:
    """Publishes save/close events for a DOT file changed outside the app."""

    def __init__(self, document: Document, event_bus: EventBus) -> None:
        from PySide6.QtCore import QFileSystemWatcher

        if document.path is None:
            raise ValueError("DocumentWatcher requires a document backed by a file")
        self.document = document
        self._event_bus = event_bus
        self._watcher = QFileSystemWatcher([str(document.path)])
        self._watcher.fileChanged.connect(self._on_file_changed)

    def current(self) -> Document:
        return self.document

    def _on_file_changed(self, path: str) -> None:
        resolved = Path(path)
        if not resolved.exists():
            _LOGGER.info("%s was removed; closing its previews", path)
            self._event_bus.publish(DocumentClosed(uri=self.document.uri))
            return
        # Editors that save by replacing the file drop it from the watch list.
        if path not in self._watcher.files():
            self._watcher.addPath(path)
        try:
            text = resolved.read_text(encoding="utf-8")
        except OSError as exc:
            _LOGGER.warning("Unable to reload %s: %s", path, exc)
            return
        if text == self.document.text:
            return
        self.document = self.document.with_text(text)
        _LOGGER.debug("Reloaded %s (version %d)", path, self.document.version)
        self._event_bus.publish(DocumentSaved(document=self.document))


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `dotpreview` console script."""

    args, passthrough = _parse_cli_args(argv)
    _rewrite_sys_argv(passthrough)

    debug = _env_flag("DOTPREVIEW_DEBUG")
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("DOTPREVIEW_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc
    if args.remote:
        cli_overrides["render_backend"] = "remote"

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return

    if args.file is None:
        print("A DOT file to preview is required.", file=sys.stderr)
        raise SystemExit(2)
    try:
        document = Document.from_path(args.file)
    except OSError as exc:
        print(f"Unable to open {args.file}: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    runtime = create_qapp(settings)
    from .ui.preview_window import QtSurfaceFactory

    loop = runtime.loop
    factory = QtSurfaceFactory(theme=settings.theme, loop=loop)
    event_bus: EventBus = EventBus()
    watcher = DocumentWatcher(document, event_bus)
    stack = build_preview_stack(
        settings,
        factory,
        event_bus=event_bus,
        reveal_handler=factory.reveal,
        active_document=watcher.current,
        loop=loop,
    )
    loop.create_task(_open_initial_preview(stack, document))

    try:
        loop.run_forever()
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")
    finally:
        with contextlib.suppress(RuntimeError):
            loop.run_until_complete(stack.aclose())
        _drain_event_loop(loop)
        loop.close()


async def _open_initial_preview(stack: PreviewStack, document: Document) -> PreviewSurface | None:
    """Preview *document* on startup, or announce it when auto-open is enabled."""

    if stack.settings.open_automatically:
        stack.event_bus.publish(DocumentOpened(document=document))
        return None
    try:
        return await stack.controller.preview_beside({"document": document})
    except CreationFailed as exc:
        _LOGGER.error("Unable to open preview for %s: %s", document.file_name, exc)
        return None


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUE_VALUES


def _drain_event_loop(loop: asyncio.AbstractEventLoop) -> None:
    """Cancel leftover tasks on *loop* and let them unwind before it closes."""

    if loop.is_closed():
        return

    leftovers = [task for task in asyncio.all_tasks(loop) if not task.done()]
    for task in leftovers:
        task.cancel()
    if leftovers:
        _LOGGER.debug("Cancelled %d task(s) still running at shutdown", len(leftovers))

    async def _settle() -> None:
        await asyncio.gather(*leftovers, return_exceptions=True)
        with contextlib.suppress(RuntimeError, NotImplementedError):
            await loop.shutdown_asyncgens()

    try:
        loop.run_until_complete(_settle())
    except RuntimeError as exc:  # pragma: no cover - loop already running
        _LOGGER.debug("Event loop could not be drained: %s", exc)


_QT_LOG_LEVELS = {
    "QtDebugMsg": logging.DEBUG,
    "QtInfoMsg": logging.INFO,
    "QtWarningMsg": logging.WARNING,
    "QtCriticalMsg": logging.ERROR,
    "QtFatalMsg": logging.CRITICAL,
}


def _install_qt_message_handler() -> None:
    """Route Qt's own diagnostics into the ``qt`` logger."""

    from PySide6.QtCore import qInstallMessageHandler

    qt_logger = logging.getLogger("qt")

    def _forward(kind, _context, message):  # type: ignore[no-untyped-def]
        qt_logger.log(_QT_LOG_LEVELS.get(getattr(kind, "name", ""), logging.INFO), message)

    qInstallMessageHandler(_forward)


def _parse_cli_args(argv: Sequence[str] | None) -> tuple[argparse.Namespace, list[str]]:
    parser = argparse.ArgumentParser(
        prog="dotpreview",
        add_help=True,
        description="Preview a Graphviz DOT file and re-render it whenever it changes.",
    )
    parser.add_argument("file", nargs="?", help="DOT source file to preview.")
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.dotpreview/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings before launch (repeatable).",
    )
    parser.add_argument(
        "--remote",
        action="store_true",
        help="Render through the remote Kroki-compatible service instead of a local dot binary.",
    )
    return parser.parse_known_args(argv)


def _rewrite_sys_argv(passthrough: Sequence[str]) -> None:
    program = sys.argv[0] if sys.argv else "dotpreview"
    sys.argv = [program, *passthrough]


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    """Turn repeated ``--set name=value`` entries into typed settings overrides."""

    parsed: Dict[str, Any] = {}
    for item in items:
        name, separator, raw = item.partition("=")
        name = name.strip()
        if not separator or not name:
            raise ValueError(f"expected NAME=VALUE, got {item!r}")
        parsed[name] = parse_setting(name, raw)
    return parsed


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    metadata = {
        "path": str(store.path),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": asdict(settings), "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    return sorted(name for name in os.environ if name.startswith("DOTPREVIEW_"))


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()
