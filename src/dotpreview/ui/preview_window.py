"""Qt web-view frontend for preview surfaces."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

from PySide6.QtCore import Qt
from PySide6.QtGui import QCloseEvent
from PySide6.QtWebEngineWidgets import QWebEngineView
from PySide6.QtWidgets import QLabel, QLineEdit, QVBoxLayout, QWidget

from ..preview.engine import Artifact
from ..preview.errors import RenderError
from ..preview.frontend import SurfaceFrontend
from ..preview.registry import PreviewOptions
from ..preview.surface import DEFAULT_TITLE, PreviewSurface
from ..preview.transport import Channel, create_loopback_pair

__all__ = ["PreviewWindow", "QtSurfaceFactory", "WebViewPresenter"]

LOGGER = logging.getLogger(__name__)

_SHELL_HTML = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<style>
  body { margin: 0; font-family: sans-serif; background: %(background)s; color: %(foreground)s; }
  #banner { display: none; padding: 6px 10px; background: #b3261e; color: #fff; white-space: pre-wrap; }
  #banner.stale::after { content: " (showing last successful render)"; opacity: 0.8; }
  #status { position: fixed; right: 8px; top: 4px; font-size: 11px; opacity: 0.6; }
  #canvas { padding: 8px; overflow: auto; }
  #canvas pre { white-space: pre-wrap; }
  .dp-hit > text, .dp-hit > polygon, .dp-hit > ellipse, .dp-hit > path { stroke: #ff9800; stroke-width: 2px; }
  .dp-hit text { fill: #e65100; font-weight: bold; }
</style>
</head>
<body>
<div id="banner"></div>
<div id="status"></div>
<div id="canvas"></div>
<script>
window.dotPreview = (function () {
  var term = null;
  function highlight() {
    var nodes = document.querySelectorAll("#canvas g.node, #canvas g.edge, #canvas g.cluster");
    var needle = term ? term.toLowerCase() : null;
    nodes.forEach(function (node) {
      var title = node.querySelector("title");
      var text = title ? title.textContent.toLowerCase() : "";
      node.classList.toggle("dp-hit", !!needle && text.indexOf(needle) !== -1);
    });
  }
  return {
    setBusy: function (generation) {
      document.getElementById("status").textContent = generation ? "rendering #" + generation : "";
    },
    showSvg: function (markup) {
      document.getElementById("canvas").innerHTML = markup;
      var banner = document.getElementById("banner");
      banner.style.display = "none";
      banner.className = "";
      document.getElementById("status").textContent = "";
      highlight();
    },
    showText: function (text) {
      var pre = document.createElement("pre");
      pre.textContent = text;
      var canvas = document.getElementById("canvas");
      canvas.innerHTML = "";
      canvas.appendChild(pre);
      document.getElementById("banner").style.display = "none";
    },
    showError: function (message, hasArtifact) {
      var banner = document.getElementById("banner");
      banner.textContent = message;
      banner.className = hasArtifact ? "stale" : "";
      banner.style.display = "block";
      document.getElementById("status").textContent = "";
    },
    search: function (value) {
      term = value || null;
      highlight();
    }
  };
})();
</script>
</body>
</html>
"""

_THEMES = {
    "dark": {"background": "#1e1e1e", "foreground": "#d4d4d4"},
    "default": {"background": "#ffffff", "foreground": "#1e1e1e"},
}


def shell_html(theme: str = "default") -> str:
    palette = _THEMES.get((theme or "default").lower(), _THEMES["default"])
    return _SHELL_HTML % palette


class WebViewPresenter:
    """Forwards frontend state changes to the page script of a web view."""

    def __init__(self, view: QWebEngineView) -> None:
        self._view = view

    def show_busy(self, generation: int) -> None:
        self._run(f"window.dotPreview.setBusy({int(generation)})")

    def show_artifact(self, artifact: Artifact) -> None:
        if artifact.format == "svg":
            self._run(f"window.dotPreview.showSvg({json.dumps(artifact.data)})")
        else:
            self._run(f"window.dotPreview.showText({json.dumps(artifact.data)})")

    def show_error(self, error: RenderError, *, has_artifact: bool) -> None:
        message = error.message
        if error.line is not None:
            message = f"{message} (line {error.line})"
        if error.details:
            message = f"{message}\n{error.details}"
        self._run(f"window.dotPreview.showError({json.dumps(message)}, {json.dumps(has_artifact)})")

    def apply_search(self, term: str | None) -> None:
        self._run(f"window.dotPreview.search({json.dumps(term)})")

    def _run(self, script: str) -> None:
        self._view.page().runJavaScript(script)


class PreviewWindow(QWidget):
    """Top-level window hosting the search box and the diagram view."""

    def __init__(
        self,
        title: str = DEFAULT_TITLE,
        *,
        theme: str = "default",
        parent: QWidget | None = None,
    ) -> None:
        super().__init__(parent)
        self.setWindowTitle(title)
        self.resize(900, 700)
        self._frontend: SurfaceFrontend | None = None
        self._closing = False

        self.search_box = QLineEdit(self)
        self.search_box.setPlaceholderText("Search nodes and edges")
        self.search_box.setClearButtonEnabled(True)
        self.title_label = QLabel(title, self)
        self.title_label.setTextFormat(Qt.TextFormat.PlainText)
        self.title_label.setTextInteractionFlags(Qt.TextInteractionFlag.TextSelectableByMouse)
        self.view = QWebEngineView(self)

        layout = QVBoxLayout(self)
        layout.setContentsMargins(4, 4, 4, 4)
        layout.addWidget(self.title_label)
        layout.addWidget(self.search_box)
        layout.addWidget(self.view, 1)

        self.search_box.returnPressed.connect(self._on_search_entered)
        self.view.setHtml(shell_html(theme))

    def bind(self, frontend: SurfaceFrontend) -> None:
        """Attach the frontend; it announces readiness once the page has loaded."""

        self._frontend = frontend
        self.view.loadFinished.connect(self._on_load_finished)

    def _on_load_finished(self, ok: bool) -> None:
        if self._frontend is None:
            return
        if not ok:
            LOGGER.warning("Preview page failed to load for %s", self.windowTitle())
            return
        self._frontend.announce_ready()
        if self._frontend.search_term:
            self.search_box.setText(self._frontend.search_term)

    def _on_search_entered(self) -> None:
        if self._frontend is None:
            return
        term = self.search_box.text().strip() or None
        self._frontend.request_search(term)

    def close_from_host(self) -> None:
        if self._closing:
            return
        self._closing = True
        self.close()

    def closeEvent(self, event: QCloseEvent) -> None:  # noqa: N802 - Qt override
        self._closing = True
        if self._frontend is not None:
            self._frontend.close()
        super().closeEvent(event)


class QtSurfaceFactory:
    """Surface factory creating one :class:`PreviewWindow` per preview surface.

    The window and the host talk over an in-process loopback channel, so the
    host side is identical to the headless one used in tests.
    """

    def __init__(
        self,
        *,
        theme: str = "default",
        loop: asyncio.AbstractEventLoop | None = None,
        on_window: Callable[[PreviewWindow], Any] | None = None,
    ) -> None:
        self._theme = theme
        self._loop = loop
        self._on_window = on_window
        self._windows: dict[str, PreviewWindow] = {}

    @property
    def windows(self) -> dict[str, PreviewWindow]:
        return dict(self._windows)

    def __call__(self, surface_id: str, options: PreviewOptions) -> Channel:
        host_end, surface_end = create_loopback_pair(self._loop)
        window = PreviewWindow(options.title or DEFAULT_TITLE, theme=self._theme)
        frontend = SurfaceFrontend(surface_end, presenter=WebViewPresenter(window.view))
        if options.search:
            frontend.search_term = options.search
        frontend.start()
        window.bind(frontend)
        surface_end.on_close(lambda _reason: self._forget(surface_id))
        self._windows[surface_id] = window
        window.show()
        if self._on_window is not None:
            self._on_window(window)
        LOGGER.debug("Opened preview window for surface %s", surface_id)
        return host_end

    def reveal(self, surface: PreviewSurface) -> None:
        """Bring the window of *surface* to the front."""

        window = self._windows.get(surface.id)
        if window is None:
            return
        window.showNormal()
        window.raise_()
        window.activateWindow()

    def _forget(self, surface_id: str) -> None:
        window = self._windows.pop(surface_id, None)
        if window is not None:
            window.close_from_host()
