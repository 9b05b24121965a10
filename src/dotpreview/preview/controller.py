"""Command and document-lifecycle glue between the host editor and the preview core."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Any, Callable, Mapping

from ..core.events import DocumentChanged, DocumentClosed, DocumentOpened, DocumentSaved, EventBus
from ..documents.document_model import DOT_LANGUAGE_ID, Document
from ..services.settings import Settings
from .registry import PanelRegistry, PreviewOptions
from .surface import PreviewSurface

__all__ = ["PreviewController"]

LOGGER = logging.getLogger(__name__)

ActiveDocumentProvider = Callable[[], Document | None]


class PreviewController:
    """Routes ``preview_beside`` invocations and document events to surfaces."""

    def __init__(
        self,
        registry: PanelRegistry,
        *,
        settings: Settings | None = None,
        active_document: ActiveDocumentProvider | None = None,
        event_bus: EventBus | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._registry = registry
        self._settings = settings or Settings()
        self._active_document = active_document
        self._loop = loop
        self._tasks: set[asyncio.Task[Any]] = set()
        if event_bus is not None:
            self.bind(event_bus)

    @property
    def registry(self) -> PanelRegistry:
        return self._registry

    @property
    def settings(self) -> Settings:
        return self._settings

    def bind(self, event_bus: EventBus) -> None:
        """Subscribe the document triggers to *event_bus*."""

        event_bus.subscribe(DocumentChanged, self._handle_changed)
        event_bus.subscribe(DocumentSaved, self._handle_saved)
        event_bus.subscribe(DocumentOpened, self._handle_opened)
        event_bus.subscribe(DocumentClosed, self._handle_closed)

    # ------------------------------------------------------------------
    # Invocation
    # ------------------------------------------------------------------
    async def preview_beside(
        self, args: PreviewOptions | Mapping[str, Any] | None = None
    ) -> PreviewSurface:
        """Reveal or create the preview for a document or a raw DOT string.

        ``args`` may carry ``document``, ``uri``, ``content``, ``title``,
        ``search``, ``allow_multiple_panels`` (or ``allowMultiplePanels``) and
        ``callback``. Without content or document the active document is used.
        """

        if isinstance(args, PreviewOptions):
            options = args
            document: Document | None = None
            uri: str | None = None
        else:
            data = dict(args or {})
            options = PreviewOptions.from_mapping(data)
            document = data.get("document")
            uri = data.get("uri")

        if not options.content and document is None and self._active_document is not None:
            document = self._active_document()
        if not options.content and document is not None:
            options = replace(options, content=document.text)
        if options.title is None and document is not None:
            options = replace(options, title=f"Preview {document.display_name}")

        identity = uri or (document.uri if document is not None else None)
        callback = options.callback
        surface = await self._registry.reveal_or_create(identity, replace(options, callback=None))

        surface.waiting_for_rendering = options.content
        if options.search is not None:
            surface.search = options.search
        if callback is not None:
            try:
                callback(surface)
            except Exception:
                LOGGER.exception("preview_beside callback failed for surface %s", surface.id)
        return surface

    # ------------------------------------------------------------------
    # Document triggers
    # ------------------------------------------------------------------
    def on_document_changed(self, document: Document) -> int:
        """Re-render every surface bound to *document*; returns how many were asked."""

        return self._rerender(document)

    def on_document_saved(self, document: Document) -> int:
        return self._rerender(document)

    def on_document_opened(self, document: Document) -> asyncio.Task[PreviewSurface] | None:
        if document.language_id != DOT_LANGUAGE_ID or not self._settings.open_automatically:
            return None
        LOGGER.debug("Opening preview automatically for %s", document.uri)
        return self._spawn(self.preview_beside({"document": document}))

    def on_document_closed(self, uri: str) -> int:
        """Dispose the surfaces bound to a document that no longer exists."""

        return self._registry.close_document(uri)

    async def aclose(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _rerender(self, document: Document) -> int:
        if not document.is_dot_source():
            return 0
        surfaces = self._registry.panels_for(document.uri)
        for surface in surfaces:
            surface.request_render(document.text)
        return len(surfaces)

    def _spawn(self, coro: Any) -> asyncio.Task[Any]:
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_finished)
        return task

    def _task_finished(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.warning("Automatic preview failed: %s", exc)

    # Event bus adapters ------------------------------------------------
    def _handle_changed(self, event: DocumentChanged) -> None:
        self.on_document_changed(event.document)

    def _handle_saved(self, event: DocumentSaved) -> None:
        self.on_document_saved(event.document)

    def _handle_opened(self, event: DocumentOpened) -> None:
        self.on_document_opened(event.document)

    def _handle_closed(self, event: DocumentClosed) -> None:
        self.on_document_closed(event.uri)
