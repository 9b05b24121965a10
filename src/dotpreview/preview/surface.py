"""Host-side handle of a live preview surface."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Callable

from . import protocol
from .errors import TransportError
from .protocol import Message, MessageKind, RenderResult
from .transport import Channel

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from .coordinator import RenderCoordinator

__all__ = ["DEFAULT_TITLE", "PreviewSurface", "ReadyState"]

LOGGER = logging.getLogger(__name__)

DEFAULT_TITLE = "Graphviz Preview"

DisposeListener = Callable[["PreviewSurface"], None]
RevealHandler = Callable[["PreviewSurface"], None]


class ReadyState(str, Enum):
    CREATED = "created"
    AWAITING_READY = "awaiting_ready"
    READY = "ready"
    DISPOSED = "disposed"


class PreviewSurface:
    """A single addressable preview bound to zero or one document.

    Content and generation counters are driven by the
    :class:`~dotpreview.preview.coordinator.RenderCoordinator`; search state
    and the ready handshake arrive as messages on the surface's channel.

    Callers may replace :meth:`handle_message` on an instance to intercept
    inbound messages. The ``ready`` handshake is processed before the handler
    runs so overriding it never stalls the first render.
    """

    def __init__(
        self,
        surface_id: str,
        channel: Channel,
        *,
        coordinator: "RenderCoordinator",
        title: str = DEFAULT_TITLE,
        document_id: str | None = None,
        reveal_handler: RevealHandler | None = None,
    ) -> None:
        self.id = surface_id
        self.channel = channel
        self.title = title
        self.bound_document_id = document_id
        self.pending_content: str | None = None
        self.generation = 0
        self.last_applied_generation = 0
        self.last_result: RenderResult | None = None
        self.ready_state = ReadyState.CREATED
        self.dispose_reason: str | None = None
        self.reveal_count = 0
        self._coordinator = coordinator
        self._reveal_handler = reveal_handler
        self._search: str | None = None
        self._ready_event = asyncio.Event()
        self._dispose_listeners: list[DisposeListener] = []

    def __repr__(self) -> str:
        return (
            f"PreviewSurface(id={self.id!r}, document={self.bound_document_id!r}, "
            f"state={self.ready_state.value}, generation={self.generation})"
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    @property
    def is_ready(self) -> bool:
        return self.ready_state is ReadyState.READY

    @property
    def is_disposed(self) -> bool:
        return self.ready_state is ReadyState.DISPOSED

    @property
    def waiting_for_rendering(self) -> str | None:
        """Source text buffered for (or last submitted to) the renderer."""

        return self.pending_content

    @waiting_for_rendering.setter
    def waiting_for_rendering(self, value: str | None) -> None:
        if value is None or value == self.pending_content:
            return
        self.request_render(value)

    @property
    def search(self) -> str | None:
        return self._search

    @search.setter
    def search(self, term: str | None) -> None:
        self._search = term
        if self.is_ready:
            self.post_message(protocol.search_apply(term))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def attach(self) -> None:
        """Hook up the channel once the transport is established."""

        if self.ready_state is not ReadyState.CREATED:
            return
        self.channel.on_message(self._on_channel_message)
        self.channel.on_close(self._on_channel_closed)
        if not self.is_disposed:
            self.ready_state = ReadyState.AWAITING_READY
            LOGGER.debug("Surface %s awaiting ready handshake", self.id)

    async def wait_ready(self, timeout: float | None = None) -> bool:
        """Wait for the ready handshake; False on timeout or disposal."""

        if not self._ready_event.is_set():
            try:
                await asyncio.wait_for(self._ready_event.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                return False
        return self.is_ready

    def on_dispose(self, listener: DisposeListener) -> None:
        if self.is_disposed:
            listener(self)
            return
        self._dispose_listeners.append(listener)

    def dispose(self, reason: str | None = None) -> None:
        """Tear the surface down; pending and in-flight work is discarded."""

        if self.is_disposed:
            return
        self.ready_state = ReadyState.DISPOSED
        self.dispose_reason = reason
        self.pending_content = None
        self._ready_event.set()
        LOGGER.debug("Disposing surface %s (%s)", self.id, reason or "closed")
        if not self.channel.closed:
            try:
                self.channel.dispose()
            except TransportError:
                LOGGER.debug("Channel for %s already broken", self.id)
        listeners, self._dispose_listeners = self._dispose_listeners, []
        for listener in listeners:
            try:
                listener(self)
            except Exception:
                LOGGER.exception("Dispose listener failed for surface %s", self.id)

    def reveal(self) -> None:
        """Bring the surface to the front."""

        if self.is_disposed:
            return
        self.reveal_count += 1
        if self._reveal_handler is not None:
            self._reveal_handler(self)

    # ------------------------------------------------------------------
    # Rendering and messaging
    # ------------------------------------------------------------------
    def request_render(self, text: str) -> bool:
        """Ask the coordinator to render *text*; buffered until ready."""

        return self._coordinator.request_render(self.id, text)

    def post_message(self, message: Message) -> bool:
        """Send *message* to the frontend; a broken channel disposes the surface."""

        if self.is_disposed:
            LOGGER.debug("Not sending %s to disposed surface %s", message.kind.value, self.id)
            return False
        try:
            self.channel.send(message)
        except TransportError as exc:
            LOGGER.warning("Transport to surface %s failed: %s", self.id, exc)
            self.dispose(reason="transport error")
            return False
        return True

    def handle_message(self, message: Message) -> None:
        """Default handling for inbound frontend messages."""

        if message.kind is MessageKind.SEARCH_REQUEST:
            self._search = message.term
            LOGGER.debug("Surface %s stored search term %r", self.id, self._search)
        elif message.kind is MessageKind.REVEAL:
            self.reveal()
        elif message.kind is MessageKind.CUSTOM:
            LOGGER.debug("Surface %s ignoring custom message %r", self.id, message.name)
        elif message.kind is not MessageKind.READY:
            LOGGER.debug("Surface %s ignoring %s from frontend", self.id, message.kind.value)

    def _on_channel_message(self, message: Message) -> None:
        if self.is_disposed:
            return
        if message.kind is MessageKind.READY:
            self._mark_ready()
        self.handle_message(message)

    def _on_channel_closed(self, reason: str | None) -> None:
        self.dispose(reason=reason or "transport closed")

    def _mark_ready(self) -> None:
        if self.ready_state is not ReadyState.AWAITING_READY:
            LOGGER.debug("Ignoring duplicate ready from surface %s", self.id)
            return
        self.ready_state = ReadyState.READY
        self._ready_event.set()
        LOGGER.debug("Surface %s is ready", self.id)
        if self._search is not None:
            self.post_message(protocol.search_apply(self._search))
        if self.pending_content is not None:
            self._coordinator.flush(self.id)
