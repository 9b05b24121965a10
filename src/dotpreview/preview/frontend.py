"""Surface-side presentation state driven by host messages."""

from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

from . import protocol
from .engine import Artifact
from .errors import RenderError, TransportError
from .protocol import Message, MessageKind
from .transport import Channel

__all__ = ["FrontendPresenter", "SurfaceFrontend"]

LOGGER = logging.getLogger(__name__)

CustomHandler = Callable[[Message], None]


class FrontendPresenter(Protocol):
    """Rendering hooks implemented by a concrete view (e.g. a web view)."""

    def show_busy(self, generation: int) -> None:
        ...

    def show_artifact(self, artifact: Artifact) -> None:
        ...

    def show_error(self, error: RenderError, *, has_artifact: bool) -> None:
        ...

    def apply_search(self, term: str | None) -> None:
        ...


class SurfaceFrontend:
    """Applies host messages in generation order and keeps the last good diagram.

    A ``renderResult`` is applied only when its generation is not older than
    the last one applied. An error result keeps the previous artifact and
    records the error next to it; the next successful result clears it.
    """

    def __init__(self, channel: Channel, *, presenter: FrontendPresenter | None = None) -> None:
        self._channel = channel
        self._presenter = presenter
        self._ready_sent = False
        self._custom_handlers: list[CustomHandler] = []
        self.last_applied_generation = 0
        self.busy_generation: int | None = None
        self.artifact: Artifact | None = None
        self.error: RenderError | None = None
        self.search_term: str | None = None
        self.applied_generations: list[int] = []
        self.ignored_generations: list[int] = []

    @property
    def closed(self) -> bool:
        return self._channel.closed

    def start(self) -> None:
        """Listen for host messages without announcing readiness yet."""

        self._channel.on_message(self._handle)

    def announce_ready(self) -> None:
        """Send the one-time ready handshake."""

        if self._ready_sent:
            return
        self._ready_sent = True
        self._send(protocol.ready())

    def request_search(self, term: str | None) -> None:
        self.search_term = term
        self._present_search()
        self._send(protocol.search_request(term))

    def request_reveal(self) -> None:
        self._send(protocol.reveal())

    def send_custom(self, name: str, data: Any = None) -> None:
        self._send(protocol.custom(name, data))

    def add_custom_handler(self, handler: CustomHandler) -> None:
        self._custom_handlers.append(handler)

    def close(self) -> None:
        if not self._channel.closed:
            self._channel.dispose()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------
    def _handle(self, message: Message) -> None:
        if message.kind is MessageKind.RENDER_REQUEST:
            self._on_render_request(message)
        elif message.kind is MessageKind.RENDER_RESULT:
            self._on_render_result(message)
        elif message.kind is MessageKind.SEARCH_APPLY:
            self.search_term = message.term
            self._present_search()
        elif message.kind is MessageKind.CUSTOM:
            for handler in list(self._custom_handlers):
                handler(message)
        else:
            LOGGER.debug("Frontend ignoring %s", message.kind.value)

    def _on_render_request(self, message: Message) -> None:
        generation = message.generation or 0
        if generation < self.last_applied_generation:
            return
        self.busy_generation = generation
        if self._presenter is not None:
            self._presenter.show_busy(generation)

    def _on_render_result(self, message: Message) -> None:
        generation = message.generation or 0
        if generation < self.last_applied_generation:
            LOGGER.debug(
                "Ignoring stale result %d (applied %d)", generation, self.last_applied_generation
            )
            self.ignored_generations.append(generation)
            return
        outcome = message.outcome()
        if outcome is None:
            LOGGER.warning("renderResult %d carried no outcome", generation)
            return
        self.last_applied_generation = generation
        self.applied_generations.append(generation)
        if self.busy_generation is not None and self.busy_generation <= generation:
            self.busy_generation = None
        if isinstance(outcome, Artifact):
            self.artifact = outcome
            self.error = None
            if self._presenter is not None:
                self._presenter.show_artifact(outcome)
        else:
            self.error = outcome
            if self._presenter is not None:
                self._presenter.show_error(outcome, has_artifact=self.artifact is not None)

    def _present_search(self) -> None:
        if self._presenter is not None:
            self._presenter.apply_search(self.search_term)

    def _send(self, message: Message) -> None:
        try:
            self._channel.send(message)
        except TransportError:
            LOGGER.debug("Frontend could not send %s; channel closed", message.kind.value)
