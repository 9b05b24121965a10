"""Duplex channels between the host and a preview surface frontend.

The host only depends on the :class:`Channel` capability set. Concrete
transports (a Qt web view, an in-process loopback) are supplied by the
surrounding application.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Mapping, Protocol

from .errors import ProtocolError, TransportError
from .protocol import Message, decode_message, encode_message

LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[Message], None]
CloseHandler = Callable[[str | None], None]


class Channel(Protocol):
    """Capability interface of a per-surface message transport."""

    @property
    def closed(self) -> bool:
        ...

    def send(self, message: Message) -> None:
        """Queue *message* for the other side; raises :class:`TransportError` when broken."""

    def on_message(self, handler: MessageHandler) -> None:
        """Install the handler receiving decoded inbound messages in FIFO order."""

    def on_close(self, handler: CloseHandler) -> None:
        """Register a callback fired once when the channel breaks or is disposed."""

    def dispose(self) -> None:
        """Close the channel; further sends raise :class:`TransportError`."""


class _ChannelState:
    __slots__ = ("closed", "reason")

    def __init__(self) -> None:
        self.closed = False
        self.reason: str | None = None


class LoopbackEndpoint:
    """One end of an in-process channel.

    Messages are serialized to JSON on send and decoded on delivery so the two
    sides never share mutable objects. Delivery is scheduled with
    ``loop.call_soon``, which keeps FIFO order and never re-enters the sender.
    """

    def __init__(self, name: str, state: _ChannelState, loop: asyncio.AbstractEventLoop) -> None:
        self.name = name
        self._state = state
        self._loop = loop
        self._peer: LoopbackEndpoint | None = None
        self._handler: MessageHandler | None = None
        self._close_handlers: list[CloseHandler] = []
        self._backlog: list[Message] = []
        self.sent: list[dict[str, Any]] = []

    @property
    def closed(self) -> bool:
        return self._state.closed

    @property
    def close_reason(self) -> str | None:
        return self._state.reason

    def send(self, message: Message) -> None:
        if self._state.closed or self._peer is None:
            raise TransportError(
                f"Channel {self.name!r} is closed",
                details={"reason": self._state.reason},
            )
        wire = json.dumps(encode_message(message), ensure_ascii=False)
        self.sent.append(json.loads(wire))
        self._loop.call_soon(self._peer._deliver, wire)

    def send_raw(self, payload: Mapping[str, Any] | str) -> None:
        """Send an undecoded wire payload, as a foreign frontend would."""

        if self._state.closed or self._peer is None:
            raise TransportError(f"Channel {self.name!r} is closed")
        wire = payload if isinstance(payload, str) else json.dumps(dict(payload))
        self._loop.call_soon(self._peer._deliver, wire)

    def on_message(self, handler: MessageHandler) -> None:
        self._handler = handler
        backlog, self._backlog = self._backlog, []
        for message in backlog:
            self._dispatch(message)

    def on_close(self, handler: CloseHandler) -> None:
        if self._state.closed:
            self._loop.call_soon(handler, self._state.reason)
            return
        self._close_handlers.append(handler)

    def dispose(self) -> None:
        self.fail(f"{self.name} disposed")

    def fail(self, reason: str) -> None:
        """Break the channel for both ends, notifying close handlers."""

        if self._state.closed:
            return
        self._state.closed = True
        self._state.reason = reason
        LOGGER.debug("Loopback channel closed: %s", reason)
        for endpoint in (self, self._peer):
            if endpoint is None:
                continue
            handlers, endpoint._close_handlers = endpoint._close_handlers, []
            for handler in handlers:
                self._loop.call_soon(handler, reason)

    def _deliver(self, wire: str) -> None:
        if self._state.closed:
            LOGGER.debug("Dropping message for closed channel %s", self.name)
            return
        try:
            message = decode_message(wire)
        except ProtocolError as exc:
            LOGGER.warning("Dropping malformed message on %s: %s", self.name, exc)
            return
        if self._handler is None:
            self._backlog.append(message)
            return
        self._dispatch(message)

    def _dispatch(self, message: Message) -> None:
        handler = self._handler
        if handler is None:
            return
        try:
            handler(message)
        except Exception:
            LOGGER.exception("Message handler on %s failed for %s", self.name, message.kind.value)


def create_loopback_pair(
    loop: asyncio.AbstractEventLoop | None = None,
) -> tuple[LoopbackEndpoint, LoopbackEndpoint]:
    """Return ``(host_end, surface_end)`` of a new in-process channel."""

    resolved = loop or asyncio.get_running_loop()
    state = _ChannelState()
    host = LoopbackEndpoint("host", state, resolved)
    surface = LoopbackEndpoint("surface", state, resolved)
    host._peer = surface
    surface._peer = host
    return host, surface


__all__ = [
    "Channel",
    "CloseHandler",
    "LoopbackEndpoint",
    "MessageHandler",
    "create_loopback_pair",
]
