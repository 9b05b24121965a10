"""Event bus infrastructure connecting the host editor to the preview core.

Editors publish document lifecycle events; the preview controller subscribes
to them and the panel registry publishes surface lifecycle events back.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Generic, TypeVar
from weakref import WeakMethod

if TYPE_CHECKING:  # pragma: no cover
    from ..documents.document_model import Document

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[E], None]


@dataclass(slots=True)
class Event:
    """Base class for all events published on an :class:`EventBus`."""


@dataclass(slots=True)
class DocumentOpened(Event):
    """Emitted when the host editor opens a document."""

    document: "Document"


@dataclass(slots=True)
class DocumentChanged(Event):
    """Emitted on every text change of an open document."""

    document: "Document"


@dataclass(slots=True)
class DocumentSaved(Event):
    """Emitted when a document is written to disk."""

    document: "Document"


@dataclass(slots=True)
class DocumentClosed(Event):
    """Emitted when the host editor closes a document."""

    uri: str


@dataclass(slots=True)
class SurfaceCreated(Event):
    """Emitted after the registry creates and binds a preview surface."""

    surface_id: str
    document_id: str | None = None


@dataclass(slots=True)
class SurfaceDisposed(Event):
    """Emitted after a preview surface is disposed and unregistered."""

    surface_id: str
    document_id: str | None = None
    reason: str | None = None


# Published on every keystroke.
_QUIET_EVENT_TYPES: frozenset[type] = frozenset({DocumentChanged})


class EventBus(Generic[E]):
    """A typed publish-subscribe event bus.

    Bound-method handlers are held through weak references so a subscriber
    that goes away is dropped on the next publish. Handlers run synchronously
    in subscription order; an exception in one handler is logged and does not
    stop delivery to the others.

    The bus is not thread-safe; use it from the event-loop thread only.
    """

    __slots__ = ("_subscriptions",)

    def __init__(self) -> None:
        self._subscriptions: dict[type[Event], list[_Subscription]] = {}

    def subscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Register *handler* for events of exactly *event_type*."""

        self._subscriptions.setdefault(event_type, []).append(_Subscription.of(handler))
        logger.debug("%s subscribed to %s", _describe(handler), event_type.__name__)

    def unsubscribe(self, event_type: type[E], handler: Handler[E]) -> None:
        """Remove the first registration of *handler*; unknown handlers are ignored."""

        entries = self._subscriptions.get(event_type, [])
        match = next((entry for entry in entries if entry.target() == handler), None)
        if match is not None:
            entries.remove(match)
            logger.debug("%s unsubscribed from %s", _describe(handler), event_type.__name__)

    def publish(self, event: E) -> None:
        """Deliver *event* to every live handler registered for its type."""

        event_type = type(event)
        entries = self._subscriptions.get(event_type)
        if event_type not in _QUIET_EVENT_TYPES:
            logger.debug("Publishing %s to %d handler(s)", event_type.__name__, len(entries or ()))
        if not entries:
            return

        for entry in tuple(entries):
            handler = entry.target()
            if handler is None:
                entries.remove(entry)
                continue
            try:
                handler(event)
            except Exception:
                logger.exception("%s failed while handling %s", _describe(handler), event_type.__name__)

    def clear(self) -> None:
        """Remove all registered handlers."""

        self._subscriptions.clear()

    def handler_count(self, event_type: type[E] | None = None) -> int:
        if event_type is None:
            return sum(map(len, self._subscriptions.values()))
        return len(self._subscriptions.get(event_type, ()))


class _Subscription:
    """Weak reference for bound methods, strong reference for plain callables."""

    __slots__ = ("target",)

    def __init__(self, target: Callable[[], Handler | None]) -> None:
        self.target = target

    @classmethod
    def of(cls, handler: Handler) -> "_Subscription":
        if inspect.ismethod(handler):
            return cls(WeakMethod(handler))
        return cls(lambda: handler)


def _describe(handler: Handler) -> str:
    if inspect.ismethod(handler):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__qualname__", None) or repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "DocumentOpened",
    "DocumentChanged",
    "DocumentSaved",
    "DocumentClosed",
    "SurfaceCreated",
    "SurfaceDisposed",
]
