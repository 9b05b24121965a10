"""Core infrastructure shared by the host and the preview subsystem."""

from .events import (
    DocumentChanged,
    DocumentClosed,
    DocumentOpened,
    DocumentSaved,
    Event,
    EventBus,
    SurfaceCreated,
    SurfaceDisposed,
)

__all__ = [
    "DocumentChanged",
    "DocumentClosed",
    "DocumentOpened",
    "DocumentSaved",
    "Event",
    "EventBus",
    "SurfaceCreated",
    "SurfaceDisposed",
]
