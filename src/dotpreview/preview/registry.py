"""Directory of live preview surfaces keyed by document identity."""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, Mapping, Union

from ..core.events import EventBus, SurfaceCreated, SurfaceDisposed
from ..services.telemetry import emit
from .coordinator import RenderCoordinator
from .errors import CreationFailed
from .surface import DEFAULT_TITLE, PreviewSurface, RevealHandler
from .transport import Channel

__all__ = ["PanelRegistry", "PreviewOptions", "SurfaceFactory"]

LOGGER = logging.getLogger(__name__)

SurfaceCallback = Callable[[PreviewSurface], Any]


@dataclass(slots=True)
class PreviewOptions:
    """Options accepted by :meth:`PanelRegistry.reveal_or_create`."""

    content: str | None = None
    title: str | None = None
    search: str | None = None
    allow_multiple_panels: bool | None = None
    callback: SurfaceCallback | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "PreviewOptions":
        data = dict(payload or {})
        allow_multiple = data.get("allow_multiple_panels", data.get("allowMultiplePanels"))
        return cls(
            content=data.get("content"),
            title=data.get("title"),
            search=data.get("search"),
            allow_multiple_panels=bool(allow_multiple) if allow_multiple is not None else None,
            callback=data.get("callback"),
        )


SurfaceFactory = Callable[[str, PreviewOptions], Union[Channel, Awaitable[Channel]]]


class PanelRegistry:
    """Creates, reveals and tracks preview surfaces.

    The registry is an explicitly constructed object owned by the host
    application. Every surface id it holds belongs to a live surface: entries
    are removed synchronously from the surface's dispose notification.
    """

    def __init__(
        self,
        coordinator: RenderCoordinator,
        surface_factory: SurfaceFactory,
        *,
        allow_multiple_panels: bool = False,
        ready_timeout_seconds: float | None = 10.0,
        reveal_handler: RevealHandler | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._coordinator = coordinator
        self._factory = surface_factory
        self._allow_multiple_panels = allow_multiple_panels
        self._ready_timeout = ready_timeout_seconds
        self._reveal_handler = reveal_handler
        self._event_bus = event_bus
        self._surfaces: dict[str, PreviewSurface] = {}
        self._by_document: dict[str, list[str]] = {}
        self._creating: dict[str, asyncio.Future[PreviewSurface]] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_panel(self, document_id: str) -> PreviewSurface | None:
        """Return the most recently created live surface bound to *document_id*."""

        surface_ids = self._by_document.get(document_id)
        if not surface_ids:
            return None
        return self._surfaces.get(surface_ids[-1])

    def panels_for(self, document_id: str) -> list[PreviewSurface]:
        return [self._surfaces[surface_id] for surface_id in self._by_document.get(document_id, ())]

    def surfaces(self) -> list[PreviewSurface]:
        return list(self._surfaces.values())

    def __len__(self) -> int:
        return len(self._surfaces)

    def __contains__(self, surface_id: object) -> bool:
        return surface_id in self._surfaces

    def __iter__(self) -> Iterator[PreviewSurface]:
        return iter(self.surfaces())

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    async def reveal_or_create(
        self,
        document_id: str | None,
        options: PreviewOptions | Mapping[str, Any] | None = None,
    ) -> PreviewSurface:
        """Reuse the bound surface or create a new one and wait for its handshake.

        Raises :class:`CreationFailed` when the surface cannot be created or
        its transport breaks before it becomes ready.
        """

        opts = options if isinstance(options, PreviewOptions) else PreviewOptions.from_mapping(options)
        allow_multiple = (
            self._allow_multiple_panels if opts.allow_multiple_panels is None else opts.allow_multiple_panels
        )
        reusable = document_id is not None and not allow_multiple
        surface: PreviewSurface | None = None
        if reusable:
            surface = self.get_panel(document_id)
            pending = self._creating.get(document_id)
            if surface is None and pending is not None:
                LOGGER.debug("Waiting for the surface already being created for %s", document_id)
                surface = await asyncio.shield(pending)
                if surface.is_disposed:
                    surface = None
        if surface is not None:
            LOGGER.debug("Revealing existing surface %s for %s", surface.id, document_id)
            surface.reveal()
            if opts.search is not None:
                surface.search = opts.search
            surface.waiting_for_rendering = opts.content
        elif reusable and document_id not in self._creating:
            surface = await self._create_tracked(document_id, opts)
        else:
            surface = await self._create_ready(document_id, opts)
        self._invoke_callback(opts.callback, surface)
        return surface

    async def _create_tracked(self, document_id: str, opts: PreviewOptions) -> PreviewSurface:
        # Concurrent callers for the same document share this creation.
        future: asyncio.Future[PreviewSurface] = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_outcome)
        self._creating[document_id] = future
        try:
            surface = await self._create_ready(document_id, opts)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(surface)
            return surface
        finally:
            if self._creating.get(document_id) is future:
                del self._creating[document_id]

    async def _create_ready(self, document_id: str | None, opts: PreviewOptions) -> PreviewSurface:
        surface = await self._create(document_id, opts)
        if not await surface.wait_ready(self._ready_timeout):
            if surface.is_disposed:
                raise CreationFailed(
                    f"Surface {surface.id} closed before it became ready",
                    details={"reason": surface.dispose_reason},
                )
            LOGGER.warning(
                "Surface %s did not report ready within %ss; content stays buffered",
                surface.id,
                self._ready_timeout,
            )
        return surface

    async def _create(self, document_id: str | None, opts: PreviewOptions) -> PreviewSurface:
        surface_id = uuid.uuid4().hex
        try:
            channel = self._factory(surface_id, opts)
            if inspect.isawaitable(channel):
                channel = await channel
        except CreationFailed:
            raise
        except Exception as exc:
            LOGGER.warning("Unable to create preview surface: %s", exc)
            raise CreationFailed(
                f"Unable to create preview surface: {exc}", details={"document_id": document_id}
            ) from exc

        surface = PreviewSurface(
            surface_id,
            channel,
            coordinator=self._coordinator,
            title=opts.title or DEFAULT_TITLE,
            document_id=document_id,
            reveal_handler=self._reveal_handler,
        )
        self._coordinator.register(surface)
        if opts.search is not None:
            surface.search = opts.search
        if opts.content is not None:
            self._coordinator.request_render(surface.id, opts.content)
        self._surfaces[surface.id] = surface
        if document_id is not None:
            self._by_document.setdefault(document_id, []).append(surface.id)
        surface.on_dispose(self._handle_disposed)
        try:
            surface.attach()
        except Exception as exc:
            LOGGER.warning("Transport setup failed for surface %s: %s", surface.id, exc)
            surface.dispose(reason="transport setup failed")
            raise CreationFailed(
                f"Transport setup failed: {exc}", details={"document_id": document_id}
            ) from exc
        if surface.is_disposed:
            raise CreationFailed(
                f"Surface {surface.id} closed during creation",
                details={"reason": surface.dispose_reason},
            )

        LOGGER.info("Created preview surface %s for %s", surface.id, document_id or "<content>")
        emit("preview.surface.created", {"surface_id": surface.id, "document_id": document_id})
        if self._event_bus is not None:
            self._event_bus.publish(SurfaceCreated(surface_id=surface.id, document_id=document_id))
        return surface

    def _invoke_callback(self, callback: SurfaceCallback | None, surface: PreviewSurface) -> None:
        if callback is None:
            return
        try:
            callback(surface)
        except Exception:
            LOGGER.exception("Preview callback failed for surface %s", surface.id)

    # ------------------------------------------------------------------
    # Disposal
    # ------------------------------------------------------------------
    def _handle_disposed(self, surface: PreviewSurface) -> None:
        if self._surfaces.pop(surface.id, None) is None:
            return
        document_id = surface.bound_document_id
        if document_id is not None:
            surface_ids = self._by_document.get(document_id, [])
            if surface.id in surface_ids:
                surface_ids.remove(surface.id)
            if not surface_ids:
                self._by_document.pop(document_id, None)
        LOGGER.debug("Unregistered surface %s (%s)", surface.id, surface.dispose_reason)
        emit(
            "preview.surface.disposed",
            {"surface_id": surface.id, "document_id": document_id, "reason": surface.dispose_reason},
        )
        if self._event_bus is not None:
            self._event_bus.publish(
                SurfaceDisposed(surface_id=surface.id, document_id=document_id, reason=surface.dispose_reason)
            )

    def close_document(self, document_id: str) -> int:
        """Dispose every surface bound to *document_id*; returns how many closed."""

        surfaces = self.panels_for(document_id)
        for surface in surfaces:
            surface.dispose(reason="document closed")
        return len(surfaces)

    async def aclose(self) -> None:
        """Dispose all surfaces (host shutdown)."""

        for surface in self.surfaces():
            surface.dispose(reason="host shutdown")


def _consume_outcome(future: asyncio.Future[PreviewSurface]) -> None:
    # The creating caller re-raises the failure itself; waiters are optional.
    if not future.cancelled():
        future.exception()
