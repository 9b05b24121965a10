"""Per-surface render scheduling: debounce, generation tagging, stale-result suppression."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field

from . import protocol
from ..services.telemetry import emit
from .engine import RenderEngine, RenderOptions, RenderOutcome
from .errors import RenderError, RenderErrorKind
from .protocol import RenderRequest, RenderResult
from .surface import PreviewSurface

__all__ = ["RenderCoordinator"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class _SurfaceSlot:
    surface: PreviewSurface
    timer: asyncio.TimerHandle | None = None
    tasks: set[asyncio.Task[None]] = field(default_factory=set)
    renders: int = 0
    dropped: int = 0


class RenderCoordinator:
    """Drives the render engine on behalf of registered surfaces.

    Every :meth:`request_render` records the text as the surface's pending
    content and takes the next generation. Requests arriving inside the
    debounce window collapse into one render of the last text (trailing
    edge). A newer request never cancels an in-flight render; its result is
    simply dropped when its generation is no longer the surface's latest.
    """

    def __init__(
        self,
        engine: RenderEngine,
        *,
        debounce_seconds: float = 0.05,
        options: RenderOptions | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._engine = engine
        self._debounce_seconds = max(0.0, float(debounce_seconds))
        self._options = options
        self._loop = loop
        self._slots: dict[str, _SurfaceSlot] = {}
        self._closed = False

    @property
    def debounce_seconds(self) -> float:
        return self._debounce_seconds

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def register(self, surface: PreviewSurface) -> None:
        if self._closed:
            raise RuntimeError("RenderCoordinator is closed")
        self._slots[surface.id] = _SurfaceSlot(surface=surface)
        surface.on_dispose(self._handle_disposed)

    def discard(self, surface_id: str) -> None:
        """Forget a surface; its debounce timer is cancelled and late results dropped."""

        slot = self._slots.pop(surface_id, None)
        if slot is None:
            return
        if slot.timer is not None:
            slot.timer.cancel()
            slot.timer = None
        LOGGER.debug(
            "Discarded surface %s (%d render(s), %d in flight)", surface_id, slot.renders, len(slot.tasks)
        )

    def _handle_disposed(self, surface: PreviewSurface) -> None:
        self.discard(surface.id)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    def request_render(self, surface_id: str, source_text: str) -> bool:
        """Record *source_text* for the surface and schedule a debounced render.

        Returns False when the surface is unknown or disposed.
        """

        slot = self._slots.get(surface_id)
        if slot is None or slot.surface.is_disposed:
            LOGGER.debug("Render request for unknown or disposed surface %s ignored", surface_id)
            return False
        surface = slot.surface
        surface.pending_content = source_text
        surface.generation += 1
        if not surface.is_ready:
            LOGGER.debug("Surface %s not ready; buffered generation %d", surface_id, surface.generation)
            return True
        if slot.timer is not None:
            slot.timer.cancel()
        slot.timer = self.loop.call_later(self._debounce_seconds, self._start_render, slot)
        return True

    def flush(self, surface_id: str) -> bool:
        """Render the buffered content now, skipping the debounce window."""

        slot = self._slots.get(surface_id)
        if slot is None:
            return False
        if slot.timer is not None:
            slot.timer.cancel()
            slot.timer = None
        return self._start_render(slot)

    def pending_renders(self, surface_id: str) -> int:
        slot = self._slots.get(surface_id)
        if slot is None:
            return 0
        return len(slot.tasks) + (1 if slot.timer is not None else 0)

    async def wait_idle(self, surface_id: str) -> None:
        """Wait until the surface has no debounced or in-flight render."""

        while True:
            slot = self._slots.get(surface_id)
            if slot is None:
                return
            if slot.tasks:
                await asyncio.gather(*list(slot.tasks), return_exceptions=True)
                continue
            if slot.timer is None:
                return
            await asyncio.sleep(max(0.0, slot.timer.when() - self.loop.time()))
            await asyncio.sleep(0)

    def _start_render(self, slot: _SurfaceSlot) -> bool:
        slot.timer = None
        surface = slot.surface
        if self._slots.get(surface.id) is not slot or not surface.is_ready:
            return False
        text = surface.pending_content
        if text is None:
            return False
        request = RenderRequest(surface_id=surface.id, source_text=text, generation=surface.generation)
        if not surface.post_message(protocol.render_request(request.generation, request.source_text)):
            return False
        slot.renders += 1
        task = self.loop.create_task(self._render(slot, request))
        slot.tasks.add(task)
        task.add_done_callback(slot.tasks.discard)
        return True

    async def _render(self, slot: _SurfaceSlot, request: RenderRequest) -> None:
        emit(
            "preview.render.start",
            {
                "surface_id": request.surface_id,
                "generation": request.generation,
                "source_length": len(request.source_text),
            },
        )
        started = time.perf_counter()
        outcome: RenderOutcome
        try:
            outcome = await self._engine.render(request.source_text, self._options)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.exception("Render engine raised for surface %s", request.surface_id)
            outcome = RenderError(kind=RenderErrorKind.ENGINE_FAILURE, message=str(exc) or type(exc).__name__)
        latency_ms = (time.perf_counter() - started) * 1000.0
        result = RenderResult(surface_id=request.surface_id, generation=request.generation, outcome=outcome)
        emit(
            "preview.render.end",
            {
                "surface_id": request.surface_id,
                "generation": request.generation,
                "status": "ok" if result.ok else outcome.kind.value,  # type: ignore[union-attr]
                "latency_ms": round(latency_ms, 3),
            },
        )
        self._deliver(slot, result)

    def _deliver(self, slot: _SurfaceSlot, result: RenderResult) -> None:
        surface = slot.surface
        if surface.is_disposed or self._slots.get(surface.id) is not slot:
            self._drop(slot, result, "disposed")
            return
        if result.generation != surface.generation or result.generation < surface.last_applied_generation:
            self._drop(slot, result, "superseded")
            return
        if surface.post_message(protocol.render_result(result)):
            surface.last_applied_generation = result.generation
            surface.last_result = result

    def _drop(self, slot: _SurfaceSlot, result: RenderResult, reason: str) -> None:
        slot.dropped += 1
        LOGGER.debug(
            "Dropping %s result generation %d for surface %s",
            reason,
            result.generation,
            result.surface_id,
        )
        emit(
            "preview.render.dropped",
            {"surface_id": result.surface_id, "generation": result.generation, "reason": reason},
        )

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------
    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        tasks: list[asyncio.Task[None]] = []
        for surface_id in list(self._slots):
            slot = self._slots[surface_id]
            tasks.extend(slot.tasks)
            self.discard(surface_id)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
