"""Shared test helpers and stub classes.

Import from here instead of duplicating fakes in individual test files.
"""

from __future__ import annotations

import asyncio
from typing import Any

from dotpreview.preview.coordinator import RenderCoordinator
from dotpreview.preview.engine import Artifact, RenderOptions
from dotpreview.preview.errors import RenderError, RenderErrorKind
from dotpreview.preview.frontend import SurfaceFrontend
from dotpreview.preview.registry import PreviewOptions
from dotpreview.preview.surface import PreviewSurface
from dotpreview.preview.transport import LoopbackEndpoint, create_loopback_pair


def is_well_formed(source_text: str) -> bool:
    text = source_text.strip()
    return bool(text) and text.count("{") == text.count("}") and text.endswith("}")


class FakeEngine:
    """Render engine stub recording calls.

    Well-formed text (balanced braces) renders to ``<svg>{text}</svg>``;
    anything else yields a syntax error on line 1. ``delays`` maps a source
    text to the seconds its render takes.
    """

    def __init__(self, *, delay: float = 0.0) -> None:
        self.delay = delay
        self.delays: dict[str, float] = {}
        self.calls: list[str] = []
        self.options: list[RenderOptions | None] = []
        self.raise_on: set[str] = set()

    async def render(self, source_text: str, options: RenderOptions | None = None) -> Any:
        self.calls.append(source_text)
        self.options.append(options)
        delay = self.delays.get(source_text, self.delay)
        if delay:
            await asyncio.sleep(delay)
        if source_text in self.raise_on:
            raise RuntimeError("engine exploded")
        if not is_well_formed(source_text):
            return RenderError(
                kind=RenderErrorKind.SYNTAX_ERROR,
                message="syntax error in line 1",
                line=1,
            )
        return Artifact(data=f"<svg>{source_text}</svg>", format="svg", engine="dot")


class RecordingPresenter:
    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []

    def show_busy(self, generation: int) -> None:
        self.calls.append(("busy", generation))

    def show_artifact(self, artifact: Artifact) -> None:
        self.calls.append(("artifact", artifact.data))

    def show_error(self, error: RenderError, *, has_artifact: bool) -> None:
        self.calls.append(("error", (error.kind, has_artifact)))

    def apply_search(self, term: str | None) -> None:
        self.calls.append(("search", term))


class LoopbackSurfaceFactory:
    """Surface factory backed by loopback channels and headless frontends."""

    def __init__(self, *, auto_ready: bool = True, error: Exception | None = None) -> None:
        self.auto_ready = auto_ready
        self.error = error
        self.frontends: dict[str, SurfaceFrontend] = {}
        self.endpoints: dict[str, LoopbackEndpoint] = {}
        self.options: dict[str, PreviewOptions] = {}

    def __call__(self, surface_id: str, options: PreviewOptions) -> LoopbackEndpoint:
        if self.error is not None:
            raise self.error
        host_end, surface_end = create_loopback_pair()
        frontend = SurfaceFrontend(surface_end, presenter=RecordingPresenter())
        frontend.start()
        if self.auto_ready:
            frontend.announce_ready()
        self.frontends[surface_id] = frontend
        self.endpoints[surface_id] = surface_end
        self.options[surface_id] = options
        return host_end

    def frontend_for(self, surface: PreviewSurface) -> SurfaceFrontend:
        return self.frontends[surface.id]


async def make_surface(
    coordinator: RenderCoordinator,
    surface_id: str = "surface-1",
    *,
    ready: bool = True,
    presenter: RecordingPresenter | None = None,
) -> tuple[PreviewSurface, SurfaceFrontend, LoopbackEndpoint]:
    """Create, register and attach a surface wired to a headless frontend."""

    host_end, surface_end = create_loopback_pair()
    surface = PreviewSurface(surface_id, host_end, coordinator=coordinator)
    coordinator.register(surface)
    frontend = SurfaceFrontend(surface_end, presenter=presenter)
    frontend.start()
    surface.attach()
    if ready:
        frontend.announce_ready()
        assert await surface.wait_ready(1.0)
    return surface, frontend, surface_end


async def drain(iterations: int = 5) -> None:
    """Let ``call_soon`` deliveries run."""

    for _ in range(iterations):
        await asyncio.sleep(0)


async def settle(coordinator: RenderCoordinator, surface: PreviewSurface) -> None:
    await coordinator.wait_idle(surface.id)
    await drain()
