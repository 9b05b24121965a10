"""Tests for the render coordinator: debounce, generations and stale suppression."""

from __future__ import annotations

import asyncio

import pytest

from dotpreview.preview.coordinator import RenderCoordinator
from dotpreview.preview.errors import RenderErrorKind
from dotpreview.preview.protocol import MessageKind
from dotpreview.preview.surface import ReadyState
from helpers import FakeEngine, drain, make_surface, settle


def test_edits_inside_debounce_window_collapse_to_one_render() -> None:
    async def _run() -> None:
        engine = FakeEngine()
        coordinator = RenderCoordinator(engine, debounce_seconds=0.05)
        surface, frontend, _ = await make_surface(coordinator)

        for text in ("digraph { a }", "digraph { b }", "digraph { c }"):
            coordinator.request_render(surface.id, text)
            await asyncio.sleep(0.01)
        coordinator.request_render(surface.id, "digraph { d }")
        await settle(coordinator, surface)

        assert engine.calls == ["digraph { d }"]
        assert surface.generation == 4
        assert surface.last_applied_generation == 4
        assert frontend.applied_generations == [4]
        assert frontend.artifact is not None
        assert frontend.artifact.data == "<svg>digraph { d }</svg>"
        await coordinator.aclose()

    asyncio.run(_run())


def test_render_request_is_announced_before_the_result() -> None:
    async def _run() -> None:
        engine = FakeEngine()
        coordinator = RenderCoordinator(engine, debounce_seconds=0.0)
        surface, frontend, surface_end = await make_surface(coordinator)
        received: list[tuple[MessageKind, int | None]] = []
        original = frontend._handle

        def _spy(message) -> None:  # type: ignore[no-untyped-def]
            received.append((message.kind, message.generation))
            original(message)

        surface_end.on_message(_spy)
        coordinator.request_render(surface.id, "digraph { a }")
        await settle(coordinator, surface)

        assert received == [(MessageKind.RENDER_REQUEST, 1), (MessageKind.RENDER_RESULT, 1)]
        await coordinator.aclose()

    asyncio.run(_run())


def test_superseded_in_flight_result_is_dropped(telemetry) -> None:
    async def _run() -> None:
        engine = FakeEngine()
        engine.delays["digraph { slow }"] = 0.15
        coordinator = RenderCoordinator(engine, debounce_seconds=0.01)
        surface, frontend, _ = await make_surface(coordinator)

        coordinator.request_render(surface.id, "digraph { slow }")
        await asyncio.sleep(0.05)
        assert engine.calls == ["digraph { slow }"]
        coordinator.request_render(surface.id, "digraph { fast }")
        await settle(coordinator, surface)

        assert engine.calls == ["digraph { slow }", "digraph { fast }"]
        assert frontend.applied_generations == [2]
        assert frontend.artifact is not None and "fast" in frontend.artifact.data
        dropped = telemetry.named("preview.render.dropped")
        assert [(event["generation"], event["reason"]) for event in dropped] == [(1, "superseded")]
        await coordinator.aclose()

    asyncio.run(_run())


def test_generations_are_strictly_increasing_and_applied_monotonically() -> None:
    async def _run() -> None:
        engine = FakeEngine()
        engine.delays["digraph { one }"] = 0.08
        coordinator = RenderCoordinator(engine, debounce_seconds=0.0)
        surface, frontend, _ = await make_surface(coordinator)
        starts: list[int] = []

        for text in ("digraph { one }", "digraph { two }", "digraph { three }"):
            coordinator.request_render(surface.id, text)
            await asyncio.sleep(0.01)
            starts.append(surface.generation)
        await settle(coordinator, surface)

        assert starts == [1, 2, 3]
        applied = frontend.applied_generations
        assert applied == sorted(applied)
        assert surface.last_applied_generation == 3
        assert 1 not in applied
        await coordinator.aclose()

    asyncio.run(_run())


def test_requests_before_ready_are_buffered_and_flushed_on_handshake() -> None:
    async def _run() -> None:
        engine = FakeEngine()
        coordinator = RenderCoordinator(engine, debounce_seconds=0.01)
        surface, frontend, _ = await make_surface(coordinator, ready=False)

        assert surface.ready_state is ReadyState.AWAITING_READY
        coordinator.request_render(surface.id, "digraph { a }")
        coordinator.request_render(surface.id, "digraph { b }")
        await asyncio.sleep(0.05)
        assert engine.calls == []
        assert surface.pending_content == "digraph { b }"

        frontend.announce_ready()
        assert await surface.wait_ready(1.0)
        await settle(coordinator, surface)

        assert engine.calls == ["digraph { b }"]
        assert frontend.applied_generations == [surface.generation]
        await coordinator.aclose()

    asyncio.run(_run())


def test_malformed_text_keeps_previous_artifact_and_reports_error() -> None:
    async def _run() -> None:
        engine = FakeEngine()
        coordinator = RenderCoordinator(engine, debounce_seconds=0.0)
        surface, frontend, _ = await make_surface(coordinator)

        coordinator.request_render(surface.id, "digraph { a -> b }")
        await settle(coordinator, surface)
        good = frontend.artifact
        assert good is not None

        coordinator.request_render(surface.id, "digraph { a -> ")
        await settle(coordinator, surface)

        assert frontend.artifact == good
        assert frontend.error is not None
        assert frontend.error.kind is RenderErrorKind.SYNTAX_ERROR
        assert frontend.last_applied_generation == 2
        assert surface.last_result is not None and not surface.last_result.ok
        await coordinator.aclose()

    asyncio.run(_run())


def test_dispose_during_flight_discards_result(telemetry) -> None:
    async def _run() -> None:
        engine = FakeEngine(delay=0.05)
        coordinator = RenderCoordinator(engine, debounce_seconds=0.0)
        surface, frontend, _ = await make_surface(coordinator)

        coordinator.request_render(surface.id, "digraph { a }")
        await asyncio.sleep(0.01)
        assert coordinator.pending_renders(surface.id) == 1
        surface.dispose(reason="closed by user")
        await asyncio.sleep(0.1)
        await drain()

        assert frontend.artifact is None
        assert coordinator.request_render(surface.id, "digraph { b }") is False
        assert engine.calls == ["digraph { a }"]
        reasons = [event["reason"] for event in telemetry.named("preview.render.dropped")]
        assert reasons == ["disposed"]
        await coordinator.aclose()

    asyncio.run(_run())


def test_dispose_cancels_pending_debounce() -> None:
    async def _run() -> None:
        engine = FakeEngine()
        coordinator = RenderCoordinator(engine, debounce_seconds=0.05)
        surface, _, _ = await make_surface(coordinator)

        coordinator.request_render(surface.id, "digraph { a }")
        surface.dispose()
        await asyncio.sleep(0.1)

        assert engine.calls == []
        assert coordinator.pending_renders(surface.id) == 0
        await coordinator.aclose()

    asyncio.run(_run())


def test_engine_exception_becomes_engine_failure(telemetry) -> None:
    async def _run() -> None:
        engine = FakeEngine()
        engine.raise_on.add("digraph { boom }")
        coordinator = RenderCoordinator(engine, debounce_seconds=0.0)
        surface, frontend, _ = await make_surface(coordinator)

        coordinator.request_render(surface.id, "digraph { boom }")
        await settle(coordinator, surface)

        assert frontend.error is not None
        assert frontend.error.kind is RenderErrorKind.ENGINE_FAILURE
        assert "engine exploded" in frontend.error.message
        ends = telemetry.named("preview.render.end")
        assert ends and ends[-1]["status"] == "engine_failure"
        await coordinator.aclose()

    asyncio.run(_run())


def test_flush_skips_debounce_window() -> None:
    async def _run() -> None:
        engine = FakeEngine()
        coordinator = RenderCoordinator(engine, debounce_seconds=10.0)
        surface, _, _ = await make_surface(coordinator)

        coordinator.request_render(surface.id, "digraph { a }")
        assert coordinator.flush(surface.id) is True
        await settle(coordinator, surface)

        assert engine.calls == ["digraph { a }"]
        await coordinator.aclose()

    asyncio.run(_run())


def test_register_after_close_is_rejected() -> None:
    async def _run() -> None:
        coordinator = RenderCoordinator(FakeEngine())
        await coordinator.aclose()
        with pytest.raises(RuntimeError):
            await make_surface(coordinator)

    asyncio.run(_run())


def test_unknown_surface_request_is_ignored() -> None:
    async def _run() -> None:
        coordinator = RenderCoordinator(FakeEngine())
        assert coordinator.request_render("missing", "digraph {}") is False
        assert coordinator.flush("missing") is False
        await coordinator.wait_idle("missing")

    asyncio.run(_run())
