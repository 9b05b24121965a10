"""Tests for the surface-side frontend state."""

from __future__ import annotations

import asyncio

from dotpreview.preview import protocol
from dotpreview.preview.engine import Artifact
from dotpreview.preview.errors import RenderError, RenderErrorKind
from dotpreview.preview.frontend import SurfaceFrontend
from dotpreview.preview.protocol import MessageKind, RenderResult
from dotpreview.preview.transport import create_loopback_pair
from helpers import RecordingPresenter, drain


def _artifact_result(generation: int, label: str) -> protocol.Message:
    return protocol.render_result(
        RenderResult(surface_id="s", generation=generation, outcome=Artifact(data=f"<svg>{label}</svg>"))
    )


def _error_result(generation: int) -> protocol.Message:
    error = RenderError(kind=RenderErrorKind.SYNTAX_ERROR, message="syntax error in line 2", line=2)
    return protocol.render_result(RenderResult(surface_id="s", generation=generation, outcome=error))


def test_stale_results_are_ignored() -> None:
    async def _run() -> None:
        host_end, surface_end = create_loopback_pair()
        presenter = RecordingPresenter()
        frontend = SurfaceFrontend(surface_end, presenter=presenter)
        frontend.start()

        host_end.send(_artifact_result(3, "three"))
        host_end.send(_artifact_result(2, "two"))
        host_end.send(_artifact_result(3, "three again"))
        await drain()

        assert frontend.applied_generations == [3, 3]
        assert frontend.ignored_generations == [2]
        assert frontend.artifact is not None
        assert frontend.artifact.data == "<svg>three again</svg>"
        assert ("artifact", "<svg>two</svg>") not in presenter.calls

    asyncio.run(_run())


def test_error_result_keeps_last_artifact_until_next_success() -> None:
    async def _run() -> None:
        host_end, surface_end = create_loopback_pair()
        presenter = RecordingPresenter()
        frontend = SurfaceFrontend(surface_end, presenter=presenter)
        frontend.start()

        host_end.send(_artifact_result(1, "good"))
        host_end.send(_error_result(2))
        await drain()

        assert frontend.artifact is not None and frontend.artifact.data == "<svg>good</svg>"
        assert frontend.error is not None and frontend.error.line == 2
        assert presenter.calls[-1] == ("error", (RenderErrorKind.SYNTAX_ERROR, True))

        host_end.send(_artifact_result(3, "fixed"))
        await drain()
        assert frontend.error is None
        assert frontend.artifact is not None and frontend.artifact.data == "<svg>fixed</svg>"

    asyncio.run(_run())


def test_error_without_previous_artifact_reports_no_artifact() -> None:
    async def _run() -> None:
        host_end, surface_end = create_loopback_pair()
        presenter = RecordingPresenter()
        frontend = SurfaceFrontend(surface_end, presenter=presenter)
        frontend.start()

        host_end.send(_error_result(1))
        await drain()

        assert frontend.artifact is None
        assert presenter.calls == [("error", (RenderErrorKind.SYNTAX_ERROR, False))]

    asyncio.run(_run())


def test_render_request_marks_busy_until_result() -> None:
    async def _run() -> None:
        host_end, surface_end = create_loopback_pair()
        presenter = RecordingPresenter()
        frontend = SurfaceFrontend(surface_end, presenter=presenter)
        frontend.start()

        host_end.send(protocol.render_request(1, "digraph {}"))
        await drain()
        assert frontend.busy_generation == 1
        assert presenter.calls == [("busy", 1)]

        host_end.send(_artifact_result(1, "done"))
        await drain()
        assert frontend.busy_generation is None

    asyncio.run(_run())


def test_ready_is_announced_once_and_search_flows_both_ways() -> None:
    async def _run() -> None:
        host_end, surface_end = create_loopback_pair()
        inbound: list[protocol.Message] = []
        host_end.on_message(inbound.append)
        presenter = RecordingPresenter()
        frontend = SurfaceFrontend(surface_end, presenter=presenter)
        frontend.start()

        frontend.announce_ready()
        frontend.announce_ready()
        frontend.request_search("cluster_a")
        frontend.request_reveal()
        host_end.send(protocol.search_apply("node_b"))
        await drain()

        assert [message.kind for message in inbound] == [
            MessageKind.READY,
            MessageKind.SEARCH_REQUEST,
            MessageKind.REVEAL,
        ]
        assert inbound[1].term == "cluster_a"
        assert frontend.search_term == "node_b"
        assert ("search", "node_b") in presenter.calls

    asyncio.run(_run())


def test_custom_messages_reach_handlers_and_sends_after_close_are_quiet() -> None:
    async def _run() -> None:
        host_end, surface_end = create_loopback_pair()
        frontend = SurfaceFrontend(surface_end)
        seen: list[tuple[str | None, object]] = []
        frontend.add_custom_handler(lambda message: seen.append((message.name, message.payload.get("data"))))
        frontend.start()

        host_end.send(protocol.custom("zoom", {"level": 2}))
        await drain()
        assert seen == [("zoom", {"level": 2})]

        frontend.close()
        assert frontend.closed
        frontend.send_custom("ignored")

    asyncio.run(_run())
