"""Tests for message encoding and validation."""

from __future__ import annotations

import json

import pytest

from dotpreview.preview import protocol
from dotpreview.preview.engine import Artifact
from dotpreview.preview.errors import ProtocolError, RenderError, RenderErrorKind
from dotpreview.preview.protocol import (
    HOST_TO_SURFACE,
    SURFACE_TO_HOST,
    MessageKind,
    RenderResult,
    decode_message,
    encode_json,
    encode_message,
)


def test_render_request_wire_form_uses_command_and_camel_case() -> None:
    wire = encode_message(protocol.render_request(7, "digraph { a }"))

    assert wire == {"command": "renderRequest", "generation": 7, "sourceText": "digraph { a }"}
    decoded = decode_message(json.loads(encode_json(protocol.render_request(7, "digraph { a }"))))
    assert decoded.kind is MessageKind.RENDER_REQUEST
    assert decoded.generation == 7
    assert decoded.source_text == "digraph { a }"


def test_render_result_carries_artifact_or_error() -> None:
    artifact = Artifact(data="<svg/>", format="svg", engine="neato", elapsed_ms=12.5)
    ok = decode_message(encode_message(protocol.render_result(RenderResult("s", 3, artifact))))
    assert ok.generation == 3
    assert ok.outcome() == artifact

    error = RenderError(kind=RenderErrorKind.SYNTAX_ERROR, message="syntax error", details="line 4", line=4)
    failed = decode_message(encode_message(protocol.render_result(RenderResult("s", 4, error))))
    outcome = failed.outcome()
    assert isinstance(outcome, RenderError)
    assert outcome.kind is RenderErrorKind.SYNTAX_ERROR
    assert outcome.line == 4
    assert protocol.search_apply("x").outcome() is None


def test_unknown_commands_decode_as_custom_messages() -> None:
    message = decode_message('{"command": "openNode", "id": "a"}')

    assert message.kind is MessageKind.CUSTOM
    assert message.name == "openNode"
    assert message.payload["id"] == "a"


@pytest.mark.parametrize(
    "raw",
    [
        "[1, 2]",
        "not json",
        {"generation": 1},
        {"command": ""},
        {"command": "renderRequest", "generation": 1},
        {"command": "renderRequest", "generation": -1, "sourceText": ""},
        {"command": "renderResult", "generation": 1},
        {
            "command": "renderResult",
            "generation": 1,
            "artifact": {"data": "<svg/>"},
            "error": {"kind": "timeout", "message": "slow"},
        },
        {"command": "searchApply", "term": 5},
        {"command": "custom", "name": 3},
    ],
)
def test_malformed_messages_raise_protocol_error(raw) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ProtocolError):
        decode_message(raw)


def test_protocol_error_serializes_with_error_code() -> None:
    with pytest.raises(ProtocolError) as excinfo:
        decode_message({"command": "searchRequest"})

    payload = excinfo.value.to_dict()
    assert payload["error"] == "protocol_invalid"
    assert payload["details"] == {"command": "searchRequest"}


def test_direction_sets_cover_the_vocabulary() -> None:
    assert MessageKind.READY in SURFACE_TO_HOST
    assert MessageKind.RENDER_RESULT in HOST_TO_SURFACE
    assert MessageKind.CUSTOM in SURFACE_TO_HOST and MessageKind.CUSTOM in HOST_TO_SURFACE
    assert set(MessageKind) == set(HOST_TO_SURFACE | SURFACE_TO_HOST)
