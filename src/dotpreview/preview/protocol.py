"""Message vocabulary exchanged between the host and a preview surface.

Every message travels on the channel of exactly one surface, so the surface
identity is implicit. On the wire a message is a JSON-compatible mapping
``{"command": <kind>, ...payload}`` using camelCase payload keys. Delivery is
FIFO per channel; nothing is ordered across channels.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

import jsonschema
from jsonschema.exceptions import best_match

from .engine import Artifact, RenderOutcome
from .errors import ProtocolError, RenderError


class MessageKind(str, Enum):
    READY = "ready"
    RENDER_REQUEST = "renderRequest"
    RENDER_RESULT = "renderResult"
    SEARCH_REQUEST = "searchRequest"
    SEARCH_APPLY = "searchApply"
    REVEAL = "reveal"
    CUSTOM = "custom"


HOST_TO_SURFACE = frozenset(
    {MessageKind.RENDER_REQUEST, MessageKind.RENDER_RESULT, MessageKind.SEARCH_APPLY, MessageKind.CUSTOM}
)
SURFACE_TO_HOST = frozenset(
    {MessageKind.READY, MessageKind.SEARCH_REQUEST, MessageKind.REVEAL, MessageKind.CUSTOM}
)


@dataclass(frozen=True, slots=True)
class RenderRequest:
    """One render attempt for a surface; never persisted."""

    surface_id: str
    source_text: str
    generation: int


@dataclass(frozen=True, slots=True)
class RenderResult:
    """Outcome of one render attempt, tagged with its generation."""

    surface_id: str
    generation: int
    outcome: RenderOutcome

    @property
    def ok(self) -> bool:
        return isinstance(self.outcome, Artifact)


@dataclass(frozen=True, slots=True)
class Message:
    """A single protocol message."""

    kind: MessageKind
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def generation(self) -> int | None:
        value = self.payload.get("generation")
        return value if isinstance(value, int) else None

    @property
    def term(self) -> str | None:
        value = self.payload.get("term")
        return value if isinstance(value, str) else None

    @property
    def source_text(self) -> str | None:
        value = self.payload.get("sourceText")
        return value if isinstance(value, str) else None

    @property
    def name(self) -> str | None:
        value = self.payload.get("name")
        return value if isinstance(value, str) else None

    def outcome(self) -> RenderOutcome | None:
        """Rebuild the artifact or error carried by a ``renderResult``."""

        if self.kind is not MessageKind.RENDER_RESULT:
            return None
        artifact = self.payload.get("artifact")
        if isinstance(artifact, Mapping):
            return Artifact.from_dict(dict(artifact))
        error = self.payload.get("error")
        if isinstance(error, Mapping):
            return RenderError.from_dict(error)
        return None


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------
def ready() -> Message:
    return Message(MessageKind.READY)


def reveal() -> Message:
    return Message(MessageKind.REVEAL)


def render_request(generation: int, source_text: str) -> Message:
    return Message(MessageKind.RENDER_REQUEST, {"generation": generation, "sourceText": source_text})


def render_result(result: RenderResult) -> Message:
    payload: dict[str, Any] = {"generation": result.generation}
    if isinstance(result.outcome, Artifact):
        payload["artifact"] = result.outcome.to_dict()
    else:
        payload["error"] = result.outcome.to_dict()
    return Message(MessageKind.RENDER_RESULT, payload)


def search_request(term: str | None) -> Message:
    return Message(MessageKind.SEARCH_REQUEST, {"term": term})


def search_apply(term: str | None) -> Message:
    return Message(MessageKind.SEARCH_APPLY, {"term": term})


def custom(name: str, data: Any = None) -> Message:
    return Message(MessageKind.CUSTOM, {"name": name, "data": data})


# ---------------------------------------------------------------------------
# Wire encoding
# ---------------------------------------------------------------------------
_GENERATION_SCHEMA = {"type": "integer", "minimum": 0}
_TERM_SCHEMA = {"type": ["string", "null"]}

_SCHEMAS: dict[MessageKind, dict[str, Any]] = {
    MessageKind.READY: {"type": "object"},
    MessageKind.REVEAL: {"type": "object"},
    MessageKind.RENDER_REQUEST: {
        "type": "object",
        "required": ["generation", "sourceText"],
        "properties": {"generation": _GENERATION_SCHEMA, "sourceText": {"type": "string"}},
    },
    MessageKind.RENDER_RESULT: {
        "type": "object",
        "required": ["generation"],
        "properties": {
            "generation": _GENERATION_SCHEMA,
            "artifact": {
                "type": "object",
                "required": ["data"],
                "properties": {"data": {"type": "string"}, "format": {"type": "string"}},
            },
            "error": {
                "type": "object",
                "required": ["kind", "message"],
                "properties": {"kind": {"type": "string"}, "message": {"type": "string"}},
            },
        },
        "oneOf": [{"required": ["artifact"]}, {"required": ["error"]}],
    },
    MessageKind.SEARCH_REQUEST: {
        "type": "object",
        "required": ["term"],
        "properties": {"term": _TERM_SCHEMA},
    },
    MessageKind.SEARCH_APPLY: {
        "type": "object",
        "required": ["term"],
        "properties": {"term": _TERM_SCHEMA},
    },
    MessageKind.CUSTOM: {
        "type": "object",
        "properties": {"name": {"type": "string"}},
    },
}
_VALIDATORS = {kind: jsonschema.Draft7Validator(schema) for kind, schema in _SCHEMAS.items()}
_KNOWN_COMMANDS = {kind.value: kind for kind in MessageKind}


def encode_message(message: Message) -> dict[str, Any]:
    """Return the wire form of *message*."""

    payload = dict(message.payload)
    payload["command"] = message.kind.value
    return payload


def encode_json(message: Message) -> str:
    return json.dumps(encode_message(message), ensure_ascii=False)


def decode_message(raw: Mapping[str, Any] | str | Message) -> Message:
    """Validate and decode a wire message.

    Commands outside the known vocabulary decode as :attr:`MessageKind.CUSTOM`
    with the command string as their ``name`` so caller-installed handlers
    can intercept them.
    """

    if isinstance(raw, Message):
        return raw
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ProtocolError(f"Message is not valid JSON: {exc.msg}") from exc
    if not isinstance(raw, Mapping):
        raise ProtocolError("Message must be a JSON object", details={"type": type(raw).__name__})
    command = raw.get("command")
    if not isinstance(command, str) or not command:
        raise ProtocolError("Message is missing its 'command'")
    payload = {key: value for key, value in raw.items() if key != "command"}
    kind = _KNOWN_COMMANDS.get(command)
    if kind is None:
        payload.setdefault("name", command)
        kind = MessageKind.CUSTOM
    issue = best_match(_VALIDATORS[kind].iter_errors(payload))
    if issue is not None:
        location = "/".join(str(part) for part in issue.absolute_path)
        detail = f"{location}: {issue.message}" if location else issue.message
        raise ProtocolError(f"Invalid {command!r} message: {detail}", details={"command": command})
    return Message(kind, payload)


__all__ = [
    "HOST_TO_SURFACE",
    "SURFACE_TO_HOST",
    "Message",
    "MessageKind",
    "RenderRequest",
    "RenderResult",
    "custom",
    "decode_message",
    "encode_json",
    "encode_message",
    "ready",
    "render_request",
    "render_result",
    "reveal",
    "search_apply",
    "search_request",
]
