"""Error types for the preview subsystem.

Structural failures (transport loss, surface creation, malformed protocol
messages) are exceptions. Render failures are values: :class:`RenderError`
travels inside a ``renderResult`` message and never crosses the host/surface
boundary as a raised exception.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Mapping


class ErrorCode:
    """Constants for error codes used in serialized error payloads."""

    TRANSPORT_CLOSED = "transport_closed"
    CREATION_FAILED = "creation_failed"
    PROTOCOL_INVALID = "protocol_invalid"


class PreviewError(Exception):
    """Base exception for structural preview failures."""

    error_code: ClassVar[str] = "preview_error"

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details) if isinstance(details, Mapping) else {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details:
            payload["details"] = dict(self.details)
        return payload


class TransportError(PreviewError):
    """Raised when the channel to a surface is broken or already disposed."""

    error_code = ErrorCode.TRANSPORT_CLOSED


class CreationFailed(PreviewError):
    """Raised when a preview surface cannot be instantiated."""

    error_code = ErrorCode.CREATION_FAILED


class ProtocolError(PreviewError):
    """Raised when an inbound message does not match the protocol."""

    error_code = ErrorCode.PROTOCOL_INVALID


class RenderErrorKind(str, Enum):
    TIMEOUT = "timeout"
    SYNTAX_ERROR = "syntax_error"
    ENGINE_UNAVAILABLE = "engine_unavailable"
    ENGINE_FAILURE = "engine_failure"


@dataclass(frozen=True, slots=True)
class RenderError:
    """Typed render failure reported by a render engine."""

    kind: RenderErrorKind
    message: str
    details: str = ""
    line: int | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_timeout(self) -> bool:
        return self.kind is RenderErrorKind.TIMEOUT

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"kind": self.kind.value, "message": self.message}
        if self.details:
            payload["details"] = self.details
        if self.line is not None:
            payload["line"] = self.line
        if self.extra:
            payload["extra"] = dict(self.extra)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RenderError":
        line = payload.get("line")
        extra = payload.get("extra")
        return cls(
            kind=RenderErrorKind(str(payload.get("kind", RenderErrorKind.ENGINE_FAILURE.value))),
            message=str(payload.get("message", "")),
            details=str(payload.get("details") or ""),
            line=int(line) if isinstance(line, int) else None,
            extra=dict(extra) if isinstance(extra, Mapping) else {},
        )


__all__ = [
    "CreationFailed",
    "ErrorCode",
    "PreviewError",
    "ProtocolError",
    "RenderError",
    "RenderErrorKind",
    "TransportError",
]
