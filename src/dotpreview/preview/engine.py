"""Render engine adapters turning DOT source into diagram artifacts."""

from __future__ import annotations

import asyncio
import base64
import contextlib
import logging
import re
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Union

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import RenderError, RenderErrorKind

if TYPE_CHECKING:  # pragma: no cover - imports for type checking only
    from ..services.settings import Settings

__all__ = [
    "Artifact",
    "GraphvizEngine",
    "RemoteRenderEngine",
    "RenderEngine",
    "RenderOptions",
    "RenderOutcome",
    "build_engine",
]

LOGGER = logging.getLogger(__name__)

_TEXT_FORMATS = frozenset({"svg", "dot", "xdot", "json", "plain", "canon", "gv"})
_LINE_PATTERN = re.compile(r"\bline (\d+)\b")
_ENGINE_CONFIG_PATTERN = re.compile(r"(Layout type|Format): \"[^\"]*\" not recognized")


@dataclass(frozen=True, slots=True)
class RenderOptions:
    """Per-invocation engine options."""

    layout: str = "dot"
    format: str = "svg"
    timeout_seconds: float = 10.0


@dataclass(frozen=True, slots=True)
class Artifact:
    """Rendered output for a single source text."""

    data: str
    format: str = "svg"
    engine: str = "dot"
    encoding: str = "utf-8"
    warnings: str = ""
    elapsed_ms: float = 0.0

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "data": self.data,
            "format": self.format,
            "engine": self.engine,
            "encoding": self.encoding,
            "elapsedMs": round(self.elapsed_ms, 3),
        }
        if self.warnings:
            payload["warnings"] = self.warnings
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, object]) -> "Artifact":
        return cls(
            data=str(payload.get("data", "")),
            format=str(payload.get("format", "svg")),
            engine=str(payload.get("engine", "dot")),
            encoding=str(payload.get("encoding", "utf-8")),
            warnings=str(payload.get("warnings") or ""),
            elapsed_ms=float(payload.get("elapsedMs", 0.0) or 0.0),  # type: ignore[arg-type]
        )


RenderOutcome = Union[Artifact, RenderError]


class RenderEngine(Protocol):
    """Stateless adapter around an external rendering engine."""

    async def render(self, source_text: str, options: RenderOptions | None = None) -> RenderOutcome:
        ...


class GraphvizEngine:
    """Runs the Graphviz ``dot`` executable as a subprocess per render."""

    def __init__(self, executable: str = "dot", *, options: RenderOptions | None = None) -> None:
        self._executable = executable
        self._options = options or RenderOptions()

    @property
    def options(self) -> RenderOptions:
        return self._options

    async def render(self, source_text: str, options: RenderOptions | None = None) -> RenderOutcome:
        opts = options or self._options
        if not (source_text or "").strip():
            return RenderError(kind=RenderErrorKind.SYNTAX_ERROR, message="Graph source is empty")
        started = time.perf_counter()
        try:
            process = await asyncio.create_subprocess_exec(
                self._executable,
                f"-K{opts.layout}",
                f"-T{opts.format}",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return RenderError(
                kind=RenderErrorKind.ENGINE_UNAVAILABLE,
                message=f"Graphviz executable {self._executable!r} was not found",
            )
        except OSError as exc:
            return RenderError(kind=RenderErrorKind.ENGINE_FAILURE, message=str(exc) or "Failed to start Graphviz")

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(source_text.encode("utf-8")),
                timeout=opts.timeout_seconds,
            )
        except asyncio.TimeoutError:
            LOGGER.warning("Graphviz render exceeded %.1fs; killing pid %s", opts.timeout_seconds, process.pid)
            return RenderError(
                kind=RenderErrorKind.TIMEOUT,
                message=f"Rendering did not finish within {opts.timeout_seconds:g}s",
            )
        finally:
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                with contextlib.suppress(Exception):
                    await asyncio.wait_for(process.wait(), timeout=1.0)

        diagnostics = stderr.decode("utf-8", errors="replace").strip()
        if process.returncode != 0:
            return _error_from_diagnostics(diagnostics, process.returncode)
        return Artifact(
            data=_encode_output(stdout, opts.format),
            format=opts.format,
            engine=opts.layout,
            encoding="utf-8" if opts.format in _TEXT_FORMATS else "base64",
            warnings=diagnostics,
            elapsed_ms=(time.perf_counter() - started) * 1000.0,
        )


class RemoteRenderEngine:
    """Renders through a Kroki-compatible HTTP service."""

    def __init__(
        self,
        base_url: str = "https://kroki.io",
        *,
        options: RenderOptions | None = None,
        client: httpx.AsyncClient | None = None,
        max_retries: int = 3,
        retry_min_seconds: float = 0.2,
        retry_max_seconds: float = 2.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._options = options or RenderOptions()
        self._client = client
        self._owns_client = client is None
        self._max_retries = max(1, max_retries)
        self._retry_min_seconds = retry_min_seconds
        self._retry_max_seconds = retry_max_seconds

    @property
    def options(self) -> RenderOptions:
        return self._options

    async def render(self, source_text: str, options: RenderOptions | None = None) -> RenderOutcome:
        opts = options or self._options
        if not (source_text or "").strip():
            return RenderError(kind=RenderErrorKind.SYNTAX_ERROR, message="Graph source is empty")
        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(self._post(source_text, opts), timeout=opts.timeout_seconds)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return RenderError(
                kind=RenderErrorKind.TIMEOUT,
                message=f"Rendering did not finish within {opts.timeout_seconds:g}s",
            )
        except httpx.HTTPError as exc:
            LOGGER.debug("Remote render request failed", exc_info=True)
            return RenderError(
                kind=RenderErrorKind.ENGINE_UNAVAILABLE,
                message=f"Render service unavailable: {exc}",
            )

        if response.status_code == 400:
            return _error_from_diagnostics(response.text.strip(), response.status_code)
        if response.status_code >= 400:
            return RenderError(
                kind=RenderErrorKind.ENGINE_FAILURE,
                message=f"Render service returned HTTP {response.status_code}",
                details=response.text[:2000],
            )
        return Artifact(
            data=_encode_output(response.content, opts.format),
            format=opts.format,
            engine=opts.layout,
            encoding="utf-8" if opts.format in _TEXT_FORMATS else "base64",
            elapsed_ms=(time.perf_counter() - started) * 1000.0,
        )

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _post(self, source_text: str, opts: RenderOptions) -> httpx.Response:
        client = self._ensure_client()
        timeout = httpx.Timeout(opts.timeout_seconds) if opts.timeout_seconds else None
        url = f"{self._base_url}/graphviz/{opts.format}"
        params = {"layout": opts.layout} if opts.layout != "dot" else None
        async for attempt in self._retrying():
            with attempt:
                return await client.post(
                    url,
                    content=source_text.encode("utf-8"),
                    headers={"Content-Type": "text/plain"},
                    params=params,
                    timeout=timeout,
                )
        raise RuntimeError("unreachable")  # pragma: no cover - AsyncRetrying reraises

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=self._retry_min_seconds, max=self._retry_max_seconds),
            retry=retry_if_exception_type((httpx.ConnectError, httpx.RemoteProtocolError)),
        )


def build_engine(settings: "Settings") -> GraphvizEngine | RemoteRenderEngine:
    """Create the render engine selected by *settings*."""

    options = RenderOptions(
        layout=settings.layout_engine,
        format=settings.output_format,
        timeout_seconds=settings.render_timeout_seconds,
    )
    if settings.render_backend == "remote":
        LOGGER.debug("Using remote render service at %s", settings.remote_base_url)
        return RemoteRenderEngine(settings.remote_base_url, options=options)
    return GraphvizEngine(settings.dot_executable, options=options)


def _encode_output(raw: bytes, output_format: str) -> str:
    if output_format in _TEXT_FORMATS:
        return raw.decode("utf-8", errors="replace")
    return base64.b64encode(raw).decode("ascii")


def _error_from_diagnostics(diagnostics: str, status: int | None) -> RenderError:
    lines = [line for line in diagnostics.splitlines() if line.strip()]
    headline = next((line for line in lines if line.lower().startswith("error")), lines[0] if lines else "")
    if _ENGINE_CONFIG_PATTERN.search(diagnostics):
        return RenderError(
            kind=RenderErrorKind.ENGINE_FAILURE,
            message=headline or "Render engine rejected its options",
            details=diagnostics,
            extra={"status": status},
        )
    match = _LINE_PATTERN.search(diagnostics)
    return RenderError(
        kind=RenderErrorKind.SYNTAX_ERROR,
        message=headline or "Graph source could not be parsed",
        details=diagnostics,
        line=int(match.group(1)) if match else None,
        extra={"status": status},
    )
