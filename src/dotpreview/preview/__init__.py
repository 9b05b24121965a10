"""Live preview orchestration: surfaces, render scheduling and messaging."""

from .controller import PreviewController
from .coordinator import RenderCoordinator
from .engine import Artifact, GraphvizEngine, RemoteRenderEngine, RenderEngine, RenderOptions, build_engine
from .errors import CreationFailed, PreviewError, ProtocolError, RenderError, RenderErrorKind, TransportError
from .frontend import FrontendPresenter, SurfaceFrontend
from .protocol import Message, MessageKind, RenderRequest, RenderResult, decode_message, encode_message
from .registry import PanelRegistry, PreviewOptions, SurfaceFactory
from .surface import PreviewSurface, ReadyState
from .transport import Channel, LoopbackEndpoint, create_loopback_pair

__all__ = [
    "Artifact",
    "Channel",
    "CreationFailed",
    "FrontendPresenter",
    "GraphvizEngine",
    "LoopbackEndpoint",
    "Message",
    "MessageKind",
    "PanelRegistry",
    "PreviewController",
    "PreviewError",
    "PreviewOptions",
    "PreviewSurface",
    "ProtocolError",
    "ReadyState",
    "RemoteRenderEngine",
    "RenderCoordinator",
    "RenderEngine",
    "RenderError",
    "RenderErrorKind",
    "RenderOptions",
    "RenderRequest",
    "RenderResult",
    "SurfaceFactory",
    "SurfaceFrontend",
    "TransportError",
    "build_engine",
    "create_loopback_pair",
    "decode_message",
    "encode_message",
]
