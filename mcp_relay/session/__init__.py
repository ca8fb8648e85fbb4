# Session Layer
# Streaming-session lifecycle and the single-request variant

from .controller import SessionController, LiveSession
from .request_scoped import RequestScopedHandler

__all__ = [
    "SessionController",
    "LiveSession",
    "RequestScopedHandler",
]
