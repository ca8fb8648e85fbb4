# Transport Layer
# Output stream and the SSE session transport built on it

from .stream import ResponseStream, StreamClosedError
from .sse import (
    SSETransport,
    AcknowledgingSSETransport,
    TransportState,
    TransportError,
    TransportAlreadyBoundError,
    NoStreamError,
    NotConnectedError,
    TransportClosedError,
)

__all__ = [
    "ResponseStream",
    "StreamClosedError",
    "SSETransport",
    "AcknowledgingSSETransport",
    "TransportState",
    "TransportError",
    "TransportAlreadyBoundError",
    "NoStreamError",
    "NotConnectedError",
    "TransportClosedError",
]
