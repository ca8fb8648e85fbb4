"""
SSE Session Transport

Turns a write-only ResponseStream into a bidirectional JSON-RPC transport.
Outbound messages are written as SSE events; inbound messages are pushed in
by whoever drains the session's relay substrate, via handle_message().

State machine:
    UNBOUND -> BOUND -> ACTIVE -> CLOSED

- UNBOUND: constructed, no stream
- BOUND: bind() attached a stream (one time only)
- ACTIVE: start() wrote the headers and, if configured, the endpoint event
- CLOSED: close() ended the stream; send/handle_message fail from here on

Two acknowledgement conventions exist, one per class:
- SSETransport: handle_message() returns nothing and re-raises validation
  errors to the caller (relay-driven, asynchronous flows)
- AcknowledgingSSETransport: handle_message() returns an HTTP-style 202/400
  text for interactive single-request flows
"""

import inspect
import json
import logging
import random
import string
import time
from enum import Enum
from typing import Any, Awaitable, Callable
from uuid import uuid4

from mcp_relay.protocol import (
    JSONRPC_VERSION,
    PARSE_ERROR,
    JSONRPCMessage,
    MessageValidationError,
    encode_event,
    encode_headers,
    endpoint_url,
    serialize,
    validate,
)
from mcp_relay.transport.stream import ResponseStream

logger = logging.getLogger(__name__)


class TransportState(str, Enum):
    """Transport lifecycle states."""
    UNBOUND = "unbound"
    BOUND = "bound"
    ACTIVE = "active"
    CLOSED = "closed"


# =============================================================================
# Exceptions
# =============================================================================

class TransportError(Exception):
    """Base exception for transport state errors."""
    pass


class TransportAlreadyBoundError(TransportError):
    """A stream is already bound to this transport."""
    def __init__(self):
        super().__init__("Response stream already available")


class NoStreamError(TransportError):
    """start() was called before a stream was bound."""
    def __init__(self):
        super().__init__("No response stream available")


class NotConnectedError(TransportError):
    """The transport has no usable stream (unbound or closed)."""
    def __init__(self):
        super().__init__("Not connected")


class TransportClosedError(TransportError):
    """The transport was closed and cannot be rebound."""
    def __init__(self):
        super().__init__("Transport closed")


MessageCallback = Callable[[JSONRPCMessage], Awaitable[None] | None]
ErrorCallback = Callable[[Exception], Awaitable[None] | None]
CloseCallback = Callable[[], Awaitable[None] | None]


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


# =============================================================================
# Transport
# =============================================================================

class SSETransport:
    """
    Session transport over a single SSE output stream.

    Callbacks (set by the RPC server on connect):
        on_message: receives each validated inbound message
        on_error: receives each validation error, before it is re-raised
        on_close: invoked on every close()
    """

    # Validation errors are reported out-of-band by the caller of handle_message
    acknowledges = False

    def __init__(
        self,
        endpoint: str | None = None,
        stream: ResponseStream | None = None,
        session_id: str | None = None,
    ):
        """
        Initialize the transport.

        Args:
            endpoint: Submission URL to announce on start (None = no announcement)
            stream: Optional stream to bind immediately
            session_id: Explicit session id (default: random UUID4)
        """
        self.session_id = session_id or self.generate_session_id()
        self._endpoint = endpoint
        self._stream: ResponseStream | None = None
        self._state = TransportState.UNBOUND

        self.on_message: MessageCallback | None = None
        self.on_error: ErrorCallback | None = None
        self.on_close: CloseCallback | None = None

        if stream is not None:
            self.bind(stream)

    @staticmethod
    def generate_session_id() -> str:
        return str(uuid4())

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def endpoint(self) -> str | None:
        return self._endpoint

    @property
    def connected(self) -> bool:
        """True while a live (not destroyed, not ended) stream is bound."""
        return self._stream is not None and self._stream.writable

    def bind(self, stream: ResponseStream) -> None:
        """
        Attach the output stream. Allowed once per transport.

        Raises:
            TransportAlreadyBoundError: If a stream is already bound
            TransportClosedError: If the transport was closed
        """
        if self._stream is not None:
            raise TransportAlreadyBoundError()
        if self._state == TransportState.CLOSED:
            raise TransportClosedError()
        self._stream = stream
        self._state = TransportState.BOUND

    async def start(self) -> None:
        """
        Write the stream preamble and, if configured, the endpoint event.

        Must be called at most once; a second call duplicates the output.

        Raises:
            NoStreamError: If no stream is bound
        """
        if self._stream is None:
            raise NoStreamError()

        self._stream.on_close(self._on_stream_closed)
        self._stream.write(encode_headers())
        if self._endpoint is not None:
            self._stream.write(
                encode_event("endpoint", endpoint_url(self._endpoint, self.session_id))
            )
        self._state = TransportState.ACTIVE
        logger.debug(f"Transport started for session {self.session_id}")

    async def send(self, message: JSONRPCMessage | dict[str, Any]) -> None:
        """
        Write a message (or plain JSON-RPC data) as an `event: message` frame.

        Raises:
            NotConnectedError: If unbound or closed
        """
        if self._stream is None:
            raise NotConnectedError()
        self._stream.write(encode_event("message", serialize(message)))

    async def handle_message(self, raw: Any) -> None:
        """
        Validate an inbound message and hand it to on_message.

        Raises:
            NotConnectedError: If unbound or closed
            MessageValidationError: If the input is not a JSON-RPC message
                (on_error has already been invoked)
        """
        if self._stream is None:
            raise NotConnectedError()

        try:
            message = validate(raw)
        except MessageValidationError as e:
            await _invoke(self.on_error, e)
            raise

        await _invoke(self.on_message, message)

    async def close(self) -> None:
        """
        End the stream and invoke on_close.

        Always completes: errors from ending the stream are swallowed.
        Safe to call when never bound.
        """
        stream, self._stream = self._stream, None
        self._state = TransportState.CLOSED
        if stream is not None:
            try:
                if not stream.destroyed:
                    stream.end()
            except Exception as e:
                logger.debug(f"Ignoring stream end error for session {self.session_id}: {e}")
        await _invoke(self.on_close)

    async def _on_stream_closed(self) -> None:
        # The stream closed underneath us (peer disconnect or end())
        if self._state != TransportState.CLOSED:
            await self.close()


class AcknowledgingSSETransport(SSETransport):
    """
    Transport for interactive single-request flows.

    The submission arrives on a request that needs its own reply, so
    handle_message() returns an HTTP-style acknowledgement instead of raising.
    """

    acknowledges = True

    @staticmethod
    def generate_session_id() -> str:
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=11))
        return f"lambda-{int(time.time() * 1000)}-{suffix}"

    async def handle_message(self, raw: Any) -> str:
        """
        Validate and dispatch one message.

        Returns:
            `HTTP/1.1 202 Accepted` text on success, or `HTTP/1.1 400 Bad
            Request` text carrying a JSON-RPC parse error on failure

        Raises:
            NotConnectedError: If unbound or closed
        """
        if self._stream is None:
            raise NotConnectedError()

        try:
            message = validate(raw)
        except MessageValidationError as e:
            await _invoke(self.on_error, e)
            return _http_text(
                "400 Bad Request",
                {
                    "jsonrpc": JSONRPC_VERSION,
                    "error": {"code": PARSE_ERROR, "message": str(e) or "Parse error"},
                    "id": None,
                },
            )

        await _invoke(self.on_message, message)
        return _http_text("202 Accepted", {"status": "Accepted"})


def _http_text(status: str, body: dict[str, Any]) -> str:
    return (
        f"HTTP/1.1 {status}\n"
        "Content-Type: application/json\n"
        "Access-Control-Allow-Origin: *\n\n"
        f"{json.dumps(body)}\n"
    )
