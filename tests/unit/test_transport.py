"""Unit tests for the response stream and the SSE session transports."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from unittest.mock import AsyncMock, MagicMock

import pytest

from mcp_relay.protocol import MessageValidationError, create_result
from mcp_relay.transport import (
    AcknowledgingSSETransport,
    NoStreamError,
    NotConnectedError,
    ResponseStream,
    SSETransport,
    StreamClosedError,
    TransportAlreadyBoundError,
    TransportClosedError,
    TransportState,
)


async def _drain(stream: ResponseStream) -> bytes:
    data = b""
    while True:
        chunk = await stream.read(timeout=0.05)
        if chunk is None:
            return data
        data += chunk


# =============================================================================
# ResponseStream Tests
# =============================================================================


class TestResponseStream:
    """Tests for ResponseStream writes and close listeners."""

    @pytest.mark.asyncio
    async def test_chunks_until_end(self) -> None:
        """chunks() yields every write, then stops at end()."""
        stream = ResponseStream()
        stream.write(b"a")
        stream.write(b"b")
        stream.end()

        assert [c async for c in stream.chunks()] == [b"a", b"b"]
        assert stream.bytes_written == 2

    def test_write_after_end_fails(self) -> None:
        """Writing to an ended stream raises StreamClosedError."""
        stream = ResponseStream()
        stream.end()
        with pytest.raises(StreamClosedError):
            stream.write(b"x")

    def test_close_listeners_fire_once(self) -> None:
        """end() followed by destroy() notifies listeners a single time."""
        stream = ResponseStream()
        listener = MagicMock()
        stream.on_close(listener)

        stream.end()
        stream.destroy()

        listener.assert_called_once_with()

    def test_listener_after_close_runs_immediately(self) -> None:
        """A listener registered on a closed stream is invoked at once."""
        stream = ResponseStream()
        stream.destroy()
        listener = MagicMock()
        stream.on_close(listener)
        listener.assert_called_once_with()

    def test_failing_listener_does_not_block_others(self) -> None:
        """One listener raising does not stop the rest."""
        stream = ResponseStream()
        second = MagicMock()
        stream.on_close(MagicMock(side_effect=RuntimeError("boom")))
        stream.on_close(second)
        stream.destroy()
        second.assert_called_once_with()

    @pytest.mark.asyncio
    async def test_failing_async_listener_is_logged(self, caplog, wait_until) -> None:
        """A coroutine listener that raises is logged at ERROR once it finishes."""
        stream = ResponseStream(name="session-stream")

        async def listener() -> None:
            raise RuntimeError("teardown exploded")

        stream.on_close(listener)
        with caplog.at_level(logging.ERROR, logger="mcp_relay.transport.stream"):
            stream.destroy()
            await wait_until(lambda: not stream._listener_tasks)

        assert any(
            "session-stream" in r.getMessage() and "teardown exploded" in r.getMessage()
            for r in caplog.records
        )

    @pytest.mark.asyncio
    async def test_async_listener_task_is_held_until_done(self) -> None:
        """Scheduled listeners are referenced by the stream while they run."""
        release = asyncio.Event()
        finished = []

        async def listener() -> None:
            await release.wait()
            finished.append(True)

        stream = ResponseStream()
        stream.on_close(listener)
        stream.end()
        assert len(stream._listener_tasks) == 1

        release.set()
        await asyncio.gather(*stream._listener_tasks)
        await asyncio.sleep(0)
        assert finished == [True]
        assert not stream._listener_tasks

    @pytest.mark.asyncio
    async def test_read_timeout(self) -> None:
        """read() returns None when nothing arrives in time."""
        stream = ResponseStream()
        assert await stream.read(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_leaving_iteration_destroys(self) -> None:
        """Closing the chunk iterator early destroys the stream."""
        stream = ResponseStream()
        stream.write(b"a")
        chunks = stream.chunks()
        assert await chunks.__anext__() == b"a"
        await chunks.aclose()
        assert stream.destroyed
        assert not stream.writable


# =============================================================================
# SSETransport Tests
# =============================================================================


class TestSSETransportStates:
    """Tests for the transport state machine."""

    def test_bind_twice_fails_every_time(self) -> None:
        """Only the first bind succeeds."""
        transport = SSETransport(stream=ResponseStream())
        assert transport.state == TransportState.BOUND
        for _ in range(2):
            with pytest.raises(TransportAlreadyBoundError, match="already available"):
                transport.bind(ResponseStream())

    @pytest.mark.asyncio
    async def test_bind_after_close_fails(self) -> None:
        """A closed transport cannot be rebound."""
        transport = SSETransport()
        await transport.close()
        with pytest.raises(TransportClosedError):
            transport.bind(ResponseStream())

    @pytest.mark.asyncio
    async def test_start_without_stream(self) -> None:
        """start() needs a bound stream."""
        with pytest.raises(NoStreamError, match="No response stream available"):
            await SSETransport().start()

    @pytest.mark.asyncio
    async def test_send_before_bind_and_after_close(self) -> None:
        """send() fails when unbound and again once closed."""
        transport = SSETransport()
        with pytest.raises(NotConnectedError, match="Not connected"):
            await transport.send(create_result(1, {}))

        transport.bind(ResponseStream())
        await transport.start()
        await transport.close()
        with pytest.raises(NotConnectedError):
            await transport.send(create_result(1, {}))
        with pytest.raises(NotConnectedError):
            await transport.handle_message('{"jsonrpc":"2.0","id":1,"method":"ping"}')

    @pytest.mark.asyncio
    async def test_start_writes_headers_and_endpoint(self, sse_events) -> None:
        """start() writes the preamble and the endpoint event."""
        stream = ResponseStream()
        transport = SSETransport(endpoint="/message", stream=stream, session_id="s-1")
        await transport.start()

        data = await _drain(stream)
        assert data.startswith(b"Content-Type: text/event-stream\n")
        assert sse_events(data) == [("endpoint", "/message?sessionId=s-1")]
        assert transport.state == TransportState.ACTIVE

    @pytest.mark.asyncio
    async def test_start_without_endpoint(self, sse_events) -> None:
        """No endpoint means no endpoint event."""
        stream = ResponseStream()
        transport = SSETransport(stream=stream)
        await transport.start()
        assert sse_events(await _drain(stream)) == []

    @pytest.mark.asyncio
    async def test_send_writes_message_event(self, sse_events) -> None:
        """send() frames the message as an `event: message`."""
        stream = ResponseStream()
        transport = SSETransport(stream=stream)
        await transport.start()
        await transport.send(create_result(3, {"ok": True}))

        events = sse_events(await _drain(stream))
        assert events == [("message", '{"jsonrpc":"2.0","id":3,"result":{"ok":true}}')]

    def test_session_ids_are_uuids(self) -> None:
        """Default session ids are random UUID4 strings."""
        first, second = SSETransport(), SSETransport()
        assert first.session_id != second.session_id
        assert re.fullmatch(r"[0-9a-f-]{36}", first.session_id)


class TestSSETransportClose:
    """Tests for close() and stream teardown."""

    @pytest.mark.asyncio
    async def test_close_callback_runs_when_end_raises(self) -> None:
        """Errors from ending the stream are swallowed; on_close still fires."""
        stream = MagicMock()
        stream.destroyed = False
        stream.end.side_effect = RuntimeError("socket gone")
        transport = SSETransport(stream=stream)
        transport.on_close = MagicMock()

        await transport.close()

        transport.on_close.assert_called_once_with()
        assert transport.state == TransportState.CLOSED
        assert not transport.connected

    @pytest.mark.asyncio
    async def test_close_ends_stream(self) -> None:
        """close() ends a live stream."""
        stream = ResponseStream()
        transport = SSETransport(stream=stream)
        await transport.start()
        await transport.close()
        assert stream.ended

    @pytest.mark.asyncio
    async def test_destroyed_stream_closes_transport(self) -> None:
        """A peer disconnect closes the transport and fires on_close."""
        stream = ResponseStream()
        transport = SSETransport(stream=stream)
        transport.on_close = AsyncMock()
        await transport.start()

        stream.destroy()
        for _ in range(3):
            await asyncio.sleep(0)

        assert transport.state == TransportState.CLOSED
        transport.on_close.assert_awaited_once()


class TestSSETransportInbound:
    """Tests for handle_message() on the relay-driven transport."""

    @pytest.mark.asyncio
    async def test_valid_message_reaches_on_message(self) -> None:
        """Valid input is validated then handed to on_message."""
        transport = SSETransport(stream=ResponseStream())
        transport.on_message = AsyncMock()

        await transport.handle_message('{"jsonrpc":"2.0","id":1,"method":"ping"}')

        message = transport.on_message.await_args.args[0]
        assert message.root.method == "ping"

    @pytest.mark.asyncio
    async def test_invalid_message_reports_and_raises(self) -> None:
        """Invalid input goes to on_error, then the error is re-raised."""
        transport = SSETransport(stream=ResponseStream())
        transport.on_message = AsyncMock()
        transport.on_error = AsyncMock()

        with pytest.raises(MessageValidationError):
            await transport.handle_message("not json")

        transport.on_error.assert_awaited_once()
        transport.on_message.assert_not_awaited()


# =============================================================================
# AcknowledgingSSETransport Tests
# =============================================================================


class TestAcknowledgingSSETransport:
    """Tests for the interactive acknowledgement convention."""

    def test_session_id_format(self) -> None:
        """Session ids look like lambda-<millis>-<11 base36 chars>."""
        transport = AcknowledgingSSETransport()
        assert re.fullmatch(r"lambda-\d+-[a-z0-9]{11}", transport.session_id)

    @pytest.mark.asyncio
    async def test_accepted(self) -> None:
        """A valid message is acknowledged with 202 text."""
        transport = AcknowledgingSSETransport(stream=ResponseStream())
        transport.on_message = AsyncMock()

        reply = await transport.handle_message('{"jsonrpc":"2.0","id":1,"method":"ping"}')

        assert reply.startswith("HTTP/1.1 202 Accepted\n")
        assert "Access-Control-Allow-Origin: *" in reply
        assert json.loads(reply.split("\n\n", 1)[1]) == {"status": "Accepted"}

    @pytest.mark.asyncio
    async def test_bad_request(self) -> None:
        """Invalid input is answered with 400 text carrying a parse error."""
        transport = AcknowledgingSSETransport(stream=ResponseStream())
        transport.on_error = AsyncMock()

        reply = await transport.handle_message("not json")

        assert reply.startswith("HTTP/1.1 400 Bad Request\n")
        body = json.loads(reply.split("\n\n", 1)[1])
        assert body["error"]["code"] == -32700
        assert body["id"] is None
        transport.on_error.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_boolean_id_is_bad_request(self) -> None:
        """An id of true is refused rather than read as 1."""
        transport = AcknowledgingSSETransport(stream=ResponseStream())
        transport.on_message = AsyncMock()

        reply = await transport.handle_message('{"jsonrpc":"2.0","id":true,"method":"ping"}')

        assert reply.startswith("HTTP/1.1 400 Bad Request\n")
        transport.on_message.assert_not_awaited()
