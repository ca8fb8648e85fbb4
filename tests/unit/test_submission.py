"""Unit tests for the submission endpoint."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from mcp_relay.relay import (
    InMemorySessionQueue,
    InMemorySessionRecordStore,
    QueueStrategy,
    RecordStrategy,
)
from mcp_relay.submission import SubmissionEndpoint, SubmissionFormat

PING = json.dumps({"jsonrpc": "2.0", "id": 1, "method": "ping"})


class TestRawSubmission:
    """Tests for POST /message?sessionId=<id> with a raw JSON-RPC body."""

    @pytest.mark.asyncio
    async def test_accepted(self) -> None:
        """A valid message for a live session is appended and acknowledged."""
        records = InMemorySessionRecordStore()
        await records.create("s-1")
        endpoint = SubmissionEndpoint(RecordStrategy(records))

        result = await endpoint.submit("s-1", PING.encode())

        assert result.status_code == 202
        assert result.body == {"status": "Message accepted"}
        assert (await records.get("s-1")).messages == [PING]

    @pytest.mark.asyncio
    async def test_missing_session_id(self) -> None:
        endpoint = SubmissionEndpoint(RecordStrategy(InMemorySessionRecordStore()))
        result = await endpoint.submit(None, PING)
        assert result.status_code == 400
        assert result.body == {"error": "Missing sessionId query parameter"}

    @pytest.mark.asyncio
    async def test_missing_body(self) -> None:
        endpoint = SubmissionEndpoint(RecordStrategy(InMemorySessionRecordStore()))
        result = await endpoint.submit("s-1", b"")
        assert result.status_code == 400
        assert result.body == {
            "error": "Missing request body, expected a raw JSON-RPC message string"
        }

    @pytest.mark.asyncio
    async def test_invalid_message(self) -> None:
        """Bodies that are not JSON-RPC are rejected before any deposit."""
        strategy = MagicMock()
        strategy.deposit = AsyncMock()
        endpoint = SubmissionEndpoint(strategy)

        result = await endpoint.submit("s-1", "not json")

        assert result.status_code == 400
        assert result.body == {"error": "Invalid JSON-RPC format"}
        strategy.deposit.assert_not_awaited()

    @pytest.mark.parametrize(
        "request_id",
        [True, 1.5, {"n": 1}],
        ids=["bool", "float", "object"],
    )
    @pytest.mark.asyncio
    async def test_invalid_id_rejected(self, request_id) -> None:
        """Ids that are neither strings nor integers never reach the substrate."""
        strategy = MagicMock()
        strategy.deposit = AsyncMock()
        body = json.dumps({"jsonrpc": "2.0", "id": request_id, "method": "ping"})

        result = await SubmissionEndpoint(strategy).submit("s-1", body)

        assert (result.status_code, result.body) == (400, {"error": "Invalid JSON-RPC format"})
        strategy.deposit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_session_per_strategy(self) -> None:
        """Each strategy reports an unknown session with its own message."""
        queue_result = await SubmissionEndpoint(QueueStrategy(InMemorySessionQueue())).submit("ghost", PING)
        record_result = await SubmissionEndpoint(
            RecordStrategy(InMemorySessionRecordStore())
        ).submit("ghost", PING)

        assert (queue_result.status_code, queue_result.body) == (404, {"error": "Session not found"})
        assert (record_result.status_code, record_result.body) == (404, {"error": "Session invalid"})

    @pytest.mark.asyncio
    async def test_substrate_failure(self) -> None:
        """Unexpected substrate errors become a 500."""
        strategy = MagicMock()
        strategy.deposit = AsyncMock(side_effect=RuntimeError("throttled"))

        result = await SubmissionEndpoint(strategy).submit("s-1", PING)

        assert result.status_code == 500
        assert result.body == {"error": "Internal server error"}

    @pytest.mark.asyncio
    async def test_results_are_not_shared(self) -> None:
        """Mutating one result body leaves later results untouched."""
        records = InMemorySessionRecordStore()
        await records.create("s-1")
        endpoint = SubmissionEndpoint(RecordStrategy(records))

        first = await endpoint.submit("s-1", PING)
        first.body["status"] = "changed"
        second = await endpoint.submit("s-1", PING)

        assert first.body is not second.body
        assert second.body == {"status": "Message accepted"}


class TestWrappedSubmission:
    """Tests for the {sessionId, message} body format."""

    @pytest.mark.asyncio
    async def test_accepted(self) -> None:
        """The inner message is deposited for the named session."""
        session_id = str(uuid4())
        records = InMemorySessionRecordStore()
        await records.create(session_id)
        endpoint = SubmissionEndpoint(RecordStrategy(records), SubmissionFormat.WRAPPED)

        body = json.dumps({"sessionId": session_id, "message": PING})
        result = await endpoint.submit(None, body)

        assert result.accepted
        assert (await records.get(session_id)).messages == [PING]

    @pytest.mark.asyncio
    async def test_missing_body(self) -> None:
        endpoint = SubmissionEndpoint(RecordStrategy(InMemorySessionRecordStore()), "wrapped")
        result = await endpoint.submit(None, None)
        assert result.body == {"error": "Missing request body"}

    @pytest.mark.parametrize(
        "body",
        [
            "not json",
            json.dumps({"sessionId": "not-a-uuid", "message": PING}),
            json.dumps({"sessionId": str(uuid4())}),
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_format(self, body: str) -> None:
        """Bodies without a UUID sessionId and a message are rejected."""
        endpoint = SubmissionEndpoint(RecordStrategy(InMemorySessionRecordStore()), "wrapped")
        result = await endpoint.submit(None, body)
        assert result.status_code == 400
        assert result.body == {"error": "Invalid request format"}
