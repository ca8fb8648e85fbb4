"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import pytest

from mcp_relay.registry import Registration, RegistrationRequest
from mcp_relay.transport import AcknowledgingSSETransport, ResponseStream

WEATHER_ARN = "arn:aws:lambda:us-east-1:123456789012:function:weather"


@pytest.fixture
def weather_arn() -> str:
    return WEATHER_ARN


@pytest.fixture
def make_registration() -> Callable[..., Registration]:
    """Build a Registration; defaults to a one-argument weather tool."""

    def _make(
        type_: str = "tool",
        name: str = "weather",
        parameters: dict[str, Any] | None = None,
        description: str = "Current weather for a city",
        arn: str = WEATHER_ARN,
    ) -> Registration:
        return Registration.from_request(
            RegistrationRequest(
                type=type_,
                name=name,
                description=description,
                lambdaArn=arn,
                parameters={"city": "string"} if parameters is None else parameters,
            )
        )

    return _make


def _parse_events(data: bytes | str) -> list[tuple[str, str]]:
    text = data.decode("utf-8") if isinstance(data, (bytes, bytearray)) else data
    events: list[tuple[str, str]] = []
    for block in text.split("\n\n"):
        lines = block.strip("\n").split("\n")
        if len(lines) == 2 and lines[0].startswith("event: ") and lines[1].startswith("data: "):
            events.append((lines[0][len("event: "):], lines[1][len("data: "):]))
    return events


@pytest.fixture
def sse_events() -> Callable[[bytes | str], list[tuple[str, str]]]:
    """Parser returning (event, data) pairs from raw stream output."""
    return _parse_events


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    """Poll a predicate on the running loop until it holds or times out."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait


@pytest.fixture
def rpc_call() -> Callable[..., Any]:
    """
    Send one JSON-RPC message to an RpcServer over an acknowledging transport.

    Returns the decoded reply event, or None when the message gets no reply.
    """
    async def _call(server, message: dict[str, Any], session_id: str = "s-1") -> dict[str, Any] | None:
        stream = ResponseStream()
        transport = AcknowledgingSSETransport(stream=stream, session_id=session_id)
        await server.connect(transport)
        try:
            await transport.handle_message(json.dumps(message))
        finally:
            await server.disconnect(transport)
            await transport.close()
        data = b"".join([chunk async for chunk in stream.chunks()])
        replies = [json.loads(payload) for event, payload in _parse_events(data) if event == "message"]
        return replies[0] if replies else None

    return _call
