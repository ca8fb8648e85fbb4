"""
Session Routes

- GET /sse: open a streaming session (headers, endpoint event, replies)
- POST /message: submit one message to a session
- POST /rpc: single-request flow, reply and acknowledgement on one stream
"""

import asyncio
import logging

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse

from mcp_relay.transport import ResponseStream

logger = logging.getLogger(__name__)

router = APIRouter()

# Mirrors the preamble written into the stream itself
_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
}


@router.get("/sse")
async def open_session(request: Request):
    """
    Open a session and stream it until the client disconnects.

    Setup failures propagate (the request fails); once streaming, the relay
    loop runs as a background task tied to the stream.
    """
    controller = request.app.state.controller
    stream = ResponseStream(name="sse")
    session = await controller.open_session(stream)

    tasks: set[asyncio.Task] = request.app.state.relay_tasks
    task = asyncio.create_task(controller.run_session(session))
    tasks.add(task)
    task.add_done_callback(tasks.discard)

    return StreamingResponse(
        stream.chunks(),
        media_type="text/event-stream",
        headers=_STREAM_HEADERS,
    )


@router.post("/message")
async def submit_message(
    request: Request,
    session_id: str | None = Query(default=None, alias="sessionId"),
):
    """Deposit one message for a session."""
    body = await request.body()
    result = await request.app.state.submission.submit(session_id, body)
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.post("/rpc")
async def handle_rpc(request: Request):
    """Handle one JSON-RPC message on its own stream."""
    body = await request.body()
    stream = ResponseStream(name="rpc")
    await request.app.state.request_handler.handle(stream, body)
    return StreamingResponse(
        stream.chunks(),
        media_type="text/event-stream",
        headers=_STREAM_HEADERS,
    )
