"""
Request-Scoped Handler

Interactive single-request flow: the client's JSON-RPC message arrives on
the same request whose response is streamed back. Each request gets its own
AcknowledgingSSETransport; the reply event and the acknowledgement text are
written to the request's stream, then the transport is closed.

Stream contents for one request:
    <SSE headers>
    event: message / data: <json-rpc response>      (requests only)
    HTTP/1.1 202 Accepted ... | HTTP/1.1 400 Bad Request ...
"""

import logging
from typing import Awaitable, Callable

from mcp_relay.rpc import RpcServer
from mcp_relay.transport import AcknowledgingSSETransport, ResponseStream

logger = logging.getLogger(__name__)

ServerFactory = Callable[[], Awaitable[RpcServer]]


class RequestScopedHandler:
    """Serves one JSON-RPC message per stream."""

    def __init__(self, server: RpcServer | ServerFactory):
        """
        Args:
            server: A fixed server, or an async factory called per request
        """
        self._server = server

    async def _resolve_server(self) -> RpcServer:
        if isinstance(self._server, RpcServer):
            return self._server
        return await self._server()

    async def handle(self, stream: ResponseStream, body: str | bytes) -> str:
        """
        Handle one message and finish the stream.

        Returns:
            The acknowledgement text written after any reply event
        """
        server = await self._resolve_server()
        transport = AcknowledgingSSETransport()
        transport.bind(stream)
        try:
            await server.connect(transport)
            acknowledgement = await transport.handle_message(body)
            stream.write(acknowledgement.encode("utf-8"))
            logger.debug(f"Handled request on {transport.session_id}")
            return acknowledgement
        finally:
            await server.disconnect(transport)
            await transport.close()
