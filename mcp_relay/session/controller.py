"""
Session Lifecycle Controller

Drives one streaming invocation end to end:

1. Scan the registry and install every registration on a fresh RpcServer
2. Bind an SSETransport to the stream and provision the relay substrate
3. Start the transport (headers + endpoint event)
4. Cancel the relay when the stream closes
5. Run the relay loop until cancelled
6. Release the substrate once, then close the transport and its RPC session

Steps 1-3 are fatal on failure. Relay poll errors are retried by the relay;
release failures are logged only.
"""

import asyncio
import logging
from dataclasses import dataclass

from mcp_relay.invoke import ProcedureInvoker
from mcp_relay.registry import RegistryError, RegistrationStore
from mcp_relay.relay import InboundRelay, RelayStrategy
from mcp_relay.rpc import RpcServer, install_registration
from mcp_relay.transport import ResponseStream, SSETransport, TransportState

logger = logging.getLogger(__name__)


@dataclass
class LiveSession:
    """A started session whose relay loop has not yet finished."""
    transport: SSETransport
    relay: InboundRelay
    server: RpcServer

    @property
    def session_id(self) -> str:
        return self.transport.session_id

    def cancel(self) -> None:
        """Stop the relay loop. Bound to the stream's close event."""
        self.relay.cancel()

    async def run(self) -> None:
        """Run the relay loop, then tear the session down."""
        try:
            await self.relay.run()
        finally:
            await self.relay.teardown()
            if self.transport.state != TransportState.CLOSED:
                await self.transport.close()
            await self.server.disconnect(self.transport)
            logger.info(f"Session closed: {self.session_id}")


class SessionController:
    """
    Creates and runs SSE sessions.

    The registry, invoker and strategy are constructed once per process and
    injected; the controller holds no per-request global state beyond the
    index of live sessions.
    """

    def __init__(
        self,
        registry: RegistrationStore,
        invoker: ProcedureInvoker,
        strategy: RelayStrategy,
        message_endpoint: str | None = "/message",
        server_name: str = "MCP Lambda Server",
        server_version: str = "1.0.7",
    ):
        """
        Initialize the controller.

        Args:
            registry: Source of procedure registrations
            invoker: Invoker used by installed procedures
            strategy: Relay substrate shared with the submission endpoint
            message_endpoint: Submission URL announced to clients
                (None = no endpoint event)
            server_name: Reported in initialize responses
            server_version: Reported in initialize responses
        """
        self._registry = registry
        self._invoker = invoker
        self._strategy = strategy
        self._endpoint = message_endpoint
        self._server_name = server_name
        self._server_version = server_version
        self._sessions: dict[str, LiveSession] = {}

    @property
    def strategy(self) -> RelayStrategy:
        return self._strategy

    @property
    def active_sessions(self) -> list[str]:
        return list(self._sessions)

    async def build_server(self) -> RpcServer:
        """
        Build an RpcServer from a full registry scan.

        A registration that cannot be installed is skipped with an error log.

        Raises:
            RegistryError: If the registry cannot be read
        """
        registrations = await self._registry.list_all()
        server = RpcServer(self._server_name, self._server_version)
        for registration in registrations:
            try:
                install_registration(server, registration, self._invoker)
            except (RegistryError, ValueError) as e:
                logger.error(f"Skipping registration {registration.id}: {e}")
        logger.debug(f"Installed {len(registrations)} registrations")
        return server

    async def open_session(self, stream: ResponseStream) -> LiveSession:
        """
        Set up a session on `stream`, up to (not including) the relay loop.

        Raises:
            RegistryError: Registry scan failed
            ProvisioningError: Substrate could not be created
            TransportError: Transport could not be started
        """
        server = await self.build_server()
        transport = SSETransport(endpoint=self._endpoint, stream=stream)
        relay = self._strategy.create_relay(transport)

        await relay.provision()
        try:
            await server.connect(transport)
        except Exception:
            await relay.teardown()
            raise

        session = LiveSession(transport=transport, relay=relay, server=server)
        stream.on_close(session.cancel)
        self._sessions[session.session_id] = session
        logger.info(f"Session opened: {session.session_id}")
        return session

    async def run_session(self, session: LiveSession) -> None:
        """Run a session opened by open_session() to completion."""
        try:
            await session.run()
        finally:
            self._sessions.pop(session.session_id, None)

    async def serve(self, stream: ResponseStream) -> None:
        """Open a session on `stream` and run it until the stream closes."""
        session = await self.open_session(stream)
        await self.run_session(session)

    async def close_all(self) -> None:
        """Cancel every live session (process shutdown)."""
        for session in list(self._sessions.values()):
            session.cancel()
        # Let relay loops observe the cancel before the caller tears down clients
        await asyncio.sleep(0)
