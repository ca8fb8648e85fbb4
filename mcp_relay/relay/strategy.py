"""
Relay Strategies

A strategy pairs one substrate with both halves of the rendezvous:
- create_relay(): the draining side, used by the streaming leg
- deposit(): the appending side, used by the submission endpoint

The submission side only ever appends; clearing and deletion belong to the
relay.
"""

import logging
from abc import ABC, abstractmethod

from mcp_relay.relay.inbound import InboundRelay, QueueRelay, RecordRelay, queue_name_for
from mcp_relay.relay.ports import SessionQueue, SessionRecordStore
from mcp_relay.transport import SSETransport

logger = logging.getLogger(__name__)


class RelayStrategy(ABC):
    """Selects the substrate shared by the streaming and submission legs."""

    # Error body returned by the submission endpoint for an unknown session
    not_found_message: str = "Session not found"

    @abstractmethod
    def create_relay(self, transport: SSETransport) -> InboundRelay:
        """Build the relay loop for one session."""
        ...

    @abstractmethod
    async def deposit(self, session_id: str, payload: str) -> None:
        """
        Append one payload to a session's substrate.

        Raises:
            SessionNotFoundError: If the session has no substrate
        """
        ...

    async def close(self) -> None:
        pass


class QueueStrategy(RelayStrategy):
    """One FIFO queue per session; the message group is the session id."""

    not_found_message = "Session not found"

    def __init__(
        self,
        queue: SessionQueue,
        wait_seconds: float = 20.0,
        max_messages: int = 10,
        empty_backoff: float = 0.1,
        error_backoff: float = 1.0,
    ):
        self.queue = queue
        self._wait_seconds = wait_seconds
        self._max_messages = max_messages
        self._empty_backoff = empty_backoff
        self._error_backoff = error_backoff

    def create_relay(self, transport: SSETransport) -> QueueRelay:
        return QueueRelay(
            self.queue,
            transport,
            max_messages=self._max_messages,
            wait_seconds=self._wait_seconds,
            empty_backoff=self._empty_backoff,
            error_backoff=self._error_backoff,
        )

    async def deposit(self, session_id: str, payload: str) -> None:
        queue_url = await self.queue.get_queue_url(queue_name_for(session_id))
        await self.queue.send_message(queue_url, payload, group_id=session_id)
        logger.debug(f"Queued message for session {session_id}")

    async def close(self) -> None:
        await self.queue.close()


class RecordStrategy(RelayStrategy):
    """One shared record per session holding an appended message list."""

    not_found_message = "Session invalid"

    def __init__(
        self,
        records: SessionRecordStore,
        poll_interval: float = 1.0,
        error_backoff: float = 1.0,
    ):
        self.records = records
        self._poll_interval = poll_interval
        self._error_backoff = error_backoff

    def create_relay(self, transport: SSETransport) -> RecordRelay:
        return RecordRelay(
            self.records,
            transport,
            poll_interval=self._poll_interval,
            error_backoff=self._error_backoff,
        )

    async def deposit(self, session_id: str, payload: str) -> None:
        await self.records.append_message(session_id, payload)
        logger.debug(f"Appended message for session {session_id}")

    async def close(self) -> None:
        await self.records.close()
