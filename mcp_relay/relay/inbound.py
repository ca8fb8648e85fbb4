"""
Inbound Relay

Bridges a session's relay substrate into the transport's handle_message().
Runs inside the streaming invocation for the life of the stream.

Both strategies deliver pending messages in submission order, attempt each
message at most once per poll cycle, and exit within one poll interval after
cancel() or after the transport loses its stream.

Loop error handling:
- Transient substrate errors: logged, backed off, retried
- Invalid protocol messages: logged and dropped (still acknowledged)
- Transport gone (stream destroyed or closed): loop exits without error
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, TypeVar

from mcp_relay.protocol import MessageValidationError
from mcp_relay.relay.ports import SessionQueue, SessionRecordStore, SessionNotFoundError
from mcp_relay.transport import SSETransport

logger = logging.getLogger(__name__)

T = TypeVar("T")


def queue_name_for(session_id: str) -> str:
    """Deterministic per-session queue name."""
    return f"mcp-session-{session_id}.fifo"


class InboundRelay(ABC):
    """
    Base relay loop.

    Subclasses implement provision/release of the per-session substrate and
    one poll cycle. The base class owns cancellation, backoff, and the
    single-attempt teardown.
    """

    def __init__(self, transport: SSETransport, error_backoff: float = 1.0):
        """
        Initialize the relay.

        Args:
            transport: Transport that receives relayed messages
            error_backoff: Seconds to wait after a failed poll
        """
        self._transport = transport
        self._error_backoff = error_backoff
        self._cancelled = asyncio.Event()
        self._released = False
        self.delivered = 0

    @property
    def session_id(self) -> str:
        return self._transport.session_id

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Signal the loop to stop. Safe to call repeatedly."""
        self._cancelled.set()

    @abstractmethod
    async def provision(self) -> None:
        """
        Create the per-session substrate.

        Raises:
            ProvisioningError: Fatal for the session
        """
        ...

    @abstractmethod
    async def release(self) -> None:
        """Delete the per-session substrate."""
        ...

    @abstractmethod
    async def poll_once(self) -> int:
        """
        Run one poll cycle, including its wait.

        Returns:
            Number of messages handed to the transport
        """
        ...

    async def teardown(self) -> bool:
        """
        Release the substrate, once.

        A single best-effort attempt: failures are logged, never raised.

        Returns:
            True if the substrate was released by this call
        """
        if self._released:
            return False
        self._released = True
        try:
            await self.release()
        except Exception as e:
            logger.error(f"Failed to release substrate for session {self.session_id}: {e}")
            return False
        logger.info(f"Released substrate for session {self.session_id}")
        return True

    def _should_stop(self) -> bool:
        return self.cancelled or not self._transport.connected

    async def run(self) -> None:
        """Poll until cancelled or the transport goes away."""
        logger.info(f"Relay loop started for session {self.session_id}")
        while not self._should_stop():
            try:
                await self.poll_once()
            except Exception as e:
                if self._should_stop():
                    break
                logger.error(f"Relay poll failed for session {self.session_id}: {e}")
                await self._sleep(self._error_backoff)
        logger.info(
            f"Relay loop exited for session {self.session_id} "
            f"(delivered={self.delivered})"
        )

    async def _sleep(self, seconds: float) -> bool:
        """
        Wait up to `seconds`, waking early on cancel.

        Returns:
            True if cancelled
        """
        if seconds <= 0:
            return self.cancelled
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _until_cancelled(self, awaitable: Awaitable[T]) -> T | None:
        """
        Await `awaitable` unless cancel() fires first.

        Returns:
            The awaitable's result, or None if cancelled first
        """
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._cancelled.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()

        if task in done:
            return task.result()
        return None

    async def _deliver(self, payload: Any) -> bool:
        """
        Hand one payload to the transport.

        Returns:
            False if the payload was not a valid protocol message
        """
        try:
            await self._transport.handle_message(payload)
        except MessageValidationError as e:
            logger.warning(f"Dropping invalid message for session {self.session_id}: {e}")
            return False
        self.delivered += 1
        return True


# =============================================================================
# Queue Relay
# =============================================================================

class QueueRelay(InboundRelay):
    """
    Relay over a dedicated per-session FIFO queue.

    Each cycle long-polls for a batch, then for each message: handle, then
    delete (acknowledge after processing, so delivery is at-least-once).
    Cancellation is checked before every poll and every delete.
    """

    def __init__(
        self,
        queue: SessionQueue,
        transport: SSETransport,
        max_messages: int = 10,
        wait_seconds: float = 20.0,
        empty_backoff: float = 0.1,
        error_backoff: float = 1.0,
    ):
        """
        Initialize the queue relay.

        Args:
            queue: Session queue service
            transport: Transport that receives relayed messages
            max_messages: Batch size per receive
            wait_seconds: Long-poll wait per receive
            empty_backoff: Pause after an empty receive
            error_backoff: Pause after a failed poll
        """
        super().__init__(transport, error_backoff=error_backoff)
        self._queue = queue
        self._max_messages = max_messages
        self._wait_seconds = wait_seconds
        self._empty_backoff = empty_backoff
        self._queue_url: str | None = None

    @property
    def queue_url(self) -> str | None:
        return self._queue_url

    async def provision(self) -> None:
        self._queue_url = await self._queue.create_queue(queue_name_for(self.session_id))
        logger.info(f"Provisioned queue for session {self.session_id}")

    async def release(self) -> None:
        if self._queue_url is not None:
            await self._queue.delete_queue(self._queue_url)

    async def poll_once(self) -> int:
        if self._queue_url is None:
            raise SessionNotFoundError(queue_name_for(self.session_id))
        if self.cancelled:
            return 0

        messages = await self._until_cancelled(
            self._queue.receive_messages(
                self._queue_url,
                max_messages=self._max_messages,
                wait_seconds=self._wait_seconds,
            )
        )
        if messages is None:
            return 0
        if not messages:
            await self._sleep(self._empty_backoff)
            return 0

        delivered = 0
        for message in messages:
            if self.cancelled:
                break
            if await self._deliver(message.body):
                delivered += 1
            if self.cancelled:
                break
            await self._queue.delete_message(self._queue_url, message.receipt)
        return delivered


# =============================================================================
# Record Relay
# =============================================================================

class RecordRelay(InboundRelay):
    """
    Relay over a shared per-session record.

    Each cycle reads the record; a non-empty list is cleared unconditionally,
    then every entry from that read is delivered in list order. A submission
    landing between the read and the clear is lost. A missing record reads
    as empty.
    """

    def __init__(
        self,
        records: SessionRecordStore,
        transport: SSETransport,
        poll_interval: float = 1.0,
        error_backoff: float = 1.0,
    ):
        """
        Initialize the record relay.

        Args:
            records: Session record store
            transport: Transport that receives relayed messages
            poll_interval: Seconds between reads
            error_backoff: Pause after a failed poll
        """
        super().__init__(transport, error_backoff=error_backoff)
        self._records = records
        self._poll_interval = poll_interval

    async def provision(self) -> None:
        await self._records.create(self.session_id)
        logger.info(f"Provisioned session record for session {self.session_id}")

    async def release(self) -> None:
        await self._records.delete(self.session_id)

    async def poll_once(self) -> int:
        record = await self._records.get(self.session_id)
        if record is None:
            logger.debug(f"No session record for session {self.session_id}")

        delivered = 0
        if record is not None and record.messages:
            await self._records.clear_messages(self.session_id)
            for payload in record.messages:
                if self.cancelled:
                    break
                if await self._deliver(payload):
                    delivered += 1

        await self._sleep(self._poll_interval)
        return delivered
