"""
Relay Substrate Port Interfaces

Abstract base classes for the external state a streaming session and the
submission endpoint rendezvous through. The two legs share no memory: the
substrate is the only channel between them.

Two substrate shapes:
- SessionQueue: one ordered point-to-point queue per session
- SessionRecordStore: one keyed record per session holding an appended list

Adapters (in-memory, Redis, AWS) implement these interfaces and are injected
into the relay strategies.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class QueuedMessage:
    """A message received from a session queue, not yet acknowledged."""
    body: str
    receipt: str            # Handle passed back to delete_message()
    message_id: str = ""


@dataclass
class SessionRecord:
    """Shared record for one session under the record strategy."""
    session_id: str
    messages: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)


class SessionQueue(ABC):
    """
    Per-session ordered queue service.

    Queues are FIFO with content-based deduplication. Ordering is scoped to
    the message group, which is always the session id.
    """

    @abstractmethod
    async def create_queue(self, name: str) -> str:
        """
        Create a queue (or return the existing one).

        Args:
            name: Deterministic queue name derived from the session id

        Returns:
            Queue URL/handle used by every other call

        Raises:
            ProvisioningError: If the queue cannot be created
        """
        ...

    @abstractmethod
    async def get_queue_url(self, name: str) -> str:
        """
        Look up an existing queue.

        Raises:
            SessionNotFoundError: If no queue exists with that name
        """
        ...

    @abstractmethod
    async def send_message(self, queue_url: str, body: str, group_id: str) -> str:
        """
        Append a message.

        Returns:
            Message id

        Raises:
            SessionNotFoundError: If the queue was deleted
        """
        ...

    @abstractmethod
    async def receive_messages(
        self,
        queue_url: str,
        max_messages: int = 10,
        wait_seconds: float = 20.0,
    ) -> list[QueuedMessage]:
        """
        Long-poll for up to max_messages messages, in order.

        Returns an empty list if nothing arrived within wait_seconds.
        """
        ...

    @abstractmethod
    async def delete_message(self, queue_url: str, receipt: str) -> None:
        """Acknowledge a received message so it is never redelivered."""
        ...

    @abstractmethod
    async def delete_queue(self, queue_url: str) -> None:
        """Delete a queue and anything still in it."""
        ...

    async def close(self) -> None:
        """Release client resources."""
        pass


class SessionRecordStore(ABC):
    """
    Keyed session records with an appended message list.

    append_message must be atomic with respect to other appends, and
    clear_messages is an unconditional field removal.
    """

    @abstractmethod
    async def create(self, session_id: str) -> SessionRecord:
        """
        Write the session-exists record.

        Raises:
            ProvisioningError: If the record cannot be written
        """
        ...

    @abstractmethod
    async def get(self, session_id: str) -> SessionRecord | None:
        """Read a session record, or None if it does not exist."""
        ...

    @abstractmethod
    async def append_message(self, session_id: str, payload: str) -> None:
        """
        Atomically append one payload to the session's list.

        Raises:
            SessionNotFoundError: If the session record does not exist
        """
        ...

    @abstractmethod
    async def clear_messages(self, session_id: str) -> None:
        """Remove the message list. Not conditional on its contents."""
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        """Delete the session record."""
        ...

    async def close(self) -> None:
        """Release client resources."""
        pass


# =============================================================================
# Exceptions
# =============================================================================

class SubstrateError(Exception):
    """Base exception for relay substrate errors."""
    pass


class SessionNotFoundError(SubstrateError):
    """No queue or record exists for the session."""
    def __init__(self, session_ref: str):
        self.session_ref = session_ref
        super().__init__(f"Session not found: {session_ref}")


class ProvisioningError(SubstrateError):
    """The per-session substrate could not be created."""
    pass
