"""
In-Memory Relay Substrates

Single-process implementations of the session queue and session record store.
Suitable for development, testing, and a single-node deployment where the
streaming leg and the submission leg share one event loop.

Queue features (mirroring a FIFO queue service):
- FIFO ordering per queue
- Receipt handles and a visibility timeout for unacknowledged messages
- Content-based deduplication within a fixed window
- Blocking long-poll receive using asyncio.Condition
"""

import asyncio
import hashlib
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import uuid4

from mcp_relay.relay.ports import (
    QueuedMessage,
    SessionQueue,
    SessionRecord,
    SessionRecordStore,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)

QUEUE_URL_SCHEME = "memory://queue/"


@dataclass
class _StoredMessage:
    message_id: str
    body: str
    receipt: str | None = None
    visible_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class _Queue:
    name: str
    ready: deque[_StoredMessage] = field(default_factory=deque)
    inflight: dict[str, _StoredMessage] = field(default_factory=dict)
    dedup: dict[str, tuple[str, datetime]] = field(default_factory=dict)


class InMemorySessionQueue(SessionQueue):
    """
    In-memory FIFO queue service.

    All queues share one lock and one condition; senders notify waiters.
    A queue's single message group is blocked while any of its messages is
    in flight, as with a FIFO queue service.
    """

    def __init__(
        self,
        visibility_timeout: float = 30.0,
        dedup_window: float = 300.0,
    ):
        """
        Initialize the queue service.

        Args:
            visibility_timeout: Seconds a received message stays hidden before
                it becomes visible again unless deleted
            dedup_window: Seconds within which an identical body is dropped
        """
        self._visibility_timeout = visibility_timeout
        self._dedup_window = dedup_window
        self._queues: dict[str, _Queue] = {}
        self._lock = asyncio.Lock()
        self._changed = asyncio.Condition(self._lock)

    @staticmethod
    def _url(name: str) -> str:
        return f"{QUEUE_URL_SCHEME}{name}"

    def _lookup(self, queue_url: str) -> _Queue:
        queue = self._queues.get(queue_url)
        if queue is None:
            raise SessionNotFoundError(queue_url)
        return queue

    async def create_queue(self, name: str) -> str:
        async with self._lock:
            url = self._url(name)
            if url not in self._queues:
                self._queues[url] = _Queue(name=name)
                logger.debug(f"Queue created: {name}")
            return url

    async def get_queue_url(self, name: str) -> str:
        async with self._lock:
            url = self._url(name)
            if url not in self._queues:
                raise SessionNotFoundError(name)
            return url

    async def send_message(self, queue_url: str, body: str, group_id: str) -> str:
        async with self._changed:
            queue = self._lookup(queue_url)
            now = datetime.utcnow()

            # Content-based deduplication
            digest = hashlib.sha256(body.encode("utf-8")).hexdigest()
            seen = queue.dedup.get(digest)
            if seen and now - seen[1] < timedelta(seconds=self._dedup_window):
                logger.debug(f"Duplicate message dropped on {queue.name}")
                return seen[0]

            message = _StoredMessage(message_id=str(uuid4()), body=body)
            queue.ready.append(message)
            queue.dedup[digest] = (message.message_id, now)
            self._changed.notify_all()
            return message.message_id

    async def receive_messages(
        self,
        queue_url: str,
        max_messages: int = 10,
        wait_seconds: float = 20.0,
    ) -> list[QueuedMessage]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + wait_seconds

        async with self._changed:
            while True:
                queue = self._lookup(queue_url)
                batch = self._claim(queue, max_messages)
                if batch:
                    return batch

                remaining = deadline - loop.time()
                if remaining <= 0:
                    return []
                try:
                    await asyncio.wait_for(self._changed.wait(), timeout=remaining)
                except asyncio.TimeoutError:
                    return []

    def _claim(self, queue: _Queue, max_messages: int) -> list[QueuedMessage]:
        """
        Move up to max_messages ready messages into flight.

        Must be called with lock held.
        """
        now = datetime.utcnow()

        # Expired in-flight messages go back to the front, oldest first
        expired = [m for m in queue.inflight.values() if m.visible_at <= now]
        for message in reversed(expired):
            del queue.inflight[message.receipt]
            message.receipt = None
            queue.ready.appendleft(message)

        if queue.inflight:
            return []

        batch: list[QueuedMessage] = []
        while queue.ready and len(batch) < max_messages:
            message = queue.ready.popleft()
            message.receipt = str(uuid4())
            message.visible_at = now + timedelta(seconds=self._visibility_timeout)
            queue.inflight[message.receipt] = message
            batch.append(QueuedMessage(
                body=message.body,
                receipt=message.receipt,
                message_id=message.message_id,
            ))
        return batch

    async def delete_message(self, queue_url: str, receipt: str) -> None:
        async with self._changed:
            queue = self._lookup(queue_url)
            queue.inflight.pop(receipt, None)
            self._changed.notify_all()

    async def delete_queue(self, queue_url: str) -> None:
        async with self._changed:
            queue = self._queues.pop(queue_url, None)
            if queue is None:
                raise SessionNotFoundError(queue_url)
            logger.debug(f"Queue deleted: {queue.name}")
            # Wake receivers so they observe the deletion
            self._changed.notify_all()

    def queue_names(self) -> list[str]:
        """Names of the queues that currently exist."""
        return [q.name for q in self._queues.values()]


class InMemorySessionRecordStore(SessionRecordStore):
    """In-memory keyed session records."""

    def __init__(self):
        self._records: dict[str, SessionRecord] = {}
        self._lock = asyncio.Lock()

    async def create(self, session_id: str) -> SessionRecord:
        async with self._lock:
            record = SessionRecord(session_id=session_id)
            self._records[session_id] = record
            return record

    async def get(self, session_id: str) -> SessionRecord | None:
        async with self._lock:
            record = self._records.get(session_id)
            if record is None:
                return None
            # Callers get a snapshot, not the live list
            return SessionRecord(
                session_id=record.session_id,
                messages=list(record.messages),
                created_at=record.created_at,
            )

    async def append_message(self, session_id: str, payload: str) -> None:
        async with self._lock:
            record = self._records.get(session_id)
            if record is None:
                raise SessionNotFoundError(session_id)
            record.messages.append(payload)

    async def clear_messages(self, session_id: str) -> None:
        async with self._lock:
            record = self._records.get(session_id)
            if record is not None:
                record.messages = []

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            self._records.pop(session_id, None)
