"""
Redis Relay Substrates

Redis-based implementations of the session queue and session record store,
for deployments where the streaming leg and the submission leg run in
separate processes.

Key schema:
- {prefix}:queue:{name}          - Stream holding one session queue
- {prefix}:dedup:{name}:{sha256} - Content dedup marker (SET NX EX)
- {prefix}:session:{id}          - Hash marking the session as live
- {prefix}:session:{id}:messages - List of pending payloads

Uses redis.asyncio; the client is injected and expected to be created with
decode_responses=True.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime

from redis.asyncio import Redis
from redis.exceptions import ResponseError

from mcp_relay.relay.ports import (
    QueuedMessage,
    SessionQueue,
    SessionRecord,
    SessionRecordStore,
    SessionNotFoundError,
    ProvisioningError,
)

logger = logging.getLogger(__name__)


# Append only when the session hash exists, in one round trip
_APPEND_IF_EXISTS = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
return redis.call('RPUSH', KEYS[2], ARGV[1])
"""


# =============================================================================
# Redis Session Queue
# =============================================================================

class RedisSessionQueue(SessionQueue):
    """
    Session queues on Redis Streams.

    Each queue is one stream with a single consumer group. Receiving first
    re-reads entries this consumer was handed but never acknowledged, then
    reads new entries for the group; deleting acknowledges and removes the
    entry.
    """

    def __init__(
        self,
        redis: Redis,
        key_prefix: str = "mcp",
        consumer_group: str = "relay",
        consumer_name: str | None = None,
        dedup_window_seconds: int = 300,
    ) -> None:
        """
        Initialize the Redis session queue.

        Args:
            redis: Redis async client
            key_prefix: Prefix for all keys
            consumer_group: Consumer group created on every session stream
            consumer_name: Name of this consumer (auto-generated if None)
            dedup_window_seconds: Lifetime of content dedup markers
        """
        self._redis = redis
        self._prefix = key_prefix
        self._group = consumer_group
        self._consumer = consumer_name or f"relay_{id(self)}"
        self._dedup_window = dedup_window_seconds

    def _queue_key(self, name: str) -> str:
        return f"{self._prefix}:queue:{name}"

    def _dedup_key(self, queue_url: str, body: str) -> str:
        digest = hashlib.sha256(body.encode("utf-8")).hexdigest()
        return f"{queue_url.replace(':queue:', ':dedup:', 1)}:{digest}"

    async def create_queue(self, name: str) -> str:
        key = self._queue_key(name)
        try:
            await self._redis.xgroup_create(key, self._group, id="0", mkstream=True)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise ProvisioningError(f"Failed to create queue {name}: {e}") from e
        return key

    async def get_queue_url(self, name: str) -> str:
        key = self._queue_key(name)
        if not await self._redis.exists(key):
            raise SessionNotFoundError(name)
        return key

    async def send_message(self, queue_url: str, body: str, group_id: str) -> str:
        fresh = await self._redis.set(
            self._dedup_key(queue_url, body),
            "1",
            ex=self._dedup_window,
            nx=True,
        )
        if not fresh:
            logger.debug(f"Duplicate message dropped on {queue_url}")
            return ""

        message_id = await self._redis.xadd(
            queue_url,
            {"body": body, "group": group_id},
            nomkstream=True,
        )
        if message_id is None:
            raise SessionNotFoundError(queue_url)
        return message_id

    async def receive_messages(
        self,
        queue_url: str,
        max_messages: int = 10,
        wait_seconds: float = 20.0,
    ) -> list[QueuedMessage]:
        # block=0 means "forever" to Redis
        block_ms = int(wait_seconds * 1000) if wait_seconds > 0 else None
        if block_ms == 0:
            block_ms = 1
        pending = await self._read_group(queue_url, "0", max_messages, None)
        if pending:
            return pending
        return await self._read_group(queue_url, ">", max_messages, block_ms)

    async def _read_group(
        self,
        queue_url: str,
        stream_id: str,
        count: int,
        block_ms: int | None,
    ) -> list[QueuedMessage]:
        try:
            result = await self._redis.xreadgroup(
                self._group,
                self._consumer,
                {queue_url: stream_id},
                count=count,
                block=block_ms,
            )
        except ResponseError as e:
            if "NOGROUP" in str(e):
                raise SessionNotFoundError(queue_url) from e
            raise

        if not result:
            return []

        # Parse result: [(stream_name, [(message_id, {fields})])]
        messages: list[QueuedMessage] = []
        for _stream, entries in result:
            for message_id, fields in entries:
                if not fields:
                    # Pending entry deleted from the stream
                    await self._redis.xack(queue_url, self._group, message_id)
                    continue
                messages.append(QueuedMessage(
                    body=fields.get("body", ""),
                    receipt=message_id,
                    message_id=message_id,
                ))
        return messages

    async def delete_message(self, queue_url: str, receipt: str) -> None:
        await self._redis.xack(queue_url, self._group, receipt)
        await self._redis.xdel(queue_url, receipt)

    async def delete_queue(self, queue_url: str) -> None:
        deleted = await self._redis.delete(queue_url)
        if not deleted:
            raise SessionNotFoundError(queue_url)


# =============================================================================
# Redis Session Record Store
# =============================================================================

class RedisSessionRecordStore(SessionRecordStore):
    """
    Session records as a Redis hash plus a list.

    Appends go through a Lua script so the existence check and RPUSH are
    atomic. Clearing deletes the list key outright.
    """

    def __init__(self, redis: Redis, key_prefix: str = "mcp") -> None:
        """
        Initialize the Redis record store.

        Args:
            redis: Redis async client
            key_prefix: Prefix for all keys
        """
        self._redis = redis
        self._prefix = key_prefix
        self._append = redis.register_script(_APPEND_IF_EXISTS)

    def _session_key(self, session_id: str) -> str:
        return f"{self._prefix}:session:{session_id}"

    def _messages_key(self, session_id: str) -> str:
        return f"{self._prefix}:session:{session_id}:messages"

    async def create(self, session_id: str) -> SessionRecord:
        record = SessionRecord(session_id=session_id)
        try:
            await self._redis.hset(
                self._session_key(session_id),
                mapping={
                    "session_id": session_id,
                    "created_at": record.created_at.isoformat(),
                },
            )
        except ResponseError as e:
            raise ProvisioningError(f"Failed to create session {session_id}: {e}") from e
        return record

    async def get(self, session_id: str) -> SessionRecord | None:
        data = await self._redis.hgetall(self._session_key(session_id))
        if not data:
            return None
        messages = await self._redis.lrange(self._messages_key(session_id), 0, -1)
        return SessionRecord(
            session_id=session_id,
            messages=list(messages),
            created_at=datetime.fromisoformat(data["created_at"]),
        )

    async def append_message(self, session_id: str, payload: str) -> None:
        result = await self._append(
            keys=[self._session_key(session_id), self._messages_key(session_id)],
            args=[payload],
        )
        if result == -1:
            raise SessionNotFoundError(session_id)

    async def clear_messages(self, session_id: str) -> None:
        await self._redis.delete(self._messages_key(session_id))

    async def delete(self, session_id: str) -> None:
        await self._redis.delete(
            self._session_key(session_id),
            self._messages_key(session_id),
        )
