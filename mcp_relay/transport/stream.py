"""
Response Stream

Write-only output stream for one streaming invocation.

Design:
- Writers call write()/end() synchronously; chunks land on an asyncio.Queue
- A single consumer (the HTTP response body) drains the queue via chunks()
- end() and destroy() both fire the close listeners, exactly once in total
- destroy() is called when the consumer goes away (client disconnect)

The stream is the only thing a session transport writes to. It knows nothing
about sessions or JSON-RPC.
"""

import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, Callable

logger = logging.getLogger(__name__)


class StreamClosedError(Exception):
    """Raised when writing to a stream that has ended or been destroyed."""
    pass


class ResponseStream:
    """
    Outbound byte stream backed by an asyncio queue.

    Features:
    - Non-blocking writes
    - Close listeners, fired once on end or destroy
    - Async iteration for the response body
    """

    def __init__(self, name: str = "stream"):
        """
        Initialize the stream.

        Args:
            name: Label used in log messages
        """
        self.name = name
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._ended = False
        self._destroyed = False
        self._close_fired = False
        self._close_listeners: list[Callable[[], Any]] = []
        self._listener_tasks: set[asyncio.Task] = set()
        self._bytes_written = 0

    @property
    def ended(self) -> bool:
        """True once end() has been called."""
        return self._ended

    @property
    def destroyed(self) -> bool:
        """True once the consumer has gone away."""
        return self._destroyed

    @property
    def writable(self) -> bool:
        return not (self._ended or self._destroyed)

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    def write(self, chunk: bytes) -> None:
        """
        Queue a chunk for the consumer.

        Raises:
            StreamClosedError: If the stream has ended or been destroyed
        """
        if not self.writable:
            raise StreamClosedError(f"Stream {self.name} is closed")
        self._queue.put_nowait(chunk)
        self._bytes_written += len(chunk)

    def end(self) -> None:
        """Finish the stream. Further writes fail."""
        if not self.writable:
            return
        self._ended = True
        self._queue.put_nowait(None)
        self._emit_close()

    def destroy(self) -> None:
        """Mark the stream as torn down by the consumer side."""
        if self._destroyed:
            return
        self._destroyed = True
        if not self._ended:
            # Unblock any pending reader
            self._queue.put_nowait(None)
        self._emit_close()

    def on_close(self, listener: Callable[[], Any]) -> None:
        """
        Register a close listener.

        Listeners registered after the stream has closed are invoked at once.
        Coroutine listeners are scheduled on the running loop.
        """
        if self._close_fired:
            self._call_listener(listener)
            return
        self._close_listeners.append(listener)

    def _emit_close(self) -> None:
        if self._close_fired:
            return
        self._close_fired = True
        listeners, self._close_listeners = self._close_listeners, []
        for listener in listeners:
            self._call_listener(listener)

    def _call_listener(self, listener: Callable[[], Any]) -> None:
        try:
            result = listener()
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._listener_tasks.add(task)
                task.add_done_callback(self._listener_done)
        except Exception as e:
            logger.error(f"Close listener failed for {self.name}: {e}")

    def _listener_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Close listener failed for {self.name}: {error}")

    async def read(self, timeout: float | None = None) -> bytes | None:
        """
        Get the next chunk without destroying the stream.

        Args:
            timeout: Max seconds to wait (None = wait until a chunk arrives)

        Returns:
            Next chunk, or None if the stream has finished or the timeout expired
        """
        try:
            if timeout is not None:
                chunk = await asyncio.wait_for(self._queue.get(), timeout=timeout)
            else:
                chunk = await self._queue.get()
        except asyncio.TimeoutError:
            return None
        if chunk is None:
            # Leave the end marker for the next reader
            self._queue.put_nowait(None)
        return chunk

    async def chunks(self) -> AsyncIterator[bytes]:
        """
        Drain the stream until it ends.

        Leaving the iteration for any reason (normal end, cancellation on
        client disconnect, generator close) destroys the stream.
        """
        try:
            while True:
                chunk = await self._queue.get()
                if chunk is None:
                    break
                yield chunk
        finally:
            self.destroy()
