import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from .events import WireModel, serialize_event, is_terminal
from .exceptions import StreamWriteError

logger = logging.getLogger("moderation_worker")


class StreamChannel(ABC):
    """Append-only byte channel carrying the progress stream"""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        pass

    @abstractmethod
    async def flush(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class QueueChannel(StreamChannel):
    """
    Channel backed by an asyncio queue.

    Every write becomes one chunk for the consumer, so nothing is held back
    behind a later write. Iterate the channel to receive chunks until close().
    """

    _CLOSED = object()

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise StreamWriteError("Channel is closed")
        self._queue.put_nowait(data)

    async def flush(self) -> None:
        # Chunks are handed to the consumer on write
        pass

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await self._queue.get()
            if chunk is self._CLOSED:
                return
            yield chunk


class ProgressStreamWriter:
    """Writes one progress event per call as a JSON line, flushed immediately"""

    def __init__(self, channel: StreamChannel):
        self.channel = channel
        self._lock = asyncio.Lock()
        self.events_written = 0
        self.last_event: Optional[WireModel] = None

    async def append(self, event: WireModel) -> None:
        """
        Serialize, write and flush one event.

        The channel is held only for the duration of this write.

        Raises:
            StreamWriteError: if the channel rejects the write
        """
        data = serialize_event(event)

        async with self._lock:
            try:
                await self.channel.write(data)
                await self.channel.flush()
            except StreamWriteError:
                raise
            except Exception as e:
                raise StreamWriteError(f"Error writing {event.type} event: {e}") from e
            self.events_written += 1
            self.last_event = event

        if is_terminal(event):
            logger.debug(f"[STREAM] Wrote terminal event: {event.type}")
        else:
            logger.debug(f"[STREAM] Writing: {data.decode('utf-8').strip()}")

    async def close(self) -> None:
        """Close the underlying channel"""
        async with self._lock:
            await self.channel.close()
