"""Buffered writer that turns an arbitrary byte stream into fixed-size chunks."""
from __future__ import annotations

from typing import Awaitable, Callable

from application.ports.chunk_store import ChunkWriter, ObjectStateError

# (sequence number, chunk bytes) -> persisted
ChunkSink = Callable[[int, bytes], Awaitable[None]]


class BufferedChunkWriter(ChunkWriter):
    """Accumulate writes and hand complete chunks to ``sink`` in order.

    Only the tail chunk may be shorter than ``chunk_size``; it is emitted by
    ``close()``. Each chunk is awaited before the next one is produced, so
    chunks land in strictly increasing sequence order.
    """

    def __init__(self, object_id: str, chunk_size: int, sink: ChunkSink):
        self.object_id = object_id
        self.chunk_size = chunk_size
        self._sink = sink
        self._buffer = bytearray()
        self._sequence = 0
        self._bytes_written = 0
        self._closed = False
        self._aborted = False

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    @property
    def chunks_committed(self) -> int:
        return self._sequence

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise ObjectStateError(f"Writer for {self.object_id} is closed")
        if not data:
            return
        self._buffer.extend(data)
        self._bytes_written += len(data)
        while len(self._buffer) >= self.chunk_size:
            chunk = bytes(self._buffer[: self.chunk_size])
            del self._buffer[: self.chunk_size]
            await self._commit(chunk)

    async def close(self) -> None:
        if self._closed:
            return
        if self._buffer:
            chunk = bytes(self._buffer)
            self._buffer.clear()
            await self._commit(chunk)
        self._closed = True

    async def abort(self) -> None:
        self._aborted = True
        self._closed = True
        self._buffer.clear()

    async def _commit(self, chunk: bytes) -> None:
        await self._sink(self._sequence, chunk)
        self._sequence += 1
