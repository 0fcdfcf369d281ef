"""Bridge between asynchronous chunk sources and blocking byte readers.

A :class:`ChunkSource` lives on the asyncio event loop and hands out one
chunk per ``read_chunk()`` call, ``None`` meaning end of source.  The
:class:`ByteStreamAdapter` is used from a worker thread (the decode
context): whenever it runs out of bytes it submits exactly one
``read_chunk()`` to the loop and blocks on the result, so there is never
more than one outstanding request and never more than one chunk held.
"""

from __future__ import annotations

import asyncio
import io
import zlib
from pathlib import Path
from typing import Protocol, runtime_checkable

import structlog

from .errors import DecodeError, StreamError

logger = structlog.get_logger()

DEFAULT_CHUNK_SIZE = 64 * 1024


@runtime_checkable
class ChunkSource(Protocol):
    """Asynchronous provider of successive byte chunks."""

    async def read_chunk(self) -> bytes | None:
        """Return the next chunk, or ``None`` once the source is exhausted."""
        ...


class ByteStreamAdapter(io.RawIOBase):
    """Blocking, pull-based reader over a :class:`ChunkSource`.

    Must be driven from a thread other than *loop*'s, and by a single
    consumer at a time.
    """

    def __init__(self, source: ChunkSource, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__()
        self._source = source
        self._loop = loop
        self._held: memoryview | None = None
        self._eof = False

    @property
    def at_eof(self) -> bool:
        """True once the source has signalled end and no bytes are held."""
        return self._eof and self._held is None

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:  # type: ignore[override]
        return self.fill(buffer)

    def fill(self, buffer) -> int:
        """Fill *buffer* from the source, blocking as needed.

        Returns the number of bytes written, which is less than
        ``len(buffer)`` only when the source is exhausted.
        """
        view = memoryview(buffer).cast("B")
        filled = 0
        while filled < len(view):
            if self._held is None:
                if self._eof:
                    break
                chunk = self._request_chunk()
                if chunk is None:
                    self._eof = True
                    break
                if not chunk:
                    continue
                self._held = memoryview(chunk).cast("B")

            count = min(len(view) - filled, len(self._held))
            view[filled:filled + count] = self._held[:count]
            filled += count
            self._held = self._held[count:] if count < len(self._held) else None
        return filled

    def _request_chunk(self) -> bytes | None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            raise StreamError("ByteStreamAdapter.fill() called on the event loop thread")

        future = asyncio.run_coroutine_threadsafe(self._source.read_chunk(), self._loop)
        try:
            return future.result()
        except DecodeError:
            raise
        except Exception as exc:
            raise StreamError(f"chunk source failed: {exc}") from exc


# ------------------------------------------------------------------
# Chunk sources
# ------------------------------------------------------------------


class BytesChunkSource:
    """Serve an in-memory buffer in fixed-size chunks."""

    def __init__(self, data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._data = memoryview(data).cast("B")
        self._chunk_size = chunk_size
        self._offset = 0

    async def read_chunk(self) -> bytes | None:
        if self._offset >= len(self._data):
            return None
        chunk = self._data[self._offset:self._offset + self._chunk_size]
        self._offset += len(chunk)
        return chunk.tobytes()


class FileChunkSource:
    """Read a local file in chunks without blocking the event loop."""

    def __init__(self, path: str | Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._path = Path(path)
        self._chunk_size = chunk_size
        self._fh: io.BufferedReader | None = None
        self._closed = False

    async def read_chunk(self) -> bytes | None:
        if self._closed:
            return None
        if self._fh is None:
            self._fh = await asyncio.to_thread(self._path.open, "rb")
            logger.debug("file_source_opened", path=str(self._path))
        chunk = await asyncio.to_thread(self._fh.read, self._chunk_size)
        if not chunk:
            await self.close()
            return None
        return chunk

    async def close(self) -> None:
        self._closed = True
        if self._fh is not None:
            await asyncio.to_thread(self._fh.close)
            self._fh = None


class CoalescingChunkSource:
    """Merge small chunks until more than *min_chunk_size* bytes are buffered.

    A chunk that is already large enough on its own passes through
    untouched.  Whatever is left when the inner source ends is flushed as
    one final chunk.
    """

    def __init__(self, source: ChunkSource, min_chunk_size: int) -> None:
        self._source = source
        self._min_chunk_size = min_chunk_size
        self._done = False

    async def read_chunk(self) -> bytes | None:
        if self._done:
            return None
        parts: list[bytes] = []
        size = 0
        while True:
            chunk = await self._source.read_chunk()
            if chunk is None:
                self._done = True
                return b"".join(parts) if parts else None
            if not size and len(chunk) > self._min_chunk_size:
                return chunk
            parts.append(chunk)
            size += len(chunk)
            if size > self._min_chunk_size:
                return b"".join(parts)


class GzipChunkSource:
    """Decompress a gzip stream (one or more members) chunk by chunk."""

    def __init__(self, source: ChunkSource) -> None:
        self._source = source
        self._decompressor = _gzip_decompressor()
        self._done = False

    async def read_chunk(self) -> bytes | None:
        while not self._done:
            chunk = await self._source.read_chunk()
            if chunk is None:
                self._done = True
                if not self._decompressor.eof:
                    raise StreamError("gzip stream ended in the middle of a member")
                return None
            data = self._feed(chunk)
            if data:
                return data
        return None

    def _feed(self, chunk: bytes) -> bytes:
        out = bytearray()
        while chunk:
            if self._decompressor.eof:
                self._decompressor = _gzip_decompressor()
            try:
                out += self._decompressor.decompress(chunk)
            except zlib.error as exc:
                raise StreamError(f"corrupt gzip stream: {exc}") from exc
            chunk = self._decompressor.unused_data if self._decompressor.eof else b""
        return bytes(out)


def _gzip_decompressor():
    return zlib.decompressobj(wbits=zlib.MAX_WBITS | 16)
