"""Sequential tar decoding over an asynchronous chunk source.

:class:`TarDecoder` is a blocking, forward-only reader of 512-byte tar
headers and entry content.  :class:`ArchiveEntryIterator` runs it on a
dedicated worker thread and exposes ``next()`` / ``read()`` as coroutines,
with the bytes themselves pulled from the event loop through a
:class:`~takeout_ingest.stream.ByteStreamAdapter`.

Unlike ``tarfile.TarFile``, a corrupt header that is not the first one is
an error here rather than a silent end of archive.
"""

from __future__ import annotations

import asyncio
import io
import tarfile
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TypeVar

import structlog

from .config import ArchiveConfig
from .errors import ArchiveFormatError, DecodeError
from .stream import ByteStreamAdapter, ChunkSource, CoalescingChunkSource, GzipChunkSource

logger = structlog.get_logger()

T = TypeVar("T")

BLOCKSIZE = tarfile.BLOCKSIZE
ENCODING = "utf-8"

_SKIP_CHUNK = 64 * 1024
_HEADER_ONLY_TYPES = frozenset({
    tarfile.LNKTYPE,
    tarfile.SYMTYPE,
    tarfile.CHRTYPE,
    tarfile.BLKTYPE,
    tarfile.DIRTYPE,
    tarfile.FIFOTYPE,
})


@dataclass(frozen=True)
class ArchiveEntry:
    """Header of the entry currently positioned for content reads."""

    name: str
    type_flag: str
    size: int

    @property
    def is_regular(self) -> bool:
        return self.type_flag == tarfile.REGTYPE.decode()


class TarDecoder:
    """Blocking, forward-only tar reader over a raw byte stream."""

    def __init__(self, stream: io.RawIOBase) -> None:
        self._stream = stream
        self._remaining = 0
        self._padding = 0
        self._finished = False

    @property
    def remaining(self) -> int:
        """Unread content bytes of the current entry."""
        return self._remaining

    def next_entry(self) -> ArchiveEntry | None:
        """Skip what is left of the current entry and parse the next header.

        Returns ``None`` at the end of the archive.
        """
        if self._finished:
            return None
        self._skip(self._remaining + self._padding)
        self._remaining = self._padding = 0

        overrides: dict[str, object] = {}
        while True:
            info = self._read_header()
            if info is None:
                self._finished = True
                return None

            if info.type in (tarfile.GNUTYPE_LONGNAME, tarfile.GNUTYPE_LONGLINK):
                value = _cstring(self._read_block_content(info.size))
                key = "name" if info.type == tarfile.GNUTYPE_LONGNAME else "linkname"
                overrides[key] = value
                continue
            if info.type == tarfile.XHDTYPE:
                overrides.update(_parse_pax(self._read_block_content(info.size)))
                continue
            break

        type_flag = info.type.decode("ascii", "replace")
        if info.type == tarfile.AREGTYPE:
            type_flag = tarfile.REGTYPE.decode()
        name = str(overrides.get("name", info.name))
        size = int(overrides.get("size", info.size))

        data_size = 0 if info.type in _HEADER_ONLY_TYPES else size
        self._remaining = data_size
        self._padding = _padding(data_size)
        return ArchiveEntry(name=name, type_flag=type_flag, size=size)

    def read(self, size_hint: int) -> bytes:
        """Read up to *size_hint* bytes of the current entry's content."""
        if size_hint < 0:
            raise ValueError("size_hint must not be negative")
        count = min(size_hint, self._remaining)
        if count == 0:
            return b""
        buffer = bytearray(count)
        got = self._fill(memoryview(buffer))
        self._remaining -= got
        if got < count:
            raise ArchiveFormatError("unexpected end of data inside entry content")
        return bytes(buffer)

    def readinto(self, buffer) -> int:
        """Read content of the current entry into *buffer*; 0 means done."""
        view = memoryview(buffer).cast("B")
        count = min(len(view), self._remaining)
        if count == 0:
            return 0
        got = self._fill(view[:count])
        self._remaining -= got
        if got < count:
            raise ArchiveFormatError("unexpected end of data inside entry content")
        return got

    # ------------------------------------------------------------------
    # Block helpers
    # ------------------------------------------------------------------

    def _read_header(self) -> tarfile.TarInfo | None:
        block = self._read_exact(BLOCKSIZE)
        if not block:
            return None
        if len(block) < BLOCKSIZE:
            raise ArchiveFormatError("unexpected end of data inside a tar header")
        try:
            info = tarfile.TarInfo.frombuf(block, ENCODING, "surrogateescape")
        except tarfile.EOFHeaderError:
            # One zero block: a second one (or a clean end) closes the archive.
            trailer = self._read_exact(BLOCKSIZE)
            if trailer and (len(trailer) < BLOCKSIZE or trailer.count(0) != BLOCKSIZE):
                raise ArchiveFormatError("invalid tar header after zero block") from None
            return None
        except tarfile.HeaderError as exc:
            raise ArchiveFormatError(f"invalid tar header: {exc}") from exc

        # frombuf() strips the trailing slash of directory names; keep the
        # name as written in the header.
        if info.isdir() and block[:100].split(b"\0", 1)[0].endswith(b"/"):
            info.name += "/"
        return info

    def _read_block_content(self, size: int) -> bytes:
        data = self._read_exact(size + _padding(size))
        if len(data) < size + _padding(size):
            raise ArchiveFormatError("unexpected end of data inside an extended header")
        return data[:size]

    def _read_exact(self, size: int) -> bytes:
        buffer = bytearray(size)
        got = self._fill(memoryview(buffer))
        del buffer[got:]
        return bytes(buffer)

    def _fill(self, view: memoryview) -> int:
        filled = 0
        while filled < len(view):
            count = self._stream.readinto(view[filled:])
            if not count:
                break
            filled += count
        return filled

    def _skip(self, size: int) -> None:
        scratch = memoryview(bytearray(min(size, _SKIP_CHUNK)))
        while size > 0:
            step = min(size, len(scratch))
            if self._fill(scratch[:step]) < step:
                raise ArchiveFormatError("unexpected end of data while skipping entry content")
            size -= step


class ArchiveEntryIterator:
    """Asynchronous ``next()`` / ``read()`` over a tar chunk source.

    Blocking work runs on a single worker thread owned by the iterator.
    Calls must be issued one at a time.
    """

    def __init__(self, source: ChunkSource) -> None:
        self._source = source
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tar-decode")
        self._decoder: TarDecoder | None = None
        self._busy = False
        self._entries = 0

    async def next(self) -> ArchiveEntry | None:
        """Return the next entry, or ``None`` at the end of the archive."""
        entry = await self._run(lambda decoder: decoder.next_entry())
        if entry is None:
            logger.debug("archive_end", entries=self._entries)
        else:
            self._entries += 1
            logger.debug(
                "archive_entry",
                name=entry.name,
                type=entry.type_flag,
                size=entry.size,
            )
        return entry

    async def read(self, size_hint: int) -> bytes:
        """Read up to *size_hint* bytes of the current entry; ``b""`` at its end."""
        return await self._run(lambda decoder: decoder.read(size_hint))

    async def readinto(self, buffer) -> int:
        """Fill *buffer* with content of the current entry; 0 at its end."""
        return await self._run(lambda decoder: decoder.readinto(buffer))

    async def aclose(self) -> None:
        self._executor.shutdown(wait=False)

    def __aiter__(self) -> ArchiveEntryIterator:
        return self

    async def __anext__(self) -> ArchiveEntry:
        entry = await self.next()
        if entry is None:
            raise StopAsyncIteration
        return entry

    async def __aenter__(self) -> ArchiveEntryIterator:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _run(self, call: Callable[[TarDecoder], T]) -> T:
        if self._busy:
            raise RuntimeError("ArchiveEntryIterator calls must not overlap")
        loop = asyncio.get_running_loop()
        if self._decoder is None:
            self._decoder = TarDecoder(ByteStreamAdapter(self._source, loop))
        decoder = self._decoder

        self._busy = True
        try:
            return await loop.run_in_executor(self._executor, call, decoder)
        except DecodeError as exc:
            logger.warning("archive_read_failed", error=str(exc), kind=type(exc).__name__)
            raise
        finally:
            self._busy = False


def open_archive(
    source: ChunkSource,
    *,
    config: ArchiveConfig | None = None,
) -> ArchiveEntryIterator:
    """Open a tar stream, gunzipping it first when configured to."""
    config = config or ArchiveConfig()
    if config.compression == "gzip":
        source = GzipChunkSource(source)
    if config.min_chunk_size:
        source = CoalescingChunkSource(source, config.min_chunk_size)
    logger.debug(
        "archive_opened",
        compression=config.compression,
        min_chunk_size=config.min_chunk_size,
    )
    return ArchiveEntryIterator(source)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _padding(size: int) -> int:
    return -size % BLOCKSIZE


def _cstring(data: bytes) -> str:
    return data.split(b"\0", 1)[0].decode(ENCODING, "surrogateescape")


def _parse_pax(data: bytes) -> dict[str, object]:
    """Extract path, linkpath and size from PAX extended header records."""
    overrides: dict[str, object] = {}
    pos = 0
    while pos < len(data) and data[pos] != 0:
        length_field, space, _ = data[pos:].partition(b" ")
        try:
            length = int(length_field)
        except ValueError:
            raise ArchiveFormatError("invalid pax record length") from None
        record = data[pos:pos + length]
        if not space or length <= len(length_field) + 1 or not record.endswith(b"\n"):
            raise ArchiveFormatError("invalid pax record")
        keyword, eq, value = record[len(length_field) + 1:-1].partition(b"=")
        if not eq:
            raise ArchiveFormatError("invalid pax record")

        key = keyword.decode(ENCODING, "surrogateescape")
        text = value.decode(ENCODING, "surrogateescape")
        if key == "path":
            overrides["name"] = text
        elif key == "linkpath":
            overrides["linkname"] = text
        elif key == "size":
            try:
                overrides["size"] = int(text)
            except ValueError:
                raise ArchiveFormatError(f"invalid pax size {text!r}") from None
        pos += length
    return overrides
