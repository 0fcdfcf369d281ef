"""Walk an export archive and yield the files inside it.

Nested ``.tar.gz`` archives are expanded in place, oversized entries are
reported but not loaded, and ``.eml`` files can be decoded on the way
through with :func:`decode_emails`.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator, Sequence
from dataclasses import dataclass

import structlog

from .archive import ArchiveEntry, ArchiveEntryIterator, open_archive
from .config import ArchiveConfig, DecoderConfig, ImportConfig
from .errors import ArchiveFormatError, DecodeError
from .message import DecodedMessage, decode_message_async
from .stream import BytesChunkSource, ChunkSource

logger = structlog.get_logger()

TOO_LARGE = "tooLarge"
_GZIP_SUFFIXES = (".tar.gz", ".tgz")


@dataclass
class ImportedFile:
    """One file extracted from an archive."""

    path: tuple[str, ...]
    data: bytes
    skipped: str | None = None

    @property
    def name(self) -> str:
        return self.path[-1] if self.path else ""


class ArchiveImporter:
    """Yield :class:`ImportedFile` records for every file in an archive."""

    def __init__(
        self,
        config: ImportConfig | None = None,
        archive_config: ArchiveConfig | None = None,
    ) -> None:
        self._config = config or ImportConfig()
        self._archive_config = archive_config or ArchiveConfig()

    @property
    def size_limit(self) -> int:
        return self._config.file_size_limit_mb << 20

    async def iter_files(
        self,
        source: ChunkSource,
        path: Sequence[str],
    ) -> AsyncIterator[ImportedFile]:
        """Iterate the archive read from *source*.

        *path* is the archive's own location; its last component decides
        whether the stream is gunzipped (``.tar.gz`` / ``.tgz``).
        """
        path = tuple(path)
        archive_config = self._archive_config.model_copy(
            update={"compression": "gzip" if _is_gzip_archive(path) else "none"},
        )
        logger.info("archive_import_started", path="/".join(path))

        imported = 0
        async with open_archive(source, config=archive_config) as archive:
            async for entry in archive:
                if self._config.regular_files_only and not entry.is_regular:
                    continue
                parts = _split_name(entry.name)
                if not parts:
                    continue
                subpath = (*path, *parts)

                # Nested exports are expanded whatever their size; the
                # limit applies to the files inside them.
                if self._config.expand_nested and _is_gzip_archive(subpath):
                    data = await self._read_entry(archive, entry)
                    nested = BytesChunkSource(data, self._archive_config.chunk_size)
                    async for item in self.iter_files(nested, subpath):
                        imported += 1
                        yield item
                    continue

                if entry.size > self.size_limit:
                    logger.info(
                        "archive_entry_skipped",
                        path="/".join(subpath),
                        size=entry.size,
                        reason=TOO_LARGE,
                    )
                    imported += 1
                    yield ImportedFile(path=subpath, data=b"", skipped=TOO_LARGE)
                    continue

                data = await self._read_entry(archive, entry)
                imported += 1
                yield ImportedFile(path=subpath, data=data)

        logger.info("archive_import_finished", path="/".join(path), files=imported)

    async def _read_entry(self, archive: ArchiveEntryIterator, entry: ArchiveEntry) -> bytes:
        data = bytearray()
        while len(data) < entry.size:
            chunk = await archive.read(min(self._archive_config.read_size, entry.size - len(data)))
            if not chunk:
                break
            data += chunk
        if len(data) != entry.size:
            raise ArchiveFormatError(
                f"invalid read length for {entry.name!r}: got {len(data)}, expected {entry.size}"
            )
        return bytes(data)


async def decode_emails(
    files: AsyncIterable[ImportedFile],
    config: DecoderConfig | None = None,
) -> AsyncIterator[tuple[ImportedFile, DecodedMessage | DecodeError]]:
    """Pair every loaded ``.eml`` file with its decoded message or error.

    A message that fails to decode does not stop the iteration.
    """
    config = config or DecoderConfig()
    async for item in files:
        if item.skipped or not item.name.lower().endswith(".eml"):
            continue
        try:
            decoded: DecodedMessage | DecodeError = await decode_message_async(
                item.data, config=config
            )
        except DecodeError as exc:
            decoded = exc
        yield item, decoded


def _split_name(name: str) -> tuple[str, ...]:
    return tuple(part for part in name.split("/") if part and part != ".")


def _is_gzip_archive(path: Sequence[str]) -> bool:
    return bool(path) and path[-1].lower().endswith(_GZIP_SUFFIXES)
