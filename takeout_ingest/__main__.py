"""Entry point for the takeout_ingest package.

Usage::

    python -m takeout_ingest decode message.eml     # decoded blob on stdout
    python -m takeout_ingest list export.tar.gz     # one log line per entry
    python -m takeout_ingest import export.tar.gz   # files, nested archives, emails
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import structlog

from .archive import open_archive
from .config import IngestConfig
from .errors import DecodeError
from .importer import ArchiveImporter, decode_emails
from .logging import setup_logging
from .message import decode_message_async
from .stream import FileChunkSource

logger = structlog.get_logger()

MODES = ("decode", "list", "import")


async def _decode(path: Path, config: IngestConfig) -> None:
    raw = await asyncio.to_thread(path.read_bytes)
    decoded = await decode_message_async(raw, config=config.decoder)
    sys.stdout.buffer.write(decoded.render())
    sys.stdout.buffer.flush()


async def _list(path: Path, config: IngestConfig) -> None:
    archive_config = config.archive
    if path.suffix.lower() in (".gz", ".tgz"):
        archive_config = archive_config.model_copy(update={"compression": "gzip"})

    source = FileChunkSource(path, archive_config.chunk_size)
    try:
        async with open_archive(source, config=archive_config) as archive:
            async for entry in archive:
                logger.info(
                    "archive_entry",
                    name=entry.name,
                    type=entry.type_flag,
                    size=entry.size,
                )
    finally:
        await source.close()


async def _import(path: Path, config: IngestConfig) -> None:
    importer = ArchiveImporter(config.importer, config.archive)
    source = FileChunkSource(path, config.archive.chunk_size)
    try:
        files = importer.iter_files(source, (path.name,))
        async for item, decoded in decode_emails(_log_files(files), config.decoder):
            if isinstance(decoded, DecodeError):
                logger.warning("email_decode_failed", path="/".join(item.path), error=str(decoded))
            else:
                logger.info(
                    "email_decoded",
                    path="/".join(item.path),
                    headers=dict(decoded.headers),
                    body_bytes=len(decoded.body),
                )
    finally:
        await source.close()


async def _log_files(files):
    async for item in files:
        logger.info(
            "file_imported",
            path="/".join(item.path),
            size=len(item.data),
            skipped=item.skipped,
        )
        yield item


def main() -> None:
    if len(sys.argv) < 3 or sys.argv[1] not in MODES:
        print("Usage: python -m takeout_ingest <decode|list|import> <path>", file=sys.stderr)
        sys.exit(1)

    mode, path = sys.argv[1], Path(sys.argv[2])
    config = IngestConfig()
    setup_logging(json=config.log_json, level=config.log_level, mode=mode, input=str(path))

    runner = {"decode": _decode, "list": _list, "import": _import}[mode]
    try:
        asyncio.run(runner(path, config))
    except DecodeError as exc:
        logger.error("ingest_failed", error=str(exc))
        sys.exit(2)


if __name__ == "__main__":
    main()
