"""Shared test fixtures for the takeout_ingest test suite."""

from __future__ import annotations

import io
import logging
import tarfile

import pytest
import structlog

from takeout_ingest.config import ArchiveConfig, DecoderConfig, ImportConfig

# Header whitelist of the variant that does not echo Content-Type.
HEADERS_WITHOUT_CONTENT_TYPE = ["From", "To", "Cc", "Subject", "X-Gmail-Labels"]


class RecordingChunkSource:
    """Chunk source that serves a fixed list of chunks and counts requests."""

    def __init__(self, chunks: list[bytes]) -> None:
        self._chunks = list(chunks)
        self.requests = 0

    async def read_chunk(self) -> bytes | None:
        self.requests += 1
        if not self._chunks:
            return None
        return self._chunks.pop(0)


class FailingChunkSource:
    """Chunk source that serves some chunks, then raises."""

    def __init__(self, chunks: list[bytes], error: Exception) -> None:
        self._chunks = list(chunks)
        self._error = error

    async def read_chunk(self) -> bytes | None:
        if self._chunks:
            return self._chunks.pop(0)
        raise self._error


def build_tar(
    entries: list[tuple[str, bytes | None]],
    *,
    format: int = tarfile.GNU_FORMAT,
) -> bytes:
    """Build an in-memory tar archive.

    Each entry is ``(name, data)``; ``data=None`` adds a directory.
    """
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w", format=format) as tar:
        for name, data in entries:
            info = tarfile.TarInfo(name)
            info.mtime = 1_700_000_000
            if data is None:
                info.type = tarfile.DIRTYPE
                info.mode = 0o755
                tar.addfile(info)
            else:
                info.size = len(data)
                tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def chunked(data: bytes, size: int) -> list[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


@pytest.fixture(autouse=True)
def _reset_root_logger():
    """Drop handlers and context installed by setup_logging() once a test is done."""
    yield
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def decoder_config() -> DecoderConfig:
    return DecoderConfig(
        headers=["From", "To", "Cc", "Subject", "Content-Type", "X-Gmail-Labels"],
        text_types=["text/plain", "text/html"],
    )


@pytest.fixture
def short_decoder_config() -> DecoderConfig:
    return DecoderConfig(headers=HEADERS_WITHOUT_CONTENT_TYPE)


@pytest.fixture
def archive_config() -> ArchiveConfig:
    return ArchiveConfig(compression="none", chunk_size=512, read_size=1024)


@pytest.fixture
def import_config() -> ImportConfig:
    return ImportConfig(file_size_limit_mb=1, regular_files_only=True, expand_nested=True)


@pytest.fixture
def tar_factory():
    """Factory to build tar archives from ``(name, data)`` pairs."""
    return build_tar


@pytest.fixture
def sample_tar() -> bytes:
    return build_tar([
        ("docs", None),
        ("docs/first.txt", b"first file content"),
        ("docs/second.txt", b"x" * 1500),
        ("third.txt", b""),
        ("fourth.txt", b"the end"),
    ])


@pytest.fixture
def message_factory():
    """Factory to build raw messages: opening line, header lines, body."""

    def _make(
        headers: list[str],
        body: bytes = b"",
        *,
        opening: bytes = b"From 1234@xxx Mon Jun 02 12:00:00 +0000 2025",
    ) -> bytes:
        head = b"".join(h.encode() + b"\r\n" for h in headers)
        return opening + b"\r\n" + head + b"\r\n" + body

    return _make
