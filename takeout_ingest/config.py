"""Decoder and importer configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
List fields take a JSON array (e.g. ``DECODER_HEADERS='["From","Subject"]'``).
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings

DEFAULT_HEADERS = ["From", "To", "Cc", "Subject", "Content-Type", "X-Gmail-Labels"]
DEFAULT_TEXT_TYPES = ["text/plain", "text/html"]


class DecoderConfig(BaseSettings):
    """Email decode settings."""

    model_config = {"env_prefix": "DECODER_"}

    headers: list[str] = Field(
        default_factory=lambda: list(DEFAULT_HEADERS),
        description="Header names echoed in the decoded output, in output order",
    )
    text_types: list[str] = Field(
        default_factory=lambda: list(DEFAULT_TEXT_TYPES),
        description="Leaf media types whose body is decoded into the output",
    )


class ArchiveConfig(BaseSettings):
    """Tar stream settings."""

    model_config = {"env_prefix": "ARCHIVE_"}

    compression: Literal["none", "gzip"] = Field(
        default="none",
        description="Compression applied to the chunk source before tar decoding",
    )
    chunk_size: int = Field(
        default=64 * 1024,
        gt=0,
        description="Chunk size in bytes for file- and buffer-backed sources",
    )
    read_size: int = Field(
        default=1 << 20,
        gt=0,
        description="Bytes requested per content read when draining an entry",
    )
    min_chunk_size: int = Field(
        default=0,
        ge=0,
        description="Coalesce source chunks until more than this many bytes are buffered (0 disables)",
    )


class ImportConfig(BaseSettings):
    """Archive import settings."""

    model_config = {"env_prefix": "IMPORT_"}

    file_size_limit_mb: int = Field(
        default=128,
        gt=0,
        description="Entries larger than this many MiB are skipped (tooLarge)",
    )
    regular_files_only: bool = Field(
        default=True,
        description="Only import regular file entries (type flag 0)",
    )
    expand_nested: bool = Field(
        default=True,
        description="Expand .tar.gz / .tgz entries found inside an archive",
    )


class IngestConfig(BaseSettings):
    """Root configuration for the command-line entry point.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "INGEST_"}

    log_json: bool = Field(default=True, description="Emit JSON log lines")
    log_level: str = Field(default="INFO", description="Root log level name")

    decoder: DecoderConfig = Field(default_factory=DecoderConfig)
    archive: ArchiveConfig = Field(default_factory=ArchiveConfig)
    importer: ImportConfig = Field(default_factory=ImportConfig)
