"""Takeout ingest: plain-text email decoding and streaming tar reading.

Public API re-exported here for convenience::

    from takeout_ingest import decode_message, open_archive
"""

from .archive import ArchiveEntry, ArchiveEntryIterator, TarDecoder, open_archive
from .config import ArchiveConfig, DecoderConfig, ImportConfig, IngestConfig
from .errors import (
    ArchiveFormatError,
    ContentTypeError,
    DecodeError,
    EncodingError,
    StreamError,
    StructuralError,
)
from .headers import HeaderView, decode_encoded_words, extract_headers
from .importer import ArchiveImporter, ImportedFile, decode_emails
from .logging import setup_logging
from .message import DecodedMessage, decode_message, decode_message_async
from .mime import MimeTreeWalker, SectionKind, parse_content_type
from .stream import (
    ByteStreamAdapter,
    BytesChunkSource,
    ChunkSource,
    CoalescingChunkSource,
    FileChunkSource,
    GzipChunkSource,
)

__all__ = [
    "ArchiveConfig",
    "ArchiveEntry",
    "ArchiveEntryIterator",
    "ArchiveFormatError",
    "ArchiveImporter",
    "ByteStreamAdapter",
    "BytesChunkSource",
    "ChunkSource",
    "CoalescingChunkSource",
    "ContentTypeError",
    "DecodeError",
    "DecodedMessage",
    "DecoderConfig",
    "EncodingError",
    "FileChunkSource",
    "GzipChunkSource",
    "HeaderView",
    "ImportConfig",
    "ImportedFile",
    "IngestConfig",
    "MimeTreeWalker",
    "SectionKind",
    "StreamError",
    "StructuralError",
    "TarDecoder",
    "decode_emails",
    "decode_encoded_words",
    "decode_message",
    "decode_message_async",
    "extract_headers",
    "open_archive",
    "parse_content_type",
    "setup_logging",
]
