"""Error kinds raised by the email and archive decoders."""

from __future__ import annotations


class DecodeError(Exception):
    """Base class for every failure surfaced by ``takeout_ingest``."""


class StructuralError(DecodeError):
    """The message is missing its opening line or header/body separator."""


class EncodingError(DecodeError):
    """Bad encoded-word, bad base64, or unsupported transfer encoding."""


class ContentTypeError(DecodeError):
    """Missing or malformed media type, or a multipart without a boundary."""


class ArchiveFormatError(DecodeError):
    """Malformed tar header, checksum failure, or truncated archive."""


class StreamError(DecodeError):
    """The chunk source failed or was driven from the wrong context."""
