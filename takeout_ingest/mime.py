"""Recursive MIME body walker.

Decodes a MIME tree into one byte sequence:

* ``text/plain`` / ``text/html`` leaves are transfer-decoded and appended,
* ``multipart/alternative`` contributes its first text child only,
* every other ``multipart/*`` contributes all of its children, in order,
* anything else is skipped.

The tree itself comes from the stdlib ``email`` parser; header values are
always read raw through :class:`HeaderView` so that Content-Type and
transfer-encoding validation is strict.
"""

from __future__ import annotations

import base64
import binascii
import email.errors
import email.message
import email.policy
import enum
import io
import quopri
from collections.abc import Iterable, Iterator, Mapping
from typing import BinaryIO

from .config import DEFAULT_TEXT_TYPES
from .errors import ContentTypeError, EncodingError, StructuralError
from .headers import HeaderView

IDENTITY_ENCODINGS = frozenset({"", "7bit", "8bit", "binary"})

_header_factory = email.policy.default.header_factory


class SectionKind(enum.Enum):
    """How a MIME section contributes to the output."""

    LEAF_TEXT = "leaf-text"
    ALTERNATIVE = "alternative"
    MULTIPART = "multipart"
    SKIP = "skip"


def parse_content_type(value: str | None) -> tuple[str, Mapping[str, str]]:
    """Parse a Content-Type value into ``(media_type, params)``.

    The media type is lower-cased.  A missing value, a non-ASCII media type
    or any parse defect raises :class:`ContentTypeError`; raw 8-bit bytes in
    parameter values are accepted.
    """
    if value is None or not value.strip():
        raise ContentTypeError("missing Content-Type")
    header = _header_factory("Content-Type", value)
    defects = [d for d in header.defects if not isinstance(d, email.errors.UndecodableBytesDefect)]
    if defects:
        raise ContentTypeError(f"malformed Content-Type {value!r}: {defects[0]}")
    if not header.content_type.isascii():
        raise ContentTypeError(f"malformed Content-Type {value!r}: non-ASCII media type")
    return header.content_type, header.params


def decode_transfer_encoding(body: bytes, encoding: str, out: BinaryIO) -> None:
    """Write *body* to *out*, undoing its Content-Transfer-Encoding."""
    encoding = encoding.strip().lower()
    if encoding in IDENTITY_ENCODINGS:
        out.write(body)
    elif encoding == "base64":
        compact = body.replace(b"\r", b"").replace(b"\n", b"")
        try:
            out.write(base64.b64decode(compact, validate=True))
        except binascii.Error as exc:
            raise EncodingError(f"invalid base64 body: {exc}") from exc
    elif encoding == "quoted-printable":
        quopri.decode(io.BytesIO(body), out)
    else:
        raise EncodingError(f"unsupported transfer encoding {encoding!r}")


class MimeTreeWalker:
    """Append the decoded text of a MIME tree to an output stream."""

    def __init__(self, text_types: Iterable[str] = DEFAULT_TEXT_TYPES) -> None:
        self._text_types = frozenset(t.lower() for t in text_types)

    def classify(self, media_type: str) -> SectionKind:
        if media_type in self._text_types:
            return SectionKind.LEAF_TEXT
        if media_type == "multipart/alternative":
            return SectionKind.ALTERNATIVE
        if media_type.startswith("multipart/"):
            return SectionKind.MULTIPART
        return SectionKind.SKIP

    def walk(
        self,
        part: email.message.Message,
        out: BinaryIO,
        headers: HeaderView | None = None,
    ) -> None:
        """Decode *part* (and its subtree) into *out*."""
        if headers is None:
            headers = HeaderView.from_message(part)
        media_type, params = parse_content_type(headers.get("Content-Type"))
        kind = self.classify(media_type)

        if kind is SectionKind.LEAF_TEXT:
            encoding = headers.get("Content-Transfer-Encoding", "") or ""
            decode_transfer_encoding(_raw_body(part, encoding), encoding, out)

        elif kind is SectionKind.ALTERNATIVE:
            for child in self._children(part, params):
                child_headers = HeaderView.from_message(child)
                child_type, _ = parse_content_type(child_headers.get("Content-Type"))
                if self.classify(child_type) is SectionKind.LEAF_TEXT:
                    self.walk(child, out, child_headers)
                    return
            _check_closed(part)

        elif kind is SectionKind.MULTIPART:
            for child in self._children(part, params):
                self.walk(child, out)
            _check_closed(part)

    def _children(
        self,
        part: email.message.Message,
        params: Mapping[str, str],
    ) -> Iterator[email.message.Message]:
        if not params.get("boundary"):
            raise ContentTypeError("multipart section has no boundary parameter")
        if not part.is_multipart():
            raise StructuralError(
                f"multipart boundary {params['boundary']!r} not found in body"
            )
        for child in part.get_payload():
            check_header_block(child)
            yield child


def _raw_body(part: email.message.Message, encoding: str) -> bytes:
    if part.is_multipart():
        raise StructuralError("text section unexpectedly holds nested parts")
    if encoding.strip().lower() in IDENTITY_ENCODINGS:
        # For identity encodings get_payload(decode=True) returns the body
        # bytes untouched; decode=False would transcode 8-bit data.
        return part.get_payload(decode=True)
    payload = part.get_payload()
    try:
        return payload.encode("ascii")
    except UnicodeEncodeError as exc:
        raise EncodingError(f"unencoded 8-bit data in {encoding.strip()} body") from exc


def check_header_block(part: email.message.Message) -> None:
    """Reject a section whose header block runs into its body."""
    if any(isinstance(d, email.errors.MissingHeaderBodySeparatorDefect) for d in part.defects):
        raise StructuralError("malformed header line before the header/body separator")


def _check_closed(part: email.message.Message) -> None:
    if any(isinstance(d, email.errors.CloseBoundaryNotFoundDefect) for d in part.defects):
        raise StructuralError("multipart body ends before its closing boundary")
