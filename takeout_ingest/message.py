"""Decode one raw message into its canonical plain representation.

Input layout: an opening line (typically the mbox ``From `` line, copied
verbatim), CRLF, then an RFC 5322 message.  Output layout::

    <opening line>\\r\\n
    <Name>: <decoded value>\\r\\n      (whitelisted headers, whitelist order)
    \\r\\n
    <decoded body bytes>
"""

from __future__ import annotations

import asyncio
import email.parser
import email.policy
import io
from dataclasses import dataclass, field

import structlog

from .config import DecoderConfig
from .errors import DecodeError, StructuralError
from .headers import HeaderView, extract_headers
from .mime import MimeTreeWalker, check_header_block

logger = structlog.get_logger()

CRLF = b"\r\n"


@dataclass(frozen=True)
class DecodedMessage:
    """Selected headers plus the assembled body of one message."""

    opening_line: bytes
    headers: list[tuple[str, str]] = field(default_factory=list)
    body: bytes = b""

    def render(self) -> bytes:
        out = bytearray(self.opening_line)
        out += CRLF
        for name, value in self.headers:
            out += f"{name}: {value}".encode("utf-8", "surrogateescape")
            out += CRLF
        out += CRLF
        out += self.body
        return bytes(out)

    @property
    def text(self) -> str:
        """The rendered blob as text; invalid UTF-8 is replaced."""
        return self.render().decode("utf-8", errors="replace")


def decode_message(raw: bytes, *, config: DecoderConfig | None = None) -> DecodedMessage:
    """Decode *raw* into a :class:`DecodedMessage`.

    Any failure in the header or body walk raises a :class:`DecodeError`
    subclass; no partial result is returned.
    """
    config = config or DecoderConfig()
    try:
        decoded = _decode(bytes(raw), config)
    except DecodeError as exc:
        logger.warning("message_decode_failed", error=str(exc), kind=type(exc).__name__)
        raise

    logger.debug(
        "message_decoded",
        headers=len(decoded.headers),
        body_bytes=len(decoded.body),
    )
    return decoded


async def decode_message_async(
    raw: bytes,
    *,
    config: DecoderConfig | None = None,
) -> DecodedMessage:
    """Run :func:`decode_message` in a worker thread."""
    return await asyncio.to_thread(decode_message, raw, config=config)


def _decode(raw: bytes, config: DecoderConfig) -> DecodedMessage:
    opening_line, sep, rest = raw.partition(CRLF)
    if not sep:
        raise StructuralError("couldn't find newline after the opening line")
    if not _has_header_separator(rest):
        raise StructuralError("missing header/body separator")

    msg = email.parser.BytesParser(policy=email.policy.default).parsebytes(rest)
    check_header_block(msg)

    headers = HeaderView.from_message(msg)
    extracted = extract_headers(headers, config.headers)

    body = io.BytesIO()
    MimeTreeWalker(config.text_types).walk(msg, body, headers)

    return DecodedMessage(opening_line=opening_line, headers=extracted, body=body.getvalue())


def _has_header_separator(rest: bytes) -> bool:
    if rest.startswith((b"\r\n", b"\n")):
        return True
    return b"\n\r\n" in rest or b"\n\n" in rest
