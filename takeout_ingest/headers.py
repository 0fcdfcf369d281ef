"""Header lookup and RFC 2047 decoding of the whitelisted headers."""

from __future__ import annotations

import email.errors
import email.header
import email.message
import re
from collections.abc import Iterable, Sequence

from .errors import EncodingError

_FOLD_RE = re.compile(r"\r?\n(?=[ \t])")
_ENCODED_WORD_RE = re.compile(r"=\?[^?\s]+\?(?P<encoding>[^?\s]*)\?[^?\s]*\?=")


class HeaderView:
    """Case-insensitive, read-only view over raw header values.

    The first occurrence of a header wins.  Folded values are unfolded and
    trimmed, but encoded-words are left untouched.
    """

    def __init__(self, items: Iterable[tuple[str, str]]) -> None:
        self._values: dict[str, str] = {}
        for name, value in items:
            self._values.setdefault(name.lower(), _unfold(value))

    @classmethod
    def from_message(cls, msg: email.message.Message) -> HeaderView:
        # raw_items() bypasses the policy header factory, which would
        # decode encoded-words leniently.
        return cls(msg.raw_items())

    def get(self, name: str, default: str | None = None) -> str | None:
        return self._values.get(name.lower(), default)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._values

    def __len__(self) -> int:
        return len(self._values)


def decode_encoded_words(value: str) -> str:
    """Decode every RFC 2047 encoded-word in *value*.

    Raises :class:`EncodingError` for malformed base64 words, encodings
    other than Q and B, unknown charsets, or bytes that are invalid in the
    declared charset.
    """
    for match in _ENCODED_WORD_RE.finditer(value):
        if match.group("encoding").upper() not in ("Q", "B"):
            raise EncodingError(f"unsupported encoding in encoded-word {match.group(0)!r}")

    try:
        chunks = email.header.decode_header(value)
    except email.errors.HeaderParseError as exc:
        raise EncodingError(f"malformed encoded-word in header value {value!r}") from exc

    # No encoded-words at all: decode_header hands the value back untouched.
    if len(chunks) == 1 and isinstance(chunks[0][0], str):
        return chunks[0][0]

    decoded: list[str] = []
    for data, charset in chunks:
        if charset is None:
            # Unencoded runs come back as raw-unicode-escape bytes.
            decoded.append(data.decode("raw-unicode-escape"))
            continue
        try:
            decoded.append(data.decode(charset))
        except LookupError as exc:
            raise EncodingError(f"unsupported charset {charset!r} in encoded-word") from exc
        except UnicodeDecodeError as exc:
            raise EncodingError(f"invalid {charset} data in encoded-word") from exc
    return "".join(decoded)


def extract_headers(headers: HeaderView, names: Sequence[str]) -> list[tuple[str, str]]:
    """Return ``(name, decoded value)`` pairs for *names*, in *names* order.

    Absent headers and headers that decode to an empty string are left out.
    """
    extracted: list[tuple[str, str]] = []
    for name in names:
        raw = headers.get(name)
        if raw is None:
            continue
        value = decode_encoded_words(raw)
        if value:
            extracted.append((name, value))
    return extracted


def _unfold(value: str) -> str:
    return _FOLD_RE.sub("", value).strip()
