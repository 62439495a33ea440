from __future__ import annotations

import base64
import binascii
import string
from typing import Final, Literal, TypeAlias

TransactionEncoding: TypeAlias = Literal["ascii", "hex", "binary"]

ENCODINGS: Final[tuple[TransactionEncoding, ...]] = ("ascii", "hex", "binary")

_HEX_CHARS: Final[set[str]] = set(string.hexdigits)
_DUMP_WIDTH: Final[int] = 16


class FormatError(ValueError):
    """Raised when transaction text cannot be decoded with its declared encoding."""


def _strip_separators(text: str) -> str:
    return "".join(text.split()).replace("-", "")


def decode_hex(text: str) -> bytes:
    """Decode a hex string, ignoring whitespace and dash separators.

    Accepts e.g. `"50 49 4E 47"`, `"50-49-4e-47"` and `"50494e47"`.
    """

    normalized = _strip_separators(text)
    if len(normalized) % 2:
        raise FormatError("Hex string must have an even length.")
    bad = sorted({ch for ch in normalized if ch not in _HEX_CHARS})
    if bad:
        raise FormatError(f"Hex string contains non-hex characters: {''.join(bad)!r}")
    return bytes.fromhex(normalized)


def decode_base64(text: str) -> bytes:
    # Whitespace is not part of the alphabet but is tolerated, like most base64 readers do.
    normalized = "".join(text.split())
    try:
        return base64.b64decode(normalized, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise FormatError(f"Invalid base64 payload: {exc}") from exc


def encode(text: str, encoding: TransactionEncoding) -> bytes:
    """Convert textual transaction data into the bytes put on the wire.

    Args:
        text: Payload text as configured by the operator.
        encoding: `ascii` sends the characters themselves (non-ASCII becomes `?`),
            `hex` decodes pairs of hex digits, `binary` decodes base64.

    Raises:
        FormatError: If `text` is not valid for `encoding`.
    """

    if encoding == "hex":
        return decode_hex(text)
    if encoding == "binary":
        return decode_base64(text)
    return text.encode("ascii", errors="replace")


def _dump_char(value: int) -> str:
    if value < 0x20 or value >= 0x7F:
        return "."
    return chr(value)


def hex_dump(data: bytes, offset: int = 0, count: int | None = None) -> str:
    """Render `data[offset:offset + count]` as a 16-bytes-per-line hex dump.

    Each line reads `OOOOOOOO  hh hh hh hh hh hh hh hh  hh hh hh hh hh hh hh hh  |ascii|`:
    an 8-digit offset, the byte pairs with an extra gap after the eighth byte, and an
    ASCII trailer where control bytes and bytes >= 0x7F render as `.`. Short final
    lines are padded so the trailer stays aligned. Lines are joined with `\\n` and the
    result has no trailing newline. A `count` running past the end of `data` is
    clamped.
    """

    available = max(len(data) - offset, 0)
    count = available if count is None else min(count, available)
    lines: list[str] = []
    for start in range(0, count, _DUMP_WIDTH):
        line_count = min(_DUMP_WIDTH, count - start)
        chunk = data[offset + start : offset + start + line_count]
        parts = [f"{offset + start:08x}  "]
        for index in range(_DUMP_WIDTH):
            parts.append(f"{chunk[index]:02x} " if index < line_count else "   ")
            if index == 7:
                parts.append(" ")
        parts.append(" |")
        parts.extend(_dump_char(value) for value in chunk)
        parts.append("|")
        lines.append("".join(parts))
    return "\n".join(lines)


def to_hex_string(data: bytes) -> str:
    """Space-joined lowercase hex pairs, e.g. `48 45 4c 4c 4f`."""

    return " ".join(f"{value:02x}" for value in data)


def escape_ascii(data: bytes) -> str:
    """Single-line ASCII rendering: bytes >= 0x80 become `?`, CR/LF become `\\r`/`\\n`."""

    text = "".join(chr(value) if value < 0x80 else "?" for value in data)
    return text.replace("\r", "\\r").replace("\n", "\\n")
