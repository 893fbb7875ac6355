"""Decoding of the value field of magic entries: strings, numbers, GUIDs."""

from __future__ import annotations

import re
import string
import struct
import uuid
from typing import NamedTuple, Union

from filesniff.magic_types import (
    OP_ADD,
    OP_AND,
    OP_DIVIDE,
    OP_MINUS,
    OP_MODULO,
    OP_MULTIPLY,
    OP_OR,
    OP_XOR,
    FileType,
    Magic,
    pstring_length_size,
    sign_extend,
    type_size,
)

MAXSTRING = 128
GUID_TEXT_LEN = 36

_U64 = (1 << 64) - 1
_FLT_MAX = 3.4028234663852886e38
_SPACE = " \t\n\v\f\r"
_OCTAL = "01234567"
_HEX = "0123456789abcdefABCDEF"
_SIMPLE_ESCAPES = {
    "a": b"\a",
    "b": b"\b",
    "f": b"\f",
    "n": b"\n",
    "r": b"\r",
    "t": b"\t",
    "v": b"\v",
}
_LITERAL_ESCAPES = " ><&^=!\\"
_RELATIONS = "<>&^=!"
_REGEX_SPECIALS = "[]().*?^$|{}"
_SHOW_ESCAPES = {7: "a", 8: "b", 12: "f", 10: "n", 13: "r", 9: "t", 11: "v"}
_OPS = {
    "&": OP_AND,
    "|": OP_OR,
    "^": OP_XOR,
    "+": OP_ADD,
    "-": OP_MINUS,
    "*": OP_MULTIPLY,
    "/": OP_DIVIDE,
    "%": OP_MODULO,
}
_STRING_VALUE_TYPES = frozenset({
    FileType.BESTRING16, FileType.LESTRING16, FileType.STRING,
    FileType.PSTRING, FileType.REGEX, FileType.SEARCH, FileType.NAME,
    FileType.USE, FileType.DER, FileType.OCTAL,
})
_FLOAT_TYPES = frozenset({FileType.FLOAT, FileType.BEFLOAT, FileType.LEFLOAT})
_DOUBLE_TYPES = frozenset({FileType.DOUBLE, FileType.BEDOUBLE, FileType.LEDOUBLE})

_FLOAT_RE = re.compile(
    r"[ \t\n\v\f\r]*"
    r"([+-]?(?:infinity|inf|nan"
    r"|0x(?:[0-9a-f]+\.?[0-9a-f]*|\.[0-9a-f]+)(?:p[+-]?\d+)?"
    r"|(?:\d+\.?\d*|\.\d+)(?:e[+-]?\d+)?))",
    re.IGNORECASE,
)
_GUID_RE = re.compile(
    r"[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-"
    r"[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}"
)


class ValueError_(ValueError):
    """A value in a magic entry could not be parsed."""


class DecodedString(NamedTuple):
    """Result of decoding an escaped string field."""

    value: bytes
    rest: str
    warnings: list


def _char_bytes(ch: str) -> bytes:
    code = ord(ch)
    if code < 256:
        return bytes([code])
    return ch.encode("utf-8", "surrogatepass")


def hex_to_int(char: str) -> int | None:
    """Value of a single ASCII hex digit, or None."""
    if len(char) == 1 and char in _HEX:
        return int(char, 16)
    return None


def decode_string(text: str, ftype: FileType, warn: bool) -> DecodedString:
    """Decode C escapes up to the first unescaped whitespace.

    Returns the bytes, the unconsumed text (starting at the terminating
    whitespace) and any warnings when warn is true.
    """
    out = bytearray()
    notes: list[str] = []
    nesting = 0
    pos = 0
    end = len(text)
    limit = MAXSTRING - 1

    while pos < end:
        c = text[pos]
        if c in _SPACE:
            break
        pos += 1
        if len(out) >= limit:
            raise ValueError_(f"string too long: `{text}'")
        if c != "\\":
            if c == "[":
                nesting += 1
            if c == "]" and nesting > 0:
                nesting -= 1
            out += _char_bytes(c)
            continue
        if pos >= end:
            if warn:
                notes.append("incomplete escape")
            break
        c = text[pos]
        pos += 1
        if c in _SIMPLE_ESCAPES:
            out += _SIMPLE_ESCAPES[c]
        elif c in _OCTAL:
            val = int(c)
            for _ in range(2):
                if pos < end and text[pos] in _OCTAL:
                    val = (val << 3) | int(text[pos])
                    pos += 1
                else:
                    break
            out.append(val & 0xFF)
        elif c == "x":
            val = ord("x")
            first = hex_to_int(text[pos]) if pos < end else None
            if first is not None:
                pos += 1
                val = first
                second = hex_to_int(text[pos]) if pos < end else None
                if second is not None:
                    pos += 1
                    val = (val << 4) + second
            out.append(val & 0xFF)
        elif c in _LITERAL_ESCAPES:
            out += _char_bytes(c)
        else:
            if c == ".":
                if ftype == FileType.REGEX and nesting == 0 and warn:
                    notes.append("escaped dot ('.') found, use \\\\. instead")
                warn = False
            if c == "\t" and warn:
                notes.append("escaped tab found, use \\\\t instead")
                warn = False
            if warn:
                if " " <= c <= "~":
                    if c not in _RELATIONS and (
                        ftype != FileType.REGEX or c not in _REGEX_SPECIALS
                    ):
                        notes.append(f"no need to escape `{c}'")
                else:
                    notes.append(f"unknown escape sequence: \\{ord(c):03o}")
            out += _char_bytes(c)
    return DecodedString(bytes(out), text[pos:], notes)


def show_string(data: bytes) -> str:
    """Render bytes with C escapes for non-printable characters."""
    parts = []
    for byte in data:
        if 0o40 <= byte <= 0o176:
            parts.append(chr(byte))
        elif byte in _SHOW_ESCAPES:
            parts.append("\\" + _SHOW_ESCAPES[byte])
        else:
            parts.append(f"\\{byte:03o}")
    return "".join(parts)


def eat_size(text: str) -> str:
    """Skip a C size suffix such as U, L, UL, h or b after a number."""
    pos = 0
    if text[:1].lower() == "u":
        pos += 1
    if text[pos:pos + 1].lower() in ("l", "s", "h", "b", "c") and pos < len(text):
        pos += 1
    return text[pos:]


def nonmagic(pattern: Union[str, bytes]) -> int:
    """Count the literal characters of a regex, for strength; at least 1."""
    if isinstance(pattern, bytes):
        pattern = pattern.decode("latin-1")
    end = len(pattern)
    pos = 0
    count = 0
    while pos < end:
        c = pattern[pos]
        if c == "\\":
            pos += 1
            if pos >= end:
                pos -= 1
            count += 1
        elif c in "?*.+^$":
            pass
        elif c == "[":
            while pos < end and pattern[pos] != "]":
                pos += 1
            pos -= 1
        elif c == "{":
            while pos < end and pattern[pos] != "}":
                pos += 1
            if pos >= end:
                pos -= 1
        else:
            count += 1
        pos += 1
    return count or 1


def get_op(char: str) -> int | None:
    """Arithmetic operator code for a character, or None."""
    return _OPS.get(char)


def _strtoull(text: str) -> tuple[int, int, bool]:
    """Parse like strtoull with base 0: (value, end index, overflowed)."""
    pos = 0
    end = len(text)
    while pos < end and text[pos] in _SPACE:
        pos += 1
    negative = False
    if pos < end and text[pos] in "+-":
        negative = text[pos] == "-"
        pos += 1
    if text.startswith(("0x", "0X"), pos) and pos + 2 < end and text[pos + 2] in _HEX:
        base, allowed = 16, _HEX
        pos += 2
    elif text.startswith("0", pos):
        base, allowed = 8, _OCTAL
    else:
        base, allowed = 10, string.digits
    start = pos
    while pos < end and text[pos] in allowed:
        pos += 1
    if pos == start:
        return 0, 0, False
    value = int(text[start:pos], base)
    if value > _U64:
        return _U64, pos, True
    if negative:
        value = (-value) & _U64
    return value, pos, False


def _parse_float(text: str) -> tuple[float, int]:
    match = _FLOAT_RE.match(text)
    if match is None:
        return 0.0, 0
    token = match.group(1)
    if "x" in token.lower() and not token.lower().lstrip("+-").startswith("in"):
        value = float.fromhex(token)
    else:
        value = float(token)
    return value, match.end()


def _parse_string_value(magic: Magic, text: str) -> tuple[str, list]:
    decoded = decode_string(text, magic.type, True)
    magic.value = decoded.value
    magic.vallen = len(decoded.value) & 0xFF
    if magic.type == FileType.PSTRING:
        try:
            magic.vallen += pstring_length_size(magic)
        except ValueError as exc:
            raise ValueError_(str(exc)) from exc
    if magic.type == FileType.REGEX:
        try:
            re.compile(decoded.value)
        except re.error as exc:
            raise ValueError_(f"invalid regex `{show_string(decoded.value)}': {exc}") from exc
    return decoded.rest, decoded.warnings


def _parse_integer(magic: Magic, text: str) -> str:
    ull, end, overflowed = _strtoull(text)
    try:
        magic.value = sign_extend(magic, ull)
    except ValueError as exc:
        raise ValueError_(str(exc)) from exc
    if end == 0:
        raise ValueError_(f"Unparsable number `{text}'")
    size = type_size(magic.type)
    if size is None:
        raise ValueError_(f"Expected numeric type got `{magic.type.keyword}'")
    if text.lstrip(_SPACE).startswith("-") and ull != _U64:
        ull = (-ull) & _U64
    if size in (1, 2, 4):
        mask = ~((1 << (8 * size)) - 1) & _U64
        high = ull & mask
        if high and high != mask:
            raise ValueError_(
                f"Overflow for numeric type `{magic.type.keyword}' value {ull:#x}"
            )
    if overflowed:
        return text
    return eat_size(text[end:])


def parse_value(magic: Magic, text: str) -> tuple[str, list]:
    """Parse the value field into magic.value according to magic.type.

    Returns the unconsumed text and a list of warnings; raises ValueError_.
    """
    if magic.type in _STRING_VALUE_TYPES:
        return _parse_string_value(magic, text)
    if magic.reln == "x":
        return text, []
    if magic.type in _FLOAT_TYPES:
        value, end = _parse_float(text)
        if abs(value) > _FLT_MAX and value == value:
            magic.value = value if end and "inf" in text[:end].lower() else (
                float("inf") if value > 0 else float("-inf"))
            if "inf" in text[:end].lower():
                return text[end:], []
            return text, []
        magic.value = struct.unpack("<f", struct.pack("<f", value))[0]
        return text[end:], []
    if magic.type in _DOUBLE_TYPES:
        value, end = _parse_float(text)
        magic.value = value
        if value in (float("inf"), float("-inf")) and "inf" not in text[:end].lower():
            return text, []
        return text[end:], []
    if magic.type == FileType.GUID:
        match = _GUID_RE.match(text)
        if match is None:
            raise ValueError_(f"Error parsing guid `{text}'")
        magic.value = uuid.UUID(match.group(0)).bytes_le
        return text[GUID_TEXT_LEN:], []
    return _parse_integer(magic, text), []