"""Details of text files: line terminators, long lines, escapes, encoding."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

MAXLINELEN = 300
NEL = 0x85
_MAX_CODEPOINT = 0x7FFFFFFF

# (upper bound, number of continuation bytes, lead byte marker)
_UTF8_RANGES = (
    (0x7F, 0, 0x00),
    (0x7FF, 1, 0xC0),
    (0xFFFF, 2, 0xE0),
    (0x1FFFFF, 3, 0xF0),
    (0x3FFFFFF, 4, 0xF8),
    (0x7FFFFFFF, 5, 0xFC),
)


@dataclass
class LineStats:
    """What a scan of decoded text found about its lines and controls."""

    n_crlf: int = 0
    n_lf: int = 0
    n_cr: int = 0
    n_nel: int = 0
    longest_line: int = 0
    has_escapes: bool = False
    has_backspace: bool = False

    @property
    def has_terminators(self) -> bool:
        """True if any line terminator at all was seen."""
        return bool(self.n_crlf or self.n_lf or self.n_cr or self.n_nel)

    def terminators(self) -> list[str]:
        """Names of the kinds of line terminators seen, in report order."""
        kinds = []
        if self.n_crlf:
            kinds.append("CRLF")
        if self.n_cr:
            kinds.append("CR")
        if self.n_lf:
            kinds.append("LF")
        if self.n_nel:
            kinds.append("NEL")
        return kinds


def trim_nuls(data: bytes) -> bytes:
    """Drop trailing NUL bytes, keeping at least one byte."""
    end = len(data)
    while end > 1 and data[end - 1] == 0:
        end -= 1
    return bytes(data[:end])


def encode_utf8(codepoints: Iterable[int]) -> bytes:
    """Encode code points as UTF-8, allowing the historic 5 and 6 byte forms.

    Raises ValueError for a code point above 0x7fffffff or below zero.
    """
    out = bytearray()
    for cp in codepoints:
        if cp < 0 or cp > _MAX_CODEPOINT:
            raise ValueError(f"invalid character {cp:#x}")
        for limit, extra, lead in _UTF8_RANGES:
            if cp <= limit:
                break
        if extra == 0:
            out.append(cp)
            continue
        out.append(((cp >> (6 * extra)) + lead) & 0xFF)
        for shift in range(extra - 1, -1, -1):
            out.append(((cp >> (6 * shift)) & 0x3F) + 0x80)
    return bytes(out)


def line_statistics(codepoints: Sequence[int]) -> LineStats:
    """Count line terminators and note long lines, escapes and backspaces."""
    stats = LineStats()
    seen_cr = False
    last_line_end = -1
    for i, ch in enumerate(codepoints):
        if ch == 0x0A:
            if seen_cr:
                stats.n_crlf += 1
            else:
                stats.n_lf += 1
            last_line_end = i
        elif seen_cr:
            stats.n_cr += 1

        seen_cr = ch == 0x0D
        if seen_cr:
            last_line_end = i

        if ch == NEL:
            stats.n_nel += 1
            last_line_end = i

        if i > last_line_end + MAXLINELEN:
            length = i - last_line_end
            if length > stats.longest_line:
                stats.longest_line = length

        if ch == 0x1B:
            stats.has_escapes = True
        if ch == 0x08:
            stats.has_backspace = True
    return stats


def describe_text(codepoints: Sequence[int], code: str, text_type: str) -> str | None:
    """Describe decoded text, e.g. "ASCII text, with CRLF line terminators".

    Returns None when the encoding guess called the data binary.
    """
    stats = line_statistics(codepoints)
    if text_type == "binary":
        return None
    parts = [f"{code} {text_type}"]
    if stats.longest_line:
        parts.append(f", with very long lines ({stats.longest_line})")
    kinds = stats.terminators()
    if not kinds:
        parts.append(", with no line terminators")
    elif kinds != ["LF"]:
        parts.append(", with " + ", ".join(kinds) + " line terminators")
    if stats.has_escapes:
        parts.append(", with escape sequences")
    if stats.has_backspace:
        parts.append(", with overstriking")
    return "".join(parts)