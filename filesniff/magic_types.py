"""Magic entry types, their keywords, sizes and the entry record itself."""

from __future__ import annotations

import enum
import string
from dataclasses import dataclass
from typing import Union

# Entry flags (Magic.flag).
FLAG_INDIR = 0x001
FLAG_OFFADD = 0x002
FLAG_INDIROFFADD = 0x004
FLAG_UNSIGNED = 0x008
FLAG_NOSPACE = 0x010
FLAG_BINTEST = 0x020
FLAG_TEXTTEST = 0x040
FLAG_OFFNEGATIVE = 0x080
FLAG_OFFPOSITIVE = 0x100

# String modifier flags (Magic.str_flags).
STRING_COMPACT_WHITESPACE = 1 << 0
STRING_COMPACT_OPTIONAL_WHITESPACE = 1 << 1
STRING_IGNORE_LOWERCASE = 1 << 2
STRING_IGNORE_UPPERCASE = 1 << 3
REGEX_OFFSET_START = 1 << 4
STRING_TEXTTEST = 1 << 5
STRING_BINTEST = 1 << 6
PSTRING_1_LE = 1 << 7
PSTRING_2_BE = 1 << 8
PSTRING_2_LE = 1 << 9
PSTRING_4_BE = 1 << 10
PSTRING_4_LE = 1 << 11
REGEX_LINE_COUNT = PSTRING_4_LE
PSTRING_LEN = PSTRING_1_LE | PSTRING_2_BE | PSTRING_2_LE | PSTRING_4_BE | PSTRING_4_LE
PSTRING_LENGTH_INCLUDES_ITSELF = 1 << 12
STRING_TRIM = 1 << 13
STRING_FULL_WORD = 1 << 14
INDIRECT_RELATIVE = 1 << 0

# Modifier characters as written in magic files.
CHAR_COMPACT_WHITESPACE = "W"
CHAR_COMPACT_OPTIONAL_WHITESPACE = "w"
CHAR_IGNORE_LOWERCASE = "c"
CHAR_IGNORE_UPPERCASE = "C"
CHAR_REGEX_OFFSET_START = "s"
CHAR_TEXTTEST = "t"
CHAR_BINTEST = "b"
CHAR_PSTRING_1_LE = "B"
CHAR_PSTRING_2_BE = "H"
CHAR_PSTRING_2_LE = "h"
CHAR_PSTRING_4_BE = "L"
CHAR_PSTRING_4_LE = "l"
CHAR_PSTRING_LENGTH_INCLUDES_ITSELF = "J"
CHAR_TRIM = "T"
CHAR_FULL_WORD = "f"
CHAR_INDIRECT_RELATIVE = "r"

STRING_DEFAULT_RANGE = 100

# Arithmetic operators for masks and indirect offsets.
OP_AND = 0
OP_OR = 1
OP_XOR = 2
OP_ADD = 3
OP_MINUS = 4
OP_MULTIPLY = 5
OP_DIVIDE = 6
OP_MODULO = 7
OPS_MASK = 0x07
OP_SIGNED = 0x20
OP_INVERSE = 0x40
OP_INDIRECT = 0x80

# Strength factor operators.
FACTOR_OP_NONE = ""
FACTOR_OP_PLUS = "+"
FACTOR_OP_MINUS = "-"
FACTOR_OP_TIMES = "*"
FACTOR_OP_DIV = "/"

_U64 = (1 << 64) - 1


class Format(enum.IntEnum):
    """Kind of printf conversion a type accepts in its description."""

    NONE = 0
    NUM = 1
    STR = 2
    QUAD = 3
    FLOAT = 4
    DOUBLE = 5


class FileType(enum.IntEnum):
    """Types of magic tests, in keyword table order."""

    INVALID = 0
    BYTE = 1
    SHORT = 2
    DEFAULT = 3
    LONG = 4
    STRING = 5
    DATE = 6
    BESHORT = 7
    BELONG = 8
    BEDATE = 9
    LESHORT = 10
    LELONG = 11
    LEDATE = 12
    PSTRING = 13
    LDATE = 14
    BELDATE = 15
    LELDATE = 16
    REGEX = 17
    BESTRING16 = 18
    LESTRING16 = 19
    SEARCH = 20
    MEDATE = 21
    MELDATE = 22
    MELONG = 23
    QUAD = 24
    LEQUAD = 25
    BEQUAD = 26
    QDATE = 27
    LEQDATE = 28
    BEQDATE = 29
    QLDATE = 30
    LEQLDATE = 31
    BEQLDATE = 32
    FLOAT = 33
    BEFLOAT = 34
    LEFLOAT = 35
    DOUBLE = 36
    BEDOUBLE = 37
    LEDOUBLE = 38
    LEID3 = 39
    BEID3 = 40
    INDIRECT = 41
    QWDATE = 42
    LEQWDATE = 43
    BEQWDATE = 44
    NAME = 45
    USE = 46
    CLEAR = 47
    DER = 48
    GUID = 49
    OFFSET = 50
    BEVARINT = 51
    LEVARINT = 52
    MSDOSDATE = 53
    LEMSDOSDATE = 54
    BEMSDOSDATE = 55
    MSDOSTIME = 56
    LEMSDOSTIME = 57
    BEMSDOSTIME = 58
    OCTAL = 59

    @property
    def keyword(self) -> str:
        """The keyword naming this type in magic files."""
        return self.name.lower()

    @property
    def format(self) -> Format:
        """The printf conversion family this type accepts."""
        return _FORMATS[self]

    @property
    def is_string(self) -> bool:
        """True for types whose value is a string rather than a number."""
        return self in _STRING_TYPES


_FORMATS: dict[FileType, Format] = {
    FileType.INVALID: Format.NONE,
    FileType.BYTE: Format.NUM,
    FileType.SHORT: Format.NUM,
    FileType.DEFAULT: Format.NONE,
    FileType.LONG: Format.NUM,
    FileType.STRING: Format.STR,
    FileType.DATE: Format.STR,
    FileType.BESHORT: Format.NUM,
    FileType.BELONG: Format.NUM,
    FileType.BEDATE: Format.STR,
    FileType.LESHORT: Format.NUM,
    FileType.LELONG: Format.NUM,
    FileType.LEDATE: Format.STR,
    FileType.PSTRING: Format.STR,
    FileType.LDATE: Format.STR,
    FileType.BELDATE: Format.STR,
    FileType.LELDATE: Format.STR,
    FileType.REGEX: Format.STR,
    FileType.BESTRING16: Format.STR,
    FileType.LESTRING16: Format.STR,
    FileType.SEARCH: Format.STR,
    FileType.MEDATE: Format.STR,
    FileType.MELDATE: Format.STR,
    FileType.MELONG: Format.NUM,
    FileType.QUAD: Format.QUAD,
    FileType.LEQUAD: Format.QUAD,
    FileType.BEQUAD: Format.QUAD,
    FileType.QDATE: Format.STR,
    FileType.LEQDATE: Format.STR,
    FileType.BEQDATE: Format.STR,
    FileType.QLDATE: Format.STR,
    FileType.LEQLDATE: Format.STR,
    FileType.BEQLDATE: Format.STR,
    FileType.FLOAT: Format.FLOAT,
    FileType.BEFLOAT: Format.FLOAT,
    FileType.LEFLOAT: Format.FLOAT,
    FileType.DOUBLE: Format.DOUBLE,
    FileType.BEDOUBLE: Format.DOUBLE,
    FileType.LEDOUBLE: Format.DOUBLE,
    FileType.LEID3: Format.NUM,
    FileType.BEID3: Format.NUM,
    FileType.INDIRECT: Format.NUM,
    FileType.QWDATE: Format.STR,
    FileType.LEQWDATE: Format.STR,
    FileType.BEQWDATE: Format.STR,
    FileType.NAME: Format.NONE,
    FileType.USE: Format.NONE,
    FileType.CLEAR: Format.NONE,
    FileType.DER: Format.STR,
    FileType.GUID: Format.STR,
    FileType.OFFSET: Format.QUAD,
    FileType.BEVARINT: Format.STR,
    FileType.LEVARINT: Format.STR,
    FileType.MSDOSDATE: Format.STR,
    FileType.LEMSDOSDATE: Format.STR,
    FileType.BEMSDOSDATE: Format.STR,
    FileType.MSDOSTIME: Format.STR,
    FileType.LEMSDOSTIME: Format.STR,
    FileType.BEMSDOSTIME: Format.STR,
    FileType.OCTAL: Format.STR,
}

_STRING_TYPES = frozenset({
    FileType.STRING, FileType.PSTRING, FileType.BESTRING16,
    FileType.LESTRING16, FileType.REGEX, FileType.SEARCH,
    FileType.INDIRECT, FileType.NAME, FileType.USE, FileType.OCTAL,
})

_SPECIAL_TYPES = (FileType.DER, FileType.NAME, FileType.USE, FileType.OCTAL)

_SIZE_1 = frozenset({FileType.BYTE})
_SIZE_2 = frozenset({
    FileType.SHORT, FileType.LESHORT, FileType.BESHORT,
    FileType.MSDOSDATE, FileType.BEMSDOSDATE, FileType.LEMSDOSDATE,
    FileType.MSDOSTIME, FileType.BEMSDOSTIME, FileType.LEMSDOSTIME,
})
_SIZE_4 = frozenset({
    FileType.LONG, FileType.LELONG, FileType.BELONG, FileType.MELONG,
    FileType.DATE, FileType.LEDATE, FileType.BEDATE, FileType.MEDATE,
    FileType.LDATE, FileType.LELDATE, FileType.BELDATE, FileType.MELDATE,
    FileType.FLOAT, FileType.BEFLOAT, FileType.LEFLOAT,
    FileType.BEID3, FileType.LEID3,
})
_SIZE_8 = frozenset({
    FileType.QUAD, FileType.BEQUAD, FileType.LEQUAD,
    FileType.QDATE, FileType.LEQDATE, FileType.BEQDATE,
    FileType.QLDATE, FileType.LEQLDATE, FileType.BEQLDATE,
    FileType.QWDATE, FileType.LEQWDATE, FileType.BEQWDATE,
    FileType.DOUBLE, FileType.BEDOUBLE, FileType.LEDOUBLE,
    FileType.OFFSET, FileType.BEVARINT, FileType.LEVARINT,
})

_EXTEND_16 = frozenset({FileType.SHORT, FileType.BESHORT, FileType.LESHORT})
_EXTEND_32 = frozenset({
    FileType.DATE, FileType.BEDATE, FileType.LEDATE, FileType.MEDATE,
    FileType.LDATE, FileType.BELDATE, FileType.LELDATE, FileType.MELDATE,
    FileType.LONG, FileType.BELONG, FileType.LELONG, FileType.MELONG,
    FileType.FLOAT, FileType.BEFLOAT, FileType.LEFLOAT,
    FileType.MSDOSDATE, FileType.BEMSDOSDATE, FileType.LEMSDOSDATE,
    FileType.MSDOSTIME, FileType.BEMSDOSTIME, FileType.LEMSDOSTIME,
})
_EXTEND_64 = _SIZE_8
_NO_EXTEND = frozenset({
    FileType.STRING, FileType.PSTRING, FileType.BESTRING16,
    FileType.LESTRING16, FileType.REGEX, FileType.SEARCH,
    FileType.DEFAULT, FileType.INDIRECT, FileType.NAME, FileType.USE,
    FileType.CLEAR, FileType.DER, FileType.GUID, FileType.OCTAL,
})


@dataclass
class Magic:
    """One line of a magic file, parsed."""

    cont_level: int = 0
    flag: int = 0
    factor: int = 0
    reln: str = "="
    vallen: int = 0
    type: FileType = FileType.INVALID
    in_type: FileType = FileType.INVALID
    in_op: int = 0
    mask_op: int = 0
    cond: int = 0
    factor_op: str = FACTOR_OP_NONE
    offset: int = 0
    in_offset: int = 0
    lineno: int = 0
    num_mask: int = 0
    str_range: int = 0
    str_flags: int = 0
    value: Union[int, float, bytes] = 0
    desc: str = ""
    mimetype: str = ""
    apple: str = ""
    ext: str = ""


def _lookup(table, text: str) -> tuple[FileType, str]:
    for ftype in table:
        word = ftype.keyword
        if text.startswith(word):
            return ftype, text[len(word):]
    return FileType.INVALID, text


def get_type(text: str) -> tuple[FileType, str]:
    """Match a type keyword at the start of text; return it and the rest."""
    return _lookup(list(FileType), text)


def get_special_type(text: str) -> tuple[FileType, str]:
    """Match a keyword that cannot take a "u" prefix; return it and the rest."""
    return _lookup(_SPECIAL_TYPES, text)


_LETTER_TYPES = {
    "C": FileType.BYTE,
    "S": FileType.SHORT,
    "I": FileType.LONG,
    "L": FileType.LONG,
    "Q": FileType.QUAD,
}
_DIGIT_TYPES = {
    "1": FileType.BYTE,
    "2": FileType.SHORT,
    "4": FileType.LONG,
    "8": FileType.QUAD,
}


def standard_integer_type(text: str) -> tuple[FileType, str]:
    """Parse an SUS integer type such as dC, u4 or d; return it and the rest."""
    if len(text) < 2:
        return FileType.INVALID, text
    second = text[1]
    if second in string.ascii_letters:
        ftype = _LETTER_TYPES.get(second)
        if ftype is None:
            return FileType.INVALID, text
        return ftype, text[2:]
    if second in string.digits:
        if len(text) > 2 and text[2] in string.digits:
            return FileType.INVALID, text
        ftype = _DIGIT_TYPES.get(second)
        if ftype is None:
            return FileType.INVALID, text
        return ftype, text[2:]
    return FileType.LONG, text[1:]


def type_size(ftype: FileType) -> int | None:
    """Byte width of a numeric type, or None if it has no fixed width."""
    if ftype in _SIZE_1:
        return 1
    if ftype in _SIZE_2:
        return 2
    if ftype in _SIZE_4:
        return 4
    if ftype in _SIZE_8:
        return 8
    if ftype == FileType.GUID:
        return 16
    return None


def _extend(value: int, bits: int) -> int:
    value &= (1 << bits) - 1
    if value & (1 << (bits - 1)):
        value -= 1 << bits
    return value & _U64


def sign_extend(magic: Magic, value: int) -> int:
    """Sign-extend value to 64 bits unless the entry is unsigned.

    The result is the 64-bit two's complement pattern as a non-negative int.
    """
    value &= _U64
    if magic.flag & FLAG_UNSIGNED:
        return value
    ftype = magic.type
    if ftype == FileType.BYTE:
        return _extend(value, 8)
    if ftype in _EXTEND_16:
        return _extend(value, 16)
    if ftype in _EXTEND_32:
        return _extend(value, 32)
    if ftype in _EXTEND_64:
        return value
    if ftype in _NO_EXTEND:
        return value
    raise ValueError(f"cannot happen: m->type={int(ftype)}")


class _Cursor:
    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def take(self) -> str:
        ch = self.peek()
        self.pos += 1
        return ch

    def skip_if(self, chars: str) -> None:
        ch = self.peek()
        if ch and ch in chars:
            self.pos += 1

    def skip_digits(self) -> None:
        while self.peek() and self.peek() in string.digits:
            self.pos += 1

    def check_len(self) -> None:
        length = count = 0
        while self.peek() and self.peek() in string.digits:
            length = length * 10 + int(self.take())
            count += 1
        if count > 5 or length > 1024:
            raise ValueError("too long")


_NUM_WIDTH = {
    FileType.BYTE: 2,
    FileType.SHORT: 1, FileType.BESHORT: 1, FileType.LESHORT: 1,
    FileType.LONG: 0, FileType.BELONG: 0, FileType.LELONG: 0,
    FileType.MELONG: 0, FileType.LEID3: 0, FileType.BEID3: 0,
    FileType.INDIRECT: 0,
}


def check_format_type(spec: str, ftype: FileType) -> None:
    """Check a printf conversion (text after '%') against a type.

    Raises ValueError with "missing format spec", "not valid" or "too long".
    """
    if not spec:
        raise ValueError("missing format spec")
    cur = _Cursor(spec)
    fmt = ftype.format
    if fmt in (Format.NUM, Format.QUAD):
        quad = fmt == Format.QUAD
        if quad:
            width = 0
        else:
            if ftype not in _NUM_WIDTH:
                raise ValueError(f"Bad number format {int(ftype)}")
            width = _NUM_WIDTH[ftype]
        while cur.peek() and cur.peek() in "+-.#":
            cur.pos += 1
        cur.check_len()
        cur.skip_if(".")
        cur.check_len()
        if quad and (cur.take() != "l" or cur.take() != "l"):
            raise ValueError("not valid")
        conv = cur.take()
        if conv == "c":
            if width == 2:
                return
            raise ValueError("not valid")
        if conv and conv in "iduoxX":
            return
        raise ValueError("not valid")
    if fmt in (Format.FLOAT, Format.DOUBLE):
        cur.skip_if("-")
        cur.skip_if(".")
        cur.check_len()
        cur.skip_if(".")
        cur.check_len()
        conv = cur.take()
        if conv and conv in "eEfFgG":
            return
        raise ValueError("not valid")
    if fmt == Format.STR:
        cur.skip_if("-")
        cur.skip_digits()
        if cur.peek() == ".":
            cur.pos += 1
            cur.skip_digits()
        if cur.take() == "s":
            return
        raise ValueError("not valid")
    raise ValueError(f"Bad file format {int(ftype)}")


def varint_to_int(data: bytes, ftype: FileType) -> tuple[int, int]:
    """Decode a variable-length integer; return (value, bytes consumed).

    A zero byte or the end of data terminates the scan.
    """
    def byte_at(i: int) -> int:
        return data[i] if i < len(data) else 0

    value = 0
    i = 0
    if ftype == FileType.LEVARINT:
        while byte_at(i):
            if not byte_at(i) & 0x80:
                break
            i += 1
        for j in range(i, -1, -1):
            value |= byte_at(j) & 0x7F
            value = (value << 7) & _U64
        return value, i + 1
    while byte_at(i):
        value |= byte_at(i) & 0x7F
        if not byte_at(i) & 0x80:
            break
        value = (value << 7) & _U64
        i += 1
    return value, i + 1


def _bad_pstring(magic: Magic) -> ValueError:
    return ValueError(
        "corrupt magic file (bad pascal string length "
        f"{magic.str_flags & PSTRING_LEN})"
    )


def pstring_length_size(magic: Magic) -> int:
    """Width in bytes of a pascal string's length prefix."""
    kind = magic.str_flags & PSTRING_LEN
    if kind == PSTRING_1_LE:
        return 1
    if kind in (PSTRING_2_LE, PSTRING_2_BE):
        return 2
    if kind in (PSTRING_4_LE, PSTRING_4_BE):
        return 4
    raise _bad_pstring(magic)


def pstring_get_length(magic: Magic, data: bytes) -> int:
    """Read a pascal string's length prefix from data.

    The result may be negative when the prefix counts itself but is too small.
    """
    kind = magic.str_flags & PSTRING_LEN
    if kind == PSTRING_1_LE:
        length = data[0]
    elif kind == PSTRING_2_LE:
        length = int.from_bytes(data[:2], "little")
    elif kind == PSTRING_2_BE:
        length = int.from_bytes(data[:2], "big")
    elif kind == PSTRING_4_LE:
        length = int.from_bytes(data[:4], "little")
    elif kind == PSTRING_4_BE:
        length = int.from_bytes(data[:4], "big")
    else:
        raise _bad_pstring(magic)
    if magic.str_flags & PSTRING_LENGTH_INCLUDES_ITSELF:
        length -= pstring_length_size(magic)
    return length