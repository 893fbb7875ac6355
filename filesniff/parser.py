"""Parsing of magic file lines into entries of continuation-linked tests."""

from __future__ import annotations

import string
from dataclasses import dataclass, field

from filesniff.magic_types import (
    CHAR_BINTEST,
    CHAR_COMPACT_OPTIONAL_WHITESPACE,
    CHAR_COMPACT_WHITESPACE,
    CHAR_FULL_WORD,
    CHAR_IGNORE_LOWERCASE,
    CHAR_IGNORE_UPPERCASE,
    CHAR_INDIRECT_RELATIVE,
    CHAR_PSTRING_1_LE,
    CHAR_PSTRING_2_BE,
    CHAR_PSTRING_2_LE,
    CHAR_PSTRING_4_BE,
    CHAR_PSTRING_4_LE,
    CHAR_PSTRING_LENGTH_INCLUDES_ITSELF,
    CHAR_REGEX_OFFSET_START,
    CHAR_TEXTTEST,
    CHAR_TRIM,
    FACTOR_OP_DIV,
    FACTOR_OP_NONE,
    FLAG_INDIR,
    FLAG_INDIROFFADD,
    FLAG_NOSPACE,
    FLAG_OFFADD,
    FLAG_OFFNEGATIVE,
    FLAG_OFFPOSITIVE,
    FLAG_UNSIGNED,
    INDIRECT_RELATIVE,
    OP_DIVIDE,
    OP_INDIRECT,
    OP_INVERSE,
    OP_SIGNED,
    PSTRING_1_LE,
    PSTRING_2_BE,
    PSTRING_2_LE,
    PSTRING_4_BE,
    PSTRING_4_LE,
    PSTRING_LEN,
    PSTRING_LENGTH_INCLUDES_ITSELF,
    REGEX_LINE_COUNT,
    REGEX_OFFSET_START,
    STRING_BINTEST,
    STRING_COMPACT_OPTIONAL_WHITESPACE,
    STRING_COMPACT_WHITESPACE,
    STRING_DEFAULT_RANGE,
    STRING_FULL_WORD,
    STRING_IGNORE_LOWERCASE,
    STRING_IGNORE_UPPERCASE,
    STRING_TEXTTEST,
    STRING_TRIM,
    FileType,
    Format,
    Magic,
    check_format_type,
    get_special_type,
    get_type,
    sign_extend,
    standard_integer_type,
)
from filesniff.values import ValueError_, eat_size, get_op, parse_value, show_string

MAXDESC = 64
MAXMIME = 80
MAXAPPLE = 8
MAXEXT = 64

_SPACE = " \t\n\v\f\r"
_HEX = "0123456789abcdefABCDEF"
_OCTAL = "01234567"
_U64 = (1 << 64) - 1
_I64_MIN = -(1 << 63)
_I64_MAX = (1 << 63) - 1

_IN_TYPES = {
    "l": FileType.LELONG,
    "L": FileType.BELONG,
    "m": FileType.MELONG,
    "h": FileType.LESHORT,
    "s": FileType.LESHORT,
    "H": FileType.BESHORT,
    "S": FileType.BESHORT,
    "c": FileType.BYTE,
    "b": FileType.BYTE,
    "C": FileType.BYTE,
    "B": FileType.BYTE,
    "e": FileType.LEDOUBLE,
    "f": FileType.LEDOUBLE,
    "g": FileType.LEDOUBLE,
    "E": FileType.BEDOUBLE,
    "F": FileType.BEDOUBLE,
    "G": FileType.BEDOUBLE,
    "i": FileType.LEID3,
    "I": FileType.BEID3,
    "o": FileType.OCTAL,
    "q": FileType.LEQUAD,
    "Q": FileType.BEQUAD,
}

_SIMPLE_MODIFIERS = {
    CHAR_COMPACT_WHITESPACE: STRING_COMPACT_WHITESPACE,
    CHAR_COMPACT_OPTIONAL_WHITESPACE: STRING_COMPACT_OPTIONAL_WHITESPACE,
    CHAR_IGNORE_LOWERCASE: STRING_IGNORE_LOWERCASE,
    CHAR_IGNORE_UPPERCASE: STRING_IGNORE_UPPERCASE,
    CHAR_REGEX_OFFSET_START: REGEX_OFFSET_START,
    CHAR_BINTEST: STRING_BINTEST,
    CHAR_TEXTTEST: STRING_TEXTTEST,
    CHAR_TRIM: STRING_TRIM,
    CHAR_FULL_WORD: STRING_FULL_WORD,
}

_PSTRING_MODIFIERS = {
    CHAR_PSTRING_1_LE: PSTRING_1_LE,
    CHAR_PSTRING_2_BE: PSTRING_2_BE,
    CHAR_PSTRING_2_LE: PSTRING_2_LE,
    CHAR_PSTRING_4_BE: PSTRING_4_BE,
    CHAR_PSTRING_4_LE: PSTRING_4_LE,
}


class MagicSyntaxError(ValueError):
    """A magic file line could not be parsed."""

    def __init__(self, message: str, filename: str = "unknown", lineno: int = 0):
        self.message = message
        self.filename = filename
        self.lineno = lineno
        super().__init__(f"{filename}, {lineno}: {message}")


@dataclass
class MagicEntry:
    """A top-level test together with its continuation lines."""

    magics: list[Magic] = field(default_factory=list)

    @property
    def first(self) -> Magic:
        """The top-level test."""
        return self.magics[0]

    @property
    def cont_count(self) -> int:
        """Number of tests in the entry, the top-level one included."""
        return len(self.magics)


def _is_space(ch: str) -> bool:
    return ch != "" and ch in _SPACE


def _is_alpha(ch: str) -> bool:
    return ch != "" and ch in string.ascii_letters


def _is_digit(ch: str) -> bool:
    return ch != "" and ch in string.digits


def _parse_int(text: str) -> tuple[int | None, str]:
    """Parse an integer with C base-0 rules; return (value or None, rest)."""
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
        return None, text
    value = int(text[start:pos], base)
    return (-value if negative else value), text[pos:]


def _as_int32(value: int) -> int:
    value = max(_I64_MIN, min(_I64_MAX, value))
    return ((value + (1 << 31)) % (1 << 32)) - (1 << 31)


def _as_u64(value: int) -> int:
    if abs(value) > _U64:
        return _U64
    return value & _U64


def _goodchar(ch: str, extra: str) -> bool:
    return (ch.isascii() and ch.isalnum()) or ch in extra


def check_format(magic: Magic) -> bool:
    """Check the printf conversion in a description against the entry type.

    Returns False when the description holds no conversion, True when it
    holds a valid one, and raises MagicSyntaxError otherwise.
    """
    pos = magic.desc.find("%")
    if pos < 0:
        return False
    keyword = magic.type.keyword
    if magic.type.format == Format.NONE:
        raise MagicSyntaxError(
            f"No format string for `{magic.desc}' with description `{keyword}'"
        )
    spec = magic.desc[pos + 1:]
    try:
        check_format_type(spec, magic.type)
    except ValueError as exc:
        raise MagicSyntaxError(
            f"Printf format is {exc} for type `{keyword}' in description "
            f"`{magic.desc}'"
        ) from exc
    if "%" in spec:
        raise MagicSyntaxError(
            "Too many format strings (should have at most one) for "
            f"`{keyword}' with description `{magic.desc}'"
        )
    return True


class MagicParser:
    """Turns the lines of one magic file into a list of MagicEntry."""

    def __init__(self, filename: str = "unknown", check: bool = True) -> None:
        self.filename = filename
        self.check = check
        self.entries: list[MagicEntry] = []
        self.warnings: list[str] = []
        self._current: MagicEntry | None = None
        self._lineno = 0

    def _warn(self, message: str) -> None:
        self.warnings.append(f"{self.filename}, {self._lineno}: Warning: {message}")

    def _error(self, message: str) -> MagicSyntaxError:
        return MagicSyntaxError(message, self.filename, self._lineno)

    def _flush(self) -> None:
        if self._current is not None:
            self.entries.append(self._current)
            self._current = None

    def parse_line(self, line: str, lineno: int = 0) -> None:
        """Parse one line: a test, a "!:" annotation, a comment or a blank."""
        self._lineno = lineno
        if line.endswith("\n"):
            line = line[:-1]
        if not line or line.startswith("#"):
            return
        if line.startswith("!:"):
            self.parse_annotation(line)
            return
        self._parse_magic(line)

    def parse_annotation(self, line: str) -> None:
        """Apply a "!:mime", "!:apple", "!:ext" or "!:strength" line."""
        if line.endswith("\n"):
            line = line[:-1]
        handlers = (
            ("mime", self._parse_mime),
            ("apple", self._parse_apple),
            ("ext", self._parse_ext),
            ("strength", self._parse_strength),
        )
        body = line[2:] if line.startswith("!:") else None
        for name, handler in handlers:
            if body is not None and len(body) > len(name) and body.startswith(name):
                break
        else:
            raise self._error(f"Unknown !: entry `{line}'")
        if self._current is None:
            raise self._error(f"No current entry for :!{name} type")
        handler(body[len(name):])

    def finish(self) -> list[MagicEntry]:
        """Close the entry in progress and return all entries parsed."""
        self._flush()
        return list(self.entries)

    # -- test lines ---------------------------------------------------------

    def _parse_magic(self, line: str) -> None:
        cont_level = len(line) - len(line.lstrip(">"))
        l = line[cont_level:]
        if cont_level:
            if self._current is None:
                raise self._error("No current entry for continuation")
            prev = self._current.magics[-1]
            if cont_level - prev.cont_level > 1:
                self._warn(
                    f"New continuation level {cont_level} is more than one "
                    f"larger than current level {prev.cont_level}"
                )
        else:
            self._flush()
        m = Magic(cont_level=cont_level, lineno=self._lineno)

        l = self._parse_offset(m, l)
        l = l.lstrip(_SPACE)
        l = self._parse_type(m, l)
        l = self._parse_mask(m, l)
        l = l.lstrip(_SPACE)
        l = self._parse_relation(m, l)

        if m.reln != "x":
            if not l:
                raise self._error(f"incomplete magic `{line}'")
            try:
                l, notes = parse_value(m, l)
            except ValueError_ as exc:
                raise self._error(str(exc)) from exc
            for note in notes:
                self._warn(note)

        self._parse_description(m, l)
        if self.check:
            try:
                check_format(m)
            except MagicSyntaxError as exc:
                raise self._error(exc.message) from exc
        m.mimetype = ""

        if cont_level:
            self._current.magics.append(m)
        else:
            self._current = MagicEntry([m])

    def _parse_offset(self, m: Magic, l: str) -> str:
        if l.startswith("&"):
            l = l[1:]
            m.flag |= FLAG_OFFADD
        if l.startswith("("):
            l = l[1:]
            m.flag |= FLAG_INDIR
            if m.flag & FLAG_OFFADD:
                m.flag = (m.flag & ~FLAG_OFFADD) | FLAG_INDIROFFADD
            if l.startswith("&"):
                l = l[1:]
                m.flag |= FLAG_OFFADD
        if m.cont_level == 0 and m.flag & (FLAG_OFFADD | FLAG_INDIROFFADD):
            raise self._error("relative offset at level 0")

        if l[:1] in ("-", "+"):
            m.flag |= FLAG_OFFNEGATIVE if l[0] == "-" else FLAG_OFFPOSITIVE
            l = l[1:]
        value, rest = _parse_int(l)
        if value is None:
            raise self._error(f"offset `{l}' invalid")
        m.offset = _as_int32(value)
        l = rest

        if m.flag & FLAG_INDIR:
            l = self._parse_indirect(m, l)
        return l

    def _parse_indirect(self, m: Magic, l: str) -> str:
        m.in_type = FileType.LONG
        m.in_offset = 0
        m.in_op = 0
        if l[:1] in (".", ","):
            if l[0] == ",":
                m.in_op |= OP_SIGNED
            code = l[1:2]
            in_type = _IN_TYPES.get(code)
            if in_type is None:
                raise self._error(f"indirect offset type `{code}' invalid")
            m.in_type = in_type
            l = l[2:]
        if l.startswith("~"):
            m.in_op |= OP_INVERSE
            l = l[1:]
        op = get_op(l[:1])
        if op is not None:
            m.in_op |= op
            l = l[1:]
        if l.startswith("("):
            m.in_op |= OP_INDIRECT
            l = l[1:]
        if _is_digit(l[:1]) or l.startswith("-"):
            value, rest = _parse_int(l)
            if value is None:
                raise self._error(f"in_offset `{l}' invalid")
            m.in_offset = _as_int32(value)
            l = rest
        if not l.startswith(")"):
            raise self._error("missing ')' in indirect offset")
        l = l[1:]
        if m.in_op & OP_INDIRECT:
            if not l.startswith(")"):
                raise self._error("missing ')' in indirect offset")
            l = l[1:]
        return l

    def _parse_type(self, m: Magic, l: str) -> str:
        if l.startswith("u"):
            ftype, rest = get_type(l[1:])
            if ftype == FileType.INVALID:
                ftype, rest = standard_integer_type(l)
            if ftype != FileType.INVALID:
                m.flag |= FLAG_UNSIGNED
            l = rest
        else:
            ftype, rest = get_type(l)
            if ftype == FileType.INVALID:
                if l.startswith("d"):
                    ftype, rest = standard_integer_type(l)
                elif l.startswith("s") and not _is_alpha(l[1:2]):
                    ftype, rest = FileType.STRING, l[1:]
            l = rest
        if ftype == FileType.INVALID:
            ftype, l = get_special_type(l)
        if ftype == FileType.INVALID:
            raise self._error(f"type `{l}' invalid")
        if ftype == FileType.NAME and m.cont_level != 0:
            raise self._error(
                f"`name{l}' entries can only be declared at top level"
            )
        m.type = ftype
        return l

    def _parse_mask(self, m: Magic, l: str) -> str:
        m.mask_op = 0
        if l.startswith("~"):
            if not m.type.is_string:
                m.mask_op |= OP_INVERSE
            elif self.check:
                self._warn("'~' invalid for string types")
            l = l[1:]
        m.str_range = 0
        m.str_flags = PSTRING_1_LE if m.type == FileType.PSTRING else 0
        op = get_op(l[:1])
        if op is None:
            return l
        if m.type.is_string:
            if op != OP_DIVIDE:
                raise self._error(f"invalid string/indirect op: `{l[0]}'")
            if m.type == FileType.INDIRECT:
                return self._parse_indirect_modifier(m, l)
            return self._parse_string_modifier(m, l)
        l = l[1:]
        m.mask_op |= op
        value, rest = _parse_int(l)
        if value is None:
            value, rest = 0, l
        m.num_mask = sign_extend(m, _as_u64(value))
        return eat_size(rest)

    def _parse_indirect_modifier(self, m: Magic, l: str) -> str:
        pos = 1
        while True:
            ch = l[pos:pos + 1]
            if _is_space(ch):
                return l[pos:]
            if ch != CHAR_INDIRECT_RELATIVE:
                raise self._error(f"indirect modifier `{ch}' invalid")
            m.str_flags |= INDIRECT_RELATIVE
            pos += 1

    def _parse_string_modifier(self, m: Magic, l: str) -> str:
        pos = 1
        have_range = False
        while True:
            ch = l[pos:pos + 1]
            if _is_space(ch):
                break
            if _is_digit(ch):
                if have_range and self.check:
                    self._warn("multiple ranges")
                have_range = True
                value, rest = _parse_int(l[pos:])
                m.str_range = _as_u64(value) & 0xFFFFFFFF
                if m.str_range == 0:
                    self._warn("zero range")
                pos = len(l) - len(rest) - 1
            elif ch and ch in _SIMPLE_MODIFIERS:
                m.str_flags |= _SIMPLE_MODIFIERS[ch]
            elif ch and ch in _PSTRING_MODIFIERS:
                allowed = (FileType.PSTRING, FileType.REGEX) \
                    if ch == CHAR_PSTRING_4_LE else (FileType.PSTRING,)
                if m.type not in allowed:
                    raise self._error(f"string modifier `{ch}' invalid")
                m.str_flags = (m.str_flags & ~PSTRING_LEN) | _PSTRING_MODIFIERS[ch]
            elif ch == CHAR_PSTRING_LENGTH_INCLUDES_ITSELF:
                if m.type != FileType.PSTRING:
                    raise self._error(f"string modifier `{ch}' invalid")
                m.str_flags |= PSTRING_LENGTH_INCLUDES_ITSELF
            else:
                raise self._error(f"string modifier `{ch}' invalid")
            after = l[pos + 2:pos + 3]
            if l[pos + 1:pos + 2] == "/" and not _is_space(after):
                pos += 1
            pos += 1
        self._string_modifier_check(m)
        return l[pos:]

    def _string_modifier_check(self, m: Magic) -> None:
        if not self.check:
            return
        flags = m.str_flags
        if (m.type != FileType.REGEX or not flags & REGEX_LINE_COUNT) and (
            m.type != FileType.PSTRING and flags & PSTRING_LEN
        ):
            raise self._error(
                "'/BHhLl' modifiers are only allowed for pascal strings"
            )
        if m.type in (FileType.BESTRING16, FileType.LESTRING16):
            if flags:
                raise self._error("no modifiers allowed for 16-bit strings")
        elif m.type in (FileType.STRING, FileType.PSTRING):
            if flags & REGEX_OFFSET_START:
                raise self._error(
                    f"'/{CHAR_REGEX_OFFSET_START}' only allowed on regex and search"
                )
        elif m.type == FileType.SEARCH:
            if m.str_range == 0:
                m.str_range = STRING_DEFAULT_RANGE
                raise self._error(
                    f"missing range; defaulting to {STRING_DEFAULT_RANGE}"
                )
        elif m.type == FileType.REGEX:
            for char, bit in (
                (CHAR_COMPACT_WHITESPACE, STRING_COMPACT_WHITESPACE),
                (CHAR_COMPACT_OPTIONAL_WHITESPACE, STRING_COMPACT_OPTIONAL_WHITESPACE),
                (CHAR_IGNORE_LOWERCASE, STRING_IGNORE_LOWERCASE),
                (CHAR_IGNORE_UPPERCASE, STRING_IGNORE_UPPERCASE),
            ):
                if flags & bit:
                    raise self._error(f"'/{char}' not allowed on regex")
        else:
            raise self._error(f"coding error: m->type={int(m.type)}")

    def _parse_relation(self, m: Magic, l: str) -> str:
        c = l[:1]
        if c and c in "<>":
            m.reln = c
            l = l[1:]
            if l.startswith("="):
                if self.check:
                    raise self._error(f"{c}= not supported")
                l = l[1:]
        elif c and c in "&^=":
            m.reln = c
            l = l[1:]
            if l.startswith("="):
                l = l[1:]
        elif c == "!":
            m.reln = c
            l = l[1:]
        else:
            m.reln = "="
            if c == "x" and (len(l) == 1 or l[1] in _SPACE):
                m.reln = "x"
                l = l[1:]
        return l

    def _parse_description(self, m: Magic, l: str) -> None:
        l = l.lstrip(_SPACE)
        if l.startswith("\b"):
            l = l[1:]
            m.flag |= FLAG_NOSPACE
        elif l.startswith("\\b"):
            l = l[2:]
            m.flag |= FLAG_NOSPACE
        m.desc = l[:MAXDESC - 1]
        if len(l) >= MAXDESC - 1 and self.check:
            self._warn(f"description `{m.desc}' truncated")

    # -- annotations --------------------------------------------------------

    def _parse_strength(self, text: str) -> None:
        m = self._current.first
        if m.factor_op != FACTOR_OP_NONE:
            raise self._error(
                f"Current entry already has a strength type: {m.factor_op} {m.factor}"
            )
        if m.type == FileType.NAME:
            shown = show_string(m.value) if isinstance(m.value, bytes) else str(m.value)
            raise self._error(
                f"{shown}: Strength setting is not supported in \"name\" magic entries"
            )
        l = text.lstrip(_SPACE)
        c = l[:1]
        if c:
            if c not in "+-*/":
                raise self._error(f"Unknown factor op `{c}'")
            m.factor_op = c
            l = l[1:]
        l = l.lstrip(_SPACE)
        value, rest = _parse_int(l)
        factor = 0 if value is None else _as_u64(value)
        if value is None:
            rest = l
        try:
            if factor > 255:
                raise self._error(f"Too large factor `{factor}'")
            if rest and rest[0] not in _SPACE:
                raise self._error(f"Bad factor `{l}'")
            m.factor = factor
            if factor == 0 and m.factor_op == FACTOR_OP_DIV:
                raise self._error(
                    f"Cannot have factor op `{m.factor_op}' and factor {factor}"
                )
        except MagicSyntaxError:
            m.factor_op = FACTOR_OP_NONE
            m.factor = 0
            raise

    def _parse_extra(self, text: str, attr: str, size: int, name: str,
                     extra: str, terminated: bool) -> None:
        m = self._current.magics[-1]
        existing = getattr(m, attr)
        if existing:
            raise self._error(
                f"Current entry already has a {name} type `{existing}', "
                f"new type `{text}'"
            )
        if not m.desc:
            raise self._error(
                "Current entry does not yet have a description for adding "
                f"a {name} type"
            )
        l = text.lstrip(_SPACE)
        count = 0
        while count < len(l) and count < size and _goodchar(l[count], extra):
            count += 1
        value = l[:count]
        if count == size and count < len(l):
            if terminated:
                value = value[:size - 1]
            if self.check:
                self._warn(f"{name} type `{text}' truncated {count}")
        else:
            nxt = l[count:count + 1]
            if nxt and nxt not in _SPACE and not _goodchar(nxt, extra):
                self._warn(f"{name} type `{text}' has bad char '{nxt}'")
        if not count:
            raise self._error(f"Bad magic entry '{text}'")
        setattr(m, attr, value)

    def _parse_mime(self, text: str) -> None:
        self._parse_extra(text, "mimetype", MAXMIME, "MIME", "+-/.$?:{};=", True)

    def _parse_apple(self, text: str) -> None:
        self._parse_extra(text, "apple", MAXAPPLE, "APPLE", "!+-./?", False)

    def _parse_ext(self, text: str) -> None:
        self._parse_extra(text, "ext", MAXEXT, "EXTENSION", ",!+-/@?_$&~", False)