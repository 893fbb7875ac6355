"""Loading magic files into a sorted, searchable database of tests."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from typing import Iterable, Union

from filesniff.magic_types import (
    FACTOR_OP_DIV,
    FACTOR_OP_MINUS,
    FACTOR_OP_NONE,
    FACTOR_OP_PLUS,
    FACTOR_OP_TIMES,
    FLAG_BINTEST,
    FLAG_TEXTTEST,
    STRING_BINTEST,
    STRING_TEXTTEST,
    FileType,
    Magic,
    type_size,
)
from filesniff.parser import MagicEntry, MagicParser, MagicSyntaxError
from filesniff.values import nonmagic

MULT = 10

_STRING_STRENGTH = frozenset({FileType.PSTRING, FileType.STRING, FileType.OCTAL})
_STRING16 = frozenset({FileType.BESTRING16, FileType.LESTRING16})
_NO_STRENGTH = frozenset({
    FileType.INDIRECT, FileType.NAME, FileType.USE, FileType.CLEAR,
})
_TEXT_OVERRIDE = frozenset({
    FileType.STRING, FileType.PSTRING, FileType.BESTRING16, FileType.LESTRING16,
})
_PATTERN_TYPES = frozenset({FileType.REGEX, FileType.SEARCH})
_TEXT_CONTROLS = frozenset(b"\a\b\t\n\v\f\r\x1b")


def _base_strength(magic: Magic) -> int:
    ftype = magic.type
    if ftype == FileType.DEFAULT:
        return 0
    val = 2 * MULT
    size = type_size(ftype)
    if size is not None:
        val += size * MULT
    elif ftype in _STRING_STRENGTH:
        val += magic.vallen * MULT
    elif ftype in _STRING16:
        val += magic.vallen * MULT // 2
    elif ftype == FileType.SEARCH:
        if magic.vallen:
            val += magic.vallen * max(MULT // magic.vallen, 1)
    elif ftype == FileType.REGEX:
        value = magic.value if isinstance(magic.value, (bytes, str)) else b""
        count = nonmagic(value)
        val += count * max(MULT // count, 1)
    elif ftype in _NO_STRENGTH:
        pass
    elif ftype == FileType.DER:
        val += MULT
    else:
        raise ValueError(f"Bad type {int(ftype)}")

    reln = magic.reln
    if reln in ("x", "!"):
        val = 0
    elif reln == "=":
        val += MULT
    elif reln in ("<", ">"):
        val -= 2 * MULT
    elif reln in ("^", "&"):
        val -= MULT
    else:
        raise ValueError(f"Bad relation {reln}")
    return val


def magic_strength(magic: Magic) -> int:
    """Weight of a test for ordering: more specific tests weigh more."""
    val = _base_strength(magic)
    op = magic.factor_op
    if op == FACTOR_OP_NONE:
        pass
    elif op == FACTOR_OP_PLUS:
        val += magic.factor
    elif op == FACTOR_OP_MINUS:
        val -= magic.factor
    elif op == FACTOR_OP_TIMES:
        val *= magic.factor
    elif op == FACTOR_OP_DIV:
        quotient = abs(val) // magic.factor
        val = -quotient if val < 0 else quotient
    else:
        raise ValueError(f"Bad factor_op {op}")
    if val <= 0:
        val = 1
    if not magic.desc:
        val += 1
    return val


def _value_key(value) -> tuple:
    if isinstance(value, bytes):
        return (2, value)
    if isinstance(value, float):
        return (1, value)
    return (0, int(value))


def _tie_key(magic: Magic) -> tuple:
    return (
        magic.cont_level, magic.flag, magic.factor, magic.reln, magic.vallen,
        int(magic.type), int(magic.in_type), magic.in_op, magic.mask_op,
        magic.cond, magic.factor_op, magic.offset, magic.in_offset,
        magic.num_mask, magic.str_range, magic.str_flags,
        _value_key(magic.value), magic.desc, magic.mimetype, magic.apple,
        magic.ext,
    )


def sort_entries(entries: Iterable[MagicEntry]) -> list[MagicEntry]:
    """Order entries by descending strength of their top-level test."""
    return sorted(
        entries,
        key=lambda entry: (magic_strength(entry.first), _tie_key(entry.first)),
        reverse=True,
    )


def _looks_like_text(data: bytes) -> bool:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return False
    return all(
        ord(ch) >= 0x80 or (0x20 <= ord(ch) < 0x7F) or ord(ch) in _TEXT_CONTROLS
        for ch in text
    )


def set_test_type(start: Magic, magic: Magic) -> None:
    """Mark start as a binary or text test according to magic's type."""
    ftype = magic.type
    if type_size(ftype) is not None or ftype in (FileType.DER, FileType.OCTAL):
        start.flag |= FLAG_BINTEST
    elif ftype in _TEXT_OVERRIDE:
        if start.str_flags & STRING_TEXTTEST:
            start.flag |= FLAG_TEXTTEST
        else:
            start.flag |= FLAG_BINTEST
    elif ftype in _PATTERN_TYPES:
        if start.str_flags & STRING_BINTEST:
            start.flag |= FLAG_BINTEST
        if start.str_flags & STRING_TEXTTEST:
            start.flag |= FLAG_TEXTTEST
        if start.flag & (FLAG_TEXTTEST | FLAG_BINTEST):
            return
        value = magic.value if isinstance(magic.value, bytes) else b""
        if _looks_like_text(value[:magic.vallen]):
            start.flag |= FLAG_TEXTTEST
        else:
            start.flag |= FLAG_BINTEST


@dataclass
class MagicDatabase:
    """Sorted tests: set 0 holds ordinary tests, set 1 the named ones."""

    sets: tuple = field(default_factory=lambda: ([], []))
    warnings: list = field(default_factory=list)

    def _merge(self, other: "MagicDatabase") -> None:
        for mine, theirs in zip(self.sets, other.sets):
            mine.extend(theirs)
        self.warnings.extend(other.warnings)

    def find_name(self, name: Union[str, bytes]) -> list[Magic]:
        """Return the tests of the named entry declared with "name"."""
        key = name.encode("latin-1") if isinstance(name, str) else bytes(name)
        magics = self.sets[1]
        for index, magic in enumerate(magics):
            if magic.type != FileType.NAME or magic.value != key:
                continue
            end = index + 1
            while end < len(magics) and magics[end].cont_level != 0:
                end += 1
            return magics[index:end]
        raise KeyError(name)

    def _list_set(self, magics: list[Magic], mode: int) -> list[str]:
        lines = []
        index = 0
        count = len(magics)
        while index < count:
            start = index
            index += 1
            while index < count and magics[index].cont_level != 0:
                index += 1
            top = magics[start]
            if (top.flag & mode) != mode:
                continue
            group = magics[start:index]
            desc = next((m.desc for m in group if m.desc), "")
            mime = next((m.mimetype for m in group if m.mimetype), "")
            lines.append(
                f"Strength = {magic_strength(top):3d}@{top.lineno}: "
                f"{desc} [{mime}]\n"
            )
        return lines

    def listing(self) -> str:
        """The tests in matching order, split into binary and text ones."""
        out = []
        for number, magics in enumerate(self.sets):
            out.append(f"Set {number}:\nBinary patterns:\n")
            out.extend(self._list_set(magics, FLAG_BINTEST))
            out.append("Text patterns:\n")
            out.extend(self._list_set(magics, FLAG_TEXTTEST))
        return "".join(out)


def _parse_one(path: str, check: bool, sets: tuple, errors: list, warnings: list) -> None:
    with open(path, "rb") as handle:
        text = handle.read().decode("latin-1")
    parser = MagicParser(path, check)
    pieces = text.split("\n")
    if pieces and pieces[-1] == "":
        pieces.pop()
    for lineno, line in enumerate(pieces, start=1):
        try:
            parser.parse_line(line, lineno)
        except MagicSyntaxError as exc:
            errors.append(exc)
    for entry in parser.finish():
        sets[1 if entry.first.type == FileType.NAME else 0].append(entry)
    warnings.extend(parser.warnings)


def _magic_files(directory: str) -> list[str]:
    found = []
    for name in os.listdir(directory):
        if name.startswith("."):
            continue
        path = f"{directory}/{name}"
        if os.path.isfile(path):
            found.append(path)
    return sorted(found)


def load_file(path, check: bool = True) -> MagicDatabase:
    """Load one magic file, or every regular file of a directory.

    Raises OSError when a file cannot be read and MagicSyntaxError on the
    first bad line once the whole input has been read.
    """
    path = os.fspath(path)
    entry_sets: tuple = ([], [])
    errors: list[MagicSyntaxError] = []
    warnings: list[str] = []
    files = _magic_files(path) if os.path.isdir(path) else [path]
    for name in files:
        _parse_one(name, check, entry_sets, errors, warnings)
    if errors:
        raise errors[0]

    db = MagicDatabase(warnings=warnings)
    for target, entries in zip(db.sets, entry_sets):
        for entry in entries:
            set_test_type(entry.first, entry.first)
        ordered = sort_entries(entries)
        default_at = next(
            (i for i, e in enumerate(ordered) if e.first.type == FileType.DEFAULT),
            None,
        )
        if default_at is not None and default_at + 1 < len(ordered):
            after = ordered[default_at + 1].first
            db.warnings.append(
                f"{path}, {after.lineno}: Warning: "
                "level 0 \"default\" did not sort last"
            )
        for entry in ordered:
            target.extend(entry.magics)
    return db


def load(paths, check: bool = True) -> MagicDatabase:
    """Load several magic files; a string is split on os.pathsep.

    Files that fail are skipped with a warning; if none loads, raises
    MagicSyntaxError.
    """
    if isinstance(paths, (str, os.PathLike)):
        joined = os.fspath(paths)
        names = joined.split(os.pathsep)
    else:
        names = [os.fspath(p) for p in paths]
        joined = os.pathsep.join(names)
    db = MagicDatabase()
    loaded = False
    for name in names:
        if not name:
            break
        try:
            part = load_file(name, check)
        except (OSError, MagicSyntaxError) as exc:
            db.warnings.append(str(exc))
            continue
        db._merge(part)
        loaded = True
    if not loaded:
        raise MagicSyntaxError("could not find any valid magic files!", joined)
    return db


def main(argv=None) -> int:
    """List the tests of a magic file in matching order."""
    args = sys.argv[1:] if argv is None else list(argv)
    prog = "filesniff"
    if len(args) != 1:
        print(f"Usage: {prog} file", file=sys.stderr)
        return 1
    try:
        db = load(args[0])
    except (OSError, MagicSyntaxError) as exc:
        print(f"{prog}: {exc}", file=sys.stderr)
        return 1
    for warning in db.warnings:
        print(warning, file=sys.stderr)
    sys.stdout.write(db.listing())
    return 0