# filesniff

filesniff reads magic files: the line-oriented rule files that describe how
a file type is recognised from its contents. It parses every rule and its
continuation lines, checks modifiers, values and printf conversions in the
descriptions, weighs each rule by its strength and lists the rules in the
order they would be tried. Separately, it describes decoded text: which line
terminators it uses, whether it has very long lines, escape sequences or
overstriking.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Listing a magic database

```
filesniff-magic path/to/magic
```

The argument is one magic file or a directory; in a directory every regular
file whose name does not start with a dot is read, in sorted order. Several
paths may be joined with the system path separator (`os.pathsep`). A path
that cannot be read or holds a bad rule is skipped with a warning on
standard error; if none loads, the command fails with exit status 1.

The output has one section per rule set (set 0 for ordinary rules, set 1 for
rules declared with `name`), each split into binary and text patterns,
strongest first:

```
Set 0:
Binary patterns:
Strength =  70@1: some description [application/x-example]
Text patterns:
...
```

## Using it from Python

```python
from filesniff.loader import load, magic_strength

db = load("path/to/magic")          # or a list of paths
print(db.listing(), end="")
for warning in db.warnings:
    print(warning)

tests = db.find_name("my-named-rule")   # list of Magic; KeyError if absent
```

- `filesniff.loader`: `load`, `load_file`, `MagicDatabase` (with `sets`,
  `warnings`, `find_name` and `listing`), `magic_strength`, `sort_entries`
  and `set_test_type`. `load_file` raises `OSError` for unreadable files and
  the first `MagicSyntaxError` of the input; `load` raises
  `MagicSyntaxError` only when no file at all could be loaded.
- `filesniff.parser`: `MagicParser(filename, check)` takes lines through
  `parse_line` (and `parse_annotation` for `!:mime`, `!:apple`, `!:ext` and
  `!:strength`), and `finish` returns the list of `MagicEntry` objects.
  Warnings are gathered in `parser.warnings`; a bad line raises
  `MagicSyntaxError`, which carries `message`, `filename` and `lineno`.
  `check_format` validates the printf conversion in a description.
- `filesniff.magic_types`: the `Magic` record, the `FileType` and `Format`
  enums, `get_type`, `get_special_type`, `standard_integer_type`,
  `type_size`, `sign_extend`, `check_format_type`, `varint_to_int`,
  `pstring_length_size` and `pstring_get_length`.
- `filesniff.values`: `decode_string` for C-style escapes, `parse_value`,
  `eat_size`, `hex_to_int`, `get_op`, `nonmagic` for the strength of a regex
  and `show_string` for printing bytes with escapes. Bad values raise
  `ValueError_`.
- `filesniff.textinfo`: `line_statistics` (returning `LineStats`),
  `describe_text`, `trim_nuls` and `encode_utf8`.

```python
from filesniff.textinfo import describe_text

print(describe_text([ord(c) for c in "hello\r\nworld\r\n"], "ASCII", "text"))
# ASCII text, with CRLF line terminators
```

## What it does not do

filesniff does not identify files. It loads and orders the rules of a magic
database but does not run them against file contents, so there is no command
that takes a file and prints its type or MIME type. It neither reads nor
writes compiled databases: rules are always parsed from their text form.
`describe_text` does not guess a character encoding either; the caller
passes the decoded code points together with the encoding name and the kind
of text to report.