import struct
import uuid

import pytest

from filesniff.magic_types import (
    FLAG_UNSIGNED,
    OP_ADD,
    OP_AND,
    OP_DIVIDE,
    OP_MINUS,
    OP_MODULO,
    OP_MULTIPLY,
    OP_OR,
    OP_XOR,
    PSTRING_1_LE,
    FileType,
    Magic,
    pstring_length_size,
    sign_extend,
)
from filesniff.values import (
    MAXSTRING,
    ValueError_,
    decode_string,
    eat_size,
    get_op,
    hex_to_int,
    nonmagic,
    parse_value,
    show_string,
)


def test_decode_stops_at_whitespace():
    result = decode_string("abc def", FileType.STRING, False)
    assert result.value == b"abc"
    assert result.rest == " def"


def test_decode_simple_escapes():
    assert decode_string("\\n\\t\\r", FileType.STRING, False).value == b"\n\t\r"


def test_decode_octal_and_hex_agree():
    octal = decode_string("\\101", FileType.STRING, False).value
    hexa = decode_string("\\x41", FileType.STRING, False).value
    assert octal == hexa == bytes([0o101])


def test_decode_short_octal():
    assert decode_string("\\0", FileType.STRING, False).value == bytes([0])


def test_decode_hex_without_digits_keeps_x():
    assert decode_string("\\xg", FileType.STRING, False).value == b"xg"


def test_decode_escaped_space():
    result = decode_string("a\\ b c", FileType.STRING, False)
    assert result.value == b"a b"
    assert result.rest == " c"


def test_decode_too_long():
    with pytest.raises(ValueError_):
        decode_string("a" * MAXSTRING, FileType.STRING, False)


def test_decode_incomplete_escape_warns():
    result = decode_string("ab\\", FileType.STRING, True)
    assert result.value == b"ab"
    assert result.warnings == ["incomplete escape"]
    assert result.rest == ""


def test_decode_no_warnings_when_disabled():
    assert decode_string("\\q", FileType.STRING, False).warnings == []


def test_decode_needless_escape_warns():
    result = decode_string("\\q", FileType.STRING, True)
    assert result.value == b"q"
    assert result.warnings == ["no need to escape `q'"]


def test_decode_relation_escape_is_quiet():
    result = decode_string("\\<", FileType.STRING, True)
    assert result.value == b"<"
    assert result.warnings == []


def test_decode_regex_escaped_dot_warns():
    result = decode_string("a\\.b", FileType.REGEX, True)
    assert result.value == b"a.b"
    assert len(result.warnings) == 1
    assert "escaped dot" in result.warnings[0]


@pytest.mark.parametrize("data", [b"hello", b"\x00\x01\x7f", b"a\nb\tc", b"\xff\xfe"])
def test_show_then_decode_round_trip(data):
    shown = show_string(data)
    assert decode_string(shown, FileType.STRING, False).value == data


def test_show_string_escapes():
    assert show_string(b"\x07") == "\\a"
    assert show_string(b"\x01") == "\\001"
    assert show_string(b"plain") == "plain"


@pytest.mark.parametrize("char", list("0123456789abcdefABCDEF"))
def test_hex_to_int_digits(char):
    assert hex_to_int(char) == int(char, 16)


@pytest.mark.parametrize("char", ["g", "G", "x", " ", "é"])
def test_hex_to_int_rejects(char):
    assert hex_to_int(char) is None


@pytest.mark.parametrize("suffix", ["UL", "ul", "L", "u", "h", "b", "c", "s"])
def test_eat_size_suffixes(suffix):
    assert eat_size(suffix + " rest") == " rest"


def test_eat_size_leaves_other_text():
    assert eat_size("q rest") == "q rest"


@pytest.mark.parametrize("word", ["abc", "hello", "x"])
def test_nonmagic_plain_counts_length(word):
    assert nonmagic(word) == len(word)


def test_nonmagic_invariants():
    assert nonmagic(".*+?") == 1
    assert nonmagic("") == 1
    assert nonmagic("ab.*") == nonmagic("ab")
    assert nonmagic("[xyz]") == nonmagic("q")
    assert nonmagic("a{2,3}") == nonmagic("a")
    assert nonmagic("\\.") == nonmagic("a")
    assert nonmagic(b"abc[de]") == nonmagic("abc[de]")


def test_get_op():
    assert get_op("&") == OP_AND
    assert get_op("|") == OP_OR
    assert get_op("^") == OP_XOR
    assert get_op("+") == OP_ADD
    assert get_op("-") == OP_MINUS
    assert get_op("*") == OP_MULTIPLY
    assert get_op("/") == OP_DIVIDE
    assert get_op("%") == OP_MODULO
    assert get_op("x") is None


def test_parse_byte_hex():
    magic = Magic(type=FileType.BYTE)
    rest, _ = parse_value(magic, "0x7f rest")
    assert magic.value == 0x7F
    assert rest == " rest"


def test_parse_byte_overflow():
    with pytest.raises(ValueError_):
        parse_value(Magic(type=FileType.BYTE), "256")


def test_parse_negative_byte_sign_extended():
    magic = Magic(type=FileType.BYTE)
    parse_value(magic, "-1")
    assert magic.value == sign_extend(magic, 2**64 - 1)


def test_parse_unsigned_byte():
    magic = Magic(type=FileType.BYTE, flag=FLAG_UNSIGNED)
    parse_value(magic, "0xff")
    assert magic.value == 0xFF


def test_parse_long_eats_size_suffix():
    magic = Magic(type=FileType.LONG)
    rest, _ = parse_value(magic, "10L x")
    assert magic.value == 10
    assert rest == " x"


def test_parse_unparsable_number():
    with pytest.raises(ValueError_):
        parse_value(Magic(type=FileType.LONG), "abc")


def test_parse_x_relation_skips_numeric():
    magic = Magic(type=FileType.LONG, reln="x")
    rest, _ = parse_value(magic, "whatever")
    assert rest == "whatever"


def test_parse_string_value():
    magic = Magic(type=FileType.STRING)
    rest, _ = parse_value(magic, "hello world")
    assert magic.value == b"hello"
    assert magic.vallen == len(b"hello")
    assert rest == " world"


def test_parse_pstring_counts_prefix():
    magic = Magic(type=FileType.PSTRING, str_flags=PSTRING_1_LE)
    parse_value(magic, "hi")
    assert magic.vallen == len(b"hi") + pstring_length_size(magic)


def test_parse_bad_regex():
    with pytest.raises(ValueError_):
        parse_value(Magic(type=FileType.REGEX), "(")


def test_parse_double():
    magic = Magic(type=FileType.DOUBLE)
    rest, _ = parse_value(magic, "1.5 rest")
    assert magic.value == 1.5
    assert rest == " rest"


def test_parse_float_rounds_to_single_precision():
    magic = Magic(type=FileType.FLOAT)
    parse_value(magic, "0.1")
    assert magic.value == struct.unpack("<f", struct.pack("<f", 0.1))[0]


def test_parse_guid_round_trip():
    text = "12345678-1234-1234-1234-123456789abc"
    magic = Magic(type=FileType.GUID)
    rest, _ = parse_value(magic, text + " rest")
    assert rest == " rest"
    assert uuid.UUID(bytes_le=magic.value) == uuid.UUID(text)


def test_parse_bad_guid():
    with pytest.raises(ValueError):
        parse_value(Magic(type=FileType.GUID), "not-a-guid")