import struct

import pytest

from filesniff.magic_types import (
    FLAG_UNSIGNED,
    PSTRING_1_LE,
    PSTRING_2_BE,
    PSTRING_2_LE,
    PSTRING_4_BE,
    PSTRING_4_LE,
    PSTRING_LENGTH_INCLUDES_ITSELF,
    FileType,
    Format,
    Magic,
    check_format_type,
    get_special_type,
    get_type,
    pstring_get_length,
    pstring_length_size,
    sign_extend,
    standard_integer_type,
    type_size,
    varint_to_int,
)


def test_get_type_returns_rest():
    assert get_type("belong&0xff") == (FileType.BELONG, "&0xff")


def test_get_type_unknown_keeps_text():
    assert get_type("xyzzy 0") == (FileType.INVALID, "xyzzy 0")


@pytest.mark.parametrize("ftype", list(FileType))
def test_every_keyword_round_trips(ftype):
    assert get_type(ftype.keyword + " rest") == (ftype, " rest")


def test_special_types():
    assert get_special_type("octal 0") == (FileType.OCTAL, " 0")
    assert get_special_type("use foo") == (FileType.USE, " foo")
    assert get_special_type("byte")[0] == FileType.INVALID


def test_formats_from_table():
    assert get_type("byte")[0].format == Format.NUM
    assert get_type("quad")[0].format == Format.QUAD
    assert get_type("ledouble")[0].format == Format.DOUBLE
    assert get_type("default")[0].format == Format.NONE
    assert get_type("string")[0].is_string
    assert not get_type("long")[0].is_string


@pytest.mark.parametrize(
    "text, expected",
    [
        ("dC x", (FileType.BYTE, " x")),
        ("uS", (FileType.SHORT, "")),
        ("dI", (FileType.LONG, "")),
        ("uL", (FileType.LONG, "")),
        ("dQ", (FileType.QUAD, "")),
        ("u1", (FileType.BYTE, "")),
        ("d2", (FileType.SHORT, "")),
        ("u4", (FileType.LONG, "")),
        ("d8", (FileType.QUAD, "")),
        ("d =1", (FileType.LONG, " =1")),
    ],
)
def test_standard_integer_type(text, expected):
    assert standard_integer_type(text) == expected


@pytest.mark.parametrize("text", ["d", "", "dX", "d3", "d16"])
def test_standard_integer_type_invalid(text):
    assert standard_integer_type(text) == (FileType.INVALID, text)


def test_type_size_values():
    assert type_size(FileType.BYTE) == 1
    assert type_size(FileType.BESHORT) == 2
    assert type_size(FileType.LELONG) == 4
    assert type_size(FileType.QUAD) == 8
    assert type_size(FileType.GUID) == 16
    assert type_size(FileType.STRING) is None


@pytest.mark.parametrize(
    "ftype, code",
    [
        (FileType.BYTE, "b"),
        (FileType.SHORT, "h"),
        (FileType.LONG, "i"),
        (FileType.QUAD, "q"),
        (FileType.FLOAT, "f"),
        (FileType.DOUBLE, "d"),
    ],
)
def test_type_size_matches_struct(ftype, code):
    assert type_size(ftype) == struct.calcsize("<" + code)


def test_sign_extend_byte_negative():
    result = sign_extend(Magic(type=FileType.BYTE), 0xFF)
    assert result == 0xFFFFFFFFFFFFFFFF


@pytest.mark.parametrize(
    "ftype, bits", [(FileType.BYTE, 8), (FileType.LESHORT, 16), (FileType.BELONG, 32)]
)
def test_sign_extend_preserves_low_bits(ftype, bits):
    value = 1 << (bits - 1)
    result = sign_extend(Magic(type=ftype), value)
    assert result & ((1 << bits) - 1) == value
    assert result >> 63 == 1


def test_sign_extend_positive_unchanged():
    assert sign_extend(Magic(type=FileType.SHORT), 0x7FFF) == 0x7FFF


def test_sign_extend_unsigned_and_strings_unchanged():
    assert sign_extend(Magic(type=FileType.BYTE, flag=FLAG_UNSIGNED), 0xFF) == 0xFF
    assert sign_extend(Magic(type=FileType.STRING), 0xFF) == 0xFF


def test_sign_extend_invalid_type():
    with pytest.raises(ValueError, match="cannot happen"):
        sign_extend(Magic(type=FileType.INVALID), 1)


@pytest.mark.parametrize(
    "spec, ftype",
    [
        ("d", FileType.LONG),
        ("c", FileType.BYTE),
        ("#x", FileType.BYTE),
        ("-08.2u", FileType.BESHORT),
        ("lld", FileType.QUAD),
        ("llx", FileType.OFFSET),
        (".2f", FileType.FLOAT),
        ("-.3g", FileType.LEDOUBLE),
        ("-10s", FileType.STRING),
        ("s", FileType.DATE),
        ("5.3s", FileType.PSTRING),
    ],
)
def test_check_format_type_accepts(spec, ftype):
    assert check_format_type(spec, ftype) is None


@pytest.mark.parametrize(
    "spec, ftype",
    [
        ("c", FileType.LONG),
        ("ld", FileType.LONG),
        ("d", FileType.QUAD),
        ("d", FileType.STRING),
        ("s", FileType.FLOAT),
        ("x", FileType.DOUBLE),
    ],
)
def test_check_format_type_not_valid(spec, ftype):
    with pytest.raises(ValueError, match="not valid"):
        check_format_type(spec, ftype)


@pytest.mark.parametrize("spec", ["123456d", "2000d", "1.2000d"])
def test_check_format_type_too_long(spec):
    with pytest.raises(ValueError, match="too long"):
        check_format_type(spec, FileType.LONG)


def test_check_format_type_missing():
    with pytest.raises(ValueError, match="missing format spec"):
        check_format_type("", FileType.LONG)


def test_check_format_type_no_format():
    with pytest.raises(ValueError):
        check_format_type("s", FileType.DEFAULT)


def test_varint_be_single_byte():
    assert varint_to_int(b"\x05", FileType.BEVARINT) == (5, 1)


def test_varint_be_continuation_consumes_bytes():
    value, length = varint_to_int(b"\x81\x01\x99", FileType.BEVARINT)
    assert length == 2
    assert value & 0x7F == 1


def test_varint_le_length_and_shift():
    value, length = varint_to_int(b"\x85\x83\x01", FileType.LEVARINT)
    assert length == 3
    assert value % 128 == 0


def test_varint_stops_at_end_of_data():
    value, length = varint_to_int(b"", FileType.BEVARINT)
    assert (value, length) == (0, 1)


@pytest.mark.parametrize(
    "flags, size",
    [
        (PSTRING_1_LE, 1),
        (PSTRING_2_LE, 2),
        (PSTRING_2_BE, 2),
        (PSTRING_4_LE, 4),
        (PSTRING_4_BE, 4),
    ],
)
def test_pstring_length_size(flags, size):
    assert pstring_length_size(Magic(type=FileType.PSTRING, str_flags=flags)) == size


def test_pstring_length_size_bad():
    with pytest.raises(ValueError, match="bad pascal string length"):
        pstring_length_size(Magic(type=FileType.PSTRING, str_flags=0))


def test_pstring_get_length_byte_orders():
    data = b"\x01\x02\x03\x04"
    m = Magic(type=FileType.PSTRING)
    m.str_flags = PSTRING_1_LE
    assert pstring_get_length(m, data) == data[0]
    m.str_flags = PSTRING_2_BE
    assert pstring_get_length(m, data) == 0x0102
    m.str_flags = PSTRING_2_LE
    assert pstring_get_length(m, data) == int.from_bytes(data[:2], "little")
    m.str_flags = PSTRING_4_BE
    assert pstring_get_length(m, data) == int.from_bytes(data, "big")
    m.str_flags = PSTRING_4_LE
    assert pstring_get_length(m, data) == int.from_bytes(data, "little")


def test_pstring_length_includes_itself():
    plain = Magic(type=FileType.PSTRING, str_flags=PSTRING_2_BE)
    inclusive = Magic(
        type=FileType.PSTRING,
        str_flags=PSTRING_2_BE | PSTRING_LENGTH_INCLUDES_ITSELF,
    )
    data = b"\x00\x10"
    assert pstring_get_length(inclusive, data) == pstring_get_length(plain, data) - 2


def test_pstring_get_length_bad():
    with pytest.raises(ValueError):
        pstring_get_length(Magic(type=FileType.PSTRING, str_flags=0), b"\x01")