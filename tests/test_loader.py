import os

import pytest

from filesniff.loader import (
    MagicDatabase,
    load,
    load_file,
    magic_strength,
    main,
    sort_entries,
)
from filesniff.magic_types import (
    FLAG_BINTEST,
    FLAG_TEXTTEST,
    FileType,
    Magic,
)
from filesniff.parser import MagicEntry, MagicSyntaxError

DOS = "0\tstring\tMZ\tDOS executable\n!:mime\tapplication/x-dosexec\n"
NAMED = "0\tname\tfoo\n>0\tbyte\t1\tone\n0\tstring\tXYZ\txyz data\n"


@pytest.fixture
def dos_file(tmp_path):
    path = tmp_path / "dos"
    path.write_text(DOS, encoding="latin-1")
    return path


def _loaded_top(tmp_path, source, desc):
    path = tmp_path / "entries"
    path.write_text(source, encoding="latin-1")
    db = load_file(path)
    matches = [m for m in db.sets[0] if m.cont_level == 0 and m.desc == desc]
    assert len(matches) == 1
    return matches[0]


def test_factor_plus_adds():
    plain = Magic(type=FileType.BYTE, reln="=", desc="a")
    boosted = Magic(type=FileType.BYTE, reln="=", desc="a", factor_op="+", factor=5)
    assert magic_strength(boosted) == magic_strength(plain) + 5


def test_factor_times_and_div():
    plain = Magic(type=FileType.LONG, reln="=", desc="a")
    times = Magic(type=FileType.LONG, reln="=", desc="a", factor_op="*", factor=2)
    div = Magic(type=FileType.LONG, reln="=", desc="a", factor_op="/", factor=2)
    assert magic_strength(times) == 2 * magic_strength(plain)
    assert magic_strength(div) == magic_strength(plain) // 2


def test_any_relation_floors_to_one():
    assert magic_strength(Magic(type=FileType.LONG, reln="x", desc="a")) == 1


def test_default_strength_floor():
    assert magic_strength(Magic(type=FileType.DEFAULT, reln="x", desc="a")) == 1


def test_empty_description_bonus():
    with_desc = Magic(type=FileType.SHORT, reln="=", desc="a")
    no_desc = Magic(type=FileType.SHORT, reln="=", desc="")
    assert magic_strength(no_desc) == magic_strength(with_desc) + 1


def test_longer_string_is_stronger():
    short = Magic(type=FileType.STRING, reln="=", vallen=2, desc="a")
    long_ = Magic(type=FileType.STRING, reln="=", vallen=6, desc="a")
    assert magic_strength(long_) > magic_strength(short)


def test_bad_relation_raises():
    with pytest.raises(ValueError):
        magic_strength(Magic(type=FileType.BYTE, reln="?", desc="a"))


def test_sort_entries_descending():
    entries = [
        MagicEntry([Magic(type=FileType.BYTE, reln="=", desc="b")]),
        MagicEntry([Magic(type=FileType.QUAD, reln="=", desc="q")]),
        MagicEntry([Magic(type=FileType.LONG, reln="x", desc="l")]),
    ]
    ordered = sort_entries(entries)
    strengths = [magic_strength(e.first) for e in ordered]
    assert strengths == sorted(strengths, reverse=True)
    assert {e.first.desc for e in ordered} == {"b", "q", "l"}


def test_set_test_type_string_is_binary(tmp_path):
    top = _loaded_top(tmp_path, "0\tstring\tMZ\tmz marker\n", "mz marker")
    assert top.flag & FLAG_BINTEST
    assert not top.flag & FLAG_TEXTTEST


def test_set_test_type_string_text_override(tmp_path):
    top = _loaded_top(tmp_path, "0\tstring/t\tMZ\tmz marker\n", "mz marker")
    assert top.flag & FLAG_TEXTTEST
    assert not top.flag & FLAG_BINTEST


def test_set_test_type_search_depends_on_pattern(tmp_path):
    source = (
        "0\tsearch/10\thello\tgreeting\n"
        "0\tsearch/10\t\\x00\\x01\tcontrol bytes\n"
    )
    text = _loaded_top(tmp_path, source, "greeting")
    binary = _loaded_top(tmp_path, source, "control bytes")
    assert text.flag & FLAG_TEXTTEST
    assert binary.flag & FLAG_BINTEST


def test_load_file_reads_entries(dos_file):
    db = load_file(dos_file)
    top = db.sets[0][0]
    assert top.desc == "DOS executable"
    assert top.mimetype == "application/x-dosexec"
    assert top.value == b"MZ"
    assert top.flag & FLAG_BINTEST


def test_find_name(tmp_path):
    path = tmp_path / "named"
    path.write_text(NAMED, encoding="latin-1")
    db = load_file(path)
    found = db.find_name("foo")
    assert [m.cont_level for m in found] == [0, 1]
    assert found[1].desc == "one"
    assert [m.desc for m in db.sets[0]] == ["xyz data"]
    with pytest.raises(KeyError):
        db.find_name("bar")


def test_load_directory_skips_hidden(tmp_path):
    (tmp_path / "a").write_text(DOS, encoding="latin-1")
    (tmp_path / ".hidden").write_text("garbage line\n", encoding="latin-1")
    db = load_file(tmp_path)
    assert [m.desc for m in db.sets[0]] == ["DOS executable"]


def test_syntax_error_raises(tmp_path):
    path = tmp_path / "bad"
    path.write_text("0\tnosuchtype\t1\tbad\n", encoding="latin-1")
    with pytest.raises(MagicSyntaxError):
        load_file(path)


def test_load_skips_missing(tmp_path, dos_file):
    missing = tmp_path / "missing"
    db = load(os.pathsep.join([str(missing), str(dos_file)]))
    assert db.sets[0][0].desc == "DOS executable"
    assert db.warnings


def test_load_nothing_valid(tmp_path):
    with pytest.raises(MagicSyntaxError):
        load([tmp_path / "missing"])


def test_listing(dos_file):
    text = load_file(dos_file).listing()
    assert text.startswith("Set 0:\nBinary patterns:\n")
    assert "DOS executable [application/x-dosexec]" in text
    assert "Set 1:" in text


def test_empty_database_find_name():
    with pytest.raises(KeyError):
        MagicDatabase().find_name("foo")


def test_main_usage():
    assert main([]) == 1


def test_main_lists(dos_file, capsys):
    assert main([str(dos_file)]) == 0
    out = capsys.readouterr().out
    assert "DOS executable" in out