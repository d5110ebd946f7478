"""
Tests for source loading and line-level helpers
"""
import pytest

from trustc import (
    SourceIOError, TrustSyntaxError, extract_block, inline_block, load_source, split_args,
    split_lines, strip_comment,
)


def test_strip_comment():
    assert strip_comment("Integer x = 1; // note") == "Integer x = 1; "
    assert strip_comment('print("http://example.com");') == 'print("http://example.com");'
    assert strip_comment('print("a"); // "b"') == 'print("a"); '
    assert strip_comment("// whole line") == ""


def test_load_source(tmp_path):
    path = tmp_path / "prog.trust"
    path.write_text('Integer x = 1; // one\n\nprint(x);\n', encoding="utf-8")
    assert load_source(path) == ["Integer x = 1; ", "", "print(x);"]


def test_load_missing_source(tmp_path):
    with pytest.raises(SourceIOError):
        load_source(tmp_path / "missing.trust")


def test_split_args():
    assert split_args('"a, b", 2, x') == ['"a, b"', "2", "x"]
    assert split_args("") == []
    assert split_args("a[1], (2 + 3)") == ["a[1]", "(2 + 3)"]


def test_extract_block():
    lines = ["if (x) {", "  print(1);", "}", "print(2);"]
    assert extract_block(lines, 0) == 3


def test_extract_nested_block():
    lines = ["Memory f() = {", "if (1) {", "print(1);", "}", "}", "print(2);"]
    assert extract_block(lines, 0) == 5
    assert extract_block(lines, 1) == 4


def test_extract_block_on_one_line():
    assert extract_block(["if (1) { }", "print(2);"], 0) == 1


def test_extract_block_counts_braces_in_strings():
    """
    Braces inside literals are not skipped: the block closes early.
    """
    lines = ["if (1) {", 'print("}");', "}"]
    assert extract_block(lines, 0) == 2


def test_unterminated_block():
    with pytest.raises(TrustSyntaxError):
        extract_block(["if (1) {", "print(1);"], 0)


def test_split_lines_on_newlines_only():
    """
    Only newline ends a line; a trailing carriage return is dropped, other separators stay.
    """
    assert split_lines("a\x0cb\r\nc d\n") == ["a\x0cb", "c d"]
    assert split_lines("x\n\ny") == ["x", "", "y"]
    assert split_lines("") == []


def test_inline_block():
    assert inline_block(' print("in"); }') == ('print("in");', "")
    assert inline_block(" if (1) { print(1); } } rest") == ("if (1) { print(1); }", "rest")
    assert inline_block("") is None
    assert inline_block(" print(1);") is None
