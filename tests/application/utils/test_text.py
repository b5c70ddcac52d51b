"""Tests for sprout.application.utils.text: frontmatter and line handling."""

from sprout.application.utils.text import (
    frontmatter_end,
    is_indexing_disabled,
    join_lines,
    parse_frontmatter,
    split_lines,
)

# ---------- Frontmatter ----------


def test_frontmatter_end():
    assert frontmatter_end(["---", "a: 1", "---", "body"]) == 3
    assert frontmatter_end(["---", "a: 1", "..."]) == 3
    assert frontmatter_end(["body", "---"]) == 0
    assert frontmatter_end([]) == 0


def test_unterminated_frontmatter_is_body():
    assert frontmatter_end(["---", "a: 1", "Q|q|"]) == 0


def test_bom_before_frontmatter():
    assert frontmatter_end(["\ufeff---", "a: 1", "---"]) == 3


def test_parse_frontmatter():
    meta, end = parse_frontmatter("---\ntitle: Cells\nsprout: false\n---\nbody\n")
    assert meta == {"title": "Cells", "sprout": False}
    assert end == 4


def test_parse_frontmatter_tabs_and_errors():
    meta, _ = parse_frontmatter("---\nlist:\n\t- a\n---\n")
    assert meta == {"list": ["a"]}
    meta, _ = parse_frontmatter("---\na: [unclosed\n---\n")
    assert "__yaml_error__" in meta


def test_non_mapping_frontmatter():
    assert parse_frontmatter("---\n- a\n- b\n---\n") == ({}, 4)


def test_indexing_disabled_flag():
    assert is_indexing_disabled({"sprout": False})
    assert is_indexing_disabled({"sprout": "off"})
    assert not is_indexing_disabled({"sprout": True})
    assert not is_indexing_disabled({})


# ---------- Line endings ----------


def test_split_join_crlf():
    lines, newline, trailing = split_lines("a\r\nb\r\n")
    assert lines == ["a", "b"]
    assert newline == "\r\n"
    assert trailing
    assert join_lines(lines, newline, trailing) == "a\r\nb\r\n"


def test_split_join_no_trailing_newline():
    lines, newline, trailing = split_lines("a\nb")
    assert (lines, newline, trailing) == (["a", "b"], "\n", False)
    assert join_lines(lines, newline, trailing) == "a\nb"


def test_split_empty():
    assert split_lines("") == ([], "\n", False)
    assert join_lines([], "\n", True) == ""
