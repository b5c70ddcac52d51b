import pytest

from sprout.application.locator import LineRange, find_range, replace_block, scan_blocks
from sprout.domain.errors import BlockNotFoundError

NOTE = [
    "# Heading",
    "Some prose.",
    "^sprout-a",
    "Q|q1|",
    "A|a1|",
    "",
    "Q|q2|",
    "A|multi",
    "line|",
    "More prose",
]


def test_scan_finds_each_block():
    blocks = scan_blocks(NOTE)
    assert [(b.start, b.end) for b in blocks] == [(2, 5), (6, 9)]
    assert blocks[0].anchor_id == "a"
    assert blocks[0].head_key == "Q"
    assert blocks[1].anchor_id is None
    assert blocks[1].lines == ["Q|q2|", "A|multi", "line|"]


def test_prose_line_ends_block():
    blocks = scan_blocks(["^sprout-a", "Q|q|", "A|a|", "just text", "more text"])
    assert len(blocks) == 1
    assert blocks[0].range == LineRange(0, 3)


def test_anchor_starts_new_block_without_blank_line():
    blocks = scan_blocks(["Q|a|", "A|b|", "^sprout-n", "Q|c|", "A|d|"])
    assert [(b.start, b.end, b.anchor_id) for b in blocks] == [(0, 2, None), (2, 5, "n")]


def test_title_line_starts_block():
    blocks = scan_blocks(["^sprout-t", "T|Title|", "Q|q|", "A|a|"])
    assert len(blocks) == 1
    assert blocks[0].field_count == 3


def test_orphan_anchor():
    blocks = scan_blocks(["^sprout-z", "", "Text"])
    assert len(blocks) == 1
    assert blocks[0].is_orphan_anchor
    assert not blocks[0].is_card


def test_code_fences_are_skipped():
    lines = ["```md", "^sprout-x", "Q|in fence|", "A|a|", "```", "Q|out|", "A|a|"]
    blocks = scan_blocks(lines)
    assert [(b.start, b.end) for b in blocks] == [(5, 7)]
    assert len(scan_blocks(lines, ignore_fences=False)) == 2


def test_frontmatter_is_not_scanned():
    blocks = scan_blocks(["---", "Q|x|", "---", "Q|q|", "A|a|"])
    assert [(b.start, b.end) for b in blocks] == [(3, 5)]


def test_custom_delimiter():
    blocks = scan_blocks(["^sprout-d", "Q@q@", "A@a@", "Q|not a field here|"], delimiter="@")
    assert blocks[0].range == LineRange(0, 3)


# --- find_range / replace_block ---


def test_find_range():
    assert find_range(NOTE, "a") == LineRange(2, 5)


def test_find_range_missing():
    with pytest.raises(BlockNotFoundError):
        find_range(NOTE, "nope")


def test_replace_block_keeps_everything_else():
    text = "intro\r\n^sprout-a\r\nQ|old|\r\nA|x|\r\n\r\noutro\r\n"
    updated = replace_block(text, "a", ["^sprout-a", "Q|new|", "A|x|"])
    assert updated == "intro\r\n^sprout-a\r\nQ|new|\r\nA|x|\r\n\r\noutro\r\n"


def test_replace_block_without_trailing_newline():
    text = "^sprout-a\nQ|old|\nA|x|"
    assert replace_block(text, "a", ["^sprout-a", "Q|new|", "A|y|"]) == "^sprout-a\nQ|new|\nA|y|"


# --- Open fields next to unrelated content ---

UNCLOSED_THEN_TABLE = [
    "^sprout-abc123",
    "Q|What is 2+2?",
    "A|4",
    "",
    "Some unrelated prose.",
    "",
    "| col | col |",
    "| --- | --- |",
]


def test_unclosed_field_stops_before_prose_and_table():
    [block] = scan_blocks(UNCLOSED_THEN_TABLE)
    assert block.range == LineRange(0, 3)


def test_table_row_right_after_open_field_is_not_absorbed():
    [block] = scan_blocks(["^sprout-a", "Q|q", "A|a", "| x | y |"])
    assert block.range == LineRange(0, 3)


def test_blank_lines_inside_closed_multi_paragraph_field():
    lines = ["^sprout-a", "Q|q|", "I|one", "", "two", "", "three|", "", "after"]
    [block] = scan_blocks(lines)
    assert block.range == LineRange(0, 7)


def test_replace_unclosed_block_leaves_table_alone():
    text = "\n".join(UNCLOSED_THEN_TABLE) + "\n"
    updated = replace_block(text, "abc123", ["^sprout-abc123", "Q|What is 2+2?|", "A|4|"])
    assert updated.endswith("A|4|\n\nSome unrelated prose.\n\n| col | col |\n| --- | --- |\n")
