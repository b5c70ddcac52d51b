"""
Block locator: find where each card block sits inside a note.

Blocks are found with a single forward scan. A block starts at an anchor, a
title line or a card type line, and takes every following field line. An open
field (no closing delimiter yet) swallows non-structural lines; a blank line
only belongs to it when a later line closes the field before the next
structural line or table row. The block ends at the next anchor, heading or
table row, at a blank or prose line once no field is open, or at end of file.
"""

from dataclasses import dataclass, field

from sprout.application.utils.delimiter import (
    FENCE_RE,
    HEAD_KEYS,
    HEADING_RE,
    FieldSyntax,
    match_anchor,
    syntax_for,
)
from sprout.application.utils.text import frontmatter_end, join_lines, split_lines
from sprout.domain.constants import DEFAULT_DELIMITER
from sprout.domain.errors import BlockNotFoundError


@dataclass(frozen=True)
class LineRange:
    start: int
    end: int  # exclusive


@dataclass
class BlockSpan:
    start: int
    end: int
    anchor_id: str | None = None
    anchor_line: int | None = None
    head_key: str | None = None
    field_count: int = 0
    lines: list[str] = field(default_factory=list, repr=False)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    @property
    def range(self) -> LineRange:
        return LineRange(self.start, self.end)

    @property
    def is_card(self) -> bool:
        return self.head_key is not None

    @property
    def is_orphan_anchor(self) -> bool:
        return self.anchor_id is not None and self.field_count == 0


def _closes_later(syntax: FieldSyntax, lines: list[str], i: int) -> bool:
    for line in lines[i:]:
        if syntax.is_structural(line) or syntax.is_table_row(line):
            return False
        if syntax.strip_closing(line)[1]:
            return True
    return False


def scan_blocks(
    lines: list[str],
    delimiter: str = DEFAULT_DELIMITER,
    ignore_fences: bool = True,
) -> list[BlockSpan]:
    """Every block in a note, in order. Frontmatter is never scanned."""
    syntax = syntax_for(delimiter)
    blocks: list[BlockSpan] = []
    cur: BlockSpan | None = None
    open_field = False
    fence: str | None = None

    def close() -> None:
        nonlocal cur, open_field
        if cur is not None:
            cur.lines = lines[cur.start : cur.end]
            blocks.append(cur)
        cur = None
        open_field = False

    i = frontmatter_end(lines)
    n = len(lines)
    while i < n:
        line = lines[i]

        if cur is not None and open_field:
            if not syntax.is_structural(line):
                if syntax.is_table_row(line):
                    close()
                    continue
                if not line.strip() and not _closes_later(syntax, lines, i + 1):
                    close()
                    i += 1
                    continue
                cur.end = i + 1
                open_field = not syntax.strip_closing(line)[1]
                i += 1
                continue
            open_field = False

        if cur is None and ignore_fences:
            if fence is not None:
                if line.lstrip().startswith(fence):
                    fence = None
                i += 1
                continue
            m = FENCE_RE.match(line)
            if m:
                fence = m.group(1)
                i += 1
                continue

        anchor = match_anchor(line)
        if anchor is not None:
            if cur is not None and (cur.head_key or cur.anchor_id):
                close()
            if cur is None:
                cur = BlockSpan(start=i, end=i + 1)
            cur.anchor_id = anchor
            cur.anchor_line = i
            cur.end = i + 1
            i += 1
            continue

        if not line.strip() or HEADING_RE.match(line):
            close()
            i += 1
            continue

        matched = syntax.match_any_field(line)
        if matched is None:
            if cur is not None:
                # Prose ends the block; look at the line again from outside it.
                close()
                continue
            i += 1
            continue

        key, rest = matched
        is_head = key in HEAD_KEYS and not (key == "Q" and cur is not None and cur.head_key == "IO")
        if is_head or key == "T":
            if cur is not None and cur.head_key:
                close()
            if cur is None:
                cur = BlockSpan(start=i, end=i + 1)
            if is_head:
                cur.head_key = key
        elif cur is None:
            # A stray field-looking line in prose.
            i += 1
            continue

        cur.field_count += 1
        cur.end = i + 1
        open_field = not syntax.strip_closing(rest)[1]
        i += 1

    close()
    return blocks


def find_range(lines: list[str], card_id: str, delimiter: str = DEFAULT_DELIMITER) -> LineRange:
    """
    The exact line span of one card's block.

    Raises:
        BlockNotFoundError: No block carries that anchor.
    """
    for block in scan_blocks(lines, delimiter):
        if block.anchor_id == card_id:
            return block.range
    raise BlockNotFoundError(card_id)


def replace_block(
    text: str,
    card_id: str,
    new_lines: list[str],
    delimiter: str = DEFAULT_DELIMITER,
) -> str:
    """Replace exactly the card's span with new_lines, keeping everything else byte for byte."""
    lines, newline, trailing = split_lines(text)
    span = find_range(lines, card_id, delimiter)
    updated = lines[: span.start] + list(new_lines) + lines[span.end :]
    return join_lines(updated, newline, trailing)
