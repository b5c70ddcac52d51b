"""Service for managing stable anchor ids for card blocks."""

import logging
from dataclasses import dataclass, field

from ulid import ULID

from sprout.application.locator import scan_blocks
from sprout.application.utils.text import join_lines, split_lines
from sprout.domain.constants import ANCHOR_PREFIX, DEFAULT_DELIMITER

logger = logging.getLogger(__name__)


def generate_card_id(used: set[str] | None = None) -> str:
    """Generate a stable card id using ULID."""
    while True:
        card_id = str(ULID()).lower()
        if not used or card_id not in used:
            return card_id


@dataclass
class AnchorPass:
    text: str
    changed: bool = False
    inserted: list[str] = field(default_factory=list)
    reassigned: list[tuple[str, str]] = field(default_factory=list)
    removed: int = 0


def assign_anchors(
    text: str,
    seen: set[str],
    used: set[str] | None = None,
    delimiter: str = DEFAULT_DELIMITER,
    ignore_fences: bool = True,
    note_path: str = "",
) -> AnchorPass:
    """
    Ensure every card block in one note carries a unique anchor.

    - Card blocks without an anchor get a fresh id inserted above them.
    - An anchor already seen earlier in this pass is replaced with a fresh id.
    - Anchors that head no field lines are removed.

    ``seen`` is shared across every note of a pass and is updated in place.
    """
    used = set(used or ()) | seen
    lines, newline, trailing = split_lines(text)
    edits: list[tuple[int, str, str | None]] = []  # (line, action, new id)
    result = AnchorPass(text=text)

    for block in scan_blocks(lines, delimiter, ignore_fences):
        if block.is_orphan_anchor:
            edits.append((block.anchor_line, "remove", None))
            continue
        if not block.is_card:
            continue
        if block.anchor_id is None:
            new_id = generate_card_id(used)
            used.add(new_id)
            seen.add(new_id)
            edits.append((block.start, "insert", new_id))
            result.inserted.append(new_id)
        elif block.anchor_id in seen:
            new_id = generate_card_id(used)
            used.add(new_id)
            seen.add(new_id)
            edits.append((block.anchor_line, "replace", new_id))
            result.reassigned.append((block.anchor_id, new_id))
        else:
            seen.add(block.anchor_id)

    if not edits:
        return result

    for line_no, action, new_id in reversed(edits):
        if action == "remove":
            del lines[line_no]
            result.removed += 1
        elif action == "insert":
            lines.insert(line_no, f"{ANCHOR_PREFIX}{new_id}")
        else:
            lines[line_no] = f"{ANCHOR_PREFIX}{new_id}"

    result.text = join_lines(lines, newline, trailing)
    result.changed = True
    logger.debug(
        f"[anchors] {note_path}: +{len(result.inserted)} inserted, "
        f"{len(result.reassigned)} reassigned, {result.removed} removed"
    )
    return result
