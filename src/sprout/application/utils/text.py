import re
from typing import Any

import yaml  # type: ignore

# ---------- Frontmatter helpers ----------


def frontmatter_end(lines: list[str]) -> int:
    """Index of the first line after the frontmatter block, or 0 when there is none.
    Uses line-by-line parsing instead of regex for reliability.
    """
    if not lines or lines[0].lstrip("\ufeff").strip() != "---":
        return 0
    for i, line in enumerate(lines[1:], start=1):
        if line.strip() in ("---", "..."):
            return i + 1
    # Unterminated frontmatter is treated as body text.
    return 0


def parse_frontmatter(md_text: str) -> tuple[dict[str, Any], int]:
    """Parse YAML frontmatter; returns (meta, first body line index).
    Invalid YAML yields ``{"__yaml_error__": message}``.
    """
    lines = md_text.split("\n")
    end = frontmatter_end(lines)
    if end == 0:
        return {}, 0

    raw = "\n".join(lines[1 : end - 1])
    # Fix tabs (common user error)
    if "\t" in raw:
        raw = raw.replace("\t", "  ")

    try:
        meta = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        return {"__yaml_error__": str(e)}, end

    if not isinstance(meta, dict):
        return {}, end
    return meta, end


def is_indexing_disabled(meta: dict[str, Any]) -> bool:
    """A note opts out with ``sprout: false`` in its frontmatter."""
    flag = meta.get("sprout")
    if isinstance(flag, str):
        return flag.strip().lower() in ("false", "no", "off")
    return flag is False


# ---------- Line endings ----------

_NEWLINE_RE = re.compile(r"\r\n|\n")


def split_lines(text: str) -> tuple[list[str], str, bool]:
    """Split note text into lines; returns (lines, newline, had_trailing_newline)."""
    newline = "\r\n" if "\r\n" in text else "\n"
    trailing = text.endswith("\n")
    body = text[: -len(newline)] if trailing and text.endswith(newline) else text.rstrip("\n")
    return _NEWLINE_RE.split(body) if body else [], newline, trailing


def join_lines(lines: list[str], newline: str = "\n", trailing: bool = True) -> str:
    text = newline.join(lines)
    return text + newline if trailing and lines else text
