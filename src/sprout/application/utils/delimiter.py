"""Line-level syntax of card blocks for one configurable delimiter.

The delimiter is a runtime setting, so every pattern here is compiled per
instance from ``re.escape(delimiter)``.
"""

import re
from functools import lru_cache

from sprout.domain.constants import ANCHOR_PREFIX, DEFAULT_DELIMITER

HEAD_KEYS = {"Q": "basic", "RQ": "reversed", "CQ": "cloze", "MCQ": "mcq", "OQ": "oq", "IO": "io"}
META_KEYS = {"T", "A", "O", "I", "G", "C"}
STEP_KEY_RE = re.compile(r"^\d{1,2}$")

ANCHOR_RE = re.compile(r"^" + re.escape(ANCHOR_PREFIX) + r"([0-9A-Za-z]+)$")
HEADING_RE = re.compile(r"^#{1,6}(\s|$)")
FENCE_RE = re.compile(r"^\s*(```|~~~)")
# Continuation lines that would otherwise read as a heading or an anchor.
_GUARDED_LINE_RE = re.compile(r"^\\*[#^]")
_GUARDED_READ_RE = re.compile(r"^\\+[#^]")


def is_known_key(key: str) -> bool:
    return key in HEAD_KEYS or key in META_KEYS or bool(STEP_KEY_RE.match(key))


def match_anchor(line: str) -> str | None:
    m = ANCHOR_RE.match(line.rstrip())
    return m.group(1) if m else None


class FieldSyntax:
    """Regexes and escaping rules bound to a delimiter."""

    def __init__(self, delimiter: str = DEFAULT_DELIMITER):
        if len(delimiter) != 1:
            raise ValueError(f"Delimiter must be a single character, got {delimiter!r}")
        self.delimiter = delimiter
        d = re.escape(delimiter)
        self.field_re = re.compile(rf"^(?P<key>[A-Z]{{1,4}}|\d{{1,2}})[ \t]*{d}[ \t]?(?P<rest>.*)$")

    # ---------- Matching ----------

    def match_field(self, line: str) -> tuple[str, str] | None:
        """Return (key, rest-of-line) for a field start with a recognised key."""
        m = self.field_re.match(line)
        if not m or not is_known_key(m.group("key")):
            return None
        return m.group("key"), m.group("rest")

    def match_any_field(self, line: str) -> tuple[str, str] | None:
        """Like match_field, but also accepts keys Sprout does not know."""
        m = self.field_re.match(line)
        if not m:
            return None
        return m.group("key"), m.group("rest")

    def is_structural(self, line: str) -> bool:
        """Anchor, heading, or the start of a new field."""
        return (
            match_anchor(line) is not None
            or bool(HEADING_RE.match(line))
            or self.match_field(line) is not None
        )

    def is_table_row(self, line: str) -> bool:
        """A line opening with a bare delimiter, i.e. a Markdown table row. Never field content."""
        return line.lstrip().startswith(self.delimiter)

    def strip_closing(self, text: str) -> tuple[str, bool]:
        """
        Detect and strip an unescaped trailing delimiter.
        An odd run of backslashes before the delimiter escapes it.
        """
        trimmed = text.rstrip(" \t")
        if not trimmed.endswith(self.delimiter):
            return text, False
        backslashes = len(trimmed[:-1]) - len(trimmed[:-1].rstrip("\\"))
        if backslashes % 2 == 1:
            return text, False
        return trimmed[:-1], True

    # ---------- Escaping ----------

    def escape_line(self, line: str) -> str:
        """
        Escape one value line. Backslashes are only doubled where they would
        otherwise be read as an escape: before a backslash, before the
        delimiter, or at the end of the line.
        """
        out = []
        n = len(line)
        for i, ch in enumerate(line):
            if ch == self.delimiter:
                out.append("\\" + ch)
            elif ch == "\\" and (i + 1 == n or line[i + 1] in ("\\", self.delimiter)):
                out.append("\\\\")
            else:
                out.append(ch)
        return "".join(out)

    def unescape(self, text: str) -> str:
        """``\\\\`` is a backslash, ``\\<delim>`` the delimiter, any other backslash is literal."""
        out = []
        i = 0
        n = len(text)
        while i < n:
            ch = text[i]
            if ch == "\\" and i + 1 < n and text[i + 1] in ("\\", self.delimiter):
                out.append(text[i + 1])
                i += 2
                continue
            out.append(ch)
            i += 1
        return "".join(out)

    def encode_value(self, value: str) -> list[str]:
        """Escaped physical lines for a field value, continuation lines guarded."""
        lines = [self.escape_line(part) for part in value.split("\n")]
        return [lines[0]] + [
            "\\" + line if _GUARDED_LINE_RE.match(line) else line for line in lines[1:]
        ]

    def decode_value(self, raw_lines: list[str]) -> str:
        """Inverse of encode_value, canonicalising whitespace."""
        if not raw_lines:
            return ""
        lines = [raw_lines[0]] + [
            line[1:] if _GUARDED_READ_RE.match(line) else line for line in raw_lines[1:]
        ]
        joined = "\n".join(line.rstrip() for line in lines).strip()
        return self.unescape(joined)


@lru_cache(maxsize=8)
def syntax_for(delimiter: str) -> FieldSyntax:
    return FieldSyntax(delimiter)
