"""Group (tag) path helpers and the tag registry computation."""

import re
from collections import Counter
from collections.abc import Iterable

_SLASHES_RE = re.compile(r"[\\/]+")


def normalise_group_path(raw: str) -> str | None:
    """``" a//b\\c/ "`` -> ``"a/b/c"``; None when nothing is left."""
    parts = [p.strip() for p in _SLASHES_RE.split(raw.strip())]
    parts = [p for p in parts if p]
    return "/".join(parts) or None


def normalise_groups(raw_values: Iterable[str]) -> list[str]:
    """Split G field values on commas and newlines; sorted, unique, normalised."""
    found = set()
    for value in raw_values:
        for chunk in re.split(r"[,\n]", value):
            path = normalise_group_path(chunk)
            if path:
                found.add(path)
    return sorted(found)


def expand_group_prefixes(path: str) -> list[str]:
    """``"a/b/c"`` -> ``["a", "a/b", "a/b/c"]``."""
    parts = path.split("/")
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]


def count_group_references(group_lists: Iterable[list[str]]) -> dict[str, int]:
    """Reference count per group, each card counting once per prefix."""
    counts: Counter[str] = Counter()
    for groups in group_lists:
        keys = set()
        for g in groups:
            keys.update(expand_group_prefixes(g))
        counts.update(keys)
    return dict(sorted(counts.items()))
