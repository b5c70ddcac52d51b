from sprout.application.groups import (
    count_group_references,
    expand_group_prefixes,
    normalise_group_path,
    normalise_groups,
)


def test_normalise_group_path():
    assert normalise_group_path(" a//b\\c/ ") == "a/b/c"
    assert normalise_group_path(" / ") is None


def test_normalise_groups():
    assert normalise_groups(["b, a/x", "a/x\nc", " "]) == ["a/x", "b", "c"]


def test_expand_group_prefixes():
    assert expand_group_prefixes("a/b/c") == ["a", "a/b", "a/b/c"]


def test_count_group_references_counts_each_card_once():
    counts = count_group_references([["a/b", "a/c"], ["a"]])
    assert counts == {"a": 2, "a/b": 1, "a/c": 1}
