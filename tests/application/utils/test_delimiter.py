import pytest

from sprout.application.utils.delimiter import FieldSyntax, is_known_key, match_anchor, syntax_for

pipe = FieldSyntax("|")


def test_match_anchor():
    assert match_anchor("^sprout-01HX9ABC") == "01HX9ABC"
    assert match_anchor("^sprout-abc  ") == "abc"
    assert match_anchor(" ^sprout-abc") is None
    assert match_anchor("^sprout-") is None
    assert match_anchor("^sprout-a-b") is None


def test_known_keys():
    assert all(is_known_key(k) for k in ("Q", "RQ", "CQ", "MCQ", "OQ", "IO", "T", "A", "O", "I", "G", "C", "1", "20"))
    assert not is_known_key("X")
    assert not is_known_key("123")


def test_match_field():
    assert pipe.match_field("Q|What?|") == ("Q", "What?|")
    assert pipe.match_field("Q | spaced") == ("Q", "spaced")
    assert pipe.match_field("ZZ|unknown") is None
    assert pipe.match_any_field("ZZ|unknown") == ("ZZ", "unknown")
    assert pipe.match_field("q|lowercase") is None


def test_is_structural():
    assert pipe.is_structural("^sprout-x")
    assert pipe.is_structural("## Heading")
    assert pipe.is_structural("A|answer")
    assert not pipe.is_structural("#hashtag")
    assert not pipe.is_structural("plain text")


@pytest.mark.parametrize(
    "text,expected",
    [
        ("value|", ("value", True)),
        ("value|  ", ("value", True)),
        ("value\\|", ("value\\|", False)),
        ("value\\\\|", ("value\\\\", True)),
        ("value", ("value", False)),
    ],
)
def test_strip_closing(text, expected):
    assert pipe.strip_closing(text) == expected


def test_escape_is_minimal():
    assert pipe.escape_line("a|b") == "a\\|b"
    assert pipe.escape_line("C:\\temp") == "C:\\temp"
    assert pipe.escape_line("end\\") == "end\\\\"
    assert pipe.unescape("a\\|b \\\\ \\n") == "a|b \\ \\n"


def test_invalid_delimiter():
    with pytest.raises(ValueError):
        FieldSyntax("||")


def test_syntax_for_is_cached():
    assert syntax_for("@") is syntax_for("@")
