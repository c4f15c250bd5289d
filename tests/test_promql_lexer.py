import pytest

from promcheck.errors import ParseError
from promcheck.promql.lexer import DURATION, EOF, IDENT, NUMBER, OP, PUNCT, STRING, tokenize


def kinds_and_values(text):
    return [(t.kind, t.value) for t in tokenize(text)]


def test_tokenize_range_selector():
    assert kinds_and_values('rate(http_requests_total{job="api"}[5m])') == [
        (IDENT, "rate"),
        (PUNCT, "("),
        (IDENT, "http_requests_total"),
        (PUNCT, "{"),
        (IDENT, "job"),
        (OP, "="),
        (STRING, "api"),
        (PUNCT, "}"),
        (PUNCT, "["),
        (DURATION, "5m"),
        (PUNCT, "]"),
        (PUNCT, ")"),
        (EOF, ""),
    ]


def test_colon_inside_brackets_separates_subquery_step():
    assert [t.value for t in tokenize("foo[5m:1m]")] == ["foo", "[", "5m", ":", "1m", "]", ""]


def test_recording_rule_names_keep_colons():
    toks = tokenize("job:http_requests:rate5m > 0")
    assert toks[0].kind == IDENT
    assert toks[0].value == "job:http_requests:rate5m"


def test_numbers_and_durations():
    assert kinds_and_values("1 1.5 .5 1e3 0x1F 1h30m 100ms") == [
        (NUMBER, "1"),
        (NUMBER, "1.5"),
        (NUMBER, ".5"),
        (NUMBER, "1e3"),
        (NUMBER, "0x1F"),
        (DURATION, "1h30m"),
        (DURATION, "100ms"),
        (EOF, ""),
    ]


def test_operators_prefer_longest_match():
    assert [t.value for t in tokenize("a=~b!~c==d!=e<=f>=g")] == [
        "a", "=~", "b", "!~", "c", "==", "d", "!=", "e", "<=", "f", ">=", "g", "",
    ]


def test_string_escapes_are_decoded():
    assert tokenize(r'"a\nb\"c"')[0].value == 'a\nb"c'
    assert tokenize(r"'it\'s'")[0].value == "it's"
    assert tokenize(r'"\x41é"')[0].value == "Aé"


def test_raw_strings_are_verbatim():
    assert tokenize(r"`a\d+`")[0].value == r"a\d+"


def test_comments_and_whitespace_are_skipped():
    assert kinds_and_values("up # the up metric\n") == [(IDENT, "up"), (EOF, "")]


def test_token_positions():
    toks = tokenize("sum( up )")
    assert [t.pos for t in toks] == [0, 3, 5, 8, 9]


@pytest.mark.parametrize(
    "text, message",
    [
        ('up{job="x}', "unterminated quoted string"),
        ("`abc", "unterminated raw string"),
        ("up $ 1", "unexpected character"),
        (r'"\q"', "unknown escape sequence"),
    ],
)
def test_tokenize_errors(text, message):
    with pytest.raises(ParseError) as exc:
        tokenize(text)
    assert message in str(exc.value)
    assert exc.value.position is not None
