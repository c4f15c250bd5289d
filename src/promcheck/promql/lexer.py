from __future__ import annotations
from dataclasses import dataclass
from typing import List
import re

from ..errors import ParseError


IDENT = "IDENT"
NUMBER = "NUMBER"
DURATION = "DURATION"
STRING = "STRING"
OP = "OP"
PUNCT = "PUNCT"
EOF = "EOF"

_TOKEN_RE = re.compile(
    r"""
    (?P<WS>\s+)
  | (?P<COMMENT>\#[^\n]*)
  | (?P<DURATION>(?:\d+(?:ms|s|m|h|d|w|y))+(?![a-zA-Z0-9_]))
  | (?P<NUMBER>0[xX][0-9a-fA-F]+|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)
  | (?P<IDENT>[a-zA-Z_:][a-zA-Z0-9_:]*)
  | (?P<STRING>"(?:[^"\\\n]|\\.)*"|'(?:[^'\\\n]|\\.)*'|`[^`]*`)
  | (?P<OP>==|!=|<=|>=|=~|!~|[-+*/%^<>=])
  | (?P<PUNCT>[(){}\[\],:@])
    """,
    re.VERBOSE,
)

_ESCAPE_RE = re.compile(r"\\(x[0-9a-fA-F]{2}|u[0-9a-fA-F]{4}|U[0-9a-fA-F]{8}|[0-7]{3}|.)", re.DOTALL)

_SIMPLE_ESCAPES = {
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
    "v": "\v",
    "\\": "\\",
    '"': '"',
    "'": "'",
}


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    pos: int

    def is_punct(self, value: str) -> bool:
        return self.kind == PUNCT and self.value == value

    def is_keyword(self, *values: str) -> bool:
        return self.kind == IDENT and self.value.lower() in values

    def describe(self) -> str:
        if self.kind == EOF:
            return "end of input"
        return f"{self.value!r}"


def unquote(raw: str, pos: int) -> str:
    """Decode a PromQL string literal including its quotes."""
    quote, body = raw[0], raw[1:-1]
    if quote == "`":
        return body

    def _replace(m: re.Match) -> str:
        esc = m.group(1)
        if esc[0] in ("x", "u", "U"):
            return chr(int(esc[1:], 16))
        if esc[0] in "01234567" and len(esc) == 3:
            return chr(int(esc, 8))
        if esc in _SIMPLE_ESCAPES:
            # a quote may only be escaped inside a string using that quote
            if esc in ("'", '"') and esc != quote:
                raise ParseError(f"invalid escape sequence \\{esc}", pos + m.start())
            return _SIMPLE_ESCAPES[esc]
        raise ParseError(f"unknown escape sequence \\{esc}", pos + m.start())

    return _ESCAPE_RE.sub(_replace, body)


def tokenize(text: str) -> List[Token]:
    """Split a PromQL expression into tokens, terminated by an EOF token."""
    tokens: List[Token] = []
    pos = 0
    brackets = 0
    while pos < len(text):
        # inside [...] a colon separates subquery range and step
        if brackets and text[pos] == ":":
            tokens.append(Token(PUNCT, ":", pos))
            pos += 1
            continue
        m = _TOKEN_RE.match(text, pos)
        if not m:
            ch = text[pos]
            if ch in ("'", '"'):
                raise ParseError("unterminated quoted string", pos)
            if ch == "`":
                raise ParseError("unterminated raw string", pos)
            raise ParseError(f"unexpected character {ch!r}", pos)
        kind = m.lastgroup or ""
        value = m.group()
        if kind == STRING:
            value = unquote(value, pos)
        elif kind == PUNCT and value == "[":
            brackets += 1
        elif kind == PUNCT and value == "]":
            brackets = max(brackets - 1, 0)
        if kind not in ("WS", "COMMENT"):
            tokens.append(Token(kind, value, pos))
        pos = m.end()
    tokens.append(Token(EOF, "", len(text)))
    return tokens
