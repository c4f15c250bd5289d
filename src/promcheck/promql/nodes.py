"""PromQL abstract syntax tree.

The tree is a closed set of frozen dataclasses. Traversal dispatches on the
node type explicitly in :func:`children`; there is no visitor registration.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple, Union

METRIC_NAME_LABEL = "__name__"

MATCH_EQUAL = "="
MATCH_NOT_EQUAL = "!="
MATCH_REGEXP = "=~"
MATCH_NOT_REGEXP = "!~"

_QUOTE_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\a": "\\a",
    "\b": "\\b",
    "\f": "\\f",
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
    "\v": "\\v",
}


def quote(value: str) -> str:
    """Double-quote a label value the way Prometheus prints it."""
    out = []
    for ch in value:
        if ch in _QUOTE_ESCAPES:
            out.append(_QUOTE_ESCAPES[ch])
        elif not ch.isprintable():
            code = ord(ch)
            if code < 0x100:
                out.append(f"\\x{code:02x}")
            elif code < 0x10000:
                out.append(f"\\u{code:04x}")
            else:
                out.append(f"\\U{code:08x}")
        else:
            out.append(ch)
    return '"' + "".join(out) + '"'


@dataclass(frozen=True)
class Matcher:
    name: str
    op: str
    value: str

    def __str__(self) -> str:
        return f"{self.name}{self.op}{quote(self.value)}"


@dataclass(frozen=True)
class NumberLiteral:
    value: float


@dataclass(frozen=True)
class StringLiteral:
    value: str


@dataclass(frozen=True)
class VectorSelector:
    name: str
    matchers: Tuple[Matcher, ...]
    offset: Optional[str] = None
    at: Optional[str] = None

    def __str__(self) -> str:
        # offset and @ are evaluation modifiers, not part of the selector
        labels = [
            str(m)
            for m in self.matchers
            if not (
                m.name == METRIC_NAME_LABEL
                and m.op == MATCH_EQUAL
                and m.value == self.name
                and m.value != ""
            )
        ]
        if not labels:
            return self.name
        return f"{self.name}{{{','.join(sorted(labels))}}}"


@dataclass(frozen=True)
class MatrixSelector:
    vector_selector: VectorSelector
    range: str


@dataclass(frozen=True)
class SubqueryExpr:
    expr: "Expr"
    range: str
    step: Optional[str] = None
    offset: Optional[str] = None
    at: Optional[str] = None


@dataclass(frozen=True)
class ParenExpr:
    expr: "Expr"


@dataclass(frozen=True)
class UnaryExpr:
    op: str
    expr: "Expr"


@dataclass(frozen=True)
class VectorMatching:
    on: bool = False
    labels: Tuple[str, ...] = ()
    card: str = "one-to-one"
    include: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BinaryExpr:
    op: str
    lhs: "Expr"
    rhs: "Expr"
    return_bool: bool = False
    matching: Optional[VectorMatching] = None


@dataclass(frozen=True)
class AggregateExpr:
    op: str
    expr: "Expr"
    param: Optional["Expr"] = None
    grouping: Tuple[str, ...] = ()
    without: bool = False


@dataclass(frozen=True)
class Call:
    func: str
    args: Tuple["Expr", ...] = ()


Expr = Union[
    NumberLiteral,
    StringLiteral,
    VectorSelector,
    MatrixSelector,
    SubqueryExpr,
    ParenExpr,
    UnaryExpr,
    BinaryExpr,
    AggregateExpr,
    Call,
]


def children(node: Expr) -> Tuple[Expr, ...]:
    """Return the direct child nodes of node, left to right."""
    if isinstance(node, (NumberLiteral, StringLiteral, VectorSelector)):
        return ()
    if isinstance(node, MatrixSelector):
        return (node.vector_selector,)
    if isinstance(node, (SubqueryExpr, ParenExpr, UnaryExpr)):
        return (node.expr,)
    if isinstance(node, BinaryExpr):
        return (node.lhs, node.rhs)
    if isinstance(node, AggregateExpr):
        if node.param is not None:
            return (node.expr, node.param)
        return (node.expr,)
    if isinstance(node, Call):
        return node.args
    raise TypeError(f"unknown PromQL node type {type(node).__name__}")


def walk(node: Expr) -> Iterator[Expr]:
    """Yield node and all of its descendants depth-first, parents first."""
    yield node
    for child in children(node):
        yield from walk(child)
