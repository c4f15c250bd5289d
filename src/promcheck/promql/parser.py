from __future__ import annotations
from dataclasses import replace
from typing import List, Optional, Tuple
import re

from ..errors import ParseError
from .lexer import DURATION, EOF, IDENT, NUMBER, OP, STRING, Token, tokenize
from .nodes import (
    AggregateExpr,
    BinaryExpr,
    Call,
    Expr,
    MATCH_EQUAL,
    MATCH_NOT_EQUAL,
    MATCH_NOT_REGEXP,
    MATCH_REGEXP,
    METRIC_NAME_LABEL,
    Matcher,
    MatrixSelector,
    NumberLiteral,
    ParenExpr,
    StringLiteral,
    SubqueryExpr,
    UnaryExpr,
    VectorMatching,
    VectorSelector,
)


AGGREGATORS = {
    "avg", "bottomk", "count", "count_values", "group", "limit_ratio", "limitk",
    "max", "min", "quantile", "stddev", "stdvar", "sum", "topk",
}
PARAM_AGGREGATORS = {"bottomk", "count_values", "limit_ratio", "limitk", "quantile", "topk"}

FUNCTIONS = {
    "abs", "absent", "absent_over_time", "acos", "acosh", "asin", "asinh", "atan",
    "atanh", "avg_over_time", "ceil", "changes", "clamp", "clamp_max", "clamp_min",
    "cos", "cosh", "count_over_time", "day_of_month", "day_of_week", "day_of_year",
    "days_in_month", "deg", "delta", "deriv", "double_exponential_smoothing", "exp",
    "floor", "histogram_avg", "histogram_count", "histogram_fraction",
    "histogram_quantile", "histogram_stddev", "histogram_stdvar", "histogram_sum",
    "holt_winters", "hour", "idelta", "increase", "info", "irate", "label_join",
    "label_replace", "last_over_time", "ln", "log10", "log2", "mad_over_time",
    "max_over_time", "min_over_time", "minute", "month", "pi", "predict_linear",
    "present_over_time", "quantile_over_time", "rad", "rate", "resets", "round",
    "scalar", "sgn", "sin", "sinh", "sort", "sort_by_label", "sort_by_label_desc",
    "sort_desc", "sqrt", "stddev_over_time", "stdvar_over_time", "sum_over_time",
    "tan", "tanh", "time", "timestamp", "vector", "year",
}

BINARY_PRECEDENCE = {
    "or": 1,
    "and": 2,
    "unless": 2,
    "==": 3,
    "!=": 3,
    "<=": 3,
    "<": 3,
    ">=": 3,
    ">": 3,
    "+": 4,
    "-": 4,
    "*": 5,
    "/": 5,
    "%": 5,
    "atan2": 5,
    "^": 6,
}
COMPARISON_OPERATORS = {"==", "!=", "<=", "<", ">=", ">"}
KEYWORD_OPERATORS = {"and", "or", "unless", "atan2"}
MATCH_OPERATORS = {MATCH_EQUAL, MATCH_NOT_EQUAL, MATCH_REGEXP, MATCH_NOT_REGEXP}

_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800, "y": 31536000}
_DURATION_PART_RE = re.compile(r"(\d+)(ms|s|m|h|d|w|y)")


def duration_seconds(text: str) -> float:
    return sum(int(n) * _DURATION_UNITS[unit] for n, unit in _DURATION_PART_RE.findall(text))


def parse_number(text: str) -> float:
    lowered = text.lower()
    if lowered.startswith("0x"):
        return float(int(lowered, 16))
    return float(lowered)


class Parser:
    """Recursive descent parser producing the tree defined in :mod:`.nodes`."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.tokens = tokenize(text)
        self.index = 0

    # ------- token helpers -------

    def _peek(self, offset: int = 0) -> Token:
        i = min(self.index + offset, len(self.tokens) - 1)
        return self.tokens[i]

    def _next(self) -> Token:
        tok = self._peek()
        if tok.kind != EOF:
            self.index += 1
        return tok

    def _expect_punct(self, value: str, context: str) -> Token:
        tok = self._next()
        if not tok.is_punct(value):
            raise ParseError(f"unexpected {tok.describe()} in {context}, expected {value!r}", tok.pos)
        return tok

    def _error(self, message: str, tok: Optional[Token] = None) -> ParseError:
        tok = tok or self._peek()
        return ParseError(message, tok.pos)

    # ------- entry point -------

    def parse(self) -> Expr:
        if self._peek().kind == EOF:
            raise self._error("no expression found in input")
        expr = self._expr(1)
        tok = self._peek()
        if tok.kind != EOF:
            raise self._error(f"unexpected {tok.describe()}", tok)
        return expr

    # ------- binary expressions -------

    def _binary_op(self) -> Optional[str]:
        tok = self._peek()
        if tok.kind == OP and tok.value in BINARY_PRECEDENCE:
            return tok.value
        if tok.kind == IDENT and tok.value.lower() in KEYWORD_OPERATORS:
            return tok.value.lower()
        return None

    def _expr(self, min_prec: int) -> Expr:
        lhs = self._unary()
        while True:
            op = self._binary_op()
            if op is None or BINARY_PRECEDENCE[op] < min_prec:
                return lhs
            op_tok = self._next()
            return_bool = False
            if self._peek().is_keyword("bool"):
                if op not in COMPARISON_OPERATORS:
                    raise self._error("bool modifier can only be used on comparison operators")
                self._next()
                return_bool = True
            matching = self._vector_matching()
            if self._peek().kind == EOF:
                raise self._error(f"missing right-hand side of {op!r}", op_tok)
            prec = BINARY_PRECEDENCE[op]
            # ^ is right associative
            rhs = self._expr(prec if op == "^" else prec + 1)
            lhs = BinaryExpr(op=op, lhs=lhs, rhs=rhs, return_bool=return_bool, matching=matching)

    def _vector_matching(self) -> Optional[VectorMatching]:
        tok = self._peek()
        if not tok.is_keyword("on", "ignoring"):
            return None
        self._next()
        on = tok.value.lower() == "on"
        labels = self._label_list()
        card = "one-to-one"
        include: Tuple[str, ...] = ()
        group_tok = self._peek()
        if group_tok.is_keyword("group_left", "group_right"):
            self._next()
            card = "many-to-one" if group_tok.value.lower() == "group_left" else "one-to-many"
            if self._peek().is_punct("("):
                include = self._label_list()
        return VectorMatching(on=on, labels=labels, card=card, include=include)

    # ------- unary and postfix -------

    def _unary(self) -> Expr:
        tok = self._peek()
        if tok.kind == OP and tok.value in ("+", "-"):
            self._next()
            # unary operators bind weaker than ^
            operand = self._expr(BINARY_PRECEDENCE["^"])
            return UnaryExpr(op=tok.value, expr=operand)
        return self._postfix(self._primary())

    def _postfix(self, expr: Expr) -> Expr:
        while True:
            tok = self._peek()
            if tok.is_punct("["):
                expr = self._range_or_subquery(expr)
            elif tok.is_keyword("offset"):
                self._next()
                expr = self._with_offset(expr, tok)
            elif tok.is_punct("@"):
                self._next()
                expr = self._with_at(expr, tok)
            else:
                return expr

    def _duration(self, context: str, allow_negative: bool = False) -> str:
        sign = ""
        if allow_negative and self._peek().kind == OP and self._peek().value == "-":
            self._next()
            sign = "-"
        tok = self._next()
        if tok.kind not in (DURATION, NUMBER):
            raise ParseError(f"unexpected {tok.describe()} in {context}, expected duration", tok.pos)
        return sign + tok.value

    def _range_or_subquery(self, expr: Expr) -> Expr:
        open_tok = self._next()
        rng = self._duration("range")
        if self._peek().is_punct(":"):
            self._next()
            step = None
            if not self._peek().is_punct("]"):
                step = self._duration("subquery step")
            self._expect_punct("]", "subquery selector")
            return SubqueryExpr(expr=expr, range=rng, step=step)
        self._expect_punct("]", "range selector")
        if not isinstance(expr, VectorSelector):
            raise ParseError("ranges only allowed for vector selectors", open_tok.pos)
        if expr.offset is not None or expr.at is not None:
            raise ParseError("no modifier allowed before a range", open_tok.pos)
        return MatrixSelector(vector_selector=expr, range=rng)

    def _with_offset(self, expr: Expr, tok: Token) -> Expr:
        offset = self._duration("offset", allow_negative=True)
        if isinstance(expr, VectorSelector):
            if expr.offset is not None:
                raise ParseError("offset may not be set multiple times", tok.pos)
            return replace(expr, offset=offset)
        if isinstance(expr, MatrixSelector):
            if expr.vector_selector.offset is not None:
                raise ParseError("offset may not be set multiple times", tok.pos)
            return replace(expr, vector_selector=replace(expr.vector_selector, offset=offset))
        if isinstance(expr, SubqueryExpr):
            if expr.offset is not None:
                raise ParseError("offset may not be set multiple times", tok.pos)
            return replace(expr, offset=offset)
        raise ParseError(
            "offset modifier must be preceded by an instant vector selector or range vector selector or a subquery",
            tok.pos,
        )

    def _with_at(self, expr: Expr, tok: Token) -> Expr:
        value_tok = self._peek()
        if value_tok.is_keyword("start", "end"):
            self._next()
            self._expect_punct("(", "@ modifier")
            self._expect_punct(")", "@ modifier")
            at = f"{value_tok.value.lower()}()"
        else:
            sign = ""
            if value_tok.kind == OP and value_tok.value in ("+", "-"):
                self._next()
                sign = value_tok.value if value_tok.value == "-" else ""
            num = self._next()
            if num.kind != NUMBER:
                raise ParseError(f"unexpected {num.describe()} in @ modifier, expected timestamp", num.pos)
            at = sign + num.value
        if isinstance(expr, MatrixSelector):
            if expr.vector_selector.at is not None:
                raise ParseError("@ <timestamp> may not be set multiple times", tok.pos)
            return replace(expr, vector_selector=replace(expr.vector_selector, at=at))
        if isinstance(expr, (VectorSelector, SubqueryExpr)):
            if expr.at is not None:
                raise ParseError("@ <timestamp> may not be set multiple times", tok.pos)
            return replace(expr, at=at)
        raise ParseError(
            "@ modifier must be preceded by an instant vector selector or range vector selector or a subquery",
            tok.pos,
        )

    # ------- primary expressions -------

    def _primary(self) -> Expr:
        tok = self._peek()
        if tok.kind == NUMBER:
            self._next()
            return NumberLiteral(parse_number(tok.value))
        if tok.kind == DURATION:
            self._next()
            return NumberLiteral(duration_seconds(tok.value))
        if tok.kind == STRING:
            self._next()
            return StringLiteral(tok.value)
        if tok.is_punct("("):
            self._next()
            inner = self._expr(1)
            self._expect_punct(")", "parenthesized expression")
            return ParenExpr(inner)
        if tok.is_punct("{"):
            return self._vector_selector("")
        if tok.kind == IDENT:
            return self._identifier()
        if tok.kind == EOF:
            raise self._error("unexpected end of input")
        raise self._error(f"unexpected {tok.describe()}")

    def _identifier(self) -> Expr:
        tok = self._next()
        name = tok.value
        follower = self._peek()
        lowered = name.lower()
        if lowered in ("inf", "nan") and not follower.is_punct("{") and not follower.is_punct("("):
            return NumberLiteral(parse_number(lowered))
        if lowered in AGGREGATORS and (follower.is_punct("(") or follower.is_keyword("by", "without")):
            return self._aggregate(tok)
        if follower.is_punct("("):
            if name not in FUNCTIONS:
                raise ParseError(f"unknown function with name {name!r}", tok.pos)
            return Call(func=name, args=self._call_args())
        return self._vector_selector(name)

    def _vector_selector(self, name: str) -> VectorSelector:
        matchers: List[Matcher] = []
        if name:
            matchers.append(Matcher(METRIC_NAME_LABEL, MATCH_EQUAL, name))
        start = self._peek()
        if start.is_punct("{"):
            matchers.extend(self._label_matchers())
        if not name and not any(not _matches_empty(m) for m in matchers):
            raise ParseError("vector selector must contain at least one non-empty matcher", start.pos)
        return VectorSelector(name=name, matchers=tuple(matchers))

    def _label_matchers(self) -> List[Matcher]:
        self._expect_punct("{", "label matching")
        matchers: List[Matcher] = []
        while not self._peek().is_punct("}"):
            label = self._next()
            if label.kind != IDENT or ":" in label.value:
                raise ParseError(f"unexpected {label.describe()} in label matching, expected label", label.pos)
            op = self._next()
            if op.kind != OP or op.value not in MATCH_OPERATORS:
                raise ParseError(
                    f"unexpected {op.describe()} in label matching, expected label matching operator", op.pos
                )
            value = self._next()
            if value.kind != STRING:
                raise ParseError(f"unexpected {value.describe()} in label matching, expected string", value.pos)
            matchers.append(Matcher(label.value, op.value, value.value))
            if self._peek().is_punct(","):
                self._next()
            elif not self._peek().is_punct("}"):
                tok = self._peek()
                raise ParseError(f"unexpected {tok.describe()} in label matching, expected ',' or '}}'", tok.pos)
        self._next()
        return matchers

    def _label_list(self) -> Tuple[str, ...]:
        self._expect_punct("(", "grouping opts")
        labels: List[str] = []
        while not self._peek().is_punct(")"):
            tok = self._next()
            if tok.kind != IDENT:
                raise ParseError(f"unexpected {tok.describe()} in grouping opts, expected label", tok.pos)
            labels.append(tok.value)
            if self._peek().is_punct(","):
                self._next()
            elif not self._peek().is_punct(")"):
                nxt = self._peek()
                raise ParseError(f"unexpected {nxt.describe()} in grouping opts, expected ',' or ')'", nxt.pos)
        self._next()
        return tuple(labels)

    def _call_args(self) -> Tuple[Expr, ...]:
        self._expect_punct("(", "function call")
        args: List[Expr] = []
        while not self._peek().is_punct(")"):
            args.append(self._expr(1))
            if self._peek().is_punct(","):
                self._next()
            elif not self._peek().is_punct(")"):
                tok = self._peek()
                raise ParseError(f"unexpected {tok.describe()} in function call, expected ',' or ')'", tok.pos)
        self._next()
        return tuple(args)

    def _grouping(self) -> Tuple[bool, Tuple[str, ...]]:
        tok = self._next()
        return tok.value.lower() == "without", self._label_list()

    def _aggregate(self, op_tok: Token) -> AggregateExpr:
        op = op_tok.value.lower()
        without, grouping = False, ()
        has_grouping = False
        if self._peek().is_keyword("by", "without"):
            without, grouping = self._grouping()
            has_grouping = True
        args = self._call_args()
        if self._peek().is_keyword("by", "without"):
            if has_grouping:
                raise self._error("aggregation must only contain one grouping clause")
            without, grouping = self._grouping()
        expected = 2 if op in PARAM_AGGREGATORS else 1
        if len(args) != expected:
            raise ParseError(
                f"wrong number of arguments for aggregate expression provided, expected {expected}, got {len(args)}",
                op_tok.pos,
            )
        param = args[0] if expected == 2 else None
        return AggregateExpr(op=op, expr=args[-1], param=param, grouping=grouping, without=without)


def _matches_empty(m: Matcher) -> bool:
    if m.op == MATCH_EQUAL:
        return m.value == ""
    if m.op == MATCH_NOT_EQUAL:
        return m.value != ""
    # RE2 syntax Python cannot compile counts as non-empty
    try:
        matched = re.fullmatch(m.value, "") is not None
    except (re.error, OverflowError):
        return False
    return matched if m.op == MATCH_REGEXP else not matched


def parse_expr(text: str) -> Expr:
    """Parse a PromQL expression. Raises ParseError on invalid input."""
    return Parser(text).parse()
