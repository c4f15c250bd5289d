from __future__ import annotations
from typing import List

from .promql.nodes import VectorSelector, walk
from .promql.parser import parse_expr


def extract_vector_selectors(expression: str) -> List[VectorSelector]:
    """Return every vector selector node of expression in depth-first order.

    Raises ParseError if expression is not valid PromQL. Repeated selectors
    are kept, one entry per occurrence.
    """
    expr = parse_expr(expression)
    return [node for node in walk(expr) if isinstance(node, VectorSelector)]


def extract_selectors(expression: str) -> List[str]:
    """Return the canonical text of every vector selector in expression."""
    return [str(vs) for vs in extract_vector_selectors(expression)]
