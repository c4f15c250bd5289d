from __future__ import annotations
from functools import lru_cache
from typing import Iterable, List, Optional, Pattern, Sequence
import logging
import re

from .errors import ConfigurationError
from .promql.nodes import METRIC_NAME_LABEL, Matcher

log = logging.getLogger("promcheck.ignore")

# Synthetic series written by the rule manager itself.
ALERTS_METRIC_NAMES = frozenset({"ALERTS", "ALERTS_FOR_STATE"})


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> Pattern[str]:
    try:
        return re.compile(pattern)
    except (re.error, OverflowError) as e:
        raise ConfigurationError(f"invalid ignore pattern {pattern!r}: {e}") from e


def invalid_patterns(patterns: Iterable[str]) -> List[str]:
    """Return the patterns that are not valid regular expressions."""
    bad: List[str] = []
    for p in patterns:
        try:
            compile_pattern(p)
        except ConfigurationError:
            bad.append(p)
    return bad


def is_ignored(patterns: Optional[Sequence[str]], text: str) -> bool:
    """True if any pattern matches somewhere in text.

    Invalid patterns never match.
    """
    if not patterns:
        return False
    for p in patterns:
        try:
            compiled = compile_pattern(p)
        except ConfigurationError as e:
            log.debug("skipping ignore pattern: %s", e)
            continue
        if compiled.search(text):
            return True
    return False


def is_ignored_group(patterns: Optional[Sequence[str]], group: str) -> bool:
    return is_ignored(patterns, group)


def is_ignored_selector(patterns: Optional[Sequence[str]], selector: str) -> bool:
    return is_ignored(patterns, selector)


def is_alerts_selector(matchers: Iterable[Matcher]) -> bool:
    """True if the metric name matcher selects ALERTS or ALERTS_FOR_STATE."""
    return any(m.name == METRIC_NAME_LABEL and m.value in ALERTS_METRIC_NAMES for m in matchers)
