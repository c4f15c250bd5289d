from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Rule:
    """An alerting or recording rule."""
    name: str
    expression: str


@dataclass(frozen=True)
class RuleGroup:
    """A named set of rules loaded from a file or a Prometheus instance."""
    name: str
    file: str
    rules: Tuple[Rule, ...] = ()


@dataclass
class CheckResult:
    """Outcome of probing every selector of a single rule."""
    file: str
    group: str
    name: str
    expression: str
    results: List[str] = field(default_factory=list)
    no_results: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def has_failed(self) -> bool:
        return self.error is not None

    def has_missing_selectors(self) -> bool:
        return len(self.no_results) > 0
