from __future__ import annotations
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple, TypeVar
import logging

from .errors import ParseError, ProbeError
from .ignore import is_alerts_selector, is_ignored_group, is_ignored_selector
from .models import CheckResult, Rule, RuleGroup
from .probe import Prober
from .selectors import extract_vector_selectors

log = logging.getLogger("promcheck.checker")

T = TypeVar("T")
R = TypeVar("R")


def fan_out(
    func: Callable[[T], R],
    items: Sequence[T],
    max_workers: Optional[int] = None,
    name: str = "promcheck",
) -> Iterator[Tuple[T, "Future[R]"]]:
    """Run func for every item concurrently and yield (item, future) as each one finishes.

    max_workers caps the number of items in flight; None starts one worker per
    item. Completion order is arbitrary. Futures are yielded done, so calling
    result() never blocks and re-raises whatever func raised.
    """
    if not items:
        return
    workers = max_workers if max_workers and max_workers > 0 else len(items)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=name) as pool:
        futures = {pool.submit(func, item): item for item in items}
        for fut in as_completed(futures):
            yield futures[fut], fut


class RulesChecker:
    """Checks rule groups for selectors that do not return any series."""

    def __init__(
        self,
        probe: Prober,
        ignored_selectors: Iterable[str] = (),
        ignored_groups: Iterable[str] = (),
        max_workers: Optional[int] = None,
    ) -> None:
        self.probe = probe
        self.ignored_selectors = tuple(ignored_selectors)
        self.ignored_groups = tuple(ignored_groups)
        self.max_workers = max_workers

    def is_ignored(self, group: RuleGroup) -> bool:
        return is_ignored_group(self.ignored_groups, group.name)

    def check_rule_groups(self, groups: Iterable[RuleGroup]) -> List[CheckResult]:
        results: List[CheckResult] = []
        for group in groups:
            results.extend(self.check_rule_group(group))
        return results

    def check_rule_group(self, group: RuleGroup) -> List[CheckResult]:
        """Check every rule of group concurrently.

        Results arrive in completion order, not in rule order.
        """
        if self.is_ignored(group):
            log.debug("skipping ignored rule group | file=%s | group=%s", group.file, group.name)
            return []

        def _check(rule: Rule) -> CheckResult:
            return self.check_rule(group, rule)

        results: List[CheckResult] = []
        for _, fut in fan_out(_check, group.rules, self.max_workers, name=f"rules-{group.name}"):
            results.append(fut.result())
        return results

    def check_rule(self, group: RuleGroup, rule: Rule) -> CheckResult:
        result = CheckResult(file=group.file, group=group.name, name=rule.name, expression=rule.expression)
        try:
            self._probe_into(rule.expression, result.results, result.no_results)
        except (ParseError, ProbeError) as e:
            log.warning(
                "failed to check rule | file=%s | group=%s | rule=%s | err=%s",
                group.file, group.name, rule.name, e,
            )
            result.error = str(e)
        return result

    def probe_selector_results(self, expression: str) -> Tuple[List[str], List[str]]:
        """Probe every selector of expression.

        Returns the selectors with a result value and the selectors without.
        Raises ParseError or ProbeError; the latter stops at the failing selector.
        """
        success: List[str] = []
        failed: List[str] = []
        self._probe_into(expression, success, failed)
        return success, failed

    def _probe_into(self, expression: str, success: List[str], failed: List[str]) -> None:
        for vs in extract_vector_selectors(expression):
            selector = str(vs)
            if is_ignored_selector(self.ignored_selectors, selector):
                continue
            # ALERTS series end the rule
            if is_alerts_selector(vs.matchers):
                break
            if self.probe.probe_selector(selector) < 1:
                failed.append(selector)
            else:
                success.append(selector)
