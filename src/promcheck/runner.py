from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Sequence
import logging

from .checker import RulesChecker, fan_out
from .config import Settings
from .errors import EmptyReportError, RuleSourceError
from .http_client import HttpClient
from .models import RuleGroup
from .prometheus_api import PrometheusAPI
from .probe import PrometheusProbe
from .report.builder import ReportBuilder
from .rule_sources import inline_rule_group, load_rule_files, load_rule_groups_from_api

log = logging.getLogger("promcheck.runner")


@dataclass
class CycleSummary:
    """Counts of one check cycle, including what could not be checked."""
    groups_checked: int = 0
    groups_ignored: int = 0
    groups_failed: int = 0
    rules_checked: int = 0
    rules_failed: int = 0
    rules_with_missing_selectors: int = 0
    empty: bool = False

    @property
    def has_missing_selectors(self) -> bool:
        return self.rules_with_missing_selectors > 0

    @property
    def has_failures(self) -> bool:
        return self.groups_failed > 0 or self.rules_failed > 0


class Promcheck:
    """Runs check cycles: load rule groups, check them, report the results."""

    def __init__(
        self,
        settings: Settings,
        checker: RulesChecker,
        report: ReportBuilder,
        api: Optional[PrometheusAPI] = None,
    ) -> None:
        self.settings = settings
        self.checker = checker
        self.report = report
        self.api = api

    @classmethod
    def from_settings(cls, settings: Settings, http: HttpClient, report: ReportBuilder) -> "Promcheck":
        api = PrometheusAPI(http)
        probe = PrometheusProbe(api, delay_s=settings.probe_delay_s)
        checker = RulesChecker(
            probe,
            ignored_selectors=settings.ignored_selectors,
            ignored_groups=settings.ignored_groups,
            max_workers=settings.max_workers,
        )
        return cls(settings, checker, report, api)

    def load_rule_groups(self) -> List[RuleGroup]:
        """Inline expressions win over rule files, rule files over the live instance."""
        if self.settings.inline_expressions:
            return [inline_rule_group(self.settings.inline_expressions)]
        if self.settings.rule_files:
            groups = load_rule_files(self.settings.rule_files)
            if not groups:
                raise RuleSourceError(
                    f"no rule groups to check in {self.settings.rule_files!r}, please check the --file pattern"
                )
            return groups
        if self.api is None:
            raise RuleSourceError("no rule source configured")
        groups = load_rule_groups_from_api(self.api)
        if not groups:
            raise RuleSourceError("no rule groups to check, the Prometheus instance has no rules")
        return groups

    def check_groups(self, groups: Sequence[RuleGroup]) -> CycleSummary:
        """Check groups concurrently and add their results to the report."""
        summary = CycleSummary()
        to_check: List[RuleGroup] = []
        for g in groups:
            if self.checker.is_ignored(g):
                log.info("skipping ignored rule group | file=%s | group=%s", g.file, g.name)
                summary.groups_ignored += 1
                continue
            to_check.append(g)

        for group, fut in fan_out(self.checker.check_rule_group, to_check, self.settings.max_workers, name="groups"):
            try:
                results = fut.result()
            except Exception as e:
                log.exception("failed to check rule group | file=%s | group=%s", group.file, group.name)
                self.report.add_failure(group.file, group.name, "", str(e))
                summary.groups_failed += 1
                continue

            self.report.add_total_checked_groups(1)
            self.report.add_total_checked_rules(len(group.rules))
            summary.groups_checked += 1
            summary.rules_checked += len(group.rules)
            for r in results:
                if r.has_failed():
                    self.report.add_failure(r.file, r.group, r.name, r.error or "")
                    summary.rules_failed += 1
                    continue
                self.report.add_section(r.file, r.group, r.name, r.expression, r.no_results, r.results)
                if r.has_missing_selectors():
                    summary.rules_with_missing_selectors += 1
        return summary

    def check_rules(self) -> CycleSummary:
        """Run one full check cycle and dump the report.

        Raises RuleSourceError when no rule group could be loaded.
        """
        summary = self.check_groups(self.load_rule_groups())
        log.info(
            "check cycle done | groups=%d | ignored=%d | rules=%d | missing=%d | failed_groups=%d | failed_rules=%d",
            summary.groups_checked,
            summary.groups_ignored,
            summary.rules_checked,
            summary.rules_with_missing_selectors,
            summary.groups_failed,
            summary.rules_failed,
        )
        try:
            self.report.dump()
        except EmptyReportError as e:
            # counters of an unreported cycle must not leak into the next one
            self.report.clear()
            summary.empty = True
            log.warning("%s | groups=%d | rules=%d", e, summary.groups_checked, summary.rules_checked)
        return summary
