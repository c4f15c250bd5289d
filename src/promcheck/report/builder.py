from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import json
import math

import yaml
from rich.console import Console

from ..errors import EmptyReportError
from ..metrics import Metrics, PrometheusMetrics
from .tree import build_tree, render_summary

# graph is the default format and renders the report as a tree.
GRAPH_FORMAT = "graph"
YAML_FORMAT = "yaml"
JSON_FORMAT = "json"
# Only used internally by the exporter, not selectable on the command line.
PROMETHEUS_FORMAT = "prometheus"

OUTPUT_FORMATS = (GRAPH_FORMAT, JSON_FORMAT, YAML_FORMAT)

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


@dataclass
class Section:
    """Selectors of one checked rule."""
    file: str
    group: str
    name: str
    expression: str
    no_results: List[str] = field(default_factory=list)
    results: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "group": self.group,
            "name": self.name,
            "expression": self.expression,
            "no_results": list(self.no_results),
            "results": list(self.results),
        }


@dataclass
class Failure:
    """A rule or rule group that could not be checked."""
    file: str
    group: str
    name: str
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"file": self.file, "group": self.group, "name": self.name, "error": self.error}


@dataclass
class RuleOutcome:
    success: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.success) + len(self.failed)


@dataclass
class Report:
    sections: List[Section] = field(default_factory=list)
    sections_count: int = 0
    total_groups: int = 0
    total_rules: int = 0
    total_selectors_failed: int = 0
    total_selectors_success: int = 0
    ratio_failed_total: float = 0.0
    failures: List[Failure] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.sections)

    @property
    def total_selectors(self) -> int:
        return self.total_selectors_failed + self.total_selectors_success

    def by_rule(self) -> Dict[str, Dict[str, Dict[str, RuleOutcome]]]:
        """Collapse sections into file -> group -> rule, keeping first-seen order."""
        nested: Dict[str, Dict[str, Dict[str, RuleOutcome]]] = {}
        for s in self.sections:
            outcome = nested.setdefault(s.file, {}).setdefault(s.group, {}).setdefault(s.name, RuleOutcome())
            outcome.success.extend(s.results)
            outcome.failed.extend(s.no_results)
        return nested

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.sections:
            data["results"] = [s.to_dict() for s in self.sections]
        counters = (
            ("rules_warnings", self.sections_count),
            ("groups_total", self.total_groups),
            ("rules_total", self.total_rules),
            ("selectors_failed_total", self.total_selectors_failed),
            ("selectors_success_total", self.total_selectors_success),
            ("ratio_failed_total", self.ratio_failed_total),
        )
        for key, value in counters:
            # zero and NaN counters are omitted
            if value and not math.isnan(value):
                data[key] = value
        if self.failures:
            data["failures"] = [f.to_dict() for f in self.failures]
            data["failures_total"] = len(self.failures)
        return data


class ReportBuilder:
    """Accumulates check results and renders them once per check cycle.

    Every dump clears the report, so a builder can be reused for the next
    cycle without carrying state over.
    """

    def __init__(
        self,
        output_format: str = GRAPH_FORMAT,
        console: Optional[Console] = None,
        metrics: Optional[Metrics] = None,
        no_color: bool = False,
    ) -> None:
        self.report = Report()
        self.output_format = output_format
        if console is None:
            console = Console(color_system=None if no_color else "auto", highlight=False)
        self.console = console
        self.metrics: Metrics = metrics if metrics is not None else PrometheusMetrics(enable_runtime_metrics=False)

    # ------- accumulation -------

    def add_section(
        self,
        file: str,
        group: str,
        name: str,
        expression: str,
        no_results: Sequence[str],
        results: Sequence[str],
    ) -> None:
        self.report.sections.append(
            Section(
                file=file,
                group=group,
                name=name,
                expression=expression,
                no_results=list(no_results),
                results=list(results),
            )
        )
        self.report.sections_count += 1
        self.report.total_selectors_failed += len(no_results)
        self.report.total_selectors_success += len(results)

    def add_failure(self, file: str, group: str, name: str, error: str) -> None:
        self.report.failures.append(Failure(file=file, group=group, name=name, error=error))

    def add_total_checked_rules(self, count: int) -> None:
        self.report.total_rules += count

    def add_total_checked_groups(self, count: int) -> None:
        self.report.total_groups += count

    def has_content(self) -> bool:
        return self.report.sections_count != 0

    def finalize(self) -> None:
        total = self.report.total_selectors
        self.report.ratio_failed_total = (
            self.report.total_selectors_failed / total * 100 if total else math.nan
        )

    def clear(self) -> None:
        self.report = Report()

    # ------- renderers -------

    def to_json(self) -> str:
        self.finalize()
        return json.dumps({"promcheck": self.report.to_dict()}, indent=2, ensure_ascii=False)

    def to_yaml(self) -> str:
        self.finalize()
        return yaml.safe_dump(
            {"promcheck": self.report.to_dict()},
            sort_keys=False,
            allow_unicode=True,
            default_flow_style=False,
        )

    def to_tree(self):
        self.finalize()
        return build_tree(self.report)

    def to_prometheus_metrics(self) -> None:
        self.finalize()
        self.metrics.set_rules_total(float(self.report.total_rules))
        self.metrics.set_rule_groups_total(float(self.report.total_groups))
        for file, groups in self.report.by_rule().items():
            for group, rules in groups.items():
                for rule, outcome in rules.items():
                    self.metrics.set_selectors_total(file, group, rule, STATUS_FAILED, float(len(outcome.failed)))
                    self.metrics.set_selectors_total(file, group, rule, STATUS_SUCCESS, float(len(outcome.success)))

    # ------- output -------

    def dump(self) -> None:
        """Render the report in the configured format and clear it.

        Raises EmptyReportError when no section was recorded.
        """
        if not self.has_content():
            raise EmptyReportError("nothing to report")
        if self.output_format == YAML_FORMAT:
            self.dump_yaml()
        elif self.output_format == JSON_FORMAT:
            self.dump_json()
        elif self.output_format == PROMETHEUS_FORMAT:
            self.dump_prometheus_metrics()
        else:
            self.dump_tree()

    def dump_yaml(self) -> None:
        try:
            self.console.out(self.to_yaml(), highlight=False)
        finally:
            self.clear()

    def dump_json(self) -> None:
        try:
            self.console.out(self.to_json(), highlight=False)
        finally:
            self.clear()

    def dump_tree(self) -> None:
        try:
            self.console.print(self.to_tree())
            self.console.out("\n" + render_summary(self.report), highlight=False)
        finally:
            self.clear()

    def dump_prometheus_metrics(self) -> None:
        try:
            self.to_prometheus_metrics()
        finally:
            self.clear()
