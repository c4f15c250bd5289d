from __future__ import annotations
from typing import TYPE_CHECKING, Dict, Tuple
import math

from rich.text import Text
from rich.tree import Tree

if TYPE_CHECKING:
    from .builder import Report

SUCCESS_MARK = "[✔]"
FAILED_MARK = "[✖]"
ERROR_MARK = "[error]"


def _label(*parts, style: str = "") -> Text:
    # long selectors must stay on one line
    return Text.assemble(*parts, style=style, no_wrap=True, overflow="ignore")


def build_tree(report: "Report") -> Tree:
    """Render report as file -> group -> rule -> selector."""
    root = Tree(_label("."))
    files: Dict[str, Tree] = {}
    groups: Dict[Tuple[str, str], Tree] = {}

    def group_node(file: str, group: str) -> Tree:
        if file not in files:
            files[file] = root.add(_label(("[file]", "yellow"), f" {file}"))
        key = (file, group)
        if key not in groups:
            groups[key] = files[file].add(_label(("[group]", "yellow"), f" {group}"))
        return groups[key]

    for file, rule_groups in report.by_rule().items():
        for group, rules in rule_groups.items():
            node = group_node(file, group)
            for rule, outcome in rules.items():
                rule_node = node.add(_label((f"[{len(outcome.success)}/{outcome.total}]", "yellow"), f" {rule}"))
                for selector in outcome.success:
                    rule_node.add(_label(f"{SUCCESS_MARK} {selector}", style="green"))
                for selector in outcome.failed:
                    rule_node.add(_label(f"{FAILED_MARK} {selector}", style="red"))

    for failure in report.failures:
        node = group_node(failure.file, failure.group)
        text = f"{failure.name}: {failure.error}" if failure.name else failure.error
        node.add(_label(f"{ERROR_MARK} {text}", style="bold red"))

    return root


def format_ratio(ratio: float) -> str:
    return "NaN" if math.isnan(ratio) else f"{ratio:.2f}"


def render_summary(report: "Report") -> str:
    lines = [
        f"Groups total: {report.total_groups}, Rules total: {report.total_rules}",
        (
            f"Selectors total: {report.total_selectors}, "
            f"Results found: {report.total_selectors_success}, "
            f"No Results found {report.total_selectors_failed} "
            f"(No Results/Total: {format_ratio(report.ratio_failed_total)}%)"
        ),
    ]
    if report.failures:
        lines.append(f"Failed checks: {len(report.failures)}")
    return "\n".join(lines)
