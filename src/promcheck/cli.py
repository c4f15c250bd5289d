from __future__ import annotations
import logging

import typer
from rich.console import Console

from .config import ExporterSettings, Settings
from .errors import PromcheckError
from .exporter import run_exporter
from .http_client import HttpClient
from .ignore import invalid_patterns
from .logs import LEVELS, setup_logging
from .metrics import PrometheusMetrics
from .report.builder import OUTPUT_FORMATS, PROMETHEUS_FORMAT, ReportBuilder
from .runner import CycleSummary, Promcheck

log = logging.getLogger("promcheck.cli")

app = typer.Typer(add_completion=False, no_args_is_help=True)


def _settings(
    prometheus_url: str,
    timeout: float,
    insecure: bool,
    basic_auth_username: str | None,
    basic_auth_password: str | None,
    delay: float,
    ignore_selector: list[str] | None,
    ignore_group: list[str] | None,
    max_workers: int | None,
    file: str | None,
    expression: list[str] | None,
    output_format: str = "graph",
    no_color: bool = False,
    strict: bool = False,
):
    return Settings(
        prometheus_url=prometheus_url,
        timeout_s=timeout,
        verify_tls=not insecure,
        basic_auth_username=basic_auth_username,
        basic_auth_password=basic_auth_password,
        probe_delay_s=delay,
        ignored_selectors=tuple(ignore_selector or ()),
        ignored_groups=tuple(ignore_group or ()),
        max_workers=max_workers,
        rule_files=file,
        inline_expressions=tuple(expression or ()),
        output_format=output_format,
        no_color=no_color,
        strict=strict,
    )


def _check_log_level(log_level: str) -> None:
    if log_level not in LEVELS:
        raise typer.BadParameter(f"must be one of {', '.join(LEVELS)}", param_hint="--log-level")


def _warn_invalid_patterns(settings: Settings) -> None:
    for p in invalid_patterns(settings.ignored_selectors + settings.ignored_groups):
        log.warning("ignoring invalid regular expression | pattern=%s", p)


def _exit_code(settings: Settings, summary: CycleSummary) -> int:
    if settings.strict and (summary.has_missing_selectors or summary.has_failures):
        return 1
    return 0


@app.callback()
def main() -> None:
    """Find Prometheus rules whose selectors return no data."""


@app.command("check")
def check(
    prometheus_url: str = typer.Option("http://0.0.0.0:9090", "--prometheus-url", help="The Prometheus base url"),
    file: str | None = typer.Option(None, "--file", "-f", help="Glob of rule files to check. Rules are loaded from Prometheus when omitted."),
    expression: list[str] | None = typer.Option(None, "--expression", "-e", help="PromQL expression to check (repeatable)."),
    ignore_selector: list[str] | None = typer.Option(None, "--ignore-selector", help="Regex of selectors to skip (repeatable)."),
    ignore_group: list[str] | None = typer.Option(None, "--ignore-group", help="Regex of rule groups to skip (repeatable)."),
    delay: float = typer.Option(0.1, "--delay", min=0.0, help="Seconds to wait after each probe request."),
    max_workers: int | None = typer.Option(None, "--max-workers", min=1, help="Worker threads per fan-out. Defaults to one per item."),
    output_format: str = typer.Option("graph", "--format", help="Output format: graph, json or yaml."),
    no_color: bool = typer.Option(False, "--no-color"),
    strict: bool = typer.Option(False, "--strict", help="Return exit code 1 if any selector returned no result."),
    timeout: float = typer.Option(30.0, "--timeout"),
    insecure: bool = typer.Option(False, "--insecure"),
    basic_auth_username: str | None = typer.Option(None, "--basic-auth-username", envvar="PROMCHECK_BASIC_AUTH_USERNAME"),
    basic_auth_password: str | None = typer.Option(None, "--basic-auth-password", envvar="PROMCHECK_BASIC_AUTH_PASSWORD"),
    log_level: str = typer.Option("info", "--log-level", help="error, warn, info or debug."),
    log_json: bool = typer.Option(False, "--log-json"),
):
    if output_format not in OUTPUT_FORMATS:
        raise typer.BadParameter(f"must be one of {', '.join(OUTPUT_FORMATS)}", param_hint="--format")
    _check_log_level(log_level)
    setup_logging(log_level, log_json)

    settings = _settings(
        prometheus_url, timeout, insecure, basic_auth_username, basic_auth_password, delay,
        ignore_selector, ignore_group, max_workers, file, expression, output_format, no_color, strict,
    )
    _warn_invalid_patterns(settings)

    console = Console(color_system=None if no_color else "auto", highlight=False)
    report = ReportBuilder(settings.output_format, console=console, no_color=no_color)
    http = HttpClient(settings)
    try:
        promcheck = Promcheck.from_settings(settings, http, report)
        try:
            summary = promcheck.check_rules()
        except PromcheckError as e:
            log.error("failed to check rules | err=%s", e)
            raise typer.Exit(code=1)
    finally:
        http.close()
    raise typer.Exit(code=_exit_code(settings, summary))


@app.command("exporter")
def exporter(
    prometheus_url: str = typer.Option("http://0.0.0.0:9090", "--prometheus-url", help="The Prometheus base url"),
    file: str | None = typer.Option(None, "--file", "-f", help="Glob of rule files to check. Rules are loaded from Prometheus when omitted."),
    expression: list[str] | None = typer.Option(None, "--expression", "-e", help="PromQL expression to check (repeatable)."),
    ignore_selector: list[str] | None = typer.Option(None, "--ignore-selector", help="Regex of selectors to skip (repeatable)."),
    ignore_group: list[str] | None = typer.Option(None, "--ignore-group", help="Regex of rule groups to skip (repeatable)."),
    delay: float = typer.Option(0.1, "--delay", min=0.0, help="Seconds to wait after each probe request."),
    max_workers: int | None = typer.Option(None, "--max-workers", min=1, help="Worker threads per fan-out. Defaults to one per item."),
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(9133, "--port"),
    interval: float = typer.Option(60.0, "--interval", min=0.1, help="Seconds between check cycles."),
    metrics_prefix: str = typer.Option("", "--metrics-prefix", help="Namespace of the exported metrics. Defaults to promcheck."),
    enable_profiling: bool = typer.Option(False, "--enable-profiling", help="Serve thread stacks on /debug/stacks."),
    disable_runtime_metrics: bool = typer.Option(False, "--disable-runtime-metrics"),
    timeout: float = typer.Option(30.0, "--timeout"),
    insecure: bool = typer.Option(False, "--insecure"),
    basic_auth_username: str | None = typer.Option(None, "--basic-auth-username", envvar="PROMCHECK_BASIC_AUTH_USERNAME"),
    basic_auth_password: str | None = typer.Option(None, "--basic-auth-password", envvar="PROMCHECK_BASIC_AUTH_PASSWORD"),
    log_level: str = typer.Option("info", "--log-level", help="error, warn, info or debug."),
    log_json: bool = typer.Option(False, "--log-json"),
):
    _check_log_level(log_level)
    setup_logging(log_level, log_json)

    settings = _settings(
        prometheus_url, timeout, insecure, basic_auth_username, basic_auth_password, delay,
        ignore_selector, ignore_group, max_workers, file, expression, PROMETHEUS_FORMAT,
    )
    exporter_settings = ExporterSettings(
        host=host,
        port=port,
        interval_s=interval,
        metrics_prefix=metrics_prefix,
        enable_profiling=enable_profiling,
        enable_runtime_metrics=not disable_runtime_metrics,
    )
    _warn_invalid_patterns(settings)

    metrics = PrometheusMetrics(
        prefix=exporter_settings.metrics_prefix,
        enable_runtime_metrics=exporter_settings.enable_runtime_metrics,
    )
    report = ReportBuilder(PROMETHEUS_FORMAT, metrics=metrics)
    http = HttpClient(settings)
    try:
        promcheck = Promcheck.from_settings(settings, http, report)
        run_exporter(promcheck.check_rules, metrics, exporter_settings)
    finally:
        http.close()


if __name__ == "__main__":
    app()
