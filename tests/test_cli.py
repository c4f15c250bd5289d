import json
import logging

import pytest
from typer.testing import CliRunner

from promcheck import cli
from promcheck.http_client import HttpClient

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def fake_http(monkeypatch, fake_prometheus):
    monkeypatch.setattr(cli, "HttpClient", lambda settings: HttpClient(settings, transport=fake_prometheus.transport()))
    return fake_prometheus


def test_help_lists_commands():
    result = runner.invoke(cli.app, ["--help"])
    assert result.exit_code == 0
    assert "check" in result.stdout
    assert "exporter" in result.stdout


def test_check_inline_expression_as_json(fake_http):
    fake_http.counts["up"] = 1
    result = runner.invoke(
        cli.app,
        ["check", "-e", "up", "-e", "down > 0", "--format", "json", "--delay", "0", "--log-level", "error"],
    )
    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)["promcheck"]
    assert data["rules_total"] == 2
    assert data["selectors_failed_total"] == 1
    assert sorted(fake_http.queries) == ["count(down)", "count(up)"]


def test_strict_mode_fails_on_missing_selectors(fake_http):
    result = runner.invoke(
        cli.app, ["check", "-e", "down", "--strict", "--delay", "0", "--log-level", "error", "--no-color"]
    )
    assert result.exit_code == 1
    assert "[✖] down" in result.stdout


def test_strict_mode_passes_when_every_selector_has_data(fake_http):
    fake_http.counts["up"] = 3
    result = runner.invoke(cli.app, ["check", "-e", "up", "--strict", "--delay", "0", "--log-level", "error"])
    assert result.exit_code == 0
    assert "[✔] up" in result.stdout


def test_missing_selectors_without_strict_mode(fake_http):
    result = runner.invoke(cli.app, ["check", "-e", "down", "--delay", "0", "--log-level", "error"])
    assert result.exit_code == 0


def test_check_ignored_selectors(fake_http):
    fake_http.counts["up"] = 1
    result = runner.invoke(
        cli.app,
        [
            "check", "-e", "up + node_load1", "--ignore-selector", "^node_",
            "--format", "yaml", "--delay", "0", "--log-level", "error",
        ],
    )
    assert result.exit_code == 0
    assert fake_http.queries == ["count(up)"]


def test_no_matching_rule_files(fake_http, tmp_path):
    result = runner.invoke(cli.app, ["check", "--file", str(tmp_path / "*.yaml"), "--log-level", "error"])
    assert result.exit_code == 1


def test_invalid_format():
    result = runner.invoke(cli.app, ["check", "-e", "up", "--format", "table"])
    assert result.exit_code == 2


def test_invalid_log_level():
    result = runner.invoke(cli.app, ["check", "-e", "up", "--log-level", "verbose"])
    assert result.exit_code == 2


def test_exporter_wiring(monkeypatch, fake_http):
    captured = {}

    def fake_run_exporter(run_cycle, metrics, settings):
        fake_http.counts["up"] = 2
        captured.update(summary=run_cycle(), metrics=metrics, settings=settings)

    monkeypatch.setattr(cli, "run_exporter", fake_run_exporter)
    result = runner.invoke(
        cli.app,
        [
            "exporter", "-e", "up", "--port", "9999", "--interval", "5",
            "--metrics-prefix", "acme", "--enable-profiling", "--disable-runtime-metrics",
            "--log-level", "error",
        ],
    )
    assert result.exit_code == 0, result.output
    settings = captured["settings"]
    assert settings.port == 9999
    assert settings.interval_s == 5
    assert settings.enable_profiling is True
    assert settings.enable_runtime_metrics is False

    assert captured["summary"].rules_checked == 1
    registry = captured["metrics"].registry
    assert registry.get_sample_value("acme_validation_rules_total") == 1
    assert (
        registry.get_sample_value(
            "acme_validation_selectors_total",
            {"file": "[manual]", "group": "[inline]", "rule": "query-0", "status": "success"},
        )
        == 1
    )
