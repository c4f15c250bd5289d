import textwrap

import httpx
import pytest

from promcheck.errors import RuleSourceError
from promcheck.http_client import HttpClient
from promcheck.models import Rule, RuleGroup
from promcheck.prometheus_api import PrometheusAPI
from promcheck.rule_sources import (
    INLINE_FILE,
    INLINE_GROUP,
    inline_rule_group,
    load_rule_file,
    load_rule_files,
    load_rule_groups_from_api,
)


def write(path, text):
    path.write_text(textwrap.dedent(text), encoding="utf-8")
    return str(path)


def test_load_rule_file(tmp_path):
    path = write(
        tmp_path / "node.yaml",
        """
        groups:
          - name: node
            interval: 30s
            rules:
              - alert: NodeDown
                expr: up{job="node"} == 0
                for: 5m
                labels:
                  severity: critical
              - record: job:up:sum
                expr: sum by (job) (up)
              - record: one
                expr: 1
        """,
    )
    assert load_rule_file(path) == [
        RuleGroup(
            name="node",
            file=path,
            rules=(
                Rule("NodeDown", 'up{job="node"} == 0'),
                Rule("job:up:sum", "sum by (job) (up)"),
                Rule("one", "1"),
            ),
        )
    ]


def test_empty_rule_file(tmp_path):
    assert load_rule_file(write(tmp_path / "empty.yaml", "")) == []


@pytest.mark.parametrize(
    "body, message",
    [
        ("groups:\n  - name: a\n    rules:\n      - expr: up\n", "one of 'record' or 'alert'"),
        ("groups:\n  - name: a\n    rules:\n      - record: a\n        alert: b\n        expr: up\n", "one of"),
        ("groups:\n  - name: a\n    rules:\n      - record: a\n", "field 'expr' must be set"),
        ("groups:\n  - name: ''\n    rules: []\n", "groupname must not be empty"),
        ("groups:\n  - name: a\n  - name: a\n", "repeated in the same file"),
        ("groups: [", "failed to parse rule file"),
    ],
)
def test_invalid_rule_files(tmp_path, body, message):
    path = write(tmp_path / "bad.yaml", body)
    with pytest.raises(RuleSourceError, match=message):
        load_rule_file(path)


def test_missing_rule_file(tmp_path):
    with pytest.raises(RuleSourceError, match="failed to read rule file"):
        load_rule_file(str(tmp_path / "nope.yaml"))


def test_load_rule_files_in_path_order(tmp_path):
    (tmp_path / "sub").mkdir()
    write(tmp_path / "b.yaml", "groups:\n  - name: b\n    rules: []\n")
    write(tmp_path / "a.yaml", "groups:\n  - name: a\n    rules: []\n")
    write(tmp_path / "sub" / "c.yaml", "groups:\n  - name: c\n    rules: []\n")
    assert [g.name for g in load_rule_files(str(tmp_path / "*.yaml"))] == ["a", "b"]
    assert [g.name for g in load_rule_files(str(tmp_path / "**" / "*.yaml"))] == ["a", "b", "c"]
    assert load_rule_files(str(tmp_path / "*.json")) == []


def test_load_rule_groups_from_api(api, fake_prometheus):
    fake_prometheus.rule_groups = [
        {
            "name": "node",
            "file": "/etc/prometheus/node.yaml",
            "rules": [
                {"name": "NodeDown", "query": "up == 0", "type": "alerting"},
                {"name": "job:up:sum", "query": "sum(up)", "type": "recording"},
                {"name": "weird", "query": "up", "type": "unknown"},
            ],
        }
    ]
    assert load_rule_groups_from_api(api) == [
        RuleGroup(
            name="node",
            file="/etc/prometheus/node.yaml",
            rules=(Rule("NodeDown", "up == 0"), Rule("job:up:sum", "sum(up)")),
        )
    ]


def test_load_rule_groups_from_api_error(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    api = PrometheusAPI(HttpClient(settings, transport=httpx.MockTransport(handler)))
    with pytest.raises(RuleSourceError, match="failed to receive rules"):
        load_rule_groups_from_api(api)


def test_inline_rule_group():
    group = inline_rule_group(["up", "sum(rate(x[5m]))"])
    assert group.name == INLINE_GROUP
    assert group.file == INLINE_FILE
    assert group.rules == (Rule("query-0", "up"), Rule("query-1", "sum(rate(x[5m]))"))
