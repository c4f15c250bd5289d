from __future__ import annotations
from typing import Dict, Iterable, List, Optional
import io
import threading

import httpx
import pytest
from rich.console import Console

from promcheck.config import Settings
from promcheck.http_client import HttpClient
from promcheck.prometheus_api import PrometheusAPI


class FakePrometheus:
    """Serves /api/v1/query and /api/v1/rules from in-memory data."""

    def __init__(
        self,
        counts: Optional[Dict[str, float]] = None,
        rule_groups: Optional[List[dict]] = None,
        failing: Iterable[str] = (),
    ) -> None:
        self.counts = dict(counts or {})
        self.rule_groups = list(rule_groups or [])
        self.failing = set(failing)
        self.queries: List[str] = []
        self.requests: List[httpx.Request] = []
        self._lock = threading.Lock()

    def handler(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
        if request.url.path == "/api/v1/query":
            query = request.url.params["query"]
            with self._lock:
                self.queries.append(query)
            selector = query[len("count("):-1]
            if selector in self.failing:
                return httpx.Response(
                    503, json={"status": "error", "errorType": "unavailable", "error": "backend down"}
                )
            count = self.counts.get(selector)
            result = [] if not count else [{"metric": {}, "value": [1700000000.0, str(count)]}]
            return httpx.Response(
                200, json={"status": "success", "data": {"resultType": "vector", "result": result}}
            )
        if request.url.path == "/api/v1/rules":
            return httpx.Response(200, json={"status": "success", "data": {"groups": self.rule_groups}})
        return httpx.Response(404, json={"status": "error", "errorType": "not_found", "error": "not found"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_prometheus() -> FakePrometheus:
    return FakePrometheus()


@pytest.fixture
def settings() -> Settings:
    return Settings(prometheus_url="http://prometheus.test", probe_delay_s=0.0)


@pytest.fixture
def http(settings: Settings, fake_prometheus: FakePrometheus):
    client = HttpClient(settings, transport=fake_prometheus.transport())
    try:
        yield client
    finally:
        client.close()


@pytest.fixture
def api(http: HttpClient) -> PrometheusAPI:
    return PrometheusAPI(http)


@pytest.fixture
def console_buffer():
    buf = io.StringIO()
    console = Console(file=buf, width=200, color_system=None, highlight=False)
    return console, buf


def output_lines(buf: io.StringIO) -> List[str]:
    return [line.rstrip() for line in buf.getvalue().splitlines()]
