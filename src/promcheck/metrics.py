from __future__ import annotations
from typing import Optional, Protocol

from fastapi import FastAPI, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    GCCollector,
    Gauge,
    PlatformCollector,
    ProcessCollector,
    generate_latest,
)

DEFAULT_METRICS_PATH = "/metrics"

NAMESPACE = "promcheck"
SUBSYSTEM = "validation"


class Metrics(Protocol):
    """Backend receiving the gauges exported from a report."""

    def set_rule_groups_total(self, value: float) -> None:
        ...

    def set_rules_total(self, value: float) -> None:
        ...

    def set_selectors_total(self, file: str, group: str, rule: str, status: str, value: float) -> None:
        ...

    def register_handler(self, app: FastAPI, path: str) -> None:
        ...


class PrometheusMetrics:
    """prometheus_client backend with its own registry."""

    def __init__(
        self,
        prefix: str = "",
        enable_runtime_metrics: bool = True,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        namespace = prefix.rstrip(".") or NAMESPACE
        self.registry = registry if registry is not None else CollectorRegistry()
        self.rule_groups_total = Gauge(
            "rule_groups_total",
            "Total number of evaluated rule groups.",
            namespace=namespace,
            subsystem=SUBSYSTEM,
            registry=self.registry,
        )
        self.rules_total = Gauge(
            "rules_total",
            "Total number of evaluated rules.",
            namespace=namespace,
            subsystem=SUBSYSTEM,
            registry=self.registry,
        )
        self.selectors_total = Gauge(
            "selectors_total",
            "Total number of evaluated selectors.",
            ["file", "group", "rule", "status"],
            namespace=namespace,
            subsystem=SUBSYSTEM,
            registry=self.registry,
        )
        if enable_runtime_metrics:
            ProcessCollector(registry=self.registry)
            PlatformCollector(registry=self.registry)
            GCCollector(registry=self.registry)

    def set_rule_groups_total(self, value: float) -> None:
        self.rule_groups_total.set(value)

    def set_rules_total(self, value: float) -> None:
        self.rules_total.set(value)

    def set_selectors_total(self, file: str, group: str, rule: str, status: str, value: float) -> None:
        self.selectors_total.labels(file=file, group=group, rule=rule, status=status).set(value)

    def exposition(self) -> bytes:
        return generate_latest(self.registry)

    def register_handler(self, app: FastAPI, path: str) -> None:
        async def metrics_endpoint() -> Response:
            return Response(content=self.exposition(), media_type=CONTENT_TYPE_LATEST)

        app.add_api_route(path, metrics_endpoint, methods=["GET"], include_in_schema=False)


def handler_for(metrics: Metrics, app: FastAPI, path: str = DEFAULT_METRICS_PATH) -> None:
    """Expose metrics on path with and without a trailing slash."""
    path = path.rstrip("/") or DEFAULT_METRICS_PATH
    metrics.register_handler(app, path)
    metrics.register_handler(app, f"{path}/")
