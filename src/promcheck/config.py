from __future__ import annotations
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple


@dataclass(frozen=True)
class Settings:
    """Immutable configuration for one promcheck check cycle."""

    prometheus_url: str = "http://0.0.0.0:9090"
    timeout_s: float = 30.0
    verify_tls: bool = True
    basic_auth_username: Optional[str] = None
    basic_auth_password: Optional[str] = None
    extra_headers: Optional[Mapping[str, str]] = None

    probe_delay_s: float = 0.1
    ignored_selectors: Tuple[str, ...] = ()
    ignored_groups: Tuple[str, ...] = ()
    # None means one worker per rule group and per rule.
    max_workers: Optional[int] = None

    rule_files: Optional[str] = None
    inline_expressions: Tuple[str, ...] = ()

    output_format: str = "graph"
    no_color: bool = False
    strict: bool = False


@dataclass(frozen=True)
class ExporterSettings:
    """Immutable configuration for the exporter HTTP server."""

    host: str = "0.0.0.0"
    port: int = 9133
    interval_s: float = 60.0
    metrics_prefix: str = ""
    enable_profiling: bool = False
    enable_runtime_metrics: bool = True
