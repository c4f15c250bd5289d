from __future__ import annotations
from typing import Callable, Protocol
import logging
import math
import time

import httpx

from .errors import ProbeError, PrometheusAPIError
from .prometheus_api import PrometheusAPI

log = logging.getLogger("promcheck.probe")


class Prober(Protocol):
    """Probes a PromQL selector against a remote instance."""

    def probe_selector(self, selector: str) -> float:
        ...


class PrometheusProbe:
    """Counts the series matching a selector with an instant ``count()`` query.

    After every successful probe the calling thread sleeps for ``delay_s``.
    This throttles each caller, not the aggregate request rate of all
    concurrently checked rules.
    """

    def __init__(
        self,
        api: PrometheusAPI,
        delay_s: float = 0.0,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api = api
        self.delay_s = delay_s
        self._clock = clock
        self._sleep = sleep

    def _probe(self, selector: str) -> float:
        query = f"count({selector})"
        try:
            samples = self.api.query(query, self._clock())
        except (httpx.HTTPError, PrometheusAPIError) as e:
            raise ProbeError(f"failed to query metrics for {selector}: {e}") from e
        value = 0.0
        for s in samples:
            try:
                number = s.number
            except ValueError as e:
                raise ProbeError(f"invalid sample value for {selector}: {s.value[1]!r}") from e
            value = 0.0 if math.isnan(number) else number
        return value

    def probe_selector(self, selector: str) -> float:
        value = self._probe(selector)
        log.debug("probed selector | %s | count=%s", selector, value)
        if self.delay_s > 0:
            self._sleep(self.delay_s)
        return value
