from __future__ import annotations
from typing import Any, Dict, List, Optional, Tuple
import logging

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import PrometheusAPIError
from .http_client import HttpClient

log = logging.getLogger("promcheck.api")


class ApiResponse(BaseModel):
    """Envelope shared by all Prometheus HTTP API responses."""

    model_config = ConfigDict(populate_by_name=True)

    status: str
    data: Any = None
    error_type: Optional[str] = Field(default=None, alias="errorType")
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)


class Sample(BaseModel):
    metric: Dict[str, str] = Field(default_factory=dict)
    value: Tuple[float, str]

    @property
    def number(self) -> float:
        # Prometheus encodes sample values as strings, including "NaN" and "+Inf"
        return float(self.value[1])


class QueryData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    result_type: str = Field(alias="resultType")
    result: Any = None


class RulePayload(BaseModel):
    name: str
    query: str
    type: str = ""


class RuleGroupPayload(BaseModel):
    name: str
    file: str = ""
    rules: List[RulePayload] = Field(default_factory=list)


class RulesData(BaseModel):
    groups: List[RuleGroupPayload] = Field(default_factory=list)


class PrometheusAPI:
    """Minimal client for the Prometheus HTTP API (instant queries and rules)."""

    def __init__(self, http: HttpClient) -> None:
        self.http = http

    def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        resp = self.http.get(path, params=params)
        try:
            payload = ApiResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise PrometheusAPIError(f"unexpected response HTTP {resp.status_code} from {path}: {e}") from e
        if payload.status != "success":
            raise PrometheusAPIError(payload.error or f"HTTP {resp.status_code} from {path}", payload.error_type)
        for w in payload.warnings:
            log.debug("prometheus warning | path=%s | %s", path, w)
        return payload.data

    def query(self, query: str, ts: Optional[float] = None) -> List[Sample]:
        """Run an instant query and return its samples.

        Scalar results are returned as a single sample without labels.
        """
        params = {"query": query}
        if ts is not None:
            params["time"] = f"{ts:.3f}"
        raw = self._get("/api/v1/query", params)
        try:
            data = QueryData.model_validate(raw)
            if data.result_type == "vector":
                return [Sample.model_validate(item) for item in data.result or []]
            if data.result_type == "scalar":
                return [Sample.model_validate({"value": data.result})]
        except (ValueError, ValidationError) as e:
            raise PrometheusAPIError(f"invalid query result for {query!r}: {e}") from e
        raise PrometheusAPIError(f"unexpected result type {data.result_type!r} for {query!r}")

    def rules(self) -> List[RuleGroupPayload]:
        """List the rule groups loaded by the Prometheus instance."""
        raw = self._get("/api/v1/rules")
        try:
            return RulesData.model_validate(raw).groups
        except ValidationError as e:
            raise PrometheusAPIError(f"invalid rules payload: {e}") from e
