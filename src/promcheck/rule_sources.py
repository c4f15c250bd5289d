from __future__ import annotations
from pathlib import Path
from typing import Any, List, Optional, Sequence
import glob
import logging

import httpx
import yaml
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from .errors import PrometheusAPIError, RuleSourceError
from .models import Rule, RuleGroup
from .prometheus_api import PrometheusAPI

log = logging.getLogger("promcheck.rules")

INLINE_GROUP = "[inline]"
INLINE_FILE = "[manual]"


class RuleNode(BaseModel):
    """A rule entry of a Prometheus rule file."""

    model_config = ConfigDict(extra="allow")

    record: Optional[str] = None
    alert: Optional[str] = None
    expr: str = ""

    @field_validator("expr", mode="before")
    @classmethod
    def _expr_as_text(cls, v: Any) -> Any:
        # a bare number is valid PromQL but YAML loads it as int/float
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @model_validator(mode="after")
    def _check_rule(self) -> "RuleNode":
        if bool(self.record) == bool(self.alert):
            raise ValueError("one of 'record' or 'alert' must be set")
        if not self.expr.strip():
            raise ValueError(f"field 'expr' must be set in rule {self.name!r}")
        return self

    @property
    def name(self) -> str:
        return self.record or self.alert or ""


class RuleGroupNode(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    rules: List[RuleNode] = []

    @field_validator("name")
    @classmethod
    def _name_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("groupname must not be empty")
        return v


class RuleFile(BaseModel):
    groups: List[RuleGroupNode] = []

    @model_validator(mode="after")
    def _unique_group_names(self) -> "RuleFile":
        seen = set()
        for g in self.groups:
            if g.name in seen:
                raise ValueError(f"{g.name}: repeated in the same file")
            seen.add(g.name)
        return self


def load_rule_file(path: str) -> List[RuleGroup]:
    """Parse a Prometheus rule file into rule groups."""
    try:
        raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise RuleSourceError(f"failed to read rule file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise RuleSourceError(f"failed to parse rule file {path}: {e}") from e
    try:
        parsed = RuleFile.model_validate(raw or {})
    except ValidationError as e:
        raise RuleSourceError(f"invalid rule file {path}: {e}") from e
    return [
        RuleGroup(
            name=g.name,
            file=path,
            rules=tuple(Rule(name=r.name, expression=r.expr) for r in g.rules),
        )
        for g in parsed.groups
    ]


def load_rule_files(pattern: str) -> List[RuleGroup]:
    """Load every rule file matching the glob pattern, in path order."""
    groups: List[RuleGroup] = []
    for path in sorted(glob.glob(pattern, recursive=True)):
        loaded = load_rule_file(path)
        log.debug("loaded rule file | file=%s | groups=%d", path, len(loaded))
        groups.extend(loaded)
    return groups


def load_rule_groups_from_api(api: PrometheusAPI) -> List[RuleGroup]:
    """Load the rule groups a running Prometheus instance evaluates."""
    try:
        payload = api.rules()
    except (httpx.HTTPError, PrometheusAPIError) as e:
        raise RuleSourceError(f"failed to receive rules from prometheus instance: {e}") from e
    groups: List[RuleGroup] = []
    for g in payload:
        rules = tuple(
            Rule(name=r.name, expression=r.query)
            for r in g.rules
            if r.type in ("recording", "alerting")
        )
        groups.append(RuleGroup(name=g.name, file=g.file, rules=rules))
    return groups


def inline_rule_group(expressions: Sequence[str]) -> RuleGroup:
    """Wrap expressions given on the command line into a single group."""
    return RuleGroup(
        name=INLINE_GROUP,
        file=INLINE_FILE,
        rules=tuple(Rule(name=f"query-{i}", expression=q) for i, q in enumerate(expressions)),
    )
