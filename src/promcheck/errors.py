from __future__ import annotations
from typing import Optional


class PromcheckError(Exception):
    """Base class for all promcheck errors."""


class ParseError(PromcheckError):
    """A PromQL expression is not syntactically valid."""

    def __init__(self, message: str, position: Optional[int] = None) -> None:
        self.message = message
        self.position = position
        if position is not None:
            message = f"{message} (at char {position})"
        super().__init__(message)


class ProbeError(PromcheckError):
    """A selector probe failed because of a network or backend error."""


class PrometheusAPIError(PromcheckError):
    """The Prometheus HTTP API answered with an error or an unexpected payload."""

    def __init__(self, message: str, error_type: Optional[str] = None) -> None:
        self.error_type = error_type
        super().__init__(f"{error_type}: {message}" if error_type else message)


class ConfigurationError(PromcheckError):
    """An ignore pattern is not a valid regular expression."""


class EmptyReportError(PromcheckError):
    """The report has no sections to render."""


class RuleSourceError(PromcheckError):
    """Rule groups could not be loaded."""
