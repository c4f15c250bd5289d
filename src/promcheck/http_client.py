from __future__ import annotations
from typing import Any, Mapping, Optional
import httpx
from .config import Settings


class HttpClient:
    """Synchronous HTTP client wrapper shared by all probes of a check cycle."""

    def __init__(self, settings: Settings, transport: Optional[httpx.BaseTransport] = None) -> None:
        self._settings = settings
        headers = {}
        if settings.extra_headers:
            headers.update(dict(settings.extra_headers))
        auth = None
        if settings.basic_auth_username and settings.basic_auth_password:
            auth = httpx.BasicAuth(settings.basic_auth_username, settings.basic_auth_password)
        self._client = httpx.Client(
            base_url=settings.prometheus_url,
            timeout=settings.timeout_s,
            follow_redirects=True,
            headers=headers,
            auth=auth,
            verify=settings.verify_tls,
            transport=transport,
        )

    def get(self, url: str, params: Optional[Mapping[str, Any]] = None) -> httpx.Response:
        return self._client.get(url, params=params)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
