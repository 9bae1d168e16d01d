"""
HTTP Client

Thin requests wrapper shared by the event source adapters. Transport
failures surface as HttpError; status handling is left to the caller so
each adapter can decide what is retryable.
"""

from __future__ import annotations

import json as _json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional


logger = logging.getLogger(__name__)

# Status codes a source may recover from after backing off
RETRYABLE_STATUS_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": "shielded-ledger/0.1",
}


@dataclass
class HttpResponse:
    """Status, body and headers of one completed request."""
    status_code: int
    content: bytes
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""
    elapsed_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def retryable(self) -> bool:
        """Rate limiting and transient server failures."""
        return self.status_code in RETRYABLE_STATUS_CODES

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body; raises ValueError on invalid JSON."""
        return _json.loads(self.content)


class HttpError(Exception):
    """The request never produced a response (DNS, connect, timeout)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class HttpClient:
    """
    Session-backed client for indexer and JSON-RPC endpoints.

    Usage:
        http = HttpClient(timeout=30.0)
        response = http.post(rpc_url, json={"jsonrpc": "2.0", ...})
        if response.ok:
            body = response.json()
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        default_headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.timeout = timeout
        self.default_headers = {**DEFAULT_HEADERS, **(default_headers or {})}
        self._session = None

    def _get_session(self):
        """Lazy-load requests session."""
        if self._session is None:
            import requests
            self._session = requests.Session()
            self._session.headers.update(self.default_headers)
        return self._session

    def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[Any] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        """
        Send one request and wrap the response.

        Non-2xx statuses are returned, not raised.

        Raises:
            HttpError: On transport failure
        """
        import requests

        session = self._get_session()
        try:
            response = session.request(
                method=method,
                url=url,
                params=params,
                json=json,
                timeout=timeout or self.timeout,
            )
        except requests.RequestException as e:
            logger.debug(f"{method} {url} failed: {e}")
            raise HttpError(str(e)) from e

        if not 200 <= response.status_code < 300:
            logger.debug(f"{method} {url} -> HTTP {response.status_code}")

        return HttpResponse(
            status_code=response.status_code,
            content=response.content,
            headers=dict(response.headers),
            url=str(response.url),
            elapsed_ms=response.elapsed.total_seconds() * 1000,
        )

    def get(self, url: str, *, params: Optional[dict[str, Any]] = None, **kwargs: Any) -> HttpResponse:
        return self.request("GET", url, params=params, **kwargs)

    def post(self, url: str, *, json: Optional[Any] = None, **kwargs: Any) -> HttpResponse:
        return self.request("POST", url, json=json, **kwargs)

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None
