"""Authenticated HTTP client for the media platform API.

Every call is a real request: no retries, no caching. The token travels as
the `X-API-Token` header and as a `token` query parameter, which is what the
platform accepts for GET, form POST and DELETE alike.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlencode

import httpx

from endpoint_sentinel.config import HarnessConfig
from endpoint_sentinel.errors import ConfigurationError, TransportError

logger = logging.getLogger(__name__)

DOMAIN_OK = "OK"
DOMAIN_ERROR = "ERROR"
TOKEN_HEADER = "X-API-Token"


@dataclass
class ResponseEnvelope:
    """Normalized result of a single HTTP call.

    `status` is the transport status code. The domain tag and payload come
    from the JSON body `{"status": "OK"|"ERROR", "data": ...}` and are
    independent of it: the platform answers "not found" with 200 + ERROR.
    """

    method: str
    url: str
    status: int
    body: Any
    elapsed: float = 0.0
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def domain_status(self) -> Optional[str]:
        if isinstance(self.body, dict):
            return self.body.get("status")
        return None

    @property
    def data(self) -> Any:
        if isinstance(self.body, dict):
            return self.body.get("data")
        return None

    @property
    def is_ok(self) -> bool:
        return self.domain_status == DOMAIN_OK

    def records(self) -> List[Dict[str, Any]]:
        """Payload as a list of records (single record wrapped, null -> [])."""
        data = self.data
        if data is None:
            return []
        if isinstance(data, list):
            return [item for item in data if isinstance(item, dict)]
        if isinstance(data, dict):
            return [data]
        return []

    def first(self) -> Optional[Dict[str, Any]]:
        records = self.records()
        return records[0] if records else None

    def summary(self) -> str:
        return f"{self.method} {self.url} -> {self.status} [{self.domain_status or 'N/A'}]"


class ApiClient:
    """Client for the platform REST API.

    Args:
        base_url: Scheme + host (+ optional prefix); endpoints are appended verbatim.
        token: API token; required.
        timeout: Per-call timeout in seconds.
        transport: Optional httpx transport (tests mount the Flask mock here).
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not base_url or not token:
            raise ConfigurationError("ApiClient requires both a base URL and an API token")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._client = httpx.Client(
            timeout=timeout,
            headers={TOKEN_HEADER: token, "Accept": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: HarnessConfig, transport: httpx.BaseTransport | None = None) -> "ApiClient":
        return cls(config.base_url, config.api_token, timeout=config.api_timeout, transport=transport)

    def __enter__(self) -> "ApiClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # ---- public verbs ---------------------------------------------------------
    def get(self, endpoint: str, params: Mapping[str, Any] | None = None) -> ResponseEnvelope:
        """GET with `params` serialized as the query string."""
        return self._request("GET", endpoint, params=params)

    def post(self, endpoint: str, form: Mapping[str, Any] | None = None) -> ResponseEnvelope:
        """POST `form` form-encoded (the platform does not accept JSON bodies)."""
        return self._request("POST", endpoint, data=_form_fields(form or {}))

    def delete(self, endpoint: str) -> ResponseEnvelope:
        return self._request("DELETE", endpoint)

    # ---- internals ------------------------------------------------------------
    def build_url(self, endpoint: str, params: Mapping[str, Any] | None = None) -> str:
        """Return the absolute URL with the token folded into the query string."""
        query: Dict[str, Any] = {
            key: _wire_value(value) for key, value in (params or {}).items() if value is not None
        }
        query.setdefault("token", self.token)
        separator = "&" if "?" in endpoint else "?"
        return f"{self.base_url}{endpoint}{separator}{urlencode(query, doseq=True)}"

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Mapping[str, Any] | None = None,
        data: Mapping[str, str] | None = None,
    ) -> ResponseEnvelope:
        url = self.build_url(endpoint, params)
        started = time.monotonic()
        try:
            response = self._client.request(method, url, data=data)
        except httpx.HTTPError as exc:
            logger.error("%s %s failed: %s", method, endpoint, exc)
            raise TransportError(str(exc) or exc.__class__.__name__, method=method, url=endpoint) from exc
        elapsed = time.monotonic() - started

        try:
            body = response.json() if response.content else None
        except ValueError as exc:
            logger.error("%s %s returned a non-JSON body (status %s)", method, endpoint, response.status_code)
            raise TransportError(
                "response body is not JSON",
                method=method,
                url=endpoint,
                status_code=response.status_code,
                body=response.text,
            ) from exc

        envelope = ResponseEnvelope(
            method=method,
            url=endpoint,
            status=response.status_code,
            body=body,
            elapsed=elapsed,
            headers=dict(response.headers),
        )
        logger.info("%s (%.0f ms)", envelope.summary(), elapsed * 1000)
        return envelope


def _wire_value(value: Any) -> Any:
    """Stringify a value the way a browser would submit it (lists stay lists)."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return [_wire_value(item) for item in value]
    return str(value)


def _form_fields(form: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: _wire_value(value) for key, value in form.items() if value is not None}
