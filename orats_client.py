from __future__ import annotations

import asyncio
import os
from typing import Any, Dict, Mapping, Optional

import requests

from app.core.settings import settings
from errors import ConfigurationError, UpstreamError, classify_exception
from observability import build_log_context, log_event

DEFAULT_BASE_URL = "https://api.orats.io/datav2"
TOKEN_ENV = "ORATS_API_TOKEN"

CLIENT_CTX = build_log_context(component="orats_client")


class OratsClient:
    """
    Read-only client for the ORATS data API.

    - one GET per call, no retry, no caching
    - `token` query parameter injected on every request
    - empty / None parameters dropped, everything else stringified
    - non-2xx, network failures and timeouts raise UpstreamError

    `requests` is blocking, so `fetch` runs it in a worker thread and the
    event loop keeps serving other sessions meanwhile.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: Optional[float] = None,
    ) -> None:
        self._token = token
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout

    def _api_token(self) -> str:
        # Resolved per call: a missing token fails the call, not the process.
        token = (self._token or os.getenv(TOKEN_ENV) or "").strip()
        if not token:
            raise ConfigurationError(f"{TOKEN_ENV} environment variable is required")
        return token

    def build_url(self, endpoint: str) -> str:
        if not endpoint.startswith("/"):
            endpoint = "/" + endpoint
        return f"{self.base_url}{endpoint}"

    def build_query(self, params: Optional[Mapping[str, Any]] = None) -> Dict[str, str]:
        query: Dict[str, str] = {"token": self._api_token()}
        for key, value in (params or {}).items():
            if value is None or value == "":
                continue
            query[key] = str(value)
        return query

    async def fetch(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        url = self.build_url(endpoint)
        query = self.build_query(params)
        return await asyncio.to_thread(self._get, url, query, endpoint)

    def _get(self, url: str, query: Dict[str, str], endpoint: str) -> Any:
        timeout = self._timeout if self._timeout is not None else settings.ORATS_HTTP_TIMEOUT_SEC
        try:
            r = requests.get(url, params=query, timeout=timeout)
        except requests.Timeout as e:
            raise UpstreamError(
                f"API request timed out after {timeout:g} seconds",
                data={"endpoint": endpoint},
            ) from e
        except requests.RequestException as e:
            err = classify_exception(e)
            err.data["endpoint"] = endpoint
            raise err from e

        if not r.ok:
            log_event(
                "upstream_http_error",
                ctx=CLIENT_CTX,
                data={"endpoint": endpoint, "status": r.status_code},
                level="warning",
            )
            raise UpstreamError(
                f"API request failed: {r.status_code} {r.reason or ''}".rstrip(),
                status=r.status_code,
                status_text=r.reason or "",
                data={"endpoint": endpoint},
            )

        try:
            return r.json()
        except ValueError as e:
            raise UpstreamError(
                f"API returned invalid JSON for {endpoint}",
                status=r.status_code,
                status_text=r.reason or "",
            ) from e
