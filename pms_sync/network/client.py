"""
Shared request helper composed into every adapter.

All outbound calls funnel through ``ApiClient.request``, which throttles via
the adapter's private rate limiter, attaches credentials from the auth
strategy, issues the call and converts every failure into a tagged
``Result`` instead of raising.
"""

from __future__ import annotations

import time
from typing import Any, Iterable

import requests
import structlog

from pms_sync.config import REQUEST_TIMEOUT_SECONDS
from pms_sync.metrics import api_latency, api_requests
from pms_sync.network.auth import AuthStrategy
from pms_sync.network.errors import Result, classify_exception, classify_response
from pms_sync.network.rate_limiter import RateLimiter

logger = structlog.get_logger(__name__)


class ApiClient:
    """
    HTTP client bound to one adapter instance (one connection).

    Args:
        adapter: Adapter code, used for logging and metric labels
        base_url: API root; endpoints are appended to it
        auth: Auth strategy decorating each request
        rate_limiter: Limiter owned exclusively by this client
        session: Optional ``requests.Session`` (injected in tests)
        timeout: Default per-request timeout in seconds
        refresh_statuses: Statuses that trigger one auth refresh + replay
        default_headers: Headers sent with every request
    """

    def __init__(
        self,
        adapter: str,
        base_url: str,
        auth: AuthStrategy,
        rate_limiter: RateLimiter,
        session: requests.Session | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        refresh_statuses: Iterable[int] = (401,),
        default_headers: dict[str, str] | None = None,
    ):
        self.adapter = adapter
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.rate_limiter = rate_limiter
        self.session = session or requests.Session()
        self.timeout = timeout
        self.refresh_statuses = frozenset(refresh_statuses)
        self.default_headers = default_headers or {}

    def url_for(self, endpoint: str, base_url: str | None = None) -> str:
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            return endpoint
        root = (base_url or self.base_url).rstrip("/")
        return f"{root}/{endpoint.lstrip('/')}"

    def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        base_url: str | None = None,
    ) -> Result[Any]:
        """
        Issue one API call and return its decoded JSON body as a result.

        Args:
            endpoint: Path relative to the base URL (or an absolute URL)
            method: HTTP method
            body: JSON-serialisable request body
            params: Query string parameters
            headers: Extra headers for this call only
            timeout: Override of the default timeout (longer for bulk calls)
            base_url: Override of the base URL for this call only

        Returns:
            Result: Decoded JSON (or text) on success, classified failure otherwise
        """
        ensured = self.auth.ensure()
        if not ensured.success:
            return ensured

        url = self.url_for(endpoint, base_url)
        refreshed = False

        while True:
            self.rate_limiter.throttle()

            request_headers = {"Content-Type": "application/json", "Accept": "application/json"}
            request_headers.update(self.default_headers)
            request_headers.update(headers or {})
            payload = self.auth.apply(request_headers, body)

            start_time = time.time()
            try:
                res = self.session.request(
                    method,
                    url,
                    params=params,
                    json=payload,
                    headers=request_headers,
                    timeout=timeout or self.timeout,
                )
            except requests.RequestException as err:
                failure = classify_exception(self.adapter, endpoint, err)
                api_requests.labels(adapter=self.adapter, status=str(failure.code.value)).inc()
                logger.warning(
                    "api_request_failed",
                    adapter=self.adapter,
                    endpoint=endpoint,
                    method=method,
                    code=failure.code.value,
                    error=str(err),
                )
                return failure

            api_requests.labels(adapter=self.adapter, status=str(res.status_code)).inc()
            api_latency.labels(adapter=self.adapter).observe(time.time() - start_time)

            if res.status_code in self.refresh_statuses and not refreshed:
                refreshed = True
                logger.warning(
                    "api_unauthorized", adapter=self.adapter, endpoint=endpoint, status=res.status_code
                )
                if self.auth.handle_unauthorized():
                    continue

            if not res.ok:
                failure = classify_response(self.adapter, endpoint, res)
                logger.warning(
                    "api_request_failed",
                    adapter=self.adapter,
                    endpoint=endpoint,
                    method=method,
                    status=res.status_code,
                    code=failure.code.value if failure.code else None,
                    message=failure.message,
                )
                return failure

            logger.debug("api_request_ok", adapter=self.adapter, endpoint=endpoint, method=method)
            if res.status_code == 204 or not res.content:
                return Result.ok(None)
            try:
                return Result.ok(res.json())
            except ValueError:
                return Result.ok(res.text)
