"""
Async REST client with throttling, retry and typed errors.
Shared by the Partner Center and Exchange admin clients.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import httpx

from ..config import (
    MAX_RETRIES,
    INITIAL_BACKOFF_SECONDS,
    MAX_BACKOFF_SECONDS,
    BACKOFF_MULTIPLIER,
    MAX_CONCURRENT_REQUESTS,
)

logger = logging.getLogger("safelist_sync.api")

RETRY_STATUSES = (429, 503, 504)


class ApiError(Exception):
    """
    Raised when an API returns a non-recoverable error.
    status_code is 0 when no HTTP response was received (timeout, connection failure).
    """
    def __init__(self, status_code: int, message: str, url: str, body: Any = None):
        self.status_code = status_code
        self.message = message
        self.url = url
        self.body = body
        super().__init__(f"API Error {status_code} for {url}: {message}")

    @property
    def unauthorized(self) -> bool:
        return self.status_code in (401, 403)

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


class ApiClient:
    """
    Async JSON API client.
    Features:
      - Bearer-token auth with per-client default headers
      - Exponential backoff on 429/503/504, honouring Retry-After
      - Retry GETs on any transport error; POSTs only when the connection never opened
      - Exhausted transport failures surface as ApiError(status_code=0)
      - Concurrent request semaphore
    Use as an async context manager; the HTTP session is closed on exit.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_retries: int = MAX_RETRIES,
        initial_backoff: float = INITIAL_BACKOFF_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.extra_headers = headers or {}
        self.max_retries = max_retries
        self.initial_backoff = initial_backoff
        self._transport = transport
        self._semaphore = asyncio.Semaphore(MAX_CONCURRENT_REQUESTS)
        self._request_count = 0
        self._throttle_count = 0
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=30.0),
            limits=httpx.Limits(
                max_connections=MAX_CONCURRENT_REQUESTS * 2,
                max_keepalive_connections=MAX_CONCURRENT_REQUESTS,
            ),
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
                **self.extra_headers,
            },
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None
            stats = self.get_stats()
            logger.debug(
                f"{type(self).__name__} closed after {stats['total_requests']} request(s), "
                f"{stats['throttle_events']} throttled"
            )

    def _build_url(self, endpoint: str) -> str:
        """Build full URL from relative endpoint."""
        if endpoint.startswith("http"):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    async def get(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        """Execute a single GET request with retry/throttle handling."""
        url = self._build_url(endpoint)
        async with self._semaphore:
            return await self._execute_with_retry("GET", url, params=params, headers=headers)

    async def post(
        self,
        endpoint: str,
        json_body: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        """Execute a single POST request with retry/throttle handling."""
        url = self._build_url(endpoint)
        async with self._semaphore:
            return await self._execute_with_retry("POST", url, json_body=json_body, headers=headers)

    async def _execute_with_retry(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        """Execute request with exponential backoff on throttling."""
        backoff = self.initial_backoff

        for attempt in range(self.max_retries + 1):
            try:
                response = await self._execute_raw(
                    method, url, params=params, json_body=json_body, headers=headers
                )
                self._request_count += 1

                if response.status_code in (200, 201):
                    if not response.content or not response.content.strip():
                        return {}
                    try:
                        return response.json()
                    except ValueError:
                        raise ApiError(
                            response.status_code, "Response body is not JSON", url,
                            response.text[:200],
                        )

                if response.status_code == 204:
                    return {}

                if response.status_code in RETRY_STATUSES and attempt < self.max_retries:
                    self._throttle_count += 1
                    wait_time = max(_retry_after(response, backoff), backoff)
                    logger.warning(
                        f"Throttled ({response.status_code}) on {url}. "
                        f"Retry {attempt + 1}/{self.max_retries} in {wait_time:.1f}s"
                    )
                    await asyncio.sleep(wait_time)
                    backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)
                    continue

                body = _json_or_text(response)
                raise ApiError(response.status_code, _error_message(body, response), url, body)

            except httpx.TransportError as e:
                logger.warning(
                    f"{type(e).__name__} on {url}, attempt {attempt + 1}/{self.max_retries + 1}"
                )
                # A POST that failed after sending may already have been applied
                resent_safe = method == "GET" or isinstance(e, (httpx.ConnectError, httpx.ConnectTimeout))
                if attempt == self.max_retries or not resent_safe:
                    raise ApiError(0, f"{type(e).__name__}: {e}", url) from e
                await asyncio.sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)

        # Only reachable when the last attempt was throttled
        raise ApiError(429, "Maximum retries exceeded", url)

    async def _execute_raw(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        json_body: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> httpx.Response:
        """Execute raw HTTP request."""
        if not self._client:
            raise RuntimeError(f"{type(self).__name__} not initialized. Use 'async with' context.")

        if method == "GET":
            return await self._client.get(url, params=params, headers=headers)
        elif method == "POST":
            return await self._client.post(url, json=json_body, params=params, headers=headers)
        else:
            raise ValueError(f"Unsupported method: {method}")

    def get_stats(self) -> dict:
        """Return client statistics."""
        return {
            "total_requests": self._request_count,
            "throttle_events": self._throttle_count,
        }


def _retry_after(response: httpx.Response, default: float) -> float:
    try:
        return float(response.headers.get("Retry-After", default))
    except ValueError:
        return default


def _json_or_text(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text[:500]


def _error_message(body: Any, response: httpx.Response) -> str:
    """Pull a human-readable message out of the common error envelopes."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message") or error.get("code") or "Unknown error"
        if isinstance(error, str):
            return body.get("error_description", error)
        for key in ("description", "message"):
            if body.get(key):
                return str(body[key])
    if isinstance(body, str) and body:
        return body[:200]
    return response.reason_phrase or f"HTTP {response.status_code}"
