"""HTTP utilities for talking to external sources."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

import httpx

from .config import TrackerConfig

LOGGER = logging.getLogger(__name__)

QueryParams = Mapping[str, Any] | list[tuple[str, Any]] | None


class HttpFetchError(RuntimeError):
    """Raised when an HTTP request fails irrecoverably."""


class FetchExhaustedError(HttpFetchError):
    """Raised once every retry of a request has failed."""

    def __init__(self, url: str, attempts: int, cause: BaseException | None) -> None:
        super().__init__(f"Failed to fetch {url} after {attempts} attempts: {cause}")
        self.url = url
        self.attempts = attempts
        self.cause = cause


class HttpFetcher:
    """Shared HTTP client with timeout, retry and capped exponential backoff.

    The fetcher does not throttle; adapters wait on their own rate limiter
    before calling it, so every retry is a full request.
    """

    def __init__(
        self,
        config: TrackerConfig,
        *,
        client: httpx.Client | None = None,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._client = client or self._build_client()
        self._owns_client = client is None
        self._sleep = sleep or time.sleep

    def _build_client(self) -> httpx.Client:
        kwargs: dict[str, object] = {
            "timeout": self._config.timeout.request_timeout,
            "headers": {"User-Agent": self._config.user_agent},
            "follow_redirects": True,
        }
        proxy_url: str | None = None
        if self._config.proxy:
            proxy_url = self._config.proxy.httpx_proxy()
        if proxy_url:
            kwargs["proxy"] = proxy_url
        if self._transport:
            kwargs["transport"] = self._transport
        return httpx.Client(**kwargs)

    def backoff_delay(self, attempt: int) -> float:
        retry = self._config.retry
        return min(retry.base_delay * (2 ** attempt), retry.max_delay)

    def fetch(
        self,
        url: str,
        *,
        params: QueryParams = None,
        headers: Mapping[str, str] | None = None,
        timeout: float | None = None,
        retries: int | None = None,
    ) -> httpx.Response:
        max_retries = self._config.retry.max_retries if retries is None else max(0, retries)
        request_headers = {"User-Agent": self._config.user_agent}
        if headers:
            request_headers.update(headers)
        request_timeout = self._config.timeout.request_timeout if timeout is None else timeout

        last_error: BaseException | None = None
        for attempt in range(max_retries + 1):
            try:
                response = self._client.get(
                    url,
                    params=params,
                    headers=request_headers,
                    timeout=request_timeout,
                )
                response.raise_for_status()
                return response
            except httpx.HTTPError as exc:
                last_error = exc
                if attempt == max_retries:
                    break
                delay = self.backoff_delay(attempt)
                LOGGER.debug(
                    "Request to %s failed (attempt %d/%d): %s; retrying in %.1fs",
                    url,
                    attempt + 1,
                    max_retries + 1,
                    exc,
                    delay,
                )
                self._sleep(delay)

        raise FetchExhaustedError(url, max_retries + 1, last_error)

    def fetch_json(self, url: str, **kwargs: Any) -> Any:
        response = self.fetch(url, **kwargs)
        try:
            return response.json()
        except ValueError as exc:
            raise HttpFetchError(f"Invalid JSON payload from {url}") from exc

    def fetch_html(self, url: str, **kwargs: Any) -> str:
        return self.fetch(url, **kwargs).text

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HttpFetcher":
        return self

    def __exit__(self, *_exc_info) -> None:
        self.close()
