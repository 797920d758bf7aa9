"""Rate-limited, retrying, cache-aware async HTTP client for data providers."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlencode

import httpx
from aiolimiter import AsyncLimiter

from trade_insight.cache.store import CacheStore
from trade_insight.core.exceptions import (
    InvalidResponseError,
    NetworkError,
    NotFoundError,
    ProviderError,
    RateLimitError,
    ServerError,
    UnauthorizedError,
)
from trade_insight.core.config import ComtradeConfig, HttpConfig, WorldBankConfig
from trade_insight.core.models import DataProvider, ResponseSource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestOptions:
    """Per-call overrides. `None` means "use the client default"."""

    timeout: float | None = None
    max_retries: int | None = None
    cache_ttl: float | None = None
    use_cache: bool = True


@dataclass(frozen=True)
class TransportResponse:
    """A decoded provider payload and where it came from."""

    data: Any
    source: ResponseSource
    url: str
    fetched_at: datetime
    attempts: int = 0


@dataclass(frozen=True)
class CallEvent:
    """One HTTP attempt, as reported to the `on_call` hook."""

    provider: DataProvider
    url: str
    attempt: int
    latency: float
    status_code: int | None = None
    error: str | None = None


@dataclass
class UsageStats:
    """Running counters for one client."""

    requests: int = 0
    successes: int = 0
    failures: int = 0
    cache_hits: int = 0
    retries: int = 0
    http_calls: int = 0
    total_latency: float = 0.0

    @property
    def average_latency(self) -> float:
        if not self.http_calls:
            return 0.0
        return self.total_latency / self.http_calls

    def snapshot(self) -> dict[str, Any]:
        data = asdict(self)
        data["average_latency"] = round(self.average_latency, 4)
        return data


@dataclass
class _Settings:
    timeout: float
    max_retries: int
    backoff_base: float
    max_retry_after: float
    headers: dict[str, str] = field(default_factory=dict)


class TransportClient:
    """Async GET client shared by every provider source.

    Read-through cache: a hit returns immediately with source "cache" and the
    original fetch time. A miss goes to the network through a token-bucket
    limiter, with retries on network errors, 429 and 5xx responses. Concurrent
    misses for the same cache key share one fetch, and that fetch completes
    even if every waiting caller is cancelled.

    Use via `async with TransportClient(...) as client:`.
    """

    def __init__(
        self,
        provider: DataProvider,
        base_url: str,
        cache: CacheStore | None = None,
        *,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        max_retry_after: float = 60.0,
        rate_limit: float = 2.0,
        headers: dict[str, str] | None = None,
        on_call: Callable[[CallEvent], None] | None = None,
    ) -> None:
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.usage = UsageStats()
        self._cache = cache
        self._settings = _Settings(
            timeout=timeout,
            max_retries=max_retries,
            backoff_base=backoff_base,
            max_retry_after=max_retry_after,
            headers=dict(headers or {}),
        )
        self._on_call = on_call
        self._limiter = _limiter_for(rate_limit)
        self._client = httpx.AsyncClient(
            headers={"Accept": "application/json", **self._settings.headers},
            timeout=httpx.Timeout(timeout),
            follow_redirects=True,
        )
        self._inflight: dict[tuple[str, RequestOptions], asyncio.Task[TransportResponse]] = {}

    async def __aenter__(self) -> TransportClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client. Called automatically by __aexit__."""
        await self._client.aclose()

    # --- Public API ---

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def cache_key(self, url: str, params: dict[str, Any] | None = None) -> str:
        """Stable cache key: provider, method, URL and sorted query."""
        query = urlencode(sorted(_clean_params(params).items()))
        return f"{self.provider}:GET:{url}?{query}"

    def forget(self, path: str, params: dict[str, Any] | None = None) -> None:
        """Drop the cached payload for one request, e.g. after it failed to parse."""
        if self._cache is not None:
            key = self.cache_key(self.url_for(path), params)
            self._cache.invalidate(f"^{re.escape(key)}$")

    async def request(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        options: RequestOptions | None = None,
    ) -> TransportResponse:
        """GET `path` relative to the base URL and return the decoded JSON.

        Raises:
            NetworkError, RateLimitError, ServerError: retries exhausted.
            UnauthorizedError, NotFoundError, InvalidResponseError: on the
                first occurrence (never retried).
        """
        opts = options or RequestOptions()
        url = self.url_for(path)
        query = _clean_params(params)
        key = self.cache_key(url, query)
        self.usage.requests += 1

        if opts.use_cache and self._cache is not None:
            cached = self._read_cache(key, url)
            if cached is not None:
                self.usage.cache_hits += 1
                self.usage.successes += 1
                return cached

        try:
            if not opts.use_cache:
                response = await self._fetch(url, query, opts, key)
            else:
                response = await asyncio.shield(self._shared_fetch(url, query, opts, key))
        except ProviderError:
            self.usage.failures += 1
            raise
        self.usage.successes += 1
        return response

    # --- Single-flight ---

    def _shared_fetch(
        self,
        url: str,
        params: dict[str, str],
        opts: RequestOptions,
        key: str,
    ) -> asyncio.Task[TransportResponse]:
        # Callers only join a fetch made with identical options.
        flight = (key, opts)
        task = self._inflight.get(flight)
        if task is None:
            task = asyncio.ensure_future(self._fetch(url, params, opts, key))
            self._inflight[flight] = task
            task.add_done_callback(lambda t: self._fetch_done(flight, t))
        else:
            logger.debug("Joining in-flight fetch for %s", key)
        return task

    def _fetch_done(
        self, flight: tuple[str, RequestOptions], task: asyncio.Task[TransportResponse]
    ) -> None:
        if self._inflight.get(flight) is task:
            del self._inflight[flight]
        # Retrieve the exception so an abandoned fetch does not warn at GC.
        if not task.cancelled():
            task.exception()

    # --- Fetch & retry ---

    async def _fetch(
        self,
        url: str,
        params: dict[str, str],
        opts: RequestOptions,
        key: str,
    ) -> TransportResponse:
        timeout = opts.timeout if opts.timeout is not None else self._settings.timeout
        max_retries = (
            opts.max_retries if opts.max_retries is not None else self._settings.max_retries
        )

        for attempt in range(max_retries + 1):
            try:
                data = await self._attempt(url, params, timeout, attempt)
            except ProviderError as e:
                e.context.setdefault("url", url)
                e.context["attempts"] = attempt + 1
                if not e.retryable or attempt >= max_retries:
                    raise
                delay = self._retry_delay(e, attempt)
                self.usage.retries += 1
                logger.warning(
                    "%s on %s, retrying in %.1fs (attempt %d/%d)",
                    e.code, url, delay, attempt + 1, max_retries,
                )
                await asyncio.sleep(delay)
                continue

            fetched_at = datetime.now(timezone.utc)
            if opts.use_cache and self._cache is not None:
                self._cache.set(
                    key,
                    {"data": data, "fetched_at": fetched_at.isoformat()},
                    ttl=opts.cache_ttl,
                )
            return TransportResponse(
                data=data,
                source=ResponseSource.LIVE,
                url=url,
                fetched_at=fetched_at,
                attempts=attempt + 1,
            )

        # Should not reach here, but just in case
        raise ServerError(f"Request failed after all retries: {url}", context={"url": url})

    def _retry_delay(self, error: ProviderError, attempt: int) -> float:
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            return min(error.retry_after, self._settings.max_retry_after)
        return self._settings.backoff_base * 2**attempt

    async def _attempt(
        self,
        url: str,
        params: dict[str, str],
        timeout: float,
        attempt: int,
    ) -> Any:
        """One rate-limited GET, classified into data or a ProviderError."""
        await self._limiter.acquire()
        started = time.monotonic()
        status_code: int | None = None
        error: ProviderError | None = None
        try:
            try:
                response = await self._client.get(url, params=params, timeout=timeout)
            except httpx.TimeoutException as e:
                raise NetworkError(
                    f"Timed out after {timeout}s: {url}",
                    context={"url": url, "error": str(e)},
                ) from e
            except httpx.TransportError as e:
                raise NetworkError(
                    f"Connection failed: {url}",
                    context={"url": url, "error": str(e)},
                ) from e

            status_code = response.status_code
            _raise_for_status(response, url, self._settings.max_retry_after)
            try:
                return response.json()
            except ValueError as e:
                raise InvalidResponseError(
                    f"Response from {url} is not valid JSON",
                    context={"url": url, "status_code": status_code},
                ) from e
        except ProviderError as e:
            error = e
            raise
        finally:
            latency = time.monotonic() - started
            self.usage.http_calls += 1
            self.usage.total_latency += latency
            self._emit(url, attempt, latency, status_code, error)

    def _emit(
        self,
        url: str,
        attempt: int,
        latency: float,
        status_code: int | None,
        error: ProviderError | None,
    ) -> None:
        if self._on_call is None:
            return
        event = CallEvent(
            provider=self.provider,
            url=url,
            attempt=attempt + 1,
            latency=latency,
            status_code=status_code,
            error=str(error) if error else None,
        )
        try:
            self._on_call(event)
        except Exception:
            logger.exception("on_call hook failed for %s", url)

    # --- Cache ---

    def _read_cache(self, key: str, url: str) -> TransportResponse | None:
        assert self._cache is not None
        cached = self._cache.get(key)
        if cached is None:
            return None
        try:
            fetched_at = datetime.fromisoformat(cached["fetched_at"])
            data = cached["data"]
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring malformed cache entry %s", key)
            self._cache.invalidate(f"^{re.escape(key)}$")
            return None
        logger.debug("Cache hit for %s", key)
        return TransportResponse(
            data=data,
            source=ResponseSource.CACHE,
            url=url,
            fetched_at=fetched_at,
            attempts=0,
        )


def _raise_for_status(response: httpx.Response, url: str, max_retry_after: float) -> None:
    status = response.status_code
    if 200 <= status < 300:
        return
    context: dict[str, Any] = {"url": url, "status_code": status}

    if status == 429:
        retry_after = _parse_retry_after(response.headers.get("Retry-After"))
        if retry_after is not None:
            retry_after = min(retry_after, max_retry_after)
        context["retry_after"] = retry_after
        raise RateLimitError(f"Rate limited (429) by {url}", context=context)
    if status >= 500:
        raise ServerError(f"Server error {status} from {url}", context=context)
    if status in (401, 403):
        raise UnauthorizedError(f"HTTP {status}: not authorized for {url}", context=context)
    if status == 404:
        raise NotFoundError(f"HTTP 404: {url}", context=context)

    # Non-retryable HTTP error
    raise ServerError(f"HTTP {status} from {url}", context=context, retryable=False)


def _limiter_for(rate_limit: float) -> AsyncLimiter:
    """Token bucket for `rate_limit` requests per second.

    A bucket must hold at least one request, so rates below 1/s become one
    request per `1 / rate_limit` seconds.
    """
    if rate_limit < 1:
        return AsyncLimiter(max_rate=1, time_period=1 / rate_limit)
    return AsyncLimiter(max_rate=rate_limit, time_period=1.0)


def _parse_retry_after(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _clean_params(params: dict[str, Any] | None) -> dict[str, str]:
    if not params:
        return {}
    return {k: str(v) for k, v in params.items() if v is not None}


def http_settings(
    provider_config: WorldBankConfig | ComtradeConfig,
    http: HttpConfig,
) -> dict[str, Any]:
    """TransportClient keyword arguments for one provider.

    Provider-level timeout and retry count override the shared http section.
    """
    timeout = provider_config.timeout
    max_retries = provider_config.max_retries
    return {
        "timeout": http.timeout if timeout is None else timeout,
        "max_retries": http.max_retries if max_retries is None else max_retries,
        "backoff_base": http.backoff_base,
        "max_retry_after": http.max_retry_after,
        "rate_limit": provider_config.rate_limit,
    }
