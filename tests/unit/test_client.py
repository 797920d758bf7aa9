"""Tests for trade_insight.ingestion.client (TransportClient)."""

from __future__ import annotations

import asyncio

import httpx
import pytest
import respx

from trade_insight.cache.store import CacheStore
from trade_insight.core.config import HttpConfig, WorldBankConfig
from trade_insight.core.exceptions import (
    InvalidResponseError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
    UnauthorizedError,
)
from trade_insight.core.models import DataProvider, ResponseSource
from trade_insight.ingestion.client import (
    CallEvent,
    RequestOptions,
    TransportClient,
    http_settings,
)

BASE = "https://api.test/v2"
DATA_URL = f"{BASE}/data"


# --- Fixtures ---


@pytest.fixture
def cache() -> CacheStore:
    return CacheStore(max_size_bytes=1_000_000, default_ttl=3600)


@pytest.fixture
async def client(cache: CacheStore) -> TransportClient:
    async with TransportClient(
        DataProvider.WORLD_BANK,
        BASE,
        cache,
        max_retries=2,
        backoff_base=0.0,
        rate_limit=1000.0,
    ) as c:
        yield c


# --- Success and caching ---


class TestRequest:
    @respx.mock
    async def test_fetches_json(self, client: TransportClient):
        respx.get(url__startswith=DATA_URL).mock(
            return_value=httpx.Response(200, json={"ok": True})
        )

        response = await client.request("data", {"q": "x"})
        assert response.data == {"ok": True}
        assert response.source == ResponseSource.LIVE
        assert response.attempts == 1
        assert response.url == DATA_URL

    @respx.mock
    async def test_sends_params_without_none(self, client: TransportClient):
        route = respx.get(url__startswith=DATA_URL).mock(
            return_value=httpx.Response(200, json=[])
        )

        await client.request("data", {"a": 1, "b": None})
        request = route.calls.last.request
        assert request.url.params["a"] == "1"
        assert "b" not in request.url.params

    @respx.mock
    async def test_second_call_served_from_cache(self, client: TransportClient):
        route = respx.get(url__startswith=DATA_URL).mock(
            return_value=httpx.Response(200, json={"n": 1})
        )

        first = await client.request("data", {"q": "x"})
        second = await client.request("data", {"q": "x"})
        assert route.call_count == 1
        assert second.source == ResponseSource.CACHE
        assert second.data == {"n": 1}
        assert second.fetched_at == first.fetched_at
        assert client.usage.cache_hits == 1

    @respx.mock
    async def test_param_order_does_not_matter(self, client: TransportClient):
        route = respx.get(url__startswith=DATA_URL).mock(
            return_value=httpx.Response(200, json={})
        )

        await client.request("data", {"a": 1, "b": 2})
        await client.request("data", {"b": 2, "a": 1})
        assert route.call_count == 1

    @respx.mock
    async def test_use_cache_false_bypasses_cache(self, client: TransportClient):
        route = respx.get(url__startswith=DATA_URL).mock(
            return_value=httpx.Response(200, json={})
        )

        await client.request("data")
        await client.request("data", options=RequestOptions(use_cache=False))
        assert route.call_count == 2

    @respx.mock
    async def test_without_cache(self):
        route = respx.get(url__startswith=DATA_URL).mock(
            return_value=httpx.Response(200, json={})
        )
        async with TransportClient(DataProvider.WORLD_BANK, BASE, rate_limit=1000.0) as c:
            await c.request("data")
            await c.request("data")
        assert route.call_count == 2

    async def test_cache_key_is_stable(self, client: TransportClient):
        key = client.cache_key(DATA_URL, {"b": 2, "a": 1, "c": None})
        assert key == f"world_bank:GET:{DATA_URL}?a=1&b=2"

    @respx.mock
    async def test_forget_drops_entry(self, client: TransportClient, cache: CacheStore):
        route = respx.get(url__startswith=DATA_URL).mock(
            return_value=httpx.Response(200, json={})
        )

        await client.request("data", {"q": "x"})
        client.forget("data", {"q": "x"})
        await client.request("data", {"q": "x"})
        assert route.call_count == 2


class TestRateLimit:
    @respx.mock
    async def test_sub_one_rate_still_sends(self):
        route = respx.get(url__startswith=DATA_URL).mock(
            return_value=httpx.Response(200, json={"ok": True})
        )
        async with TransportClient(DataProvider.WORLD_BANK, BASE, rate_limit=0.5) as c:
            response = await c.request("data")
        assert response.data == {"ok": True}
        assert route.call_count == 1

    async def test_sub_one_rate_spreads_requests(self):
        async with TransportClient(DataProvider.WORLD_BANK, BASE, rate_limit=0.5) as c:
            assert c._limiter.max_rate == 1
            assert c._limiter.time_period == pytest.approx(2.0)

    async def test_rate_per_second(self):
        async with TransportClient(DataProvider.WORLD_BANK, BASE, rate_limit=4.0) as c:
            assert c._limiter.max_rate == 4.0
            assert c._limiter.time_period == 1.0


# --- Retry policy ---


class TestRetries:
    @respx.mock
    async def test_retries_server_errors_then_succeeds(self, client: TransportClient):
        route = respx.get(url__startswith=DATA_URL).mock(
            side_effect=[
                httpx.Response(503),
                httpx.Response(502),
                httpx.Response(200, json={"ok": 1}),
            ]
        )

        response = await client.request("data")
        assert response.data == {"ok": 1}
        assert response.attempts == 3
        assert route.call_count == 3
        assert client.usage.retries == 2

    @respx.mock
    async def test_exhausted_retries_raise(self, client: TransportClient):
        route = respx.get(url__startswith=DATA_URL).mock(return_value=httpx.Response(503))

        with pytest.raises(ServerError) as exc_info:
            await client.request("data")
        assert route.call_count == 3
        assert exc_info.value.context["attempts"] == 3
        assert exc_info.value.context["status_code"] == 503
        assert client.usage.failures == 1

    @respx.mock
    async def test_network_error_retried(self, client: TransportClient):
        route = respx.get(url__startswith=DATA_URL).mock(
            side_effect=[
                httpx.ConnectError("refused"),
                httpx.Response(200, json={}),
            ]
        )

        await client.request("data")
        assert route.call_count == 2

    @respx.mock
    async def test_timeout_becomes_network_error(self, client: TransportClient):
        respx.get(url__startswith=DATA_URL).mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(NetworkError):
            await client.request("data", options=RequestOptions(max_retries=0))

    @respx.mock
    async def test_rate_limit_honours_retry_after(self, client: TransportClient, monkeypatch):
        delays: list[float] = []
        real_sleep = asyncio.sleep

        async def fake_sleep(seconds: float) -> None:
            delays.append(seconds)
            await real_sleep(0)

        monkeypatch.setattr("trade_insight.ingestion.client.asyncio.sleep", fake_sleep)
        respx.get(url__startswith=DATA_URL).mock(
            side_effect=[
                httpx.Response(429, headers={"Retry-After": "7"}),
                httpx.Response(200, json={}),
            ]
        )

        await client.request("data")
        assert delays == [7.0]

    @respx.mock
    async def test_retry_after_capped(self, cache: CacheStore, monkeypatch):
        delays: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            delays.append(seconds)

        monkeypatch.setattr("trade_insight.ingestion.client.asyncio.sleep", fake_sleep)
        respx.get(url__startswith=DATA_URL).mock(
            return_value=httpx.Response(429, headers={"Retry-After": "3600"})
        )

        async with TransportClient(
            DataProvider.WORLD_BANK, BASE, cache,
            max_retries=1, max_retry_after=5.0, rate_limit=1000.0,
        ) as c:
            with pytest.raises(RateLimitError) as exc_info:
                await c.request("data")
        assert delays == [5.0]
        assert exc_info.value.retry_after == 5.0

    @respx.mock
    async def test_exponential_backoff(self, cache: CacheStore, monkeypatch):
        delays: list[float] = []

        async def fake_sleep(seconds: float) -> None:
            delays.append(seconds)

        monkeypatch.setattr("trade_insight.ingestion.client.asyncio.sleep", fake_sleep)
        respx.get(url__startswith=DATA_URL).mock(return_value=httpx.Response(500))

        async with TransportClient(
            DataProvider.WORLD_BANK, BASE, cache,
            max_retries=3, backoff_base=0.5, rate_limit=1000.0,
        ) as c:
            with pytest.raises(ServerError):
                await c.request("data")
        assert delays == [0.5, 1.0, 2.0]

    @pytest.mark.parametrize(
        "status, exc_type",
        [(401, UnauthorizedError), (403, UnauthorizedError), (404, NotFoundError)],
    )
    @respx.mock
    async def test_client_errors_not_retried(self, client: TransportClient, status, exc_type):
        route = respx.get(url__startswith=DATA_URL).mock(return_value=httpx.Response(status))

        with pytest.raises(exc_type):
            await client.request("data")
        assert route.call_count == 1

    @respx.mock
    async def test_other_4xx_not_retried(self, client: TransportClient):
        route = respx.get(url__startswith=DATA_URL).mock(return_value=httpx.Response(400))

        with pytest.raises(ServerError) as exc_info:
            await client.request("data")
        assert not exc_info.value.retryable
        assert route.call_count == 1

    @respx.mock
    async def test_invalid_json_not_retried_or_cached(
        self, client: TransportClient, cache: CacheStore
    ):
        route = respx.get(url__startswith=DATA_URL).mock(
            return_value=httpx.Response(200, text="<html>maintenance</html>")
        )

        with pytest.raises(InvalidResponseError):
            await client.request("data")
        assert route.call_count == 1
        assert len(cache) == 0


# --- Single flight & hooks ---


class TestSingleFlight:
    @respx.mock
    async def test_concurrent_misses_share_one_fetch(self, client: TransportClient):
        route = respx.get(url__startswith=DATA_URL).mock(
            return_value=httpx.Response(200, json={"shared": True})
        )

        results = await asyncio.gather(*(client.request("data", {"q": 1}) for _ in range(5)))
        assert route.call_count == 1
        assert all(r.data == {"shared": True} for r in results)

    @respx.mock
    async def test_shared_failure_reaches_every_caller(self, client: TransportClient):
        route = respx.get(url__startswith=DATA_URL).mock(return_value=httpx.Response(404))

        results = await asyncio.gather(
            client.request("data"), client.request("data"), return_exceptions=True
        )
        assert route.call_count == 1
        assert all(isinstance(r, NotFoundError) for r in results)

    @respx.mock
    async def test_different_options_do_not_share_fetch(self, client: TransportClient):
        route = respx.get(url__startswith=DATA_URL).mock(
            return_value=httpx.Response(200, json={"ok": True})
        )

        await asyncio.gather(
            client.request("data", options=RequestOptions(cache_ttl=10)),
            client.request("data", options=RequestOptions(cache_ttl=1000)),
        )
        assert route.call_count == 2


class TestUsageAndHooks:
    @respx.mock
    async def test_on_call_receives_each_attempt(self, cache: CacheStore):
        events: list[CallEvent] = []
        respx.get(url__startswith=DATA_URL).mock(
            side_effect=[httpx.Response(500), httpx.Response(200, json={})]
        )

        async with TransportClient(
            DataProvider.UN_COMTRADE, BASE, cache,
            backoff_base=0.0, rate_limit=1000.0, on_call=events.append,
        ) as c:
            await c.request("data")

        assert [e.attempt for e in events] == [1, 2]
        assert [e.status_code for e in events] == [500, 200]
        assert events[0].error is not None
        assert events[1].error is None
        assert all(e.provider == DataProvider.UN_COMTRADE for e in events)

    @respx.mock
    async def test_failing_hook_does_not_break_request(self, cache: CacheStore):
        def broken(event: CallEvent) -> None:
            raise RuntimeError("hook")

        respx.get(url__startswith=DATA_URL).mock(return_value=httpx.Response(200, json={}))
        async with TransportClient(
            DataProvider.WORLD_BANK, BASE, cache, rate_limit=1000.0, on_call=broken
        ) as c:
            response = await c.request("data")
        assert response.data == {}

    @respx.mock
    async def test_usage_snapshot(self, client: TransportClient):
        respx.get(url__startswith=DATA_URL).mock(return_value=httpx.Response(200, json={}))

        await client.request("data")
        await client.request("data")
        snapshot = client.usage.snapshot()
        assert snapshot["requests"] == 2
        assert snapshot["successes"] == 2
        assert snapshot["http_calls"] == 1
        assert snapshot["cache_hits"] == 1
        assert snapshot["average_latency"] >= 0


class TestHttpSettings:
    def test_provider_values_win(self):
        settings = http_settings(WorldBankConfig(timeout=3.0, max_retries=1), HttpConfig())
        assert settings["timeout"] == 3.0
        assert settings["max_retries"] == 1

    def test_unset_values_inherit(self):
        settings = http_settings(
            WorldBankConfig(timeout=None), HttpConfig(timeout=9.0, max_retries=4)
        )
        assert settings["timeout"] == 9.0
        assert settings["max_retries"] == 4
        assert settings["rate_limit"] == 2.0
