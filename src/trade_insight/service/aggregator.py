"""Aggregation service: the single entry point for trade queries.

Every query runs the same pipeline:

    provider source → typed records → transformer → validator
        → post-filter → sort → ApiResponse envelope

Provider failures never escape. Depending on the error and on the `data`
config section the caller receives live data, synthetic fallback data, or a
failed envelope carrying an error code.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

from trade_insight.cache.store import CacheStore
from trade_insight.core.config import TradeInsightConfig
from trade_insight.core.exceptions import (
    ConfigError,
    ErrorCode,
    InvalidResponseError,
    TradeInsightError,
)
from trade_insight.core.models import (
    ApiResponse,
    DashboardStats,
    DataProvider,
    EconomicIndicator,
    ExportOpportunity,
    MarketData,
    MarketQuery,
    OpportunityQuery,
    ResponseSource,
    TradeStats,
)
from trade_insight.ingestion.client import TransportResponse
from trade_insight.ingestion.comtrade import ComtradeSource
from trade_insight.ingestion.worldbank import WorldBankSource
from trade_insight.service import fallback
from trade_insight.transformers.comtrade import ComtradeTransformer
from trade_insight.transformers.metrics import normalize_category
from trade_insight.transformers.records import IMPORTS, TRADE_INDICATORS
from trade_insight.transformers.worldbank import WorldBankTransformer
from trade_insight.validation.validator import DataValidator

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

MAJOR_ECONOMIES: tuple[str, ...] = (
    "USA", "CHN", "JPN", "DEU", "IND", "GBR", "FRA", "ITA", "BRA", "CAN",
    "RUS", "KOR", "AUS", "ESP", "MEX", "IDN", "NLD", "SAU", "TUR", "TWN",
)
DEFAULT_COUNTRIES: tuple[str, ...] = MAJOR_ECONOMIES[:10]
DASHBOARD_COUNTRIES: tuple[str, ...] = ("USA", "CHN", "DEU", "JPN", "GBR", "IND")

Source = WorldBankSource | ComtradeSource

# (data, envelope source, warnings)
_Live = tuple[Any, ResponseSource, list[str]]


class TradeDataService:
    """Answers trade queries from live providers, the cache, or fallback data.

    Args:
        config: Root configuration; defaults give synthetic data only.
        cache: Shared response cache. Built from `config.cache` when omitted.
        world_bank, comtrade: Pre-built provider sources, mainly for tests.
            Omitted sources are created on first use.
        validator: Entity validator. Built from `config.data` when omitted.
        clock: Returns the current UTC time; injectable for tests.

    Usage:
        async with TradeDataService(load_config()) as service:
            response = await service.get_trade_stats("USA")
    """

    def __init__(
        self,
        config: TradeInsightConfig | None = None,
        cache: CacheStore | None = None,
        world_bank: WorldBankSource | None = None,
        comtrade: ComtradeSource | None = None,
        validator: DataValidator | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or TradeInsightConfig()
        self._cache = cache if cache is not None else CacheStore.from_config(self._config.cache)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._validator = validator or DataValidator(
            stale_after=timedelta(hours=self._config.data.stale_after_hours),
            clock=self._clock,
        )
        self._sources: dict[DataProvider, Source] = {}
        if world_bank is not None:
            self._sources[DataProvider.WORLD_BANK] = world_bank
        if comtrade is not None:
            self._sources[DataProvider.UN_COMTRADE] = comtrade
        self._world_bank = WorldBankTransformer()
        self._comtrade = ComtradeTransformer()
        self._semaphore = asyncio.Semaphore(self._config.http.max_concurrency)

    async def __aenter__(self) -> TradeDataService:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close provider clients and write the cache snapshot, if configured.

        The snapshot is attempted even when a client fails to close. A snapshot
        that cannot be written is logged, not raised.
        """
        try:
            for source in self._sources.values():
                await source.close()
        finally:
            self._sources.clear()
            try:
                self._cache.save()
            except OSError as e:
                logger.warning("Cache snapshot not written: %s", e)

    @property
    def cache(self) -> CacheStore:
        return self._cache

    # --- Queries ---

    async def get_trade_stats(
        self,
        country_code: str = "WLD",
        provider: DataProvider | None = None,
    ) -> ApiResponse[TradeStats]:
        code = country_code.strip().upper()
        chosen = self._resolve_provider(provider)
        latest = self._latest_year

        async def live(p: DataProvider) -> _Live:
            if p == DataProvider.UN_COMTRADE:
                records, responses = await self._comtrade_source().fetch_trade_profile(
                    code, latest
                )
                stats = self._comtrade.to_trade_stats(
                    records, code, retrieved_at=_retrieved_at(responses)
                )
            else:
                records, response = await self._world_bank_source().fetch_indicators(
                    code, TRADE_INDICATORS, latest - self._history + 1, latest
                )
                stats = self._world_bank.to_trade_stats(
                    records, code, retrieved_at=response.fetched_at
                )
                responses = [response]
            return stats, _envelope_source(responses), self._check(stats, code)

        return await self._serve(
            f"trade stats for {code}",
            chosen,
            live,
            lambda: fallback.trade_stats(code, as_of=self._clock(), year=latest),
        )

    async def get_market_data(self, query: MarketQuery) -> ApiResponse[list[MarketData]]:
        countries = query.countries or DEFAULT_COUNTRIES
        category = normalize_category(query.product_category)
        chosen = self._resolve_provider(query.provider)
        latest = self._latest_year

        async def fetch_country(
            p: DataProvider, code: str
        ) -> tuple[list[MarketData], TransportResponse]:
            if p == DataProvider.UN_COMTRADE:
                records, response = await self._comtrade_source().fetch_category(
                    code, category, [latest - 1, latest]
                )
                items = self._comtrade.to_market_data(
                    records, category, retrieved_at=response.fetched_at
                )
            else:
                records, response = await self._world_bank_source().fetch_indicators(
                    code, TRADE_INDICATORS, latest - self._history + 1, latest
                )
                items = self._world_bank.to_market_data(
                    records, category, retrieved_at=response.fetched_at
                )
            return items, response

        async def live(p: DataProvider) -> _Live:
            results, omitted = await self._gather(
                "market data", countries, lambda code: fetch_country(p, code)
            )
            items = [m for batch, _ in results for m in batch]
            kept, warnings = self._validator.partition(items, "market data")
            return (
                _sort_markets(_filter_markets(kept, query)),
                _envelope_source([r for _, r in results]),
                omitted + warnings,
            )

        return await self._serve(
            f"market data for {category}",
            chosen,
            live,
            lambda: _sort_markets(
                _filter_markets(
                    fallback.market_data(countries, category, as_of=self._clock(), year=latest),
                    query,
                )
            ),
        )

    async def get_export_opportunities(
        self, query: OpportunityQuery
    ) -> ApiResponse[list[ExportOpportunity]]:
        exporter = query.exporter_country
        countries = [c for c in (query.countries or DEFAULT_COUNTRIES) if c != exporter]
        chosen = self._resolve_provider(query.provider)
        latest = self._latest_year

        async def fetch_country(
            p: DataProvider, code: str
        ) -> tuple[list[ExportOpportunity], TransportResponse]:
            if p == DataProvider.UN_COMTRADE:
                records, response = await self._comtrade_source().fetch_imports(
                    code, [latest - 1, latest]
                )
                items = self._comtrade.to_export_opportunities(
                    records, exporter, retrieved_at=response.fetched_at
                )
            else:
                records, response = await self._world_bank_source().fetch_indicators(
                    code, (IMPORTS,), latest - self._history + 1, latest
                )
                items = self._world_bank.to_export_opportunities(
                    records, exporter, retrieved_at=response.fetched_at
                )
            return items, response

        async def live(p: DataProvider) -> _Live:
            if not countries:
                return [], ResponseSource.LIVE, []
            results, omitted = await self._gather(
                "export opportunities", countries, lambda code: fetch_country(p, code)
            )
            items = [o for batch, _ in results for o in batch]
            kept, warnings = self._validator.partition(items, "opportunity")
            return (
                _rank_opportunities(kept, query),
                _envelope_source([r for _, r in results]),
                omitted + warnings,
            )

        return await self._serve(
            f"export opportunities for {exporter}",
            chosen,
            live,
            lambda: _rank_opportunities(
                fallback.export_opportunities(
                    countries,
                    exporter,
                    query.product_category and normalize_category(query.product_category),
                    as_of=self._clock(),
                    year=latest,
                ),
                query,
            ),
        )

    async def get_economic_indicators(
        self,
        countries: Sequence[str] = ("WLD",),
    ) -> ApiResponse[list[EconomicIndicator]]:
        """World Bank indicator observations for each requested country."""
        codes = [c.strip().upper() for c in countries if c.strip()] or ["WLD"]
        latest = self._latest_year

        async def fetch_country(code: str) -> tuple[list[EconomicIndicator], TransportResponse]:
            records, response = await self._world_bank_source().fetch_indicators(
                code, TRADE_INDICATORS, latest - self._history + 1, latest
            )
            return self._world_bank.to_economic_indicators(records), response

        async def live(p: DataProvider) -> _Live:
            results, omitted = await self._gather("economic indicators", codes, fetch_country)
            items = [i for batch, _ in results for i in batch]
            items.sort(key=lambda i: (i.country_code, i.indicator_id, -i.year))
            return items, _envelope_source([r for _, r in results]), omitted

        return await self._serve(
            "economic indicators",
            DataProvider.WORLD_BANK,
            live,
            lambda: fallback.economic_indicators(codes, year=latest),
        )

    async def get_dashboard_stats(self) -> ApiResponse[DashboardStats]:
        """Totals and growth across the dashboard economies (World Bank)."""
        latest = self._latest_year

        async def fetch_country(code: str) -> tuple[list[Any], TransportResponse]:
            return await self._world_bank_source().fetch_indicators(
                code, TRADE_INDICATORS, latest - self._history + 1, latest
            )

        async def live(p: DataProvider) -> _Live:
            results, omitted = await self._gather(
                "dashboard", DASHBOARD_COUNTRIES, fetch_country
            )
            records = [r for batch, _ in results for r in batch]
            responses = [r for _, r in results]
            stats = self._world_bank.to_dashboard_stats(
                records, retrieved_at=_retrieved_at(responses)
            )
            return stats, _envelope_source(responses), omitted + self._check(stats, "dashboard")

        return await self._serve(
            "dashboard stats",
            DataProvider.WORLD_BANK,
            live,
            lambda: fallback.dashboard_stats(
                DASHBOARD_COUNTRIES, as_of=self._clock(), year=latest
            ),
        )

    async def health_check(self, provider: DataProvider = DataProvider.WORLD_BANK) -> bool:
        """Probe one provider with a single uncached, short-timeout request."""
        try:
            if provider == DataProvider.UN_COMTRADE:
                return await self._comtrade_source().health_check(self._latest_year)
            if provider == DataProvider.WORLD_BANK:
                return await self._world_bank_source().health_check()
            raise ConfigError(
                f"No health check for provider {provider}",
                context={"field": "provider", "value": str(provider)},
            )
        except TradeInsightError as e:
            logger.warning("Health check for %s failed: %s", provider, e)
            return False
        except Exception:
            logger.exception("Unexpected error during %s health check", provider)
            return False

    def usage_stats(self) -> dict[str, Any]:
        """Cache statistics plus per-provider request counters."""
        return {
            "cache": self._cache.stats().model_dump(mode="json"),
            "providers": {
                str(p): source.client.usage.snapshot() for p, source in self._sources.items()
            },
        }

    # --- Fallback policy ---

    async def _serve(
        self,
        label: str,
        provider: DataProvider,
        live: Callable[[DataProvider], Awaitable[_Live]],
        synthetic: Callable[[], T],
    ) -> ApiResponse[T]:
        data_config = self._config.data
        if not data_config.live_enabled:
            if data_config.fallback_enabled:
                return self._fallback(label, synthetic, ["live data disabled"])
            return self._failure(
                ConfigError(
                    "Live data is disabled and fallback is turned off",
                    context={"field": "data.live_enabled", "value": False},
                ),
                provider,
            )

        try:
            data, source, warnings = await live(provider)
        except TradeInsightError as e:
            if data_config.fallback_enabled and (e.retryable or isinstance(e, ConfigError)):
                logger.warning("%s from %s failed (%s), serving fallback data", label, provider, e)
                return self._fallback(label, synthetic, [f"{provider} unavailable: {e}"])
            logger.warning("%s from %s failed: %s", label, provider, e)
            return self._failure(e, provider)
        except Exception as e:
            logger.exception("Unexpected error fetching %s from %s", label, provider)
            return self._failure(e, provider)

        return ApiResponse(
            data=data,
            success=True,
            timestamp=self._clock(),
            source=source,
            provider=provider,
            warnings=warnings,
        )

    def _fallback(
        self,
        label: str,
        synthetic: Callable[[], T],
        warnings: list[str],
    ) -> ApiResponse[T]:
        try:
            data = synthetic()
        except Exception as e:
            logger.exception("Fallback data for %s could not be built", label)
            return self._failure(e, DataProvider.SYNTHETIC)
        return ApiResponse(
            data=data,
            success=True,
            timestamp=self._clock(),
            source=ResponseSource.FALLBACK,
            provider=DataProvider.SYNTHETIC,
            warnings=warnings,
        )

    def _failure(self, error: Exception, provider: DataProvider) -> ApiResponse[Any]:
        if isinstance(error, TradeInsightError):
            code = error.code
            message = str(error)
        else:
            code = ErrorCode.SERVER_ERROR
            message = f"Unexpected error: {type(error).__name__}: {error}"
        return ApiResponse(
            data=None,
            success=False,
            timestamp=self._clock(),
            provider=provider,
            error=message,
            error_code=code,
        )

    # --- Fan-out ---

    async def _gather(
        self,
        label: str,
        countries: Sequence[str],
        fetch: Callable[[str], Awaitable[R]],
    ) -> tuple[list[R], list[str]]:
        """Run `fetch` per country under the concurrency bound.

        Failed countries are logged and omitted. When every country fails the
        last error is raised.
        """

        async def bounded(code: str) -> R:
            async with self._semaphore:
                return await fetch(code)

        outcomes = await asyncio.gather(
            *(bounded(code) for code in countries), return_exceptions=True
        )
        results: list[R] = []
        omitted: list[str] = []
        last_error: Exception | None = None
        for code, outcome in zip(countries, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("%s: omitting %s (%s)", label, code, outcome)
                omitted.append(f"{code}: omitted ({outcome})")
                last_error = outcome
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(outcome)

        if not results and last_error is not None:
            raise last_error
        return results, omitted

    # --- Helpers ---

    @property
    def _latest_year(self) -> int:
        return self._config.data.resolved_latest_year()

    @property
    def _history(self) -> int:
        return self._config.data.history_years

    def _resolve_provider(self, provider: DataProvider | None) -> DataProvider:
        return provider or self._config.providers.preferred

    def _world_bank_source(self) -> WorldBankSource:
        source = self._sources.get(DataProvider.WORLD_BANK)
        if source is None:
            source = WorldBankSource.from_config(
                self._config.providers.world_bank, self._config.http, self._cache
            )
            self._sources[DataProvider.WORLD_BANK] = source
        return source  # type: ignore[return-value]

    def _comtrade_source(self) -> ComtradeSource:
        source = self._sources.get(DataProvider.UN_COMTRADE)
        if source is None:
            source = ComtradeSource.from_config(
                self._config.providers.comtrade, self._config.http, self._cache
            )
            self._sources[DataProvider.UN_COMTRADE] = source
        return source  # type: ignore[return-value]

    def _check(self, entity: TradeStats | DashboardStats, label: str) -> list[str]:
        """Validate a single entity; errors make the whole response invalid."""
        result = self._validator.validate(entity)
        if not result.is_valid:
            raise InvalidResponseError(
                f"{label} failed validation: {'; '.join(result.errors)}",
                context={"errors": result.errors},
            )
        return list(result.warnings)


def _envelope_source(responses: Sequence[TransportResponse]) -> ResponseSource:
    if responses and all(r.source == ResponseSource.CACHE for r in responses):
        return ResponseSource.CACHE
    return ResponseSource.LIVE


def _retrieved_at(responses: Sequence[TransportResponse]) -> datetime:
    """Fetch time of the oldest payload that went into a result."""
    return min(r.fetched_at for r in responses)


def _filter_markets(items: Sequence[MarketData], query: MarketQuery) -> list[MarketData]:
    results = []
    for m in items:
        if query.min_market_size is not None and m.market_size < query.min_market_size:
            continue
        if query.max_tariff_rate is not None and m.tariff_rate > query.max_tariff_rate:
            continue
        if query.min_growth_rate is not None and m.growth_rate < query.min_growth_rate:
            continue
        if query.competition_levels and m.competition_level not in query.competition_levels:
            continue
        results.append(m)
    return results


def _sort_markets(items: Sequence[MarketData]) -> list[MarketData]:
    return sorted(items, key=lambda m: (-m.market_size, m.country_code))


def _rank_opportunities(
    items: Sequence[ExportOpportunity],
    query: OpportunityQuery,
) -> list[ExportOpportunity]:
    """Filter by value and category, best first, truncated to the query limit."""
    category = normalize_category(query.product_category) if query.product_category else None
    results = [
        o
        for o in items
        if (query.min_value is None or o.estimated_value >= query.min_value)
        and (category is None or o.product_category.lower() == category.lower())
    ]
    results.sort(key=lambda o: (-o.opportunity_score, -o.estimated_value, o.id))
    return results[: query.limit]
