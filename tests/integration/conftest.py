"""Integration test fixtures: real service, cache and clients, mocked HTTP."""

from __future__ import annotations

from pathlib import Path

import pytest

from trade_insight.core.config import (
    CacheConfig,
    ComtradeConfig,
    DataConfig,
    HttpConfig,
    ProvidersConfig,
    TradeInsightConfig,
    WorldBankConfig,
)
from trade_insight.service import TradeDataService
from trade_insight.transformers.records import EXPORTS, GDP, IMPORTS, TRADE_SHARE

# Size of each economy relative to USA
SCALES = {
    "USA": 1.0,
    "CHN": 0.07,
    "JPN": 0.165,
    "DEU": 0.16,
    "GBR": 0.12,
    "FRA": 0.11,
    "IND": 0.1,
}


def country_series(code: str) -> dict[str, dict[int, float]]:
    """USA-shaped series scaled down for other economies."""
    scale = SCALES.get(code, 0.05)
    return {
        EXPORTS: {2022: 3.0e12 * scale, 2021: 2.5e12 * scale},
        IMPORTS: {2022: 3.9e12 * scale, 2021: 3.4e12 * scale},
        GDP: {2022: 25.4e12 * scale, 2021: 23.3e12 * scale},
        TRADE_SHARE: {2022: 27.0, 2021: 25.5},
    }


def _make_config(
    *,
    live: bool = True,
    fallback: bool = True,
    api_key: str | None = "test-key",
    snapshot_path: Path | None = None,
) -> TradeInsightConfig:
    return TradeInsightConfig(
        data=DataConfig(
            live_enabled=live,
            fallback_enabled=fallback,
            latest_year=2022,
            history_years=2,
        ),
        cache=CacheConfig(snapshot_path=str(snapshot_path) if snapshot_path else None),
        http=HttpConfig(max_retries=1, backoff_base=0.0, max_concurrency=3),
        providers=ProvidersConfig(
            world_bank=WorldBankConfig(rate_limit=1000.0),
            comtrade=ComtradeConfig(api_key=api_key, rate_limit=1000.0),
        ),
    )


@pytest.fixture
def make_config():
    """Live config with instant retries and a high rate limit."""
    return _make_config


@pytest.fixture
def config() -> TradeInsightConfig:
    return _make_config()


@pytest.fixture
async def service(config, clock) -> TradeDataService:
    async with TradeDataService(config, clock=clock) as service:
        yield service


@pytest.fixture
def wb_payload_for(make_wb_payload):
    """World Bank success page for one country code."""

    def _make(code: str) -> list:
        return make_wb_payload(code, code, country_series(code))

    return _make
