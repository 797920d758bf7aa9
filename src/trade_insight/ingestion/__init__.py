"""Provider ingestion: transport client and per-provider sources."""

from trade_insight.ingestion.client import (
    CallEvent,
    RequestOptions,
    TransportClient,
    TransportResponse,
    UsageStats,
    http_settings,
)
from trade_insight.ingestion.comtrade import ComtradeSource, reporter_code
from trade_insight.ingestion.worldbank import WorldBankSource

__all__ = [
    "CallEvent",
    "ComtradeSource",
    "RequestOptions",
    "TransportClient",
    "TransportResponse",
    "UsageStats",
    "WorldBankSource",
    "http_settings",
    "reporter_code",
]
