"""trade_insight.service — Query aggregation and synthetic fallback data."""

from trade_insight.service.aggregator import (
    DASHBOARD_COUNTRIES,
    DEFAULT_COUNTRIES,
    MAJOR_ECONOMIES,
    TradeDataService,
)

__all__ = [
    "DASHBOARD_COUNTRIES",
    "DEFAULT_COUNTRIES",
    "MAJOR_ECONOMIES",
    "TradeDataService",
]
