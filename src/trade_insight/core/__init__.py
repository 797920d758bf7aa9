"""trade_insight.core — Foundation types, config, and exceptions."""

from trade_insight.core.config import (
    CacheConfig,
    ComtradeConfig,
    DataConfig,
    HttpConfig,
    ProvidersConfig,
    TradeInsightConfig,
    WorldBankConfig,
    load_config,
)
from trade_insight.core.exceptions import (
    ConfigError,
    ErrorCode,
    InvalidResponseError,
    NetworkError,
    NotFoundError,
    ProviderError,
    RateLimitError,
    ServerError,
    TradeInsightError,
    UnauthorizedError,
)
from trade_insight.core.models import (
    ApiResponse,
    CompetitionLevel,
    CountryCode,
    DashboardStats,
    DataProvider,
    EconomicIndicator,
    ExportOpportunity,
    MarketData,
    MarketQuery,
    OpportunityQuery,
    ProductCode,
    ProductStat,
    Provenance,
    Reliability,
    ResponseSource,
    TariffBasis,
    TradeStats,
    TradeType,
    TradingPartner,
)

__all__ = [
    # Type aliases
    "CountryCode",
    "ProductCode",
    # Enums
    "DataProvider",
    "ResponseSource",
    "CompetitionLevel",
    "Reliability",
    "TradeType",
    "TariffBasis",
    "Provenance",
    # Trade models
    "ProductStat",
    "TradingPartner",
    "TradeStats",
    "MarketData",
    "ExportOpportunity",
    "EconomicIndicator",
    "DashboardStats",
    # Queries and envelope
    "MarketQuery",
    "OpportunityQuery",
    "ApiResponse",
    # Config
    "TradeInsightConfig",
    "DataConfig",
    "CacheConfig",
    "HttpConfig",
    "ProvidersConfig",
    "WorldBankConfig",
    "ComtradeConfig",
    "load_config",
    # Exceptions
    "ErrorCode",
    "TradeInsightError",
    "ConfigError",
    "ProviderError",
    "NetworkError",
    "RateLimitError",
    "UnauthorizedError",
    "NotFoundError",
    "InvalidResponseError",
    "ServerError",
]
