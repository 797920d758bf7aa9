"""Pydantic data models for every entity, query and response envelope."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, computed_field, field_validator, model_validator

from trade_insight.core.exceptions import ErrorCode

# --- Type Aliases ---

CountryCode = str
ProductCode = str

T = TypeVar("T")

# --- Enumerations ---


class DataProvider(StrEnum):
    """Where a canonical entity's numbers came from."""

    WORLD_BANK = "world_bank"
    UN_COMTRADE = "un_comtrade"
    SYNTHETIC = "synthetic"


class ResponseSource(StrEnum):
    """Provenance tag on a response envelope."""

    LIVE = "live"
    CACHE = "cache"
    FALLBACK = "fallback"


class CompetitionLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Reliability(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TradeType(StrEnum):
    EXPORT = "export"
    IMPORT = "import"
    BOTH = "both"


class TariffBasis(StrEnum):
    """How a tariff rate was obtained. Neither value is authoritative."""

    CIF_FOB_SPREAD = "cif_fob_spread"
    PLACEHOLDER = "placeholder"


class Provenance(StrEnum):
    """Whether an opportunity was derived from live data or synthesized."""

    LIVE = "live"
    SYNTHETIC = "synthetic"


# --- Trade Models ---


class ProductStat(BaseModel):
    """One product line's contribution to a trade total."""

    model_config = ConfigDict(frozen=True)

    product_code: ProductCode
    product_name: str
    value: float
    percentage: float
    growth_rate: float = 0.0


class TradingPartner(BaseModel):
    """A partner country's share of a reporter's trade."""

    model_config = ConfigDict(frozen=True)

    country: str
    country_code: CountryCode
    trade_value: float
    percentage: float
    trade_type: TradeType


class TradeStats(BaseModel):
    """Per-country trade snapshot.

    `trade_balance` is always derived from exports and imports. An incoming
    value (e.g. from a serialized envelope) is dropped and recomputed.
    """

    model_config = ConfigDict(frozen=True)

    country: str
    country_code: CountryCode
    total_exports: float
    total_imports: float
    top_export_products: list[ProductStat] = []
    top_import_products: list[ProductStat] = []
    trading_partners: list[TradingPartner] = []
    period: str
    source: DataProvider
    last_updated: datetime

    @model_validator(mode="before")
    @classmethod
    def _drop_balance(cls, data: Any) -> Any:
        if isinstance(data, dict) and "trade_balance" in data:
            data = {k: v for k, v in data.items() if k != "trade_balance"}
        return data

    @computed_field  # type: ignore[prop-decorator]
    @property
    def trade_balance(self) -> float:
        return self.total_exports - self.total_imports


class MarketData(BaseModel):
    """Per-(country, product category) opportunity snapshot."""

    model_config = ConfigDict(frozen=True)

    id: str
    country: str
    country_code: CountryCode
    product_category: str
    market_size: float
    growth_rate: float
    competition_level: CompetitionLevel
    tariff_rate: float
    tariff_basis: TariffBasis
    raw_tariff_rate: float | None = None
    trade_volume: float
    last_updated: datetime
    source: DataProvider
    reliability: Reliability

    @property
    def tariff_estimated(self) -> bool:
        return self.tariff_basis == TariffBasis.PLACEHOLDER


class ExportOpportunity(BaseModel):
    """A candidate export opportunity derived from import flows."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    description: str
    country: str
    country_code: CountryCode
    product_category: str
    estimated_value: float
    opportunity_score: float
    requirements: list[str] = []
    source: DataProvider
    provenance: Provenance
    verified: bool = False
    posted_date: datetime
    deadline: datetime | None = None


class EconomicIndicator(BaseModel):
    """A single (country, indicator, year) observation."""

    model_config = ConfigDict(frozen=True)

    country_code: CountryCode
    country_name: str
    indicator_id: str
    indicator_name: str
    year: int
    value: float | None = None


class DashboardStats(BaseModel):
    """Aggregate trade figures across a set of major economies."""

    model_config = ConfigDict(frozen=True)

    total_exports: float
    total_imports: float
    total_gdp: float
    export_growth: float
    import_growth: float
    trade_share_change: float
    countries_covered: int
    period: str
    source: DataProvider
    last_updated: datetime


# --- Queries ---


def _normalize_codes(v: Any) -> tuple[str, ...]:
    if v is None:
        return ()
    if isinstance(v, str):
        v = v.split(",")
    return tuple(c.strip().upper() for c in v if c and c.strip())


class MarketQuery(BaseModel):
    """Caller's market-data request. Filters never mutate entities."""

    model_config = ConfigDict(frozen=True)

    countries: tuple[CountryCode, ...] = ()
    product_category: str = "General"
    min_market_size: float | None = None
    max_tariff_rate: float | None = None
    min_growth_rate: float | None = None
    competition_levels: tuple[CompetitionLevel, ...] = ()
    provider: DataProvider | None = None

    @field_validator("countries", mode="before")
    @classmethod
    def normalize_countries(cls, v: Any) -> tuple[str, ...]:
        return _normalize_codes(v)

    @field_validator("provider")
    @classmethod
    def provider_not_synthetic(cls, v: DataProvider | None) -> DataProvider | None:
        if v == DataProvider.SYNTHETIC:
            raise ValueError("provider must be a live data provider")
        return v


class OpportunityQuery(BaseModel):
    """Caller's export-opportunity request."""

    model_config = ConfigDict(frozen=True)

    exporter_country: CountryCode = "IND"
    countries: tuple[CountryCode, ...] = ()
    product_category: str | None = None
    min_value: float | None = None
    limit: int = 20
    provider: DataProvider | None = None

    @field_validator("countries", mode="before")
    @classmethod
    def normalize_countries(cls, v: Any) -> tuple[str, ...]:
        return _normalize_codes(v)

    @field_validator("exporter_country")
    @classmethod
    def normalize_exporter(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("limit")
    @classmethod
    def limit_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"limit must be >= 1, got {v}")
        return v


# --- Response Envelope ---


class ApiResponse(BaseModel, Generic[T]):
    """Uniform envelope returned by every service query.

    Callers tell "live", "fallback" and "failed" apart by `success` and
    `source` alone; the service never raises for provider failures.
    """

    model_config = ConfigDict(frozen=True)

    data: T | None = None
    success: bool
    timestamp: datetime
    source: ResponseSource | None = None
    provider: DataProvider | None = None
    error: str | None = None
    error_code: ErrorCode | None = None
    warnings: list[str] = []
