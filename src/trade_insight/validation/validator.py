"""Plausibility checks for canonical entities.

Errors block an entity from reaching callers; warnings are reported and the
entity is kept.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import TypeVar

from pydantic import BaseModel, ConfigDict

from trade_insight.core.models import (
    DashboardStats,
    ExportOpportunity,
    MarketData,
    ProductStat,
    TradeStats,
    TradingPartner,
)
from trade_insight.transformers.metrics import TARIFF_CEILING

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=BaseModel)

GROWTH_FLOOR = -100.0
GROWTH_CEILING = 1000.0
HUGE_MARKET = 10e12
PERCENT_TOLERANCE = 1e-6
ROUNDING_STEP = 0.1
_COUNTRY_CODE = re.compile(r"^[A-Z]{2,3}$")


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    errors: list[str] = []
    warnings: list[str] = []

    @property
    def is_valid(self) -> bool:
        return not self.errors


class DataValidator:
    """Validates MarketData, TradeStats, ExportOpportunity, DashboardStats
    and product-stat lists.

    Args:
        stale_after: Age of `last_updated` beyond which a warning is raised.
        clock: Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        stale_after: timedelta = timedelta(hours=72),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._stale_after = stale_after
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def validate(self, entity: object) -> ValidationResult:
        if isinstance(entity, MarketData):
            return self.validate_market_data(entity)
        if isinstance(entity, TradeStats):
            return self.validate_trade_stats(entity)
        if isinstance(entity, ExportOpportunity):
            return self.validate_opportunity(entity)
        if isinstance(entity, DashboardStats):
            return self.validate_dashboard(entity)
        if isinstance(entity, (list, tuple)) and all(isinstance(p, ProductStat) for p in entity):
            return self.validate_product_stats(entity)
        raise TypeError(f"No validation rules for {type(entity).__name__}")

    def partition(self, entities: Sequence[E], label: str) -> tuple[list[E], list[str]]:
        """Keep valid entities; return them with every warning raised.

        Invalid entities are dropped and logged.
        """
        kept: list[E] = []
        warnings: list[str] = []
        for entity in entities:
            result = self.validate(entity)
            ident = _identify(entity)
            if not result.is_valid:
                logger.warning("Dropping %s %s: %s", label, ident, "; ".join(result.errors))
                continue
            for warning in result.warnings:
                logger.info("%s %s: %s", label, ident, warning)
                warnings.append(f"{ident}: {warning}")
            kept.append(entity)
        return kept, warnings

    # --- Per-entity rules ---

    def validate_market_data(self, data: MarketData) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        _require(errors, country_code=data.country_code, product_category=data.product_category)
        if data.market_size < 0:
            errors.append("market_size must be >= 0")
        if data.trade_volume < 0:
            errors.append("trade_volume must be >= 0")
        _check_growth(errors, "growth_rate", data.growth_rate)
        if not 0 <= data.tariff_rate <= 100:
            errors.append("tariff_rate must be between 0 and 100")

        if not 0 <= data.tariff_rate <= TARIFF_CEILING:
            warnings.append(f"tariff_rate {data.tariff_rate} outside plausible 0-{TARIFF_CEILING:g}%")
        elif data.raw_tariff_rate is not None and not 0 <= data.raw_tariff_rate <= TARIFF_CEILING:
            warnings.append(
                f"raw tariff estimate {data.raw_tariff_rate} outside plausible "
                f"0-{TARIFF_CEILING:g}% before clamping"
            )
        if data.market_size > HUGE_MARKET:
            warnings.append("market_size is unusually large")
        if data.growth_rate > 100:
            warnings.append("growth_rate above 100% is unusual")
        self._check_code_format(warnings, data.country_code)
        self._check_fresh(warnings, data.last_updated)
        return ValidationResult(errors=errors, warnings=warnings)

    def validate_trade_stats(self, data: TradeStats) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        _require(errors, country_code=data.country_code, period=data.period)
        if data.total_exports < 0:
            errors.append("total_exports must be >= 0")
        if data.total_imports < 0:
            errors.append("total_imports must be >= 0")

        for label, products in (
            ("export", data.top_export_products),
            ("import", data.top_import_products),
        ):
            product_result = self.validate_product_stats(products)
            errors.extend(f"{label} products: {e}" for e in product_result.errors)
            warnings.extend(f"{label} products: {w}" for w in product_result.warnings)

        for i, partner in enumerate(data.trading_partners, start=1):
            errors.extend(f"trading partner {i}: {e}" for e in _partner_errors(partner))

        self._check_code_format(warnings, data.country_code)
        self._check_fresh(warnings, data.last_updated)
        return ValidationResult(errors=errors, warnings=warnings)

    def validate_opportunity(self, data: ExportOpportunity) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        _require(
            errors,
            id=data.id,
            title=data.title,
            country_code=data.country_code,
            product_category=data.product_category,
        )
        if data.estimated_value <= 0:
            errors.append("estimated_value must be > 0")
        if not 0 <= data.opportunity_score <= 100:
            errors.append("opportunity_score must be between 0 and 100")
        if data.deadline is not None and data.deadline <= data.posted_date:
            errors.append("deadline must be after posted_date")

        if not data.requirements:
            warnings.append("no requirements specified")
        self._check_code_format(warnings, data.country_code)
        return ValidationResult(errors=errors, warnings=warnings)

    def validate_dashboard(self, data: DashboardStats) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        for name in ("total_exports", "total_imports", "total_gdp"):
            if getattr(data, name) < 0:
                errors.append(f"{name} must be >= 0")
        if data.countries_covered < 0:
            errors.append("countries_covered must be >= 0")
        _check_growth(errors, "export_growth", data.export_growth)
        _check_growth(errors, "import_growth", data.import_growth)

        if data.countries_covered == 0:
            warnings.append("no countries reported data")
        self._check_fresh(warnings, data.last_updated)
        return ValidationResult(errors=errors, warnings=warnings)

    def validate_product_stats(self, products: Sequence[ProductStat]) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []

        for i, product in enumerate(products, start=1):
            if not product.product_code:
                errors.append(f"product {i}: product_code is required")
            if product.value < 0:
                errors.append(f"product {i}: value must be >= 0")
            if not 0 <= product.percentage <= 100:
                errors.append(f"product {i}: percentage must be between 0 and 100")
            _check_growth(errors, f"product {i}: growth_rate", product.growth_rate)

        total = sum(p.percentage for p in products)
        allowance = 100 + PERCENT_TOLERANCE + ROUNDING_STEP * len(products)
        if total > allowance:
            warnings.append(f"product percentages sum to {total:.1f}%, above 100%")
        return ValidationResult(errors=errors, warnings=warnings)

    # --- Shared checks ---

    def _check_fresh(self, warnings: list[str], last_updated: datetime) -> None:
        stamp = last_updated
        if stamp.tzinfo is None:
            stamp = stamp.replace(tzinfo=timezone.utc)
        age = self._clock() - stamp
        if age > self._stale_after:
            hours = age.total_seconds() / 3600
            warnings.append(f"data is stale ({hours:.0f}h old)")

    def _check_code_format(self, warnings: list[str], code: str) -> None:
        if code and not _COUNTRY_CODE.match(code):
            warnings.append(f"country code {code!r} should be 2-3 uppercase letters")


def _require(errors: list[str], **fields: str) -> None:
    for name, value in fields.items():
        if not value or not str(value).strip():
            errors.append(f"{name} is required")


def _check_growth(errors: list[str], name: str, value: float) -> None:
    if not GROWTH_FLOOR <= value <= GROWTH_CEILING:
        errors.append(f"{name} must be between {GROWTH_FLOOR:g}% and {GROWTH_CEILING:g}%")


def _partner_errors(partner: TradingPartner) -> list[str]:
    errors = []
    if not partner.country_code:
        errors.append("country_code is required")
    if partner.trade_value < 0:
        errors.append("trade_value must be >= 0")
    if not 0 <= partner.percentage <= 100:
        errors.append("percentage must be between 0 and 100")
    return errors


def _identify(entity: object) -> str:
    for attr in ("id", "country_code", "period"):
        value = getattr(entity, attr, None)
        if value:
            return str(value)
    return type(entity).__name__
