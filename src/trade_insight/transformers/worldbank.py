"""World Bank indicator records → canonical trade models."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from datetime import datetime, timedelta

from trade_insight.core.models import (
    DashboardStats,
    DataProvider,
    EconomicIndicator,
    ExportOpportunity,
    MarketData,
    ProductStat,
    Provenance,
    Reliability,
    TariffBasis,
    TradeStats,
)
from trade_insight.transformers.metrics import (
    MATERIALITY_THRESHOLD,
    competition_level,
    format_compact,
    growth_rate,
    opportunity_score,
    placeholder_tariff,
    requirements_for,
    round1,
    stable_id,
)
from trade_insight.transformers.records import (
    EXPORTS,
    GDP,
    IMPORTS,
    TRADE_SHARE,
    WorldBankIndicator,
)

logger = logging.getLogger(__name__)

OPPORTUNITY_CATEGORY = "General"
OPPORTUNITY_LIFETIME = timedelta(days=365)

# (country, indicator) -> {year: value}, nulls dropped
_Series = dict[tuple[str, str], dict[int, float]]


class WorldBankTransformer:
    """Normalizes macro indicators (exports, imports, GDP, trade share).

    The World Bank reports national aggregates only, so product breakdowns
    and partner lists are always empty and tariffs are placeholders.
    """

    provider = DataProvider.WORLD_BANK

    def to_trade_stats(
        self,
        records: Sequence[WorldBankIndicator],
        country_code: str,
        country_name: str | None = None,
        *,
        retrieved_at: datetime,
    ) -> TradeStats:
        code = country_code.upper()
        own = [r for r in records if r.country_code.upper() == code] or list(records)
        series = _index(own)
        exports = _series_for(series, EXPORTS)
        imports = _series_for(series, IMPORTS)

        year = _latest_year(exports, imports)
        if year is None:
            logger.warning("No export/import observations for %s", code)
            years = [r.year for r in own]
            period = str(max(years)) if years else ""
        else:
            period = str(year)

        return TradeStats(
            country=country_name or _country_name(own, code),
            country_code=code,
            total_exports=exports.get(year, 0.0) if year else 0.0,
            total_imports=imports.get(year, 0.0) if year else 0.0,
            top_export_products=[],
            top_import_products=[],
            trading_partners=[],
            period=period,
            source=DataProvider.WORLD_BANK,
            last_updated=retrieved_at,
        )

    def to_market_data(
        self,
        records: Sequence[WorldBankIndicator],
        product_category: str,
        *,
        retrieved_at: datetime,
    ) -> list[MarketData]:
        """Market size is GDP; growth is GDP growth; tariff is a placeholder."""
        results: list[MarketData] = []
        for code, own in _group_by_country(records).items():
            series = _index(own)
            gdp = _series_for(series, GDP)
            exports = _series_for(series, EXPORTS)
            imports = _series_for(series, IMPORTS)

            year = _latest_year(gdp)
            if year is None:
                year = _latest_year(exports, imports)
            if year is None:
                logger.debug("No usable observations for %s, skipping", code)
                continue

            latest_exports = exports.get(year, 0.0)
            latest_imports = imports.get(year, 0.0)
            results.append(
                MarketData(
                    id=stable_id(DataProvider.WORLD_BANK, code, product_category, year),
                    country=_country_name(own, code),
                    country_code=code,
                    product_category=product_category,
                    market_size=gdp.get(year, 0.0),
                    growth_rate=round1(growth_rate(gdp.get(year, 0.0), gdp.get(year - 1, 0.0))),
                    competition_level=competition_level(latest_exports, latest_imports),
                    tariff_rate=placeholder_tariff(code, product_category),
                    tariff_basis=TariffBasis.PLACEHOLDER,
                    trade_volume=latest_exports + latest_imports,
                    last_updated=retrieved_at,
                    source=DataProvider.WORLD_BANK,
                    reliability=Reliability.MEDIUM,
                )
            )
        return results

    def to_export_opportunities(
        self,
        records: Sequence[WorldBankIndicator],
        excluded_country: str,
        *,
        retrieved_at: datetime,
    ) -> list[ExportOpportunity]:
        """One opportunity per destination, sized by its total imports."""
        excluded = excluded_country.upper()
        results: list[ExportOpportunity] = []
        for code, own in _group_by_country(records).items():
            if code.upper() == excluded:
                continue
            imports = _series_for(_index(own), IMPORTS)
            year = _latest_year(imports)
            if year is None:
                continue
            value = imports[year]
            if value <= MATERIALITY_THRESHOLD:
                continue

            growth = None
            if year - 1 in imports:
                growth = growth_rate(value, imports[year - 1])
            name = _country_name(own, code)
            results.append(
                ExportOpportunity(
                    id=stable_id(DataProvider.WORLD_BANK, "opportunity", code, year),
                    title=f"Export goods and services to {name}",
                    description=(
                        f"{name} imported {format_compact(value)} of goods and "
                        f"services in {year}."
                    ),
                    country=name,
                    country_code=code,
                    product_category=OPPORTUNITY_CATEGORY,
                    estimated_value=value,
                    opportunity_score=opportunity_score(value, growth),
                    requirements=requirements_for(OPPORTUNITY_CATEGORY),
                    source=DataProvider.WORLD_BANK,
                    provenance=Provenance.LIVE,
                    verified=False,
                    posted_date=retrieved_at,
                    deadline=retrieved_at + OPPORTUNITY_LIFETIME,
                )
            )
        results.sort(key=lambda o: (-o.opportunity_score, -o.estimated_value))
        return results

    def to_product_stats(self, records: Sequence[WorldBankIndicator]) -> list[ProductStat]:
        return []

    def to_economic_indicators(
        self, records: Sequence[WorldBankIndicator]
    ) -> list[EconomicIndicator]:
        """Flatten observations, newest year first within each series."""
        results = [
            EconomicIndicator(
                country_code=r.country_code,
                country_name=r.country_name or r.country_code,
                indicator_id=r.indicator_id,
                indicator_name=r.indicator_name or r.indicator_id,
                year=r.year,
                value=r.value,
            )
            for r in records
        ]
        results.sort(key=lambda i: (i.country_code, i.indicator_id, -i.year))
        return results

    def to_dashboard_stats(
        self,
        records: Sequence[WorldBankIndicator],
        *,
        retrieved_at: datetime,
    ) -> DashboardStats:
        """Sum trade and GDP over every country present in `records`.

        Each country contributes its own latest year. Growth compares only
        countries that report both that year and the one before it.
        """
        totals = defaultdict(float)
        latest_years: list[int] = []
        share_changes: list[float] = []

        for own in _group_by_country(records).values():
            series = _index(own)
            exports = _series_for(series, EXPORTS)
            imports = _series_for(series, IMPORTS)
            year = _latest_year(exports, imports)
            if year is None:
                continue
            latest_years.append(year)

            for key, values in (("exports", exports), ("imports", imports)):
                totals[key] += values.get(year, 0.0)
                if year in values and year - 1 in values:
                    totals[f"{key}_now"] += values[year]
                    totals[f"{key}_prev"] += values[year - 1]
            totals["gdp"] += _series_for(series, GDP).get(year, 0.0)

            share = _series_for(series, TRADE_SHARE)
            if year in share and year - 1 in share:
                share_changes.append(share[year] - share[year - 1])

        if latest_years and min(latest_years) != max(latest_years):
            period = f"{min(latest_years)}-{max(latest_years)}"
        else:
            period = str(latest_years[0]) if latest_years else ""

        return DashboardStats(
            total_exports=totals["exports"],
            total_imports=totals["imports"],
            total_gdp=totals["gdp"],
            export_growth=round1(growth_rate(totals["exports_now"], totals["exports_prev"])),
            import_growth=round1(growth_rate(totals["imports_now"], totals["imports_prev"])),
            trade_share_change=round1(
                sum(share_changes) / len(share_changes) if share_changes else 0.0
            ),
            countries_covered=len(latest_years),
            period=period,
            source=DataProvider.WORLD_BANK,
            last_updated=retrieved_at,
        )


# --- Helpers ---


def _group_by_country(
    records: Sequence[WorldBankIndicator],
) -> dict[str, list[WorldBankIndicator]]:
    groups: dict[str, list[WorldBankIndicator]] = defaultdict(list)
    for record in records:
        if record.country_code:
            groups[record.country_code.upper()].append(record)
    return dict(sorted(groups.items()))


def _index(records: Sequence[WorldBankIndicator]) -> _Series:
    series: _Series = defaultdict(dict)
    for r in records:
        if r.value is not None:
            series[(r.country_code.upper(), r.indicator_id)][r.year] = r.value
    return series


def _series_for(series: _Series, indicator_id: str) -> dict[int, float]:
    merged: dict[int, float] = {}
    for (_, ind), values in series.items():
        if ind == indicator_id:
            merged.update(values)
    return merged


def _latest_year(*series: dict[int, float]) -> int | None:
    years = [year for values in series for year in values]
    return max(years) if years else None


def _country_name(records: Sequence[WorldBankIndicator], fallback: str) -> str:
    for r in records:
        if r.country_name:
            return r.country_name
    return fallback
