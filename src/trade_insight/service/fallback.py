"""Deterministic synthetic datasets served when live data is unavailable.

Figures are round approximations of recent national accounts, fixed in a
table and perturbed by a generator seeded from the inputs, so the same query
always yields the same data. Every entity is tagged with the synthetic
provider and low reliability; callers must never mistake it for live data.
"""

from __future__ import annotations

import random
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import NamedTuple

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
    TradeType,
    TradingPartner,
)
from trade_insight.transformers.metrics import (
    category_for_description,
    competition_level,
    format_compact,
    growth_rate,
    opportunity_score,
    placeholder_tariff,
    requirements_for,
    round1,
    stable_id,
)
from trade_insight.transformers.records import EXPORTS, GDP, IMPORTS, TRADE_SHARE

_T = 1e12


class CountryProfile(NamedTuple):
    name: str
    exports: float
    imports: float
    gdp: float
    trade_share: float


PROFILES: dict[str, CountryProfile] = {
    "WLD": CountryProfile("World", 31.6 * _T, 30.9 * _T, 100.6 * _T, 63.0),
    "USA": CountryProfile("United States", 3.02 * _T, 3.97 * _T, 25.4 * _T, 27.0),
    "CHN": CountryProfile("China", 3.72 * _T, 3.14 * _T, 17.9 * _T, 38.0),
    "JPN": CountryProfile("Japan", 0.92 * _T, 1.07 * _T, 4.26 * _T, 47.0),
    "DEU": CountryProfile("Germany", 2.07 * _T, 1.92 * _T, 4.08 * _T, 100.0),
    "IND": CountryProfile("India", 0.77 * _T, 0.90 * _T, 3.39 * _T, 49.0),
    "GBR": CountryProfile("United Kingdom", 0.96 * _T, 1.05 * _T, 3.09 * _T, 65.0),
    "FRA": CountryProfile("France", 0.96 * _T, 1.04 * _T, 2.78 * _T, 72.0),
    "ITA": CountryProfile("Italy", 0.73 * _T, 0.71 * _T, 2.05 * _T, 72.0),
    "BRA": CountryProfile("Brazil", 0.38 * _T, 0.34 * _T, 1.92 * _T, 39.0),
    "CAN": CountryProfile("Canada", 0.71 * _T, 0.71 * _T, 2.16 * _T, 67.0),
    "RUS": CountryProfile("Russian Federation", 0.59 * _T, 0.35 * _T, 2.24 * _T, 46.0),
    "KOR": CountryProfile("Korea, Rep.", 0.83 * _T, 0.83 * _T, 1.67 * _T, 97.0),
    "AUS": CountryProfile("Australia", 0.48 * _T, 0.37 * _T, 1.69 * _T, 51.0),
    "ESP": CountryProfile("Spain", 0.58 * _T, 0.55 * _T, 1.42 * _T, 78.0),
    "MEX": CountryProfile("Mexico", 0.61 * _T, 0.64 * _T, 1.41 * _T, 87.0),
    "IDN": CountryProfile("Indonesia", 0.33 * _T, 0.27 * _T, 1.32 * _T, 45.0),
    "NLD": CountryProfile("Netherlands", 1.07 * _T, 0.95 * _T, 1.01 * _T, 200.0),
    "SAU": CountryProfile("Saudi Arabia", 0.42 * _T, 0.25 * _T, 1.11 * _T, 60.0),
    "TUR": CountryProfile("Turkiye", 0.35 * _T, 0.38 * _T, 0.91 * _T, 81.0),
    "TWN": CountryProfile("Taiwan", 0.53 * _T, 0.46 * _T, 0.76 * _T, 130.0),
}

# (HS chapter, description, share of the flow in percent)
PRODUCTS: tuple[tuple[str, str, float], ...] = (
    ("84", "Machinery and mechanical appliances", 20.0),
    ("85", "Electrical machinery and equipment", 17.0),
    ("87", "Vehicles other than railway", 14.0),
    ("27", "Mineral fuels and oils", 11.0),
    ("39", "Plastics and articles thereof", 8.0),
)

_PARTNER_POOL = ("USA", "CHN", "DEU", "JPN", "GBR", "FRA")
_PARTNER_SHARES = (25.0, 21.0, 17.0, 13.0, 9.0)

_INDICATOR_NAMES = {
    EXPORTS: "Exports of goods and services (current US$)",
    IMPORTS: "Imports of goods and services (current US$)",
    GDP: "GDP (current US$)",
    TRADE_SHARE: "Trade (% of GDP)",
}

OPPORTUNITY_LIFETIME = timedelta(days=365)


def _rng(*parts: object) -> random.Random:
    return random.Random(":".join(str(p) for p in ("synthetic", *parts)))


def profile_for(country_code: str) -> CountryProfile:
    """Table profile, or a seeded mid-sized economy for unknown codes."""
    code = country_code.upper()
    if code in PROFILES:
        return PROFILES[code]
    rng = _rng("profile", code)
    gdp = rng.uniform(0.05, 0.8) * _T
    share = rng.uniform(30.0, 90.0)
    exports = gdp * share / 200 * rng.uniform(0.8, 1.2)
    imports = gdp * share / 200 * rng.uniform(0.8, 1.2)
    return CountryProfile(code, exports, imports, gdp, round1(share))


def _annual_growth(code: str, series: str) -> float:
    """Seeded year-over-year growth in percent, between -5 and 15."""
    return round1(_rng("growth", code, series).uniform(-5.0, 15.0))


def _previous(value: float, growth: float) -> float:
    return value / (1 + growth / 100)


def trade_stats(country_code: str, *, as_of: datetime, year: int) -> TradeStats:
    code = country_code.upper()
    profile = profile_for(code)
    return TradeStats(
        country=profile.name,
        country_code=code,
        total_exports=profile.exports,
        total_imports=profile.imports,
        top_export_products=_products(code, profile.exports, "export"),
        top_import_products=_products(code, profile.imports, "import"),
        trading_partners=_partners(code, profile.exports + profile.imports),
        period=str(year),
        source=DataProvider.SYNTHETIC,
        last_updated=as_of,
    )


def market_data(
    countries: Sequence[str],
    product_category: str,
    *,
    as_of: datetime,
    year: int,
) -> list[MarketData]:
    results = []
    for country in countries:
        code = country.upper()
        profile = profile_for(code)
        results.append(
            MarketData(
                id=stable_id(DataProvider.SYNTHETIC, code, product_category, year),
                country=profile.name,
                country_code=code,
                product_category=product_category,
                market_size=profile.gdp,
                growth_rate=_annual_growth(code, GDP),
                competition_level=competition_level(profile.exports, profile.imports),
                tariff_rate=placeholder_tariff(code, product_category),
                tariff_basis=TariffBasis.PLACEHOLDER,
                trade_volume=profile.exports + profile.imports,
                last_updated=as_of,
                source=DataProvider.SYNTHETIC,
                reliability=Reliability.LOW,
            )
        )
    return results


def export_opportunities(
    countries: Sequence[str],
    exporter_country: str,
    product_category: str | None = None,
    *,
    as_of: datetime,
    year: int,
) -> list[ExportOpportunity]:
    """One synthetic opportunity per destination, sized from its imports."""
    exporter = exporter_country.upper()
    results = []
    for country in countries:
        code = country.upper()
        if code == exporter:
            continue
        profile = profile_for(code)
        hs, description, share = PRODUCTS[_rng("product", code).randrange(len(PRODUCTS))]
        category = product_category or category_for_description(description)
        value = profile.imports * share / 100
        growth = _annual_growth(code, f"{IMPORTS}:{hs}")
        results.append(
            ExportOpportunity(
                id=stable_id(DataProvider.SYNTHETIC, "opportunity", code, hs, year),
                title=f"Export {description} to {profile.name}",
                description=(
                    f"Illustrative opportunity for {description} in {profile.name}. "
                    f"Estimated import value: {format_compact(value)}"
                ),
                country=profile.name,
                country_code=code,
                product_category=category,
                estimated_value=value,
                opportunity_score=opportunity_score(value, growth),
                requirements=requirements_for(description),
                source=DataProvider.SYNTHETIC,
                provenance=Provenance.SYNTHETIC,
                verified=False,
                posted_date=as_of,
                deadline=as_of + OPPORTUNITY_LIFETIME,
            )
        )
    results.sort(key=lambda o: (-o.opportunity_score, -o.estimated_value, o.id))
    return results


def economic_indicators(countries: Sequence[str], *, year: int) -> list[EconomicIndicator]:
    """Latest and previous year for the four trade indicators."""
    results = []
    for country in countries:
        code = country.upper()
        profile = profile_for(code)
        latest = {
            EXPORTS: profile.exports,
            IMPORTS: profile.imports,
            GDP: profile.gdp,
            TRADE_SHARE: profile.trade_share,
        }
        for indicator_id in sorted(latest):
            value = latest[indicator_id]
            previous = _previous(value, _annual_growth(code, indicator_id))
            for y, v in ((year, value), (year - 1, previous)):
                results.append(
                    EconomicIndicator(
                        country_code=code,
                        country_name=profile.name,
                        indicator_id=indicator_id,
                        indicator_name=_INDICATOR_NAMES[indicator_id],
                        year=y,
                        value=round(v, 2),
                    )
                )
    return results


def dashboard_stats(
    countries: Sequence[str],
    *,
    as_of: datetime,
    year: int,
) -> DashboardStats:
    exports = imports = gdp = 0.0
    exports_prev = imports_prev = 0.0
    share_changes = []
    for country in countries:
        code = country.upper()
        profile = profile_for(code)
        exports += profile.exports
        imports += profile.imports
        gdp += profile.gdp
        exports_prev += _previous(profile.exports, _annual_growth(code, EXPORTS))
        imports_prev += _previous(profile.imports, _annual_growth(code, IMPORTS))
        share_prev = _previous(profile.trade_share, _annual_growth(code, TRADE_SHARE))
        share_changes.append(profile.trade_share - share_prev)

    return DashboardStats(
        total_exports=exports,
        total_imports=imports,
        total_gdp=gdp,
        export_growth=round1(growth_rate(exports, exports_prev)),
        import_growth=round1(growth_rate(imports, imports_prev)),
        trade_share_change=round1(sum(share_changes) / len(share_changes)) if share_changes else 0.0,
        countries_covered=len(countries),
        period=str(year),
        source=DataProvider.SYNTHETIC,
        last_updated=as_of,
    )


def _products(code: str, flow_total: float, flow: str) -> list[ProductStat]:
    return [
        ProductStat(
            product_code=hs,
            product_name=description,
            value=flow_total * share / 100,
            percentage=share,
            growth_rate=_annual_growth(code, f"{flow}:{hs}"),
        )
        for hs, description, share in PRODUCTS
    ]


def _partners(code: str, total_trade: float) -> list[TradingPartner]:
    pool = [p for p in _PARTNER_POOL if p != code][: len(_PARTNER_SHARES)]
    rng = _rng("partners", code)
    partners = []
    for partner, share in zip(pool, _PARTNER_SHARES):
        partners.append(
            TradingPartner(
                country=PROFILES[partner].name,
                country_code=partner,
                trade_value=total_trade * share / 100,
                percentage=share,
                trade_type=rng.choice((TradeType.BOTH, TradeType.EXPORT, TradeType.IMPORT)),
            )
        )
    return partners

