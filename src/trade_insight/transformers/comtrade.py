"""UN Comtrade flow records → canonical trade models."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timedelta

from trade_insight.core.models import (
    DataProvider,
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
    MATERIALITY_THRESHOLD,
    UNREPORTED_BAND,
    category_for_description,
    cif_fob_spread,
    clamp_tariff,
    competition_level,
    format_compact,
    growth_rate,
    opportunity_score,
    placeholder_tariff,
    requirements_for,
    round1,
    stable_id,
)
from trade_insight.transformers.records import FLOW_EXPORT, FLOW_IMPORT, ComtradeRecord

logger = logging.getLogger(__name__)

TOP_PRODUCTS = 10
TOP_PARTNERS = 10
MAX_OPPORTUNITIES = 20
OPPORTUNITY_LIFETIME = timedelta(days=365)


class ComtradeTransformer:
    """Normalizes bilateral, per-commodity flows.

    Rows with partner code 0 are flows with the whole world; rows with
    commodity code TOTAL are all-commodity aggregates. Mixing the two kinds
    in one sum double-counts, so every method picks its rows explicitly.
    """

    provider = DataProvider.UN_COMTRADE

    def to_trade_stats(
        self,
        records: Sequence[ComtradeRecord],
        country_code: str,
        country_name: str | None = None,
        *,
        retrieved_at: datetime,
    ) -> TradeStats:
        code = country_code.upper()
        own = [r for r in records if r.reporter_iso.upper() == code] or list(records)
        year = max((r.ref_year for r in own), default=None)
        latest = [r for r in own if r.ref_year == year]

        world_totals = [r for r in latest if r.is_world_partner and r.is_total]
        world_products = [r for r in own if r.is_world_partner and not r.is_total]

        exports = _flow_total(world_totals, world_products, year, FLOW_EXPORT)
        imports = _flow_total(world_totals, world_products, year, FLOW_IMPORT)

        partners = self._trading_partners(
            [r for r in latest if r.is_total and not r.is_world_partner],
            exports + imports,
        )

        return TradeStats(
            country=country_name or _reporter_name(own, code),
            country_code=code,
            total_exports=exports,
            total_imports=imports,
            top_export_products=self.to_product_stats(
                [r for r in world_products if r.flow_code == FLOW_EXPORT]
            ),
            top_import_products=self.to_product_stats(
                [r for r in world_products if r.flow_code == FLOW_IMPORT]
            ),
            trading_partners=partners,
            period=str(year) if year is not None else "",
            source=DataProvider.UN_COMTRADE,
            last_updated=retrieved_at,
        )

    def to_market_data(
        self,
        records: Sequence[ComtradeRecord],
        product_category: str,
        *,
        retrieved_at: datetime,
    ) -> list[MarketData]:
        """Market size is the reporter's total trade in the category.

        Tariff comes from the CIF/FOB spread when both are reported,
        otherwise from a tagged 0-15% placeholder.
        """
        results: list[MarketData] = []
        for code, own in _group(records, lambda r: r.reporter_iso.upper()).items():
            rows = [r for r in own if not r.is_total] or own
            year = max(r.ref_year for r in rows)
            latest = [r for r in rows if r.ref_year == year]
            previous = [r for r in rows if r.ref_year == year - 1]

            current_value = _sum(latest)
            exports = _sum(r for r in latest if r.flow_code == FLOW_EXPORT)
            imports = _sum(r for r in latest if r.flow_code == FLOW_IMPORT)

            spread = cif_fob_spread(
                [r.cif_value or 0.0 for r in latest],
                [r.fob_value or 0.0 for r in latest],
            )
            if spread is not None:
                tariff = round1(clamp_tariff(spread))
                basis = TariffBasis.CIF_FOB_SPREAD
                reliability = Reliability.HIGH
            else:
                tariff = placeholder_tariff(code, product_category, UNREPORTED_BAND)
                basis = TariffBasis.PLACEHOLDER
                reliability = Reliability.MEDIUM

            results.append(
                MarketData(
                    id=stable_id(DataProvider.UN_COMTRADE, code, product_category, year),
                    country=_reporter_name(own, code),
                    country_code=code,
                    product_category=product_category,
                    market_size=current_value,
                    growth_rate=round1(growth_rate(current_value, _sum(previous))),
                    competition_level=competition_level(exports, imports),
                    tariff_rate=tariff,
                    tariff_basis=basis,
                    raw_tariff_rate=round1(spread) if spread is not None else None,
                    trade_volume=exports + imports,
                    last_updated=retrieved_at,
                    source=DataProvider.UN_COMTRADE,
                    reliability=reliability,
                )
            )
        return results

    def to_export_opportunities(
        self,
        records: Sequence[ComtradeRecord],
        excluded_country: str,
        *,
        retrieved_at: datetime,
    ) -> list[ExportOpportunity]:
        """Per (importer, commodity) opportunities from import flows.

        Flows reported by, or sourced from, `excluded_country` are ignored.
        """
        excluded = excluded_country.upper()
        imports = [
            r
            for r in records
            if r.flow_code == FLOW_IMPORT
            and not r.is_total
            and r.reporter_iso.upper() != excluded
            and r.partner_iso.upper() != excluded
        ]

        results: list[ExportOpportunity] = []
        for code, own in _group(imports, lambda r: r.reporter_iso.upper()).items():
            year = max(r.ref_year for r in own)
            name = _reporter_name(own, code)
            for cmd_code, product_rows in _group(own, lambda r: r.cmd_code).items():
                by_year = _sum_by_year(product_rows)
                value = by_year.get(year, 0.0)
                if value <= MATERIALITY_THRESHOLD:
                    continue

                growth = None
                if year - 1 in by_year:
                    growth = growth_rate(value, by_year[year - 1])
                description = product_rows[0].cmd_desc
                results.append(
                    ExportOpportunity(
                        id=stable_id(DataProvider.UN_COMTRADE, "opportunity", code, cmd_code, year),
                        title=f"Export {description} to {name}",
                        description=(
                            f"Market opportunity for {description} in {name}. "
                            f"Current import value: {format_compact(value)}"
                        ),
                        country=name,
                        country_code=code,
                        product_category=category_for_description(description),
                        estimated_value=value,
                        opportunity_score=opportunity_score(value, growth),
                        requirements=requirements_for(description),
                        source=DataProvider.UN_COMTRADE,
                        provenance=Provenance.LIVE,
                        verified=True,
                        posted_date=retrieved_at,
                        deadline=retrieved_at + OPPORTUNITY_LIFETIME,
                    )
                )

        results.sort(key=lambda o: (-o.opportunity_score, -o.estimated_value, o.id))
        return results[:MAX_OPPORTUNITIES]

    def to_product_stats(self, records: Sequence[ComtradeRecord]) -> list[ProductStat]:
        """Top commodities in the latest year, with year-over-year growth.

        Percentages are shares of the latest year's total across all
        commodities in `records`.
        """
        rows = [r for r in records if not r.is_total]
        if not rows:
            return []
        year = max(r.ref_year for r in rows)
        year_total = _sum(r for r in rows if r.ref_year == year)

        stats: list[ProductStat] = []
        for cmd_code, product_rows in _group(rows, lambda r: r.cmd_code).items():
            by_year = _sum_by_year(product_rows)
            value = by_year.get(year, 0.0)
            if not value:
                continue
            share = value / year_total * 100 if year_total > 0 else 0.0
            stats.append(
                ProductStat(
                    product_code=cmd_code,
                    product_name=product_rows[0].cmd_desc,
                    value=value,
                    percentage=round1(share),
                    growth_rate=round1(growth_rate(value, by_year.get(year - 1, 0.0))),
                )
            )
        stats.sort(key=lambda p: (-p.value, p.product_code))
        return stats[:TOP_PRODUCTS]

    def _trading_partners(
        self,
        rows: Sequence[ComtradeRecord],
        total_trade: float,
    ) -> list[TradingPartner]:
        flows: dict[str, dict[str, float]] = defaultdict(lambda: defaultdict(float))
        names: dict[str, str] = {}
        for r in rows:
            key = r.partner_iso.upper() or str(r.partner_code)
            flows[key][r.flow_code] += r.primary_value
            names.setdefault(key, r.partner_desc or key)

        partners: list[TradingPartner] = []
        for key, by_flow in flows.items():
            exported = by_flow.get(FLOW_EXPORT, 0.0)
            imported = by_flow.get(FLOW_IMPORT, 0.0)
            value = exported + imported
            if value <= 0:
                continue
            if exported > 0 and imported > 0:
                trade_type = TradeType.BOTH
            elif exported > 0:
                trade_type = TradeType.EXPORT
            else:
                trade_type = TradeType.IMPORT
            partners.append(
                TradingPartner(
                    country=names[key],
                    country_code=key,
                    trade_value=value,
                    percentage=round1(value / total_trade * 100) if total_trade > 0 else 0.0,
                    trade_type=trade_type,
                )
            )
        partners.sort(key=lambda p: (-p.trade_value, p.country_code))
        return partners[:TOP_PARTNERS]


# --- Helpers ---


def _group(
    records: Iterable[ComtradeRecord],
    key: Callable[[ComtradeRecord], str],
) -> dict[str, list[ComtradeRecord]]:
    groups: dict[str, list[ComtradeRecord]] = defaultdict(list)
    for record in records:
        groups[key(record)].append(record)
    return dict(sorted(groups.items()))


def _sum(records: Iterable[ComtradeRecord]) -> float:
    return sum((r.primary_value for r in records), 0.0)


def _sum_by_year(records: Sequence[ComtradeRecord]) -> dict[int, float]:
    totals: dict[int, float] = defaultdict(float)
    for r in records:
        totals[r.ref_year] += r.primary_value
    return dict(totals)


def _flow_total(
    world_totals: Sequence[ComtradeRecord],
    world_products: Sequence[ComtradeRecord],
    year: int | None,
    flow: str,
) -> float:
    """Reported all-commodity total, else the sum of commodity rows."""
    reported = [r for r in world_totals if r.flow_code == flow]
    if reported:
        return _sum(reported)
    return _sum(r for r in world_products if r.flow_code == flow and r.ref_year == year)


def _reporter_name(records: Sequence[ComtradeRecord], fallback: str) -> str:
    for r in records:
        if r.reporter_desc:
            return r.reporter_desc
    return fallback
