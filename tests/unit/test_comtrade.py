"""Tests for the UN Comtrade source and transformer."""

from __future__ import annotations

import httpx
import pytest
import respx

from trade_insight.cache.store import CacheStore
from trade_insight.core.config import ComtradeConfig, HttpConfig
from trade_insight.core.exceptions import (
    ConfigError,
    InvalidResponseError,
    NotFoundError,
    UnauthorizedError,
)
from trade_insight.core.models import (
    CompetitionLevel,
    Provenance,
    Reliability,
    TariffBasis,
    TradeType,
)
from trade_insight.ingestion.comtrade import ComtradeSource, reporter_code
from trade_insight.transformers.base import ProviderTransformer
from trade_insight.transformers.comtrade import ComtradeTransformer
from trade_insight.transformers.metrics import UNREPORTED_BAND
from trade_insight.transformers.records import ComtradeRecord, parse_comtrade_records

CT = "https://comtradeapi.un.org/data/v1/get/C/A/HS"


@pytest.fixture
def transformer() -> ComtradeTransformer:
    return ComtradeTransformer()


@pytest.fixture
def cache() -> CacheStore:
    return CacheStore()


@pytest.fixture
async def source(cache: CacheStore):
    source = ComtradeSource.from_config(
        ComtradeConfig(api_key="test-key", rate_limit=1000.0),
        HttpConfig(backoff_base=0.0),
        cache,
    )
    yield source
    await source.close()


# --- Records ---


class TestRecords:
    def test_aliases_and_defaults(self, make_ct_row):
        record = ComtradeRecord.model_validate(
            make_ct_row(cmdCode=None, cmdDesc=None, primaryValue=None, partnerCode=None)
        )
        assert record.cmd_code == "TOTAL"
        assert record.cmd_desc == "Other"
        assert record.primary_value == 0.0
        assert record.is_world_partner
        assert record.is_total

    def test_numeric_cmd_code_is_text(self, make_ct_row):
        assert ComtradeRecord.model_validate(make_ct_row(cmdCode=84)).cmd_code == "84"

    def test_missing_reporter_skipped(self, make_ct_row):
        rows = [make_ct_row(), make_ct_row(reporterISO=None), make_ct_row(refYear=None)]
        assert len(parse_comtrade_records(rows)) == 1


class TestReporterCode:
    def test_iso3(self):
        assert reporter_code("USA") == 842

    def test_iso2_normalized(self):
        assert reporter_code("de") == 276

    def test_numeric_passthrough(self):
        assert reporter_code("699") == 699

    def test_unknown(self):
        with pytest.raises(NotFoundError):
            reporter_code("ATL")


# --- Source ---


class TestComtradeSource:
    def test_requires_api_key(self):
        with pytest.raises(ConfigError, match="api_key"):
            ComtradeSource.from_config(ComtradeConfig())

    @respx.mock
    async def test_fetch_flows(self, source: ComtradeSource, ct_profile_rows):
        route = respx.get(url__startswith=CT).mock(
            return_value=httpx.Response(200, json={"count": 9, "data": ct_profile_rows})
        )

        records, response = await source.fetch_flows("USA", [2022, 2021])
        assert len(records) == 9
        request = route.calls.last.request
        assert request.headers["Ocp-Apim-Subscription-Key"] == "test-key"
        assert request.url.params["reporterCode"] == "842"
        assert request.url.params["period"] == "2021,2022"
        assert request.url.params["flowCode"] == "X,M"
        assert request.url.params["cmdCode"] == "TOTAL"
        assert "partnerCode" not in request.url.params

    @respx.mock
    async def test_fetch_category_uses_hs_chapters(self, source: ComtradeSource):
        route = respx.get(url__startswith=CT).mock(
            return_value=httpx.Response(200, json={"data": []})
        )

        await source.fetch_category("DEU", "Automotive", [2021, 2022])
        params = route.calls.last.request.url.params
        assert params["cmdCode"] == "87"
        assert params["partnerCode"] == "0"

    @respx.mock
    async def test_fetch_imports(self, source: ComtradeSource):
        route = respx.get(url__startswith=CT).mock(
            return_value=httpx.Response(200, json={"data": []})
        )

        await source.fetch_imports("CHN", [2021, 2022])
        params = route.calls.last.request.url.params
        assert params["flowCode"] == "M"
        assert params["cmdCode"] == "AG2"

    @respx.mock
    async def test_trade_profile_makes_two_calls(self, source: ComtradeSource, make_ct_row):
        route = respx.get(url__startswith=CT).mock(
            return_value=httpx.Response(200, json={"data": [make_ct_row()]})
        )

        records, responses = await source.fetch_trade_profile("USA", 2022)
        assert route.call_count == 2
        assert len(responses) == 2
        assert len(records) == 2

    @respx.mock
    async def test_missing_data_field_is_invalid_and_forgotten(
        self, source: ComtradeSource, cache: CacheStore
    ):
        respx.get(url__startswith=CT).mock(
            return_value=httpx.Response(200, json={"error": "quota exceeded"})
        )

        with pytest.raises(InvalidResponseError, match="quota exceeded"):
            await source.fetch_flows("USA", [2022])
        assert len(cache) == 0

    @respx.mock
    async def test_unauthorized(self, source: ComtradeSource):
        respx.get(url__startswith=CT).mock(return_value=httpx.Response(401))

        with pytest.raises(UnauthorizedError):
            await source.fetch_flows("USA", [2022])


# --- Transformer ---


def _category_rows(make_ct_row, **cif) -> list[ComtradeRecord]:
    base = dict(reporterCode=276, reporterISO="DEU", reporterDesc="Germany", cmdCode="84",
                cmdDesc="Machinery and mechanical appliances")
    rows = [
        make_ct_row(**base, flowCode="X", primaryValue=1.0e11),
        make_ct_row(**base, flowCode="M", primaryValue=5.0e10, **cif),
        make_ct_row(**base, refYear=2021, flowCode="X", primaryValue=8.0e10),
        make_ct_row(**base, refYear=2021, flowCode="M", primaryValue=5.0e10),
    ]
    return parse_comtrade_records(rows)


class TestComtradeTransformer:
    def test_satisfies_protocol(self, transformer):
        assert isinstance(transformer, ProviderTransformer)

    def test_trade_stats_totals(self, transformer, ct_profile_records, now):
        stats = transformer.to_trade_stats(ct_profile_records, "USA", retrieved_at=now)
        assert stats.total_exports == 2.0e12
        assert stats.total_imports == 3.0e12
        assert stats.trade_balance == -1.0e12
        assert stats.period == "2022"
        assert stats.country == "United States"

    def test_trade_stats_partners(self, transformer, ct_profile_records, now):
        stats = transformer.to_trade_stats(ct_profile_records, "USA", retrieved_at=now)
        partners = {p.country_code: p for p in stats.trading_partners}
        assert list(partners) == ["CAN", "CHN"]
        assert partners["CAN"].trade_type == TradeType.BOTH
        assert partners["CAN"].trade_value == 7.0e11
        assert partners["CAN"].percentage == 14.0
        assert partners["CHN"].trade_type == TradeType.IMPORT

    def test_trade_stats_products(self, transformer, ct_profile_records, now):
        stats = transformer.to_trade_stats(ct_profile_records, "USA", retrieved_at=now)
        exports = stats.top_export_products
        assert [p.product_code for p in exports] == ["84", "85"]
        assert exports[0].percentage == 60.0
        assert exports[0].growth_rate == 20.0
        assert exports[1].growth_rate == 0.0
        assert [p.product_code for p in stats.top_import_products] == ["87"]

    def test_totals_fall_back_to_product_sum(self, transformer, make_ct_row, now):
        records = parse_comtrade_records(
            [
                make_ct_row(flowCode="X", cmdCode="84", primaryValue=3.0e9),
                make_ct_row(flowCode="X", cmdCode="85", primaryValue=2.0e9),
            ]
        )
        stats = transformer.to_trade_stats(records, "USA", retrieved_at=now)
        assert stats.total_exports == 5.0e9
        assert stats.total_imports == 0.0

    def test_product_stats_top_ten(self, transformer, make_ct_row):
        rows = [
            make_ct_row(cmdCode=f"{i:02d}", cmdDesc=f"Chapter {i}", primaryValue=float(i) * 1e6)
            for i in range(1, 16)
        ]
        stats = transformer.to_product_stats(parse_comtrade_records(rows))
        assert len(stats) == 10
        assert stats[0].product_code == "15"
        values = [p.value for p in stats]
        assert values == sorted(values, reverse=True)
        assert stats[-1].product_code == "06"

    def test_market_data_with_spread(self, transformer, make_ct_row, now):
        records = _category_rows(make_ct_row, cifvalue=5.5e10, fobvalue=5.0e10)
        [market] = transformer.to_market_data(records, "Machinery", retrieved_at=now)
        assert market.country_code == "DEU"
        assert market.market_size == 1.5e11
        assert market.growth_rate == 15.4
        assert market.competition_level == CompetitionLevel.MEDIUM
        assert market.tariff_rate == 10.0
        assert market.raw_tariff_rate == 10.0
        assert market.tariff_basis == TariffBasis.CIF_FOB_SPREAD
        assert not market.tariff_estimated
        assert market.reliability == Reliability.HIGH

    def test_market_data_spread_clamped(self, transformer, make_ct_row, now):
        records = _category_rows(make_ct_row, cifvalue=1.0e11, fobvalue=5.0e10)
        [market] = transformer.to_market_data(records, "Machinery", retrieved_at=now)
        assert market.tariff_rate == 50.0
        assert market.raw_tariff_rate == 100.0

    def test_market_data_placeholder(self, transformer, make_ct_row, now):
        records = _category_rows(make_ct_row)
        [market] = transformer.to_market_data(records, "Machinery", retrieved_at=now)
        assert market.tariff_basis == TariffBasis.PLACEHOLDER
        assert market.raw_tariff_rate is None
        assert UNREPORTED_BAND[0] <= market.tariff_rate <= UNREPORTED_BAND[1]
        assert market.reliability == Reliability.MEDIUM

    def test_export_opportunities(self, transformer, make_ct_row, now):
        base = dict(reporterCode=276, reporterISO="DEU", reporterDesc="Germany", flowCode="M")
        records = parse_comtrade_records(
            [
                make_ct_row(**base, cmdCode="84", cmdDesc="Machinery and mechanical appliances",
                            primaryValue=5.0e9),
                make_ct_row(**base, refYear=2021, cmdCode="84",
                            cmdDesc="Machinery and mechanical appliances", primaryValue=4.0e9),
                make_ct_row(**base, cmdCode="27", cmdDesc="Mineral fuels", primaryValue=5.0e5),
                make_ct_row(**base, cmdCode="TOTAL", primaryValue=9.0e11),
            ]
        )

        [opportunity] = transformer.to_export_opportunities(records, "IND", retrieved_at=now)
        assert opportunity.title == "Export Machinery and mechanical appliances to Germany"
        assert opportunity.country_code == "DEU"
        assert opportunity.product_category == "Machinery"
        assert opportunity.estimated_value == 5.0e9
        assert opportunity.opportunity_score == 100.0
        assert opportunity.verified is True
        assert opportunity.provenance == Provenance.LIVE

    def test_export_opportunities_exclude_exporter(self, transformer, make_ct_row, now):
        records = parse_comtrade_records(
            [
                make_ct_row(reporterISO="DEU", flowCode="M", cmdCode="84", primaryValue=5.0e9),
                make_ct_row(reporterISO="FRA", flowCode="M", cmdCode="84", partnerISO="IND",
                            partnerCode=699, primaryValue=5.0e9),
            ]
        )
        by_deu = transformer.to_export_opportunities(records, "deu", retrieved_at=now)
        by_ind = transformer.to_export_opportunities(records, "IND", retrieved_at=now)
        assert [o.country_code for o in by_deu] == ["FRA"]
        assert [o.country_code for o in by_ind] == ["DEU"]

    def test_opportunities_deterministic(self, transformer, ct_profile_records, now):
        first = transformer.to_export_opportunities(ct_profile_records, "IND", retrieved_at=now)
        second = transformer.to_export_opportunities(ct_profile_records, "IND", retrieved_at=now)
        assert first == second
