"""Shared pytest fixtures for trade-insight."""

from datetime import datetime, timezone

import pytest

from trade_insight.transformers.records import (
    EXPORTS,
    GDP,
    IMPORTS,
    TRADE_SHARE,
    parse_comtrade_records,
    parse_worldbank_records,
)

NOW = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

INDICATOR_NAMES = {
    EXPORTS: "Exports of goods and services (current US$)",
    IMPORTS: "Imports of goods and services (current US$)",
    GDP: "GDP (current US$)",
    TRADE_SHARE: "Trade (% of GDP)",
}

USA_SERIES = {
    EXPORTS: {2022: 3.0e12, 2021: 2.5e12},
    IMPORTS: {2022: 3.9e12, 2021: 3.4e12},
    GDP: {2022: 25.4e12, 2021: 23.3e12},
    TRADE_SHARE: {2022: 27.0, 2021: 25.5},
}

DEU_SERIES = {
    EXPORTS: {2022: 2.0e12, 2021: 1.9e12},
    IMPORTS: {2022: 1.9e12, 2021: 1.7e12},
    GDP: {2022: 4.1e12, 2021: 4.3e12},
    TRADE_SHARE: {2022: 100.0, 2021: 89.0},
}


def _wb_rows(code: str, name: str, series: dict[str, dict[int, float | None]]) -> list[dict]:
    return [
        {
            "indicator": {"id": indicator, "value": INDICATOR_NAMES.get(indicator, indicator)},
            "country": {"id": code[:2], "value": name},
            "countryiso3code": code,
            "date": str(year),
            "value": value,
            "unit": "",
            "obs_status": "",
            "decimal": 0,
        }
        for indicator, by_year in series.items()
        for year, value in by_year.items()
    ]


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock():
    """Fixed UTC clock for the service and validator."""
    return lambda: NOW


@pytest.fixture
def make_wb_payload():
    """Build a World Bank success page: [metadata, records]."""

    def _make(code: str, name: str, series: dict[str, dict[int, float | None]]) -> list:
        rows = _wb_rows(code, name, series)
        return [
            {"page": 1, "pages": 1, "per_page": 1000, "total": len(rows), "sourceid": "2"},
            rows,
        ]

    return _make


@pytest.fixture
def wb_usa_payload(make_wb_payload) -> list:
    return make_wb_payload("USA", "United States", USA_SERIES)


@pytest.fixture
def wb_usa_records(wb_usa_payload):
    return parse_worldbank_records(wb_usa_payload[1])


@pytest.fixture
def wb_two_country_records():
    rows = _wb_rows("USA", "United States", USA_SERIES) + _wb_rows("DEU", "Germany", DEU_SERIES)
    return parse_worldbank_records(rows)


@pytest.fixture
def make_ct_row():
    """Build one raw Comtrade row with sensible defaults."""

    def _make(**overrides) -> dict:
        row = {
            "refYear": 2022,
            "reporterCode": 842,
            "reporterISO": "USA",
            "reporterDesc": "United States",
            "flowCode": "X",
            "partnerCode": 0,
            "partnerISO": "W00",
            "partnerDesc": "World",
            "cmdCode": "TOTAL",
            "cmdDesc": "All Commodities",
            "primaryValue": 1.0e9,
            "cifvalue": None,
            "fobvalue": None,
        }
        row.update(overrides)
        return row

    return _make


@pytest.fixture
def ct_profile_rows(make_ct_row) -> list[dict]:
    """USA trade profile: world totals, two partners, two-digit products."""
    return [
        make_ct_row(flowCode="X", primaryValue=2.0e12),
        make_ct_row(flowCode="M", primaryValue=3.0e12),
        make_ct_row(
            flowCode="X", partnerCode=124, partnerISO="CAN", partnerDesc="Canada",
            primaryValue=3.0e11,
        ),
        make_ct_row(
            flowCode="M", partnerCode=124, partnerISO="CAN", partnerDesc="Canada",
            primaryValue=4.0e11,
        ),
        make_ct_row(
            flowCode="M", partnerCode=156, partnerISO="CHN", partnerDesc="China",
            primaryValue=5.0e11,
        ),
        make_ct_row(
            flowCode="X", cmdCode="84", cmdDesc="Machinery and mechanical appliances",
            primaryValue=3.0e11,
        ),
        make_ct_row(
            flowCode="X", cmdCode="85", cmdDesc="Electrical machinery and equipment",
            primaryValue=2.0e11,
        ),
        make_ct_row(
            refYear=2021, flowCode="X", cmdCode="84",
            cmdDesc="Machinery and mechanical appliances", primaryValue=2.5e11,
        ),
        make_ct_row(
            flowCode="M", cmdCode="87", cmdDesc="Vehicles other than railway",
            primaryValue=4.0e11,
        ),
    ]


@pytest.fixture
def ct_profile_records(ct_profile_rows):
    return parse_comtrade_records(ct_profile_rows)
