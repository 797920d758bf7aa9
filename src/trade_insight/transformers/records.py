"""Typed intermediate records parsed from raw provider payloads.

Raw payloads are decoded JSON of unknown quality. Each record type validates
its own shape; parse functions drop records that fail and keep the rest.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

# World Bank indicator ids
EXPORTS = "NE.EXP.GNFS.CD"
IMPORTS = "NE.IMP.GNFS.CD"
GDP = "NY.GDP.MKTP.CD"
TRADE_SHARE = "NE.TRD.GNFS.ZS"

TRADE_INDICATORS: tuple[str, ...] = (EXPORTS, IMPORTS, GDP, TRADE_SHARE)

# Comtrade sentinel codes
WORLD_PARTNER = 0
TOTAL_COMMODITY = "TOTAL"
FLOW_EXPORT = "X"
FLOW_IMPORT = "M"


class WorldBankIndicator(BaseModel):
    """One World Bank (country, indicator, year) observation.

    Raw shape:
        {"indicator": {"id": ..., "value": ...},
         "country": {"id": ..., "value": ...},
         "countryiso3code": "USA", "date": "2022", "value": 1.0e12}
    """

    model_config = ConfigDict(frozen=True)

    indicator_id: str = Field(min_length=1)
    indicator_name: str = ""
    country_id: str = ""
    country_name: str = ""
    country_iso3: str = ""
    year: int
    value: float | None = None

    @model_validator(mode="before")
    @classmethod
    def flatten(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "indicator" not in data:
            return data
        indicator = data.get("indicator") or {}
        country = data.get("country") or {}
        return {
            "indicator_id": indicator.get("id"),
            "indicator_name": indicator.get("value") or "",
            "country_id": country.get("id") or "",
            "country_name": country.get("value") or "",
            "country_iso3": data.get("countryiso3code") or country.get("id") or "",
            "year": data.get("date"),
            "value": data.get("value"),
        }

    @property
    def country_code(self) -> str:
        return self.country_iso3 or self.country_id


class ComtradeRecord(BaseModel):
    """One Comtrade flow row: reporter -> partner, commodity, year, value."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    ref_year: int = Field(alias="refYear")
    reporter_code: int = Field(default=0, alias="reporterCode")
    reporter_iso: str = Field(alias="reporterISO", min_length=1)
    reporter_desc: str = Field(default="", alias="reporterDesc")
    flow_code: str = Field(default="", alias="flowCode")
    partner_code: int = Field(default=WORLD_PARTNER, alias="partnerCode")
    partner_iso: str = Field(default="", alias="partnerISO")
    partner_desc: str = Field(default="", alias="partnerDesc")
    cmd_code: str = Field(default=TOTAL_COMMODITY, alias="cmdCode")
    cmd_desc: str = Field(default="Other", alias="cmdDesc")
    primary_value: float = Field(default=0.0, alias="primaryValue")
    cif_value: float | None = Field(default=None, alias="cifvalue")
    fob_value: float | None = Field(default=None, alias="fobvalue")

    @field_validator("reporter_code", "partner_code", "primary_value", mode="before")
    @classmethod
    def none_is_zero(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator(
        "reporter_desc", "flow_code", "partner_iso", "partner_desc", mode="before"
    )
    @classmethod
    def none_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("cmd_code", mode="before")
    @classmethod
    def cmd_code_text(cls, v: Any) -> Any:
        if v is None:
            return TOTAL_COMMODITY
        return str(v)

    @field_validator("cmd_desc", mode="before")
    @classmethod
    def cmd_desc_default(cls, v: Any) -> Any:
        return v or "Other"

    @property
    def is_world_partner(self) -> bool:
        return self.partner_code == WORLD_PARTNER

    @property
    def is_total(self) -> bool:
        return self.cmd_code == TOTAL_COMMODITY


def parse_worldbank_records(raw: list[Any]) -> list[WorldBankIndicator]:
    """Parse the records half of a World Bank page, skipping bad rows."""
    return _parse_each(WorldBankIndicator, raw, "World Bank")


def parse_comtrade_records(raw: list[Any]) -> list[ComtradeRecord]:
    """Parse the `data` list of a Comtrade response, skipping bad rows."""
    return _parse_each(ComtradeRecord, raw, "Comtrade")


def _parse_each(model: type[BaseModel], raw: list[Any], label: str) -> list:
    records = []
    skipped = 0
    for item in raw:
        try:
            records.append(model.model_validate(item))
        except ValidationError as e:
            skipped += 1
            logger.debug("Skipping %s record: %s", label, e.errors()[0]["msg"])
    if skipped:
        logger.warning("Skipped %d malformed %s records of %d", skipped, label, len(raw))
    return records
