"""UN Comtrade data API source."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from trade_insight.cache.store import CacheStore
from trade_insight.core.config import ComtradeConfig, HttpConfig
from trade_insight.core.exceptions import ConfigError, InvalidResponseError, NotFoundError
from trade_insight.core.models import DataProvider
from trade_insight.ingestion.client import (
    RequestOptions,
    TransportClient,
    TransportResponse,
    http_settings,
)
from trade_insight.transformers.metrics import HS_CHAPTERS, normalize_country_code
from trade_insight.transformers.records import (
    FLOW_EXPORT,
    FLOW_IMPORT,
    TOTAL_COMMODITY,
    WORLD_PARTNER,
    ComtradeRecord,
    parse_comtrade_records,
)

logger = logging.getLogger(__name__)

_ANNUAL_HS_PATH = "get/C/A/HS"
_AUTH_HEADER = "Ocp-Apim-Subscription-Key"
_TWO_DIGIT = "AG2"
_HEALTH_TIMEOUT = 5.0

# ISO alpha-3 → Comtrade (UN M49) reporter codes
REPORTER_CODES: dict[str, int] = {
    "USA": 842,
    "CHN": 156,
    "JPN": 392,
    "DEU": 276,
    "IND": 699,
    "GBR": 826,
    "FRA": 251,
    "ITA": 380,
    "BRA": 76,
    "CAN": 124,
    "RUS": 643,
    "KOR": 410,
    "AUS": 36,
    "ESP": 724,
    "MEX": 484,
    "IDN": 360,
    "NLD": 528,
    "SAU": 682,
    "TUR": 792,
    "TWN": 490,
}


def reporter_code(country: str) -> int:
    """Comtrade numeric code for an ISO code (numeric codes pass through).

    Raises:
        NotFoundError: The country has no known Comtrade code.
    """
    value = country.strip()
    if value.isdigit():
        return int(value)
    code = REPORTER_CODES.get(normalize_country_code(value))
    if code is None:
        raise NotFoundError(
            f"No Comtrade reporter code for {country!r}",
            context={"country": country},
        )
    return code


class ComtradeSource:
    """Fetches annual HS flows for one reporter.

    Every call needs a subscription key; constructing the source without
    one raises ConfigError so the service can fall back early.
    """

    provider = DataProvider.UN_COMTRADE

    def __init__(self, client: TransportClient) -> None:
        self._client = client

    @classmethod
    def from_config(
        cls,
        config: ComtradeConfig,
        http: HttpConfig | None = None,
        cache: CacheStore | None = None,
        **client_kwargs: Any,
    ) -> ComtradeSource:
        if not config.api_key:
            raise ConfigError(
                "UN Comtrade requires providers.comtrade.api_key",
                context={"field": "providers.comtrade.api_key", "value": None},
            )
        settings = http_settings(config, http or HttpConfig())
        settings.update(client_kwargs)
        settings["headers"] = {_AUTH_HEADER: config.api_key, **settings.get("headers", {})}
        client = TransportClient(DataProvider.UN_COMTRADE, config.base_url, cache, **settings)
        return cls(client)

    @property
    def client(self) -> TransportClient:
        return self._client

    async def close(self) -> None:
        await self._client.close()

    async def fetch_flows(
        self,
        country: str,
        years: Sequence[int],
        *,
        flow_codes: Sequence[str] = (FLOW_EXPORT, FLOW_IMPORT),
        cmd_codes: Sequence[str] = (TOTAL_COMMODITY,),
        partner_code: int | None = None,
        cache_ttl: float | None = None,
    ) -> tuple[list[ComtradeRecord], TransportResponse]:
        """Raw flow query. `partner_code=None` returns every partner."""
        params = {
            "reporterCode": reporter_code(country),
            "period": ",".join(str(y) for y in sorted(years)),
            "flowCode": ",".join(flow_codes),
            "cmdCode": ",".join(cmd_codes),
            "partnerCode": partner_code,
        }
        response = await self._client.request(
            _ANNUAL_HS_PATH, params, RequestOptions(cache_ttl=cache_ttl)
        )
        try:
            raw = _records_from_payload(response.data, response.url)
        except InvalidResponseError:
            self._client.forget(_ANNUAL_HS_PATH, params)
            raise
        records = parse_comtrade_records(raw)
        logger.debug(
            "Comtrade %s %s: %d records (%s)",
            country, params["cmdCode"], len(records), response.source,
        )
        return records, response

    async def fetch_trade_profile(
        self,
        country: str,
        latest_year: int,
        cache_ttl: float | None = None,
    ) -> tuple[list[ComtradeRecord], list[TransportResponse]]:
        """Totals by partner for the latest year plus two-digit world flows.

        The two requests run concurrently.
        """
        (partners, partner_resp), (products, product_resp) = await asyncio.gather(
            self.fetch_flows(country, [latest_year], cache_ttl=cache_ttl),
            self.fetch_flows(
                country,
                [latest_year - 1, latest_year],
                cmd_codes=(_TWO_DIGIT,),
                partner_code=WORLD_PARTNER,
                cache_ttl=cache_ttl,
            ),
        )
        return partners + products, [partner_resp, product_resp]

    async def fetch_category(
        self,
        country: str,
        category: str,
        years: Sequence[int],
        cache_ttl: float | None = None,
    ) -> tuple[list[ComtradeRecord], TransportResponse]:
        """World flows for the HS chapters of `category` (all goods if unmapped)."""
        chapters = HS_CHAPTERS.get(category, (TOTAL_COMMODITY,))
        return await self.fetch_flows(
            country,
            years,
            cmd_codes=chapters,
            partner_code=WORLD_PARTNER,
            cache_ttl=cache_ttl,
        )

    async def fetch_imports(
        self,
        country: str,
        years: Sequence[int],
        cache_ttl: float | None = None,
    ) -> tuple[list[ComtradeRecord], TransportResponse]:
        """Two-digit imports from the world, for opportunity scoring."""
        return await self.fetch_flows(
            country,
            years,
            flow_codes=(FLOW_IMPORT,),
            cmd_codes=(_TWO_DIGIT,),
            partner_code=WORLD_PARTNER,
            cache_ttl=cache_ttl,
        )

    async def health_check(self, year: int) -> bool:
        """One uncached, single-attempt request for a small known slice."""
        await self._client.request(
            _ANNUAL_HS_PATH,
            {
                "reporterCode": REPORTER_CODES["USA"],
                "period": year,
                "flowCode": FLOW_EXPORT,
                "cmdCode": TOTAL_COMMODITY,
                "partnerCode": WORLD_PARTNER,
            },
            RequestOptions(timeout=_HEALTH_TIMEOUT, max_retries=0, use_cache=False),
        )
        return True


def _records_from_payload(payload: Any, url: str) -> list[Any]:
    if not isinstance(payload, dict):
        raise InvalidResponseError(
            f"Comtrade response is {type(payload).__name__}, expected an object",
            context={"url": url},
        )
    data = payload.get("data")
    if data is None:
        error = payload.get("error") or payload.get("message")
        raise InvalidResponseError(
            f"Comtrade response has no data: {error or 'missing data field'}",
            context={"url": url},
        )
    if not isinstance(data, list):
        raise InvalidResponseError(
            f"Comtrade data field is {type(data).__name__}, expected a list",
            context={"url": url},
        )
    return data
