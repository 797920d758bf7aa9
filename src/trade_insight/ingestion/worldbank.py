"""World Bank indicators API source."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from trade_insight.cache.store import CacheStore
from trade_insight.core.config import HttpConfig, WorldBankConfig
from trade_insight.core.exceptions import InvalidResponseError, NotFoundError
from trade_insight.core.models import DataProvider
from trade_insight.ingestion.client import (
    RequestOptions,
    TransportClient,
    TransportResponse,
    http_settings,
)
from trade_insight.transformers.records import GDP, WorldBankIndicator, parse_worldbank_records

logger = logging.getLogger(__name__)

# WDI database id; the API mixes sources unless pinned
_SOURCE_ID = 2
_PAGE_SIZE = 1000
_HEALTH_TIMEOUT = 5.0


class WorldBankSource:
    """Fetches indicator series for one or more countries.

    Endpoint: /country/{codes}/indicator/{ids}?format=json&date=Y1:Y2
    Multiple ids are joined with ";" and answered in a single page.

    Response shape:
        success: [{"page": 1, "pages": 1, ...}, [record, ...]]
                 (the second element is null when there is no data)
        error:   [{"message": [{"id": "120", "key": "...", "value": "..."}]}]
    """

    provider = DataProvider.WORLD_BANK

    def __init__(self, client: TransportClient) -> None:
        self._client = client

    @classmethod
    def from_config(
        cls,
        config: WorldBankConfig,
        http: HttpConfig | None = None,
        cache: CacheStore | None = None,
        **client_kwargs: Any,
    ) -> WorldBankSource:
        settings = http_settings(config, http or HttpConfig())
        settings.update(client_kwargs)
        client = TransportClient(DataProvider.WORLD_BANK, config.base_url, cache, **settings)
        return cls(client)

    @property
    def client(self) -> TransportClient:
        return self._client

    async def close(self) -> None:
        await self._client.close()

    async def fetch_indicators(
        self,
        country: str,
        indicators: Sequence[str],
        start_year: int,
        end_year: int,
        cache_ttl: float | None = None,
    ) -> tuple[list[WorldBankIndicator], TransportResponse]:
        """Fetch `indicators` for `country` over [start_year, end_year].

        Raises:
            NotFoundError: Unknown country or indicator.
            InvalidResponseError: Payload is not the documented shape.
        """
        path = f"country/{country.upper()}/indicator/{';'.join(indicators)}"
        params = {
            "format": "json",
            "per_page": _PAGE_SIZE,
            "date": f"{start_year}:{end_year}",
            "source": _SOURCE_ID,
        }
        response = await self._client.request(
            path, params, RequestOptions(cache_ttl=cache_ttl)
        )
        try:
            raw = _records_from_payload(response.data, response.url)
        except (InvalidResponseError, NotFoundError):
            self._client.forget(path, params)
            raise
        records = parse_worldbank_records(raw)
        logger.debug(
            "World Bank %s: %d records (%s)", country, len(records), response.source
        )
        return records, response

    async def health_check(self) -> bool:
        """One uncached, single-attempt request for a known series."""
        await self._client.request(
            f"country/USA/indicator/{GDP}",
            {"format": "json", "per_page": 1},
            RequestOptions(timeout=_HEALTH_TIMEOUT, max_retries=0, use_cache=False),
        )
        return True


def _records_from_payload(payload: Any, url: str) -> list[Any]:
    if not isinstance(payload, list) or not payload:
        raise InvalidResponseError(
            "World Bank response is not a non-empty JSON array",
            context={"url": url},
        )

    head = payload[0]
    if isinstance(head, dict) and "message" in head:
        messages = head.get("message") or []
        detail = "; ".join(
            str(m.get("value", m)) if isinstance(m, dict) else str(m) for m in messages
        )
        raise NotFoundError(
            f"World Bank error: {detail or 'unknown error'}",
            context={"url": url, "messages": messages},
        )

    if len(payload) < 2:
        raise InvalidResponseError(
            "World Bank response has no records element",
            context={"url": url},
        )

    records = payload[1]
    if records is None:
        return []
    if not isinstance(records, list):
        raise InvalidResponseError(
            f"World Bank records element is {type(records).__name__}, expected a list",
            context={"url": url},
        )

    pages = head.get("pages") if isinstance(head, dict) else None
    if isinstance(pages, int) and pages > 1:
        logger.warning(
            "World Bank returned %d pages for %s; only the first is used", pages, url,
        )
    return records
