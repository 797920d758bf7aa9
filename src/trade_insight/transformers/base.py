"""Transformer protocol: the provider-agnostic normalization interface.

Architecture
------------
Every provider payload reaches the rest of the system through the same
pipeline:

    raw JSON → typed records → ProviderTransformer → canonical models

- **Typed records** (``trade_insight.transformers.records``) validate the
  provider's shape and substitute defaults for optional fields.

- **ProviderTransformer** turns a list of records into canonical entities.
  Transformers are pure: the same records and the same ``retrieved_at``
  always produce identical output. Identifiers are derived from content,
  timestamps come from the caller.

Adding a provider means writing one record type and one transformer; the
aggregation service does not change.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from trade_insight.core.models import ExportOpportunity, MarketData, ProductStat, TradeStats


@runtime_checkable
class ProviderTransformer(Protocol):
    """Normalizes one provider's typed records into canonical entities."""

    def to_trade_stats(
        self,
        records: Sequence[Any],
        country_code: str,
        country_name: str | None = None,
        *,
        retrieved_at: datetime,
    ) -> TradeStats:
        """Build a single country's trade snapshot from its records."""
        ...

    def to_market_data(
        self,
        records: Sequence[Any],
        product_category: str,
        *,
        retrieved_at: datetime,
    ) -> list[MarketData]:
        """One MarketData per reporting country present in `records`."""
        ...

    def to_export_opportunities(
        self,
        records: Sequence[Any],
        excluded_country: str,
        *,
        retrieved_at: datetime,
    ) -> list[ExportOpportunity]:
        """Import flows above the materiality threshold, best first.

        Flows into or out of `excluded_country` (the exporter) are ignored.
        """
        ...

    def to_product_stats(self, records: Sequence[Any]) -> list[ProductStat]:
        """Top products by value, descending."""
        ...
