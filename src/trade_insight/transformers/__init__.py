"""Provider payload normalization: typed records, metrics, transformers."""

from trade_insight.transformers.base import ProviderTransformer
from trade_insight.transformers.comtrade import ComtradeTransformer
from trade_insight.transformers.records import (
    ComtradeRecord,
    WorldBankIndicator,
    parse_comtrade_records,
    parse_worldbank_records,
)
from trade_insight.transformers.worldbank import WorldBankTransformer

__all__ = [
    "ComtradeRecord",
    "ComtradeTransformer",
    "ProviderTransformer",
    "WorldBankIndicator",
    "WorldBankTransformer",
    "parse_comtrade_records",
    "parse_worldbank_records",
]
