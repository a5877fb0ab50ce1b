"""Data access layer: price-history sources and the in-memory quote index."""

from .price_history import (
    PriceHistories,
    PriceHistoryIndex,
    PriceHistoryStore,
    QuoteRecord,
    forward_price_close_seq,
    price_average,
    price_close,
    price_close_seq,
    price_quote,
    recent_closes,
)
from .sources import CsvPriceSource, FramePriceSource, PriceSource

__all__ = [
    "QuoteRecord",
    "PriceHistories",
    "PriceHistoryIndex",
    "PriceHistoryStore",
    "price_quote",
    "price_close",
    "price_close_seq",
    "forward_price_close_seq",
    "recent_closes",
    "price_average",
    "PriceSource",
    "CsvPriceSource",
    "FramePriceSource",
]
