"""Market price feeds."""

from .price_feed import BinancePriceFeed, PriceCache

__all__ = ["BinancePriceFeed", "PriceCache"]
