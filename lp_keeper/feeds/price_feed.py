"""External spot price feed with a short-lived cache."""

import threading
import time
from typing import Callable, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

import orjson
import structlog

from ..config.defaults import PriceFeedParams

logger = structlog.get_logger(__name__)


class PriceCache:
    """TTL cache keyed by pair symbol. Expired entries are evicted when read."""

    def __init__(self, ttl_seconds: float = 30.0,
                 clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: dict[str, tuple[float, float]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[float]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if self.clock() - stored_at >= self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: float) -> None:
        with self._lock:
            self._entries[key] = (value, self.clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class BinancePriceFeed:
    """Spot prices from the Binance public ticker endpoint."""

    def __init__(self, params: Optional[PriceFeedParams] = None,
                 cache: Optional[PriceCache] = None,
                 opener: Callable = urlopen) -> None:
        self.params = params or PriceFeedParams()
        self.cache = cache or PriceCache(self.params.cache_ttl_seconds)
        self._open = opener

    def get_price(self, pair_symbol: str) -> Optional[float]:
        """
        Current price for a pair such as SOLUSDC.

        Returns None when the feed cannot answer; callers treat that as no data.
        """
        cached = self.cache.get(pair_symbol)
        if cached is not None:
            return cached

        price = self._fetch(pair_symbol)
        if price is not None:
            self.cache.set(pair_symbol, price)
        return price

    def _fetch(self, pair_symbol: str) -> Optional[float]:
        url = f"{self.params.base_url}/ticker/price?{urlencode({'symbol': pair_symbol})}"
        request = Request(url, headers={"Accept": "application/json"})

        try:
            with self._open(request, timeout=self.params.timeout_seconds) as response:
                payload = orjson.loads(response.read())
        except HTTPError as e:
            logger.warning("Price feed HTTP error", symbol=pair_symbol, status=e.code)
            return None
        except (URLError, OSError) as e:
            logger.warning("Price feed unreachable", symbol=pair_symbol, error=str(e))
            return None
        except orjson.JSONDecodeError as e:
            logger.warning("Price feed returned invalid JSON", symbol=pair_symbol, error=str(e))
            return None

        try:
            price = float(payload["price"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Price feed payload missing price", symbol=pair_symbol,
                           payload=str(payload)[:100])
            return None

        if not price > 0:
            logger.warning("Price feed returned non-positive price", symbol=pair_symbol,
                           price=price)
            return None
        return price
