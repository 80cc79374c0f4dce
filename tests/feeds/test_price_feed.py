"""Tests for the price cache and the Binance ticker feed."""

import io
from unittest.mock import MagicMock, Mock
from urllib.error import HTTPError, URLError

import pytest

from lp_keeper.config.defaults import PriceFeedParams
from lp_keeper.feeds.price_feed import BinancePriceFeed, PriceCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _response(body: bytes):
    response = MagicMock()
    response.__enter__.return_value = io.BytesIO(body)
    return response


class TestPriceCache:

    def test_hit_within_ttl(self):
        clock = FakeClock()
        cache = PriceCache(ttl_seconds=30, clock=clock)
        cache.set("SOLUSDC", 187.2)

        clock.now += 29
        assert cache.get("SOLUSDC") == 187.2

    def test_expired_entry_is_evicted_on_read(self):
        clock = FakeClock()
        cache = PriceCache(ttl_seconds=30, clock=clock)
        cache.set("SOLUSDC", 187.2)

        clock.now += 30
        assert cache.get("SOLUSDC") is None
        assert len(cache) == 0

    def test_instances_are_independent(self):
        first, second = PriceCache(), PriceCache()
        first.set("SOLUSDC", 1.0)
        assert second.get("SOLUSDC") is None


class TestBinancePriceFeed:

    def test_fetches_and_caches(self):
        opener = Mock(return_value=_response(b'{"symbol":"SOLUSDC","price":"187.45000000"}'))
        feed = BinancePriceFeed(PriceFeedParams(timeout_seconds=3.0), opener=opener)

        assert feed.get_price("SOLUSDC") == 187.45
        assert feed.get_price("SOLUSDC") == 187.45
        assert opener.call_count == 1

        request = opener.call_args.args[0]
        assert request.full_url == "https://api.binance.com/api/v3/ticker/price?symbol=SOLUSDC"
        assert opener.call_args.kwargs["timeout"] == 3.0

    def test_refetches_after_ttl(self):
        clock = FakeClock()
        opener = Mock(side_effect=[
            _response(b'{"price":"1.00"}'),
            _response(b'{"price":"1.06"}'),
        ])
        feed = BinancePriceFeed(cache=PriceCache(30, clock=clock), opener=opener)

        assert feed.get_price("ABC") == 1.00
        clock.now += 31
        assert feed.get_price("ABC") == 1.06

    @pytest.mark.parametrize("error", [
        HTTPError("https://api.binance.com", 400, "Bad Request", {}, None),
        URLError("name resolution failed"),
        TimeoutError("read timed out"),
    ])
    def test_transport_errors_return_none(self, error):
        feed = BinancePriceFeed(opener=Mock(side_effect=error))
        assert feed.get_price("SOLUSDC") is None

    @pytest.mark.parametrize("body", [
        b"<html>maintenance</html>",
        b'{"code":-1121,"msg":"Invalid symbol."}',
        b'{"price":"not-a-number"}',
        b'{"price":"0"}',
        b"[]",
    ])
    def test_bad_payloads_return_none(self, body):
        feed = BinancePriceFeed(opener=Mock(return_value=_response(body)))
        assert feed.get_price("SOLUSDC") is None

    def test_failures_are_not_cached(self):
        opener = Mock(side_effect=[URLError("down"), _response(b'{"price":"2.5"}')])
        feed = BinancePriceFeed(opener=opener)

        assert feed.get_price("SOLUSDC") is None
        assert feed.get_price("SOLUSDC") == 2.5
