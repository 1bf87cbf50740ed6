"""Market comparison: stats cache, SerpAPI client and the comparator."""

import asyncio
import os
import unittest
from unittest.mock import patch

import httpx
import pytest

from kostnadskoll.core.config import Settings, get_settings
from kostnadskoll.schemas.market import MarketProvider
from kostnadskoll.services.errors import UpstreamMarketError
from kostnadskoll.services.market.cache import MarketStatsCache
from kostnadskoll.services.market.serpapi import (
    SerpApiPriceClient,
    dedupe_near_values,
    extract_prices,
    parse_price_value,
)
from kostnadskoll.services.market.service import (
    FALLBACK_WARNING,
    LIVE_FAILED_NOTE,
    MIXED_WARNING,
    MarketComparator,
    cache_key,
    percentile,
    sanitize_items,
    stats_from_prices,
)

SHOPPING_PAYLOAD = {
    "shopping_results": [
        {"title": "Elavtal A", "price": "899 kr"},
        {"title": "Elavtal B", "extracted_price": 1099},
        {"title": "Elavtal C", "price": "1 299,00 kr"},
        {"title": "Elavtal D", "price": "899,50 kr"},
    ]
}


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class MarketStatsCacheTests(unittest.TestCase):
    def test_entries_expire_after_ttl(self):
        clock = FakeClock()
        cache = MarketStatsCache(ttl_seconds=60, clock=clock)
        cache.set("el|vattenfall", "stats")
        self.assertEqual(cache.get("el|vattenfall"), "stats")

        clock.now += 59
        self.assertEqual(cache.get("el|vattenfall"), "stats")
        clock.now += 1
        self.assertIsNone(cache.get("el|vattenfall"))
        self.assertEqual(len(cache), 0)

    def test_per_entry_ttl_and_sweep(self):
        clock = FakeClock()
        cache = MarketStatsCache(ttl_seconds=3600, clock=clock)
        cache.set("short", 1, ttl_seconds=10)
        cache.set("long", 2)
        clock.now += 11
        self.assertEqual(cache.sweep(), 1)
        self.assertEqual(len(cache), 1)
        self.assertEqual(cache.get("long"), 2)

    def test_pending_registry(self):
        cache = MarketStatsCache()
        loop = asyncio.new_event_loop()
        try:
            first = loop.create_future()
            other = loop.create_future()
            cache.register_pending("k", first)
            self.assertIs(cache.get_pending("k"), first)
            cache.clear_pending("k", other)
            self.assertIs(cache.get_pending("k"), first)
            cache.clear_pending("k", first)
            self.assertIsNone(cache.get_pending("k"))
        finally:
            loop.close()


class PriceParsingTests(unittest.TestCase):
    def test_parse_price_value(self):
        self.assertEqual(parse_price_value("1 299,00 kr"), 1299.0)
        self.assertEqual(parse_price_value(249), 249.0)
        self.assertIsNone(parse_price_value("gratis"))
        self.assertIsNone(parse_price_value(True))
        self.assertIsNone(parse_price_value({"value": 1}))

    def test_dedupe_near_values(self):
        self.assertEqual(dedupe_near_values([100, 100.4, 250, 99.8]), [99.8, 250])

    def test_extract_prices(self):
        self.assertEqual(extract_prices(SHOPPING_PAYLOAD), [899.0, 1099.0, 1299.0])
        self.assertEqual(extract_prices({"organic_results": "nope"}), [])
        self.assertEqual(extract_prices(None), [])

    def test_percentiles(self):
        self.assertEqual(percentile([], 0.5), 0.0)
        self.assertEqual(percentile([5.0], 0.8), 5.0)
        self.assertEqual(percentile([100.0, 200.0, 300.0], 0.5), 200.0)
        self.assertAlmostEqual(percentile([100.0, 200.0, 300.0], 0.2), 140.0)
        stats = stats_from_prices([300, 100, 200])
        self.assertEqual((stats.low, stats.median), (140.0, 200.0))
        self.assertAlmostEqual(stats.high, 260.0)
        self.assertEqual(stats.sample_size, 3)


class SanitizeItemsTests(unittest.TestCase):
    def test_drops_unusable_rows(self):
        items = sanitize_items(
            [
                {"vendorName": "Vattenfall", "category": "el", "currentPrice": "1 500 kr"},
                {"vendor_name": "X", "category": "Mobil", "current_price": 0},
                {"category": "Mobil", "current_price": "abc"},
                "garbage",
                {"key": "k1", "category": "Streaming", "current_price": 129, "currency": "sek"},
            ]
        )
        self.assertEqual(len(items), 2)
        self.assertEqual(items[0].key, "entry-1")
        self.assertEqual(items[0].current_price, 1500)
        self.assertEqual(str(items[0].category), "El")
        self.assertEqual(items[1].key, "k1")
        self.assertEqual(items[1].currency, "SEK")
        self.assertEqual(cache_key(items[0]), "el|vattenfall")

    def test_limit(self):
        raw = [{"category": "Mobil", "current_price": 100 + n} for n in range(50)]
        self.assertEqual(len(sanitize_items(raw, limit=30)), 30)


def _fallback_settings() -> Settings:
    return Settings(serpapi_api_key="", market_compare_provider="auto")


def _live_settings(**overrides) -> Settings:
    values = {"serpapi_api_key": "serp-key", "market_compare_provider": "auto", "market_compare_timeout_seconds": 2.0}
    values.update(overrides)
    return Settings(**values)


async def test_electricity_fallback_scenario():
    comparator = MarketComparator(settings=_fallback_settings())
    result = await comparator.compare([{"category": "El", "current_price": 1500}])

    assert result.provider == MarketProvider.FALLBACK
    assert result.warning == FALLBACK_WARNING
    item = result.items[0]
    assert item.market_median == 999
    assert item.possible_saving == 501
    assert item.saving_percent == 33.4
    assert item.recommendation == "Stor avvikelse mot marknaden. Förhandla direkt eller byt leverantör."
    assert item.provider == MarketProvider.FALLBACK


async def test_fallback_recommendation_tiers():
    comparator = MarketComparator(settings=_fallback_settings())
    result = await comparator.compare(
        [
            {"key": "cheap", "category": "Mobil", "current_price": 199},
            {"key": "mid", "category": "Mobil", "current_price": 300},
            {"key": "small", "category": "Mobil", "current_price": 260},
        ]
    )
    by_key = {item.key: item for item in result.items}
    assert by_key["cheap"].possible_saving == 0
    assert by_key["cheap"].recommendation == "Du ligger redan i nivå med marknadsmedian för mobil."
    assert by_key["mid"].saving_percent == 17.0
    assert "Sikta mot ca 249 kr/mån." in by_key["mid"].recommendation
    assert by_key["small"].recommendation == "Mindre avvikelse mot marknaden. Be om lojalitetsrabatt."


async def test_service_items_are_not_applicable():
    comparator = MarketComparator(settings=_fallback_settings())
    result = await comparator.compare([{"category": "Tjänst", "current_price": 8000}])
    item = result.items[0]
    assert item.provider == MarketProvider.NOT_APPLICABLE
    assert item.possible_saving == 0
    assert item.market_median == 8000


async def test_empty_input():
    result = await MarketComparator(settings=_fallback_settings()).compare([])
    assert result.provider == MarketProvider.FALLBACK
    assert result.items == []
    assert result.warning == ""


async def test_live_comparison_uses_serpapi_and_caches():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.params["q"])
        assert request.url.params["engine"] == "google_shopping"
        assert request.url.params["api_key"] == "serp-key"
        return httpx.Response(200, json=SHOPPING_PAYLOAD)

    comparator = MarketComparator(settings=_live_settings(), transport=httpx.MockTransport(handler))
    items = [
        {"key": "a", "vendor_name": "Vattenfall", "category": "El", "current_price": 1500},
        {"key": "b", "vendor_name": "Vattenfall", "category": "El", "current_price": 1400},
    ]
    result = await comparator.compare(items)

    assert result.provider == MarketProvider.SERPAPI
    assert result.warning == ""
    assert len(calls) == 1
    assert "Vattenfall" in calls[0]
    first = result.items[0]
    assert first.market_median == 1099
    assert first.sample_size == 3
    assert first.source == "SerpAPI/Google Shopping"
    assert result.items[1].provider == MarketProvider.SERPAPI

    await comparator.compare(items[:1])
    assert len(calls) == 1


async def test_service_item_in_live_batch_makes_it_mixed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=SHOPPING_PAYLOAD)

    comparator = MarketComparator(settings=_live_settings(), transport=httpx.MockTransport(handler))
    result = await comparator.compare(
        [
            {"key": "el", "vendor_name": "Vattenfall", "category": "El", "current_price": 1500},
            {"key": "job", "vendor_name": "Fixarn", "category": "Tjänst", "current_price": 900},
        ]
    )
    assert result.provider == MarketProvider.MIXED
    assert result.warning == MIXED_WARNING
    assert [item.provider for item in result.items] == [MarketProvider.SERPAPI, MarketProvider.NOT_APPLICABLE]


async def test_live_failure_becomes_mixed_with_fallback_item():
    def handler(request: httpx.Request) -> httpx.Response:
        if "Telia" in request.url.params["q"]:
            return httpx.Response(503, text="unavailable")
        return httpx.Response(200, json=SHOPPING_PAYLOAD)

    comparator = MarketComparator(settings=_live_settings(), transport=httpx.MockTransport(handler))
    result = await comparator.compare(
        [
            {"key": "el", "vendor_name": "Vattenfall", "category": "El", "current_price": 1500},
            {"key": "mob", "vendor_name": "Telia", "category": "Mobil", "current_price": 399},
        ]
    )
    assert result.provider == MarketProvider.MIXED
    assert result.warning == MIXED_WARNING
    by_key = {item.key: item for item in result.items}
    assert by_key["el"].provider == MarketProvider.SERPAPI
    assert by_key["mob"].provider == MarketProvider.FALLBACK
    assert by_key["mob"].note == LIVE_FAILED_NOTE
    assert by_key["mob"].market_median == 249


async def test_too_few_price_points_falls_back():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"shopping_results": [{"price": "100 kr"}]})

    comparator = MarketComparator(settings=_live_settings(), transport=httpx.MockTransport(handler))
    result = await comparator.compare([{"category": "Streaming", "current_price": 150}])
    assert result.provider == MarketProvider.MIXED
    assert result.items[0].provider == MarketProvider.FALLBACK


async def test_concurrent_lookups_share_one_request():
    calls = []

    async def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        await asyncio.sleep(0.01)
        return httpx.Response(200, json=SHOPPING_PAYLOAD)

    comparator = MarketComparator(settings=_live_settings(), transport=httpx.MockTransport(handler))
    payload = [{"vendor_name": "Tibber", "category": "El", "current_price": 1000}]
    await asyncio.gather(comparator.compare(payload), comparator.compare(payload))
    assert len(calls) == 1


async def test_serpapi_client_errors():
    def bad_json(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>")

    client = SerpApiPriceClient("k", transport=httpx.MockTransport(bad_json))
    with pytest.raises(UpstreamMarketError, match="Ogiltigt JSON-svar"):
        await client.fetch_price_points("billigaste elavtal", "Tibber")

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timeout", request=request)

    client = SerpApiPriceClient("k", transport=httpx.MockTransport(unreachable))
    with pytest.raises(UpstreamMarketError, match="SerpAPI kunde inte nås"):
        await client.fetch_price_points("billigaste elavtal", "Tibber")


class ProviderSelectionTests(unittest.TestCase):
    def setUp(self):
        get_settings.cache_clear()

    def tearDown(self):
        get_settings.cache_clear()

    @patch.dict(os.environ, {"SERPAPI_API_KEY": "k", "MARKET_COMPARE_PROVIDER": "fallback"}, clear=False)
    def test_forced_fallback(self):
        self.assertEqual(get_settings().market_provider, "fallback")

    @patch.dict(os.environ, {"SERPAPI_API_KEY": "k", "MARKET_COMPARE_PROVIDER": "bogus"}, clear=False)
    def test_unknown_choice_means_auto(self):
        self.assertEqual(get_settings().market_provider, "serpapi")

    @patch.dict(os.environ, {"MARKET_COMPARE_CACHE_TTL_HOURS": "500"}, clear=False)
    def test_ttl_is_clamped(self):
        self.assertEqual(get_settings().market_cache_ttl_hours, 168)

    @patch.dict(os.environ, {"MARKET_COMPARE_CACHE_TTL_HOURS": "soon"}, clear=False)
    def test_bad_ttl_uses_default(self):
        self.assertEqual(get_settings().market_cache_ttl_seconds, 24 * 3600)
