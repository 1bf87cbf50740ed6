"""Market price comparison: live SerpAPI statistics with a static reference fallback."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, Optional

from kostnadskoll.core.config import Settings, get_settings
from kostnadskoll.schemas.invoice import DEFAULT_CURRENCY, DEFAULT_VENDOR, Category
from kostnadskoll.schemas.market import (
    MarketCompareResult,
    MarketComparison,
    MarketItemIn,
    MarketProvider,
)
from kostnadskoll.services.errors import UpstreamMarketError
from kostnadskoll.services.extraction.vocabulary import normalize_category
from kostnadskoll.services.text_tools import format_number, round2, slug_token

from .cache import MarketStatsCache
from .serpapi import SerpApiPriceClient

logger = logging.getLogger(__name__)

MAX_ITEMS = 30

FALLBACK_WARNING = (
    "Live-prisjämförelse är inte aktiverad. Referensnivåer används tills SERPAPI_API_KEY är konfigurerad."
)
MIXED_WARNING = "Vissa poster kunde inte hämtas live och beräknades därför med referensnivåer."
LIVE_FAILED_NOTE = "Live-data kunde inte hämtas just nu. Referensnivå användes för den här posten."

SOURCE_LIVE = "SerpAPI/Google Shopping"
SOURCE_REFERENCE = "Referensnivå"
SOURCE_NOT_APPLICABLE = "Ej tillämpligt"


@dataclass(frozen=True)
class MarketStats:
    low: float
    median: float
    high: float
    sample_size: int
    source: str
    provider: MarketProvider


FALLBACK_BENCHMARKS: dict[Category, MarketStats] = {
    category: MarketStats(low, median, high, sample, SOURCE_REFERENCE, MarketProvider.FALLBACK)
    for category, (low, median, high, sample) in {
        Category.MOBILE: (149, 249, 399, 24),
        Category.INTERNET: (299, 399, 549, 20),
        Category.ELECTRICITY: (799, 999, 1499, 18),
        Category.INSURANCE: (189, 279, 439, 18),
        Category.STREAMING: (89, 129, 199, 22),
        Category.BANKING: (0, 99, 199, 15),
        Category.OTHER: (99, 199, 349, 15),
    }.items()
}

CATEGORY_QUERIES: dict[Category, str] = {
    Category.MOBILE: "billigaste mobilabonnemang sverige månadskostnad",
    Category.INTERNET: "billigaste bredband fiber abonnemang sverige",
    Category.ELECTRICITY: "billigaste elavtal sverige månadsavgift",
    Category.INSURANCE: "billigaste hemförsäkring sverige pris per månad",
    Category.STREAMING: "streamingtjänst abonnemang pris per månad sverige",
    Category.BANKING: "bankkort kontopaket avgift per månad sverige",
    Category.OTHER: "billigaste abonnemangstjänst sverige pris per månad",
}

ALTERNATIVE_HINTS: dict[Category, tuple[str, ...]] = {
    Category.MOBILE: ("Hallon", "Fello", "Vimla", "Comviq"),
    Category.INTERNET: ("Bahnhof", "Ownit", "Bredband2", "Tele2"),
    Category.ELECTRICITY: ("Tibber", "Fortum", "Vattenfall", "Göta Energi"),
    Category.INSURANCE: ("Hedvig", "IF", "Folksam", "Länsförsäkringar"),
    Category.STREAMING: ("Byt plan", "Familjeabonnemang", "Reklamplan"),
    Category.BANKING: ("Avgiftsfritt kort", "Kundrabatt", "Paketjämförelse"),
    Category.SERVICE: ("Begär offert", "Jämför timpris", "Fast pris innan start"),
    Category.OTHER: ("Prisförhandling", "Byt leverantör", "Rabattkampanj"),
}

NOT_COMPARABLE = frozenset({Category.SERVICE})


@dataclass(frozen=True)
class CompareItem:
    key: str
    vendor_name: str
    category: Category
    current_price: float
    currency: str


# ─── Pure helpers ─────────────────────────────────────


def sanitize_items(raw_items: Iterable[Any], limit: int = MAX_ITEMS) -> list[CompareItem]:
    items: list[CompareItem] = []
    for index, raw in enumerate(list(raw_items or [])[:limit]):
        if isinstance(raw, MarketItemIn):
            parsed = raw
        elif isinstance(raw, dict):
            parsed = MarketItemIn.model_validate(raw)
        else:
            continue
        price = parsed.current_price
        if price is None or price <= 0:
            continue
        items.append(
            CompareItem(
                key=(parsed.key or "").strip() or f"entry-{index + 1}",
                vendor_name=(parsed.vendor_name or "").strip() or DEFAULT_VENDOR,
                category=normalize_category(parsed.category),
                current_price=price,
                currency=(parsed.currency or "").strip().upper() or DEFAULT_CURRENCY,
            )
        )
    return items


def cache_key(item: CompareItem) -> str:
    return f"{slug_token(item.category)}|{slug_token(item.vendor_name)}"


def percentile(sorted_values: list[float], ratio: float) -> float:
    """Linear interpolation between order statistics."""
    if not sorted_values:
        return 0.0
    if len(sorted_values) == 1:
        return sorted_values[0]
    index = (len(sorted_values) - 1) * ratio
    lower = int(index)
    upper = min(lower + 1, len(sorted_values) - 1)
    weight = index - lower
    if weight == 0:
        return sorted_values[lower]
    return sorted_values[lower] * (1 - weight) + sorted_values[upper] * weight


def stats_from_prices(prices: list[float]) -> MarketStats:
    ordered = sorted(prices)
    return MarketStats(
        low=percentile(ordered, 0.2),
        median=percentile(ordered, 0.5),
        high=percentile(ordered, 0.8),
        sample_size=len(ordered),
        source=SOURCE_LIVE,
        provider=MarketProvider.SERPAPI,
    )


def build_recommendation(category: Category, market_median: float, possible_saving: float, saving_percent: float) -> str:
    if possible_saving <= 0:
        return f"Du ligger redan i nivå med marknadsmedian för {str(category).lower()}."
    if saving_percent >= 30:
        return "Stor avvikelse mot marknaden. Förhandla direkt eller byt leverantör."
    if saving_percent >= 15:
        return (
            "Du kan sannolikt sänka kostnaden genom omförhandling. "
            f"Sikta mot ca {format_number(market_median)} kr/mån."
        )
    return "Mindre avvikelse mot marknaden. Be om lojalitetsrabatt."


def _hints(category: Category) -> list[str]:
    return list(ALTERNATIVE_HINTS.get(category, ALTERNATIVE_HINTS[Category.OTHER]))


def build_comparison(item: CompareItem, stats: MarketStats, note: str = "") -> MarketComparison:
    current = round2(item.current_price)
    median = round2(stats.median)
    saving = max(0.0, round2(item.current_price - median))
    percent = round2(saving / item.current_price * 100) if item.current_price > 0 else 0.0

    return MarketComparison(
        key=item.key,
        vendor_name=item.vendor_name,
        category=str(item.category),
        currency=item.currency,
        current_price=current,
        market_low=round2(stats.low),
        market_median=median,
        market_high=round2(stats.high),
        sample_size=stats.sample_size,
        source=stats.source,
        provider=stats.provider,
        possible_saving=saving,
        saving_percent=percent,
        recommendation=build_recommendation(item.category, median, saving, percent),
        alternative_hints=_hints(item.category),
        note=note,
    )


def build_not_applicable(item: CompareItem) -> MarketComparison:
    current = round2(item.current_price)
    return MarketComparison(
        key=item.key,
        vendor_name=item.vendor_name,
        category=str(item.category),
        currency=item.currency,
        current_price=current,
        market_low=current,
        market_median=current,
        market_high=current,
        sample_size=0,
        source=SOURCE_NOT_APPLICABLE,
        provider=MarketProvider.NOT_APPLICABLE,
        possible_saving=0.0,
        saving_percent=0.0,
        recommendation="Kategorin Tjänst behandlas som engångskostnad och jämförs inte som ett månadsabonnemang.",
        alternative_hints=_hints(item.category),
        note="Manuell prisjämförelse rekommenderas för engångsarbete.",
    )


def build_fallback(item: CompareItem, note: str = "") -> MarketComparison:
    if item.category in NOT_COMPARABLE:
        return build_not_applicable(item)
    stats = FALLBACK_BENCHMARKS.get(item.category, FALLBACK_BENCHMARKS[Category.OTHER])
    return build_comparison(item, stats, note=note)


# ─── Comparator ───────────────────────────────────────


class MarketComparator:
    """Batch comparator. Holds the shared stats cache and in-flight lookups."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        cache: Optional[MarketStatsCache] = None,
        transport=None,
    ) -> None:
        self._settings = settings
        self.cache = cache or MarketStatsCache()
        self._transport = transport

    @property
    def settings(self) -> Settings:
        return self._settings or get_settings()

    async def compare(self, raw_items: Iterable[Any]) -> MarketCompareResult:
        settings = self.settings
        items = sanitize_items(raw_items, limit=min(MAX_ITEMS, max(1, settings.market_compare_max_items)))
        if not items:
            return MarketCompareResult(provider=MarketProvider.FALLBACK)

        if settings.market_provider != "serpapi":
            return MarketCompareResult(
                provider=MarketProvider.FALLBACK,
                warning=FALLBACK_WARNING,
                items=[build_fallback(item) for item in items],
            )

        self.cache.ttl_seconds = settings.market_cache_ttl_seconds
        evicted = self.cache.sweep()
        if evicted:
            logger.debug("Evicted %d expired market stats entries", evicted)

        client = SerpApiPriceClient(
            settings.serpapi_api_key,
            timeout_seconds=settings.market_compare_timeout_seconds,
            transport=self._transport,
        )
        compared = await asyncio.gather(*(self._compare_live(item, client) for item in items))

        used_fallback = any(c.provider != MarketProvider.SERPAPI for c in compared)
        return MarketCompareResult(
            provider=MarketProvider.MIXED if used_fallback else MarketProvider.SERPAPI,
            warning=MIXED_WARNING if used_fallback else "",
            items=list(compared),
        )

    async def _compare_live(self, item: CompareItem, client: SerpApiPriceClient) -> MarketComparison:
        if item.category in NOT_COMPARABLE:
            return build_not_applicable(item)
        try:
            stats = await self._stats_cached(item, client)
        except (UpstreamMarketError, asyncio.TimeoutError) as exc:
            logger.warning("Live market lookup failed for %s: %s", item.category, exc)
            return build_fallback(item, note=LIVE_FAILED_NOTE)
        return build_comparison(item, stats)

    async def _stats_cached(self, item: CompareItem, client: SerpApiPriceClient) -> MarketStats:
        key = cache_key(item)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        pending = self.cache.get_pending(key)
        if pending is not None:
            return await pending

        task = asyncio.ensure_future(self._fetch_and_store(key, item, client))
        self.cache.register_pending(key, task)
        try:
            return await task
        finally:
            self.cache.clear_pending(key, task)

    async def _fetch_and_store(self, key: str, item: CompareItem, client: SerpApiPriceClient) -> MarketStats:
        query = CATEGORY_QUERIES.get(item.category, CATEGORY_QUERIES[Category.OTHER])
        prices = await asyncio.wait_for(
            client.fetch_price_points(query, item.vendor_name),
            timeout=self.settings.market_compare_timeout_seconds,
        )
        stats = stats_from_prices(prices)
        self.cache.set(key, stats)
        return stats


@lru_cache

def get_market_comparator() -> MarketComparator:
    return MarketComparator()
