"""SerpAPI (Google Shopping) price search client."""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Iterable

import httpx

from kostnadskoll.services.errors import UpstreamMarketError

logger = logging.getLogger(__name__)

SERPAPI_URL = "https://serpapi.com/search.json"
MIN_PRICE_POINTS = 3
RESULT_SECTIONS = ("shopping_results", "organic_results")
PRICE_FIELDS = ("price", "extracted_price", "old_price", "snippet", "title")

_PRICE_RE = re.compile(r"(\d[\d\s.,]*)")


def parse_price_value(raw: Any) -> float | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw) if math.isfinite(raw) else None
    if not isinstance(raw, str):
        return None

    match = _PRICE_RE.search(raw)
    if not match:
        return None
    normalized = re.sub(r"\s+", "", match.group(1)).replace(",", ".", 1)
    try:
        value = float(normalized)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def dedupe_near_values(values: Iterable[float]) -> list[float]:
    """Sorted values with neighbours closer than 1 unit collapsed into the first."""
    unique: list[float] = []
    for value in sorted(values):
        if not unique or abs(unique[-1] - value) >= 1:
            unique.append(value)
    return unique


def extract_prices(payload: Any) -> list[float]:
    if not isinstance(payload, dict):
        return []

    prices: list[float] = []
    for section in RESULT_SECTIONS:
        rows = payload.get(section)
        if not isinstance(rows, list):
            continue
        for row in rows:
            if not isinstance(row, dict):
                continue
            for field in PRICE_FIELDS:
                parsed = parse_price_value(row.get(field))
                if parsed is not None and parsed > 0:
                    prices.append(parsed)
    return dedupe_near_values(prices)


class SerpApiPriceClient:
    def __init__(self, api_key: str, *, timeout_seconds: float = 9.0, transport=None) -> None:
        self._api_key = api_key
        self._timeout = timeout_seconds
        self._transport = transport

    async def fetch_price_points(self, query: str, vendor: str) -> list[float]:
        """Return at least three distinct, sorted price points or raise ``UpstreamMarketError``."""
        params = {
            "engine": "google_shopping",
            "q": f"{query} {vendor}".strip(),
            "hl": "sv",
            "gl": "se",
            "num": "20",
            "api_key": self._api_key,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(SERPAPI_URL, params=params, headers={"Accept": "application/json"})
        except httpx.HTTPError as exc:
            raise UpstreamMarketError(f"SerpAPI kunde inte nås: {exc.__class__.__name__}") from exc

        if resp.status_code >= 400:
            raise UpstreamMarketError(f"SerpAPI fel {resp.status_code}: {resp.text[:300]}")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise UpstreamMarketError("Ogiltigt JSON-svar från SerpAPI.") from exc

        prices = extract_prices(payload)
        if len(prices) < MIN_PRICE_POINTS:
            raise UpstreamMarketError("För få prispunkter i SerpAPI-svar.")
        logger.debug("SerpAPI returned %d price points", len(prices))
        return prices
