from __future__ import annotations
from typing import Callable, Dict, Optional, Tuple
import asyncio
import math
import threading

import aiohttp

from ..config import ALPHA_VANTAGE_CACHE_TTL_MS, CompanySources, SCRAPE_REQUEST_TIMEOUT_S
from ..core import now_ms
from .shared import fetch_json, resolve_env

ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"
FEAR_GREED_URL = "https://api.alternative.me/fng/"


class DeltaCache:
    """Per-symbol daily-close deltas, kept for `ttl_ms` on the owner's clock."""

    def __init__(self, ttl_ms: int = ALPHA_VANTAGE_CACHE_TTL_MS, clock: Callable[[], int] = now_ms) -> None:
        self.ttl_ms = ttl_ms
        self.clock = clock
        self._entries: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    def get(self, symbol: str) -> Optional[float]:
        with self._lock:
            entry = self._entries.get(symbol)
        if entry is None:
            return None
        stamp, value = entry
        if self.clock() - stamp >= self.ttl_ms:
            return None
        return value

    def put(self, symbol: str, value: float) -> None:
        with self._lock:
            self._entries[symbol] = (self.clock(), value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def daily_close_delta(series: Dict[str, Dict[str, str]]) -> Optional[float]:
    """Relative change between the two most recent daily closes."""
    dates = sorted(series)
    if len(dates) < 2:
        return None
    try:
        latest = float(series[dates[-1]]["4. close"])
        prior = float(series[dates[-2]]["4. close"])
    except (KeyError, TypeError, ValueError):
        return None
    if not math.isfinite(latest) or not math.isfinite(prior) or prior == 0:
        return None
    return (latest - prior) / prior


async def fetch_alpha_vantage_delta(
    session: aiohttp.ClientSession,
    symbol: Optional[str],
    timeout: float = SCRAPE_REQUEST_TIMEOUT_S,
    cache: Optional[DeltaCache] = None,
) -> Optional[float]:
    key = resolve_env("VITE_ALPHAVANTAGE_API_KEY", "ALPHAVANTAGE_API_KEY", "ALPHA_VANTAGE_KEY")
    if not key or not symbol:
        return None
    if cache is not None:
        cached = cache.get(symbol)
        if cached is not None:
            return cached
    params = {
        "function": "TIME_SERIES_DAILY_ADJUSTED",
        "symbol": symbol,
        "outputsize": "compact",
        "apikey": key,
    }
    data = await fetch_json(session, ALPHA_VANTAGE_URL, params=params, timeout=timeout)
    series = data.get("Time Series (Daily)") if isinstance(data, dict) else None
    if not isinstance(series, dict):
        return None
    delta = daily_close_delta(series)
    if delta is not None and cache is not None:
        cache.put(symbol, delta)
    return delta


async def fetch_market_performance(
    session: aiohttp.ClientSession,
    sources: CompanySources,
    timeout: float = SCRAPE_REQUEST_TIMEOUT_S,
    cache: Optional[DeltaCache] = None,
) -> Optional[float]:
    return await fetch_alpha_vantage_delta(session, sources.market_symbol, timeout, cache)


async def fetch_vertical_performance(
    session: aiohttp.ClientSession,
    sources: CompanySources,
    timeout: float = SCRAPE_REQUEST_TIMEOUT_S,
    cache: Optional[DeltaCache] = None,
) -> Optional[float]:
    return await fetch_alpha_vantage_delta(session, sources.vertical_symbol, timeout, cache)


async def fetch_fear_greed_index(
    session: aiohttp.ClientSession, timeout: float = SCRAPE_REQUEST_TIMEOUT_S
) -> Optional[int]:
    data = await fetch_json(session, FEAR_GREED_URL, params={"limit": "1", "format": "json"}, timeout=timeout)
    try:
        return int(data["data"][0]["value"])
    except (KeyError, IndexError, TypeError, ValueError):
        return None


async def fetch_market_and_vertical(
    session: aiohttp.ClientSession,
    sources: CompanySources,
    timeout: float = SCRAPE_REQUEST_TIMEOUT_S,
    cache: Optional[DeltaCache] = None,
) -> Tuple[Optional[float], Optional[float]]:
    market, vertical = await asyncio.gather(
        fetch_market_performance(session, sources, timeout, cache),
        fetch_vertical_performance(session, sources, timeout, cache),
    )
    return market, vertical
