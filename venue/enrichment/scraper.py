from __future__ import annotations
from typing import Dict, Optional
import asyncio
import logging

import aiohttp

from ..config import COMPANY_SOURCES, SCRAPE_REQUEST_TIMEOUT_S
from ..core import clamp, is_finite_number, round2, round3
from .market import DeltaCache, fetch_fear_greed_index, fetch_market_and_vertical
from .news import fetch_monthly_active_users, fetch_sentiment_score
from .revenue import fetch_annual_revenue

logger = logging.getLogger(__name__)

MetricsPayload = Dict[str, Dict[str, float]]


def build_payload(
    annual_revenue: Optional[float] = None,
    monthly_active_users: Optional[float] = None,
    sentiment_score: Optional[float] = None,
    market_performance: Optional[float] = None,
    vertical_performance: Optional[float] = None,
    fear_greed_index: Optional[float] = None,
) -> Optional[MetricsPayload]:
    """Round/clamp raw scraped values into an ingestible payload; None when nothing usable."""
    internal: Dict[str, float] = {}
    external: Dict[str, float] = {}
    if is_finite_number(annual_revenue):
        internal["annualRevenue"] = round2(annual_revenue)
    if is_finite_number(monthly_active_users):
        internal["monthlyActiveUsers"] = max(float(monthly_active_users), 0.0)
    if is_finite_number(sentiment_score):
        internal["sentimentScore"] = clamp(round3(sentiment_score), -1.0, 1.0)
    if is_finite_number(market_performance):
        external["marketPerformance"] = round3(market_performance)
    if is_finite_number(vertical_performance):
        external["verticalPerformance"] = round3(vertical_performance)
    if is_finite_number(fear_greed_index):
        external["fearGreedIndex"] = clamp(float(fear_greed_index), 0.0, 100.0)
    if not internal and not external:
        return None
    return {"internal": internal, "external": external}


async def scrape_live_metrics(
    company_id: str,
    timeout: float = SCRAPE_REQUEST_TIMEOUT_S,
    delta_cache: Optional[DeltaCache] = None,
) -> Optional[MetricsPayload]:
    """Query every enrichment source for `company_id` concurrently."""
    sources = COMPANY_SOURCES.get(company_id)
    if sources is None:
        return None
    async with aiohttp.ClientSession() as session:
        revenue, mau, sentiment, (market, vertical), fear_greed = await asyncio.gather(
            fetch_annual_revenue(session, sources, timeout),
            fetch_monthly_active_users(session, sources, timeout),
            fetch_sentiment_score(session, sources, timeout),
            fetch_market_and_vertical(session, sources, timeout, delta_cache),
            fetch_fear_greed_index(session, timeout),
        )
    payload = build_payload(revenue, mau, sentiment, market, vertical, fear_greed)
    logger.debug("scraped %s: %s", company_id, payload)
    return payload
