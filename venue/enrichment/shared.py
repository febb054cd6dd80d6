from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
import asyncio
import logging
import math
import os
import re

import aiohttp
from dotenv import load_dotenv

from ..config import SCRAPE_REQUEST_TIMEOUT_S

logger = logging.getLogger(__name__)

load_dotenv()

NEWSAPI_URL = "https://newsapi.org/v2/everything"


def resolve_env(*keys: str) -> Optional[str]:
    """Return the first non-empty environment value among `keys`."""
    for key in keys:
        value = os.getenv(key)
        if value:
            return value
    return None


async def fetch_json(
    session: aiohttp.ClientSession,
    url: str,
    *,
    params: Optional[Dict[str, str]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = SCRAPE_REQUEST_TIMEOUT_S,
) -> Optional[Any]:
    """GET `url` and decode JSON; any network, status or decode failure yields None."""
    try:
        async with session.get(
            url,
            params=params,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            response.raise_for_status()
            return await response.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        logger.warning("JSON fetch failed for %s: %s", url, e)
        return None


_MAGNITUDE_RE = re.compile(r"(\d[\d,.]*)\s?(billion|million|thousand|bn|mm|m|k|b|mn)", re.IGNORECASE)


def extract_magnitude(text: Any) -> Optional[Tuple[float, str]]:
    if not isinstance(text, str):
        return None
    match = _MAGNITUDE_RE.search(text)
    if not match:
        return None
    try:
        value = float(match.group(1).replace(",", "").rstrip("."))
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value, match.group(2).lower()


def _unit_class(unit: str) -> str:
    if unit.startswith("b"):
        return "b"
    if unit.startswith("m"):
        return "m"
    if unit.startswith("k") or unit == "thousand":
        return "k"
    return unit


def convert_to_billions(value: float, unit: str) -> Optional[float]:
    if not math.isfinite(value):
        return None
    unit = _unit_class(unit)
    if unit == "b":
        return value
    if unit == "m":
        return value / 1000
    if unit == "k":
        return value / 1_000_000
    return None


def convert_to_millions(value: float, unit: str) -> Optional[float]:
    if not math.isfinite(value):
        return None
    unit = _unit_class(unit)
    if unit == "b":
        return value * 1000
    if unit == "m":
        return value
    if unit == "k":
        return value / 1000
    return None


def article_text(article: Dict[str, Any]) -> str:
    return f"{article.get('title') or ''}. {article.get('description') or ''}. {article.get('content') or ''}"


async def fetch_news_articles(
    session: aiohttp.ClientSession,
    query: str,
    page_size: int = 20,
    timeout: float = SCRAPE_REQUEST_TIMEOUT_S,
) -> List[Dict[str, Any]]:
    api_key = resolve_env("VITE_NEWSAPI_KEY", "NEWSAPI_KEY", "NEWS_API_KEY")
    if not api_key:
        return []
    since = datetime.now(timezone.utc) - timedelta(days=7)
    params = {
        "pageSize": str(page_size),
        "language": "en",
        "sortBy": "publishedAt",
        "q": query,
        "from": since.strftime("%Y-%m-%dT%H:%M:%S.000Z"),
    }
    data = await fetch_json(session, NEWSAPI_URL, params=params, headers={"X-Api-Key": api_key}, timeout=timeout)
    articles = data.get("articles") if isinstance(data, dict) else None
    if not isinstance(articles, list):
        return []
    return [a for a in articles if isinstance(a, dict)]
