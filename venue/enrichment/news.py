from __future__ import annotations
from typing import Any, Callable, Dict, Iterable, Optional
import re

import aiohttp

from ..config import CompanySources, SCRAPE_REQUEST_TIMEOUT_S
from ..core import clamp
from .shared import article_text, convert_to_millions, extract_magnitude, fetch_news_articles

POSITIVE_WORDS = frozenset({
    "growth", "expansion", "profit", "funding", "hiring", "record", "award",
    "milestone", "launch", "wins", "success", "innovation", "leadership",
    "partnership", "breakthrough", "accolade", "acceleration", "approved",
    "achievement", "expands", "optimistic", "positive", "gain", "beat",
})

NEGATIVE_WORDS = frozenset({
    "decline", "loss", "lawsuit", "delay", "ban", "investigation", "negative",
    "controversy", "critical", "problem", "challenge", "downturn", "drop",
    "risk", "regulatory", "cautious",
})

PRESS_RELEASE_WEIGHT = 0.75

_TOKEN_RE = re.compile(r"[a-z']+")


def compute_sentiment_score(text: str) -> float:
    """Word-list polarity, scaled per 12 tokens and clamped to [-1, 1]."""
    if not text:
        return 0.0
    tokens = _TOKEN_RE.findall(text.lower())
    if not tokens:
        return 0.0
    score = 0
    for token in tokens:
        if token in POSITIVE_WORDS:
            score += 1
        elif token in NEGATIVE_WORDS:
            score -= 1
    return clamp(score / max(len(tokens) / 12, 1), -1.0, 1.0)


def first_magnitude_mention(
    articles: Iterable[Dict[str, Any]],
    converter: Callable[[float, str], Optional[float]],
) -> Optional[float]:
    for article in articles:
        magnitude = extract_magnitude(article_text(article))
        if magnitude is None:
            continue
        converted = converter(*magnitude)
        if converted is not None:
            return converted
    return None


def score_articles(articles: Iterable[Dict[str, Any]]) -> float:
    total = 0.0
    weight = 0.0
    for article in articles:
        score = compute_sentiment_score(article_text(article))
        if score == 0:
            continue
        source_name = str((article.get("source") or {}).get("name") or "").lower()
        article_weight = PRESS_RELEASE_WEIGHT if "press release" in source_name else 1.0
        total += score * article_weight
        weight += article_weight
    if weight == 0:
        return 0.0
    return clamp(total / weight, -1.0, 1.0)


async def fetch_monthly_active_users(
    session: aiohttp.ClientSession, sources: CompanySources, timeout: float = SCRAPE_REQUEST_TIMEOUT_S
) -> Optional[float]:
    articles = await fetch_news_articles(session, f'{sources.mau_query} "monthly active users"', 15, timeout)
    return first_magnitude_mention(articles, convert_to_millions)


async def fetch_sentiment_score(
    session: aiohttp.ClientSession, sources: CompanySources, timeout: float = SCRAPE_REQUEST_TIMEOUT_S
) -> Optional[float]:
    articles = await fetch_news_articles(session, sources.sentiment_query or sources.mau_query, 25, timeout)
    if not articles:
        return None
    return score_articles(articles)
