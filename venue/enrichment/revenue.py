from __future__ import annotations
from datetime import datetime
from typing import Any, Optional
from urllib.parse import quote
import asyncio
import math

import aiohttp

from ..config import CompanySources, SCRAPE_REQUEST_TIMEOUT_S
from .shared import convert_to_billions, extract_magnitude, fetch_json, resolve_env

CRUNCHBASE_URL = "https://api.crunchbase.com/api/v4/entities/organizations/{id}"
PITCHBOOK_URL = "https://api.pitchbook.com/v1/companies/{id}/financials"


def parse_revenue_value(raw: Any) -> Optional[float]:
    """Coerce a provider revenue field into USD billions.

    Accepts plain numbers (raw USD when > 10,000), strings such as
    "$3.4 billion" or "1B-5B" (ranges are averaged), and objects carrying
    `amount`, `value` or `min`/`max`.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        if not math.isfinite(raw):
            return None
        return raw / 1_000_000_000 if raw > 10_000 else float(raw)
    if isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        if "-" in text:
            low, _, high = text.partition("-")
            low_value = parse_revenue_value(low.strip())
            high_value = parse_revenue_value(high.strip())
            if low_value is not None and high_value is not None:
                return (low_value + high_value) / 2
        magnitude = extract_magnitude(text)
        if magnitude:
            return convert_to_billions(*magnitude)
        try:
            numeric = float(text.replace(",", ""))
        except ValueError:
            return None
        if not math.isfinite(numeric):
            return None
        return numeric / 1_000_000_000 if numeric > 10_000 else numeric
    if isinstance(raw, dict):
        if raw.get("amount") is not None:
            return parse_revenue_value(raw["amount"])
        if raw.get("value") is not None:
            return parse_revenue_value(raw["value"])
        if raw.get("min") is not None and raw.get("max") is not None:
            lo = parse_revenue_value(raw["min"])
            hi = parse_revenue_value(raw["max"])
            if lo is not None and hi is not None:
                return (lo + hi) / 2
    return None


async def fetch_crunchbase_revenue(
    session: aiohttp.ClientSession, sources: CompanySources, timeout: float = SCRAPE_REQUEST_TIMEOUT_S
) -> Optional[float]:
    key = resolve_env("VITE_CRUNCHBASE_API_KEY", "CRUNCHBASE_API_KEY", "CRUNCHBASE_TOKEN")
    if not key or not sources.crunchbase_id:
        return None
    url = CRUNCHBASE_URL.format(id=quote(sources.crunchbase_id, safe=""))
    params = {"user_key": key, "field_ids": "financials,revenue_range,annual_revenue"}
    data = await fetch_json(session, url, params=params, timeout=timeout)
    if not isinstance(data, dict):
        return None
    props = (data.get("data") or {}).get("properties") or {}
    raw = props.get("annual_revenue")
    if raw is None:
        raw = (props.get("revenue_range") or {}).get("value")
    if raw is None:
        raw = props.get("financials")
    return parse_revenue_value(raw)


def _entry_date(entry: dict) -> float:
    stamp = entry.get("asOfDate") or entry.get("period") or entry.get("date")
    if not isinstance(stamp, str):
        return 0.0
    try:
        return datetime.fromisoformat(stamp.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


async def fetch_pitchbook_revenue(
    session: aiohttp.ClientSession, sources: CompanySources, timeout: float = SCRAPE_REQUEST_TIMEOUT_S
) -> Optional[float]:
    key = resolve_env("VITE_PITCHBOOK_API_KEY", "PITCHBOOK_API_KEY", "PITCHBOOK_TOKEN")
    if not key or not sources.pitchbook_id:
        return None
    url = PITCHBOOK_URL.format(id=quote(sources.pitchbook_id, safe=""))
    data = await fetch_json(
        session,
        url,
        params={"metric": "Annual Revenue"},
        headers={"Authorization": f"Bearer {key}"},
        timeout=timeout,
    )
    if not isinstance(data, dict):
        return None
    financials = data.get("financials") or data.get("data")
    if not isinstance(financials, list):
        return None
    revenue_rows = [
        e for e in financials
        if isinstance(e, dict) and "revenue" in str(e.get("metric") or "").lower()
    ]
    if not revenue_rows:
        return None
    latest = max(revenue_rows, key=_entry_date)
    for field_name in ("value", "amount", "reportedValue", "range"):
        if latest.get(field_name) is not None:
            return parse_revenue_value(latest[field_name])
    return None


async def fetch_annual_revenue(
    session: aiohttp.ClientSession, sources: CompanySources, timeout: float = SCRAPE_REQUEST_TIMEOUT_S
) -> Optional[float]:
    crunchbase, pitchbook = await asyncio.gather(
        fetch_crunchbase_revenue(session, sources, timeout),
        fetch_pitchbook_revenue(session, sources, timeout),
    )
    if crunchbase is not None and pitchbook is not None:
        return (crunchbase + pitchbook) / 2
    return crunchbase if crunchbase is not None else pitchbook
