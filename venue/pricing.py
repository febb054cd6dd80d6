from __future__ import annotations
from typing import Mapping, Optional
import math

from .core import clamp, company_seed, get_company, round2, seeded_noise

REVERSION_RATE = 0.32      # share of the target gap closed per step
MACRO_NOISE_SCALE = 0.018
MICRO_NOISE_SCALE = 0.01

VOLUME_SCALE = 210.0
VOLUME_NOISE_SCALE = 0.22
MIN_VOLUME = 0.1


def price_step(company_id: str, previous_price: Optional[float], target_price: float, timestamp: int) -> float:
    """Move one interval from `previous_price` toward `target_price`.

    First-order mean reversion plus two noise draws seeded by the anchor and
    by the target, clamped to the company's band. Trade flow has no effect.
    """
    company = get_company(company_id)
    anchor = previous_price if previous_price is not None and math.isfinite(previous_price) else target_price
    reversion = (target_price - anchor) * REVERSION_RATE
    macro = seeded_noise(timestamp, anchor) * MACRO_NOISE_SCALE * target_price
    micro = seeded_noise(timestamp, target_price) * MICRO_NOISE_SCALE * target_price
    return clamp(anchor + reversion + macro + micro, company.floor, company.ceiling)


def derive_volume(
    company_id: str,
    normalized_internal: Mapping[str, float],
    normalized_external: Mapping[str, float],
    composite_score: float,
    timestamp: int,
    price: float,
) -> float:
    adoption = normalized_internal["monthlyActiveUsers"] * 0.6 + normalized_internal["annualRevenue"] * 0.4
    sentiment = normalized_internal["sentimentScore"] * 0.45 + normalized_external["fearGreedIndex"] * 0.55
    pulse = normalized_external["marketPerformance"] * 0.55 + normalized_external["verticalPerformance"] * 0.45
    base = (adoption * 0.5 + sentiment * 0.25 + pulse * 0.25) * VOLUME_SCALE
    volatility = 0.85 + composite_score * 0.3
    noise = 1 + seeded_noise(timestamp, price + company_seed(company_id)) * VOLUME_NOISE_SCALE
    return round2(max(MIN_VOLUME, base * volatility * noise))
