from __future__ import annotations
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple
import math
import numbers
import time

from .config import COMPANIES, STEP_INTERVAL_MS, Company
from .errors import UnknownCompany


def now_ms() -> int:
    return int(time.time() * 1000)


def clamp(value: float, lo: float, hi: float) -> float:
    return min(max(value, lo), hi)


def normalize(value: float, lo: float, hi: float) -> float:
    span = hi - lo
    if span == 0:
        return 0.0
    return (clamp(value, lo, hi) - lo) / span


def round_to(value: float, precision: int) -> float:
    # half-up rounding; non-finite values collapse to 0
    if not math.isfinite(value):
        return 0.0
    factor = 10 ** precision
    return math.floor(value * factor + 0.5) / factor


def round2(value: float) -> float:
    return round_to(value, 2)


def round3(value: float) -> float:
    return round_to(value, 3)


def is_finite_number(value) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool) and math.isfinite(value)


def frozen_map(values: Optional[Mapping[str, float]] = None) -> Mapping[str, float]:
    return MappingProxyType(dict(values or {}))


def get_company(company_id: str) -> Company:
    company = COMPANIES.get(company_id)
    if company is None:
        raise UnknownCompany(company_id)
    return company


def align_to_interval(timestamp: int) -> int:
    return (int(timestamp) // STEP_INTERVAL_MS) * STEP_INTERVAL_MS


# -----------------------------
# Deterministic noise
# -----------------------------
def seeded_noise(timestamp: float, variant: float = 1) -> float:
    """Map (timestamp, variant) to a reproducible value in [-1, 1).

    sin-based hash: frac(sin(seed * 12.9898) * 43758.5453), remapped from
    [0, 1). Pure, so identical inputs always reproduce identical outputs.
    """
    seed = timestamp / STEP_INTERVAL_MS + variant * 17.371
    x = math.sin(seed * 12.9898) * 43758.5453
    return (x - math.floor(x)) * 2 - 1


def company_seed(company_id: str) -> int:
    return sum(ord(ch) * (idx + 1) for idx, ch in enumerate(company_id))


# -----------------------------
# Metric snapshots / valuations
# -----------------------------
@dataclass(frozen=True)
class MetricSnapshot:
    internal: Mapping[str, float]
    external: Mapping[str, float]

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {"internal": dict(self.internal), "external": dict(self.external)}


@dataclass(frozen=True)
class Valuation:
    internal_score: float
    external_score: float
    composite_score: float
    target_price: float
    normalized_internal: Mapping[str, float]
    normalized_external: Mapping[str, float]


# -----------------------------
# Oracle assets / state
# -----------------------------
@dataclass(frozen=True)
class Asset:
    id: str
    name: str
    ticker: str
    category: str
    price: float
    change: float
    volume: float
    history: Tuple[float, ...]
    metrics: MetricSnapshot
    normalized_internal: Mapping[str, float]
    normalized_external: Mapping[str, float]
    internal_score: float
    external_score: float
    composite_score: float
    target_price: float

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "ticker": self.ticker,
            "category": self.category,
            "price": float(self.price),
            "change": float(self.change),
            "volume": float(self.volume),
            "history": list(self.history),
            "metrics": self.metrics.to_dict(),
            "normalized_metrics": {
                "internal": dict(self.normalized_internal),
                "external": dict(self.normalized_external),
            },
            "internal_score": float(self.internal_score),
            "external_score": float(self.external_score),
            "composite_score": float(self.composite_score),
            "target_price": float(self.target_price),
        }


@dataclass(frozen=True)
class OracleState:
    assets: Tuple[Asset, ...]
    last_updated: int

    def asset(self, company_id: str) -> Asset:
        for a in self.assets:
            if a.id == company_id:
                return a
        raise UnknownCompany(company_id)


@dataclass(frozen=True)
class CompanySnapshot:
    """One-shot valuation of a company at an aligned timestamp (no history)."""
    id: str
    name: str
    ticker: str
    category: str
    metrics: MetricSnapshot
    normalized_internal: Mapping[str, float]
    normalized_external: Mapping[str, float]
    internal_score: float
    external_score: float
    composite_score: float
    target_price: float
    price_floor: float
    price_ceiling: float
    timestamp: int
