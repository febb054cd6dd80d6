from __future__ import annotations
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

from .errors import ConfigError

# Time model: timestamps are epoch milliseconds, one step = 15 minutes.
STEP_INTERVAL_MS = 15 * 60 * 1000
HISTORY_LENGTH = 60
ORACLE_UPDATE_INTERVAL_MS = STEP_INTERVAL_MS

# Enrichment cache / refresh cadence
SCRAPE_CACHE_TTL_MS = 12 * 60 * 60 * 1000
SCRAPE_REFRESH_WINDOW_MS = 60 * 60 * 1000
SCRAPE_FAILURE_BACKOFF_MS = 10 * 60 * 1000
SCRAPE_REQUEST_TIMEOUT_S = 10.0
ALPHA_VANTAGE_CACHE_TTL_MS = 15 * 60 * 1000


@dataclass(frozen=True)
class Company:
    id: str
    name: str
    ticker: str
    category: str
    floor: float
    ceiling: float


@dataclass(frozen=True)
class MetricSpec:
    key: str
    weight: float
    min: float
    max: float
    jitter: float


@dataclass(frozen=True)
class CompanySources:
    """Lookup keys used by the live enrichment scrapers."""
    crunchbase_id: str
    pitchbook_id: str
    sentiment_query: str
    mau_query: str
    market_symbol: str
    vertical_symbol: str


COMPANIES: Dict[str, Company] = {
    "openai": Company("openai", "OpenAI", "OPAI", "AI Research", floor=160.0, ceiling=250.0),
    "spacex": Company("spacex", "SpaceX", "SPAC", "Aerospace", floor=220.0, ceiling=340.0),
    "neuralink": Company("neuralink", "Neuralink", "NRLX", "Neurotech", floor=70.0, ceiling=150.0),
}

COMPANY_IDS = tuple(COMPANIES.keys())

INTERNAL_SCHEMA = (
    MetricSpec("annualRevenue", weight=0.42, min=0.0, max=120.0, jitter=1.2),
    MetricSpec("sentimentScore", weight=0.28, min=-1.0, max=1.0, jitter=0.12),
    MetricSpec("monthlyActiveUsers", weight=0.3, min=0.0, max=400.0, jitter=6.0),
)

EXTERNAL_SCHEMA = (
    MetricSpec("marketPerformance", weight=0.38, min=-0.25, max=0.25, jitter=0.018),
    MetricSpec("verticalPerformance", weight=0.34, min=-0.3, max=0.3, jitter=0.02),
    MetricSpec("fearGreedIndex", weight=0.28, min=0.0, max=100.0, jitter=3.5),
)

# annualRevenue: USD billions, sentimentScore: -1..1, monthlyActiveUsers: millions,
# market/vertical performance: index deltas, fearGreedIndex: 0..100
DEFAULT_BASELINES: Dict[str, Dict[str, Dict[str, float]]] = {
    "openai": {
        "internal": {"annualRevenue": 3.6, "sentimentScore": 0.34, "monthlyActiveUsers": 95.0},
        "external": {"marketPerformance": 0.05, "verticalPerformance": 0.08, "fearGreedIndex": 62.0},
    },
    "spacex": {
        "internal": {"annualRevenue": 9.8, "sentimentScore": 0.27, "monthlyActiveUsers": 32.0},
        "external": {"marketPerformance": 0.041, "verticalPerformance": 0.052, "fearGreedIndex": 58.0},
    },
    "neuralink": {
        "internal": {"annualRevenue": 0.24, "sentimentScore": 0.15, "monthlyActiveUsers": 1.5},
        "external": {"marketPerformance": 0.033, "verticalPerformance": 0.018, "fearGreedIndex": 54.0},
    },
}

COMPANY_SOURCES: Dict[str, CompanySources] = {
    "openai": CompanySources(
        crunchbase_id="openai",
        pitchbook_id="openai",
        sentiment_query='"OpenAI" OR "ChatGPT"',
        mau_query='"OpenAI" OR "ChatGPT"',
        market_symbol="SPY",
        vertical_symbol="QQQ",
    ),
    "spacex": CompanySources(
        crunchbase_id="space-exploration-technologies",
        pitchbook_id="space-exploration-technologies",
        sentiment_query='"SpaceX" OR "Starlink"',
        mau_query='"Starlink" OR "SpaceX"',
        market_symbol="SPY",
        vertical_symbol="XAR",
    ),
    "neuralink": CompanySources(
        crunchbase_id="neuralink",
        pitchbook_id="neuralink",
        sentiment_query='"Neuralink"',
        mau_query='"Neuralink"',
        market_symbol="SPY",
        vertical_symbol="XLV",
    ),
}


@dataclass(frozen=True)
class PoolConfig:
    # Liquidity floor / bootstrap
    min_liquidity_eth: float = 1.0
    initial_liquidity_eth: float = 1.2
    virtual_inventory_multiplier: float = 4.5   # synthetic depth per staked ETH

    # Utilization
    target_utilization: float = 0.65   # drives the displayed depth scalar
    max_utilization: float = 0.9       # share of effective depth a single trade may consume

    # Fees / spread / impact
    fee_bps: float = 12.0
    base_spread_bps: float = 18.0
    widened_spread_bps: float = 45.0
    widen_threshold: float = 0.6       # utilization above which the widened spread applies
    max_impact_bps: float = 240.0
    treasury_fee_share: float = 0.2    # share of settled fees credited to the treasury

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{f.name} must be a number, got {value!r}")
            if value != value or value in (float("inf"), float("-inf")):
                raise ConfigError(f"{f.name} must be finite, got {value!r}")
            if value < 0:
                raise ConfigError(f"{f.name} must be non-negative, got {value!r}")
        if self.virtual_inventory_multiplier <= 0:
            raise ConfigError("virtual_inventory_multiplier must be positive")
        if self.target_utilization <= 0:
            raise ConfigError("target_utilization must be positive")
        if not 0 < self.max_utilization <= 1:
            raise ConfigError("max_utilization must be in (0, 1]")
        if not 0 <= self.widen_threshold <= 1:
            raise ConfigError("widen_threshold must be in [0, 1]")
        if not 0 <= self.treasury_fee_share <= 1:
            raise ConfigError("treasury_fee_share must be in [0, 1]")

    @classmethod
    def from_mapping(cls, overrides: Optional[Mapping[str, Any]] = None) -> "PoolConfig":
        overrides = dict(overrides or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigError(f"Unknown pool config field(s): {', '.join(unknown)}")
        return cls(**overrides)


@dataclass(frozen=True)
class ScrapeConfig:
    cache_ttl_ms: int = SCRAPE_CACHE_TTL_MS
    refresh_window_ms: int = SCRAPE_REFRESH_WINDOW_MS
    failure_backoff_ms: int = SCRAPE_FAILURE_BACKOFF_MS
    request_timeout_s: float = SCRAPE_REQUEST_TIMEOUT_S
    max_workers: int = 2

    def __post_init__(self) -> None:
        if self.cache_ttl_ms < 0 or self.refresh_window_ms < 0 or self.failure_backoff_ms < 0:
            raise ConfigError("scrape windows must be non-negative")
        if self.request_timeout_s <= 0:
            raise ConfigError("request_timeout_s must be positive")
        if self.max_workers < 1:
            raise ConfigError("max_workers must be at least 1")
