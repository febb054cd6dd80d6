from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Literal, Optional, Tuple
import logging
import math

from .core import clamp
from .pool import Pool, PoolMetrics, coerce_amount, credit_treasury, distribute_fees, pool_metrics

logger = logging.getLogger(__name__)

Side = Literal["buy", "sell"]

BPS = 10_000
MIN_EFFECTIVE_DEPTH_ETH = 1e-6


@dataclass(frozen=True)
class ExecutionResult:
    """Quote for a trade against the pool, or a refusal carrying `reason`."""
    permitted: bool
    reason: Optional[str] = None
    side: Optional[Side] = None
    size_eth: float = 0.0
    utilization: float = 0.0
    impact_bps: float = 0.0
    spread_bps: float = 0.0
    widened: bool = False
    slippage_bps: float = 0.0
    slip_factor: float = 1.0
    fee_eth: float = 0.0
    total_cost_eth: float = 0.0
    metrics: Optional[PoolMetrics] = None

    @classmethod
    def refused(cls, reason: str, metrics: Optional[PoolMetrics] = None) -> "ExecutionResult":
        return cls(permitted=False, reason=reason, metrics=metrics)

    def to_dict(self) -> dict:
        return {
            "permitted": self.permitted,
            "reason": self.reason,
            "side": self.side,
            "size_eth": float(self.size_eth),
            "utilization": float(self.utilization),
            "impact_bps": float(self.impact_bps),
            "spread_bps": float(self.spread_bps),
            "widened": bool(self.widened),
            "slippage_bps": float(self.slippage_bps),
            "slip_factor": float(self.slip_factor),
            "fee_eth": float(self.fee_eth),
            "total_cost_eth": float(self.total_cost_eth),
        }


def estimate_execution(pool: Pool, size_eth: Any, side: str = "buy") -> ExecutionResult:
    size = coerce_amount(size_eth)
    if not (math.isfinite(size) and size >= 0):
        return ExecutionResult.refused("Trade size must be a valid non-negative number.")
    if side not in ("buy", "sell"):
        return ExecutionResult.refused(f"Unknown trade side {side!r}.")

    metrics = pool_metrics(pool)
    if not metrics.supports_dex:
        return ExecutionResult.refused(
            f"Pool needs at least {pool.config.min_liquidity_eth} ETH to enable trading.", metrics
        )

    depth = max(metrics.effective_depth_eth, MIN_EFFECTIVE_DEPTH_ETH)
    utilization = clamp(size / (depth * metrics.max_utilization), 0.0, 1.0)
    impact_bps = utilization * metrics.max_impact_bps
    widened = utilization > metrics.widen_threshold
    spread_bps = metrics.widened_spread_bps if widened else metrics.base_spread_bps
    slippage_bps = spread_bps + impact_bps
    if side == "buy":
        slip_factor = 1 + slippage_bps / BPS
    else:
        slip_factor = max(0.0, 1 - slippage_bps / BPS)
    fee_eth = size * metrics.fee_bps / BPS

    return ExecutionResult(
        permitted=True,
        side=side,
        size_eth=size,
        utilization=utilization,
        impact_bps=impact_bps,
        spread_bps=spread_bps,
        widened=widened,
        slippage_bps=slippage_bps,
        slip_factor=slip_factor,
        fee_eth=fee_eth,
        total_cost_eth=size * slip_factor + fee_eth,
        metrics=metrics,
    )


def settle_execution(pool: Pool, result: ExecutionResult, timestamp: Optional[int] = None) -> Pool:
    """Route a permitted execution's fee: treasury share first, remainder to LPs."""
    if not result.permitted or result.fee_eth <= 0:
        return pool
    treasury_cut = result.fee_eth * pool.config.treasury_fee_share
    lp_cut = result.fee_eth - treasury_cut
    nxt = credit_treasury(pool, treasury_cut, timestamp)
    nxt = distribute_fees(nxt, lp_cut, timestamp)
    logger.debug("settled %s %.4f ETH: fee=%.6f treasury=%.6f lp=%.6f",
                 result.side, result.size_eth, result.fee_eth, treasury_cut, lp_cut)
    return nxt


# -----------------------------
# Derived order book (display only, nothing is matched)
# -----------------------------
@dataclass(frozen=True)
class BookLevel:
    price: float
    size: float


@dataclass(frozen=True)
class OrderBook:
    bids: Tuple[BookLevel, ...] = ()
    asks: Tuple[BookLevel, ...] = ()


def build_orderbook(price: float, depth_scalar: float = 1.0, levels: int = 4) -> OrderBook:
    basis = price if isinstance(price, (int, float)) and math.isfinite(price) else 0.0
    boost = depth_scalar if isinstance(depth_scalar, (int, float)) and math.isfinite(depth_scalar) and depth_scalar > 0 else 1.0
    step = basis * 0.003 / max(boost, 0.5)
    base_size = max(basis / 12, 8) * boost
    bids = tuple(
        BookLevel(price=basis - step * (i + 1), size=max(base_size - i * 1.4, 0.1))
        for i in range(levels)
    )
    asks = tuple(
        BookLevel(price=basis + step * (i + 1), size=max(base_size - i * 1.2, 0.1))
        for i in range(levels)
    )
    return OrderBook(bids=bids, asks=asks)
