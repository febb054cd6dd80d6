from __future__ import annotations
from dataclasses import asdict, dataclass, replace
from typing import Any, Literal, Mapping, Optional, Union
import logging
import math
import numbers

from .config import PoolConfig
from .core import clamp, frozen_map, now_ms
from .errors import BelowMinimumLiquidity, ConfigError, InsufficientBalance, InvalidAmount

logger = logging.getLogger(__name__)

BALANCE_EPSILON = 1e-9
DEPTH_SCALAR_MIN = 0.25
DEPTH_SCALAR_MAX = 4.0

PoolEventKind = Literal["stake", "withdraw", "fee", "treasury"]


def format_stakers(stakers: Mapping[str, float]) -> str:
    if not stakers:
        return "(none)"
    return ", ".join(f"{sid}:{amt:.4f}" for sid, amt in sorted(stakers.items()))


# -----------------------------
# Events
# -----------------------------
@dataclass(frozen=True)
class PoolEvent:
    kind: PoolEventKind
    amount_eth: float
    timestamp: int
    staker_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "type": self.kind,
            "amount_eth": float(self.amount_eth),
            "timestamp": int(self.timestamp),
            "staker_id": self.staker_id,
        }


# -----------------------------
# Pool
# -----------------------------
@dataclass(frozen=True)
class Pool:
    eth_liquidity: float
    cumulative_fees_eth: float
    treasury_eth: float
    stakers: Mapping[str, float]
    last_event: Optional[PoolEvent]
    config: PoolConfig

    def staked(self, staker_id: str) -> float:
        return float(self.stakers.get(staker_id, 0.0))


@dataclass(frozen=True)
class PoolMetrics:
    supports_dex: bool
    eth_liquidity: float
    safety_buffer_eth: float
    coverage_ratio: float
    effective_depth_eth: float
    depth_scalar: float
    fee_bps: float
    base_spread_bps: float
    widened_spread_bps: float
    widen_threshold: float
    max_impact_bps: float
    max_utilization: float
    target_utilization: float
    virtual_inventory_multiplier: float
    treasury_eth: float
    cumulative_fees_eth: float
    staker_count: int

    def to_dict(self) -> dict:
        return asdict(self)


def coerce_amount(value: Any) -> float:
    """Coerce numeric strings/numbers; anything else becomes NaN."""
    if isinstance(value, bool):
        return math.nan
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return math.nan
    if isinstance(value, numbers.Real):
        return float(value)
    return math.nan


def create_pool(config: Union[PoolConfig, Mapping[str, Any], None] = None, **overrides: Any) -> Pool:
    if isinstance(config, PoolConfig):
        cfg = PoolConfig.from_mapping({**asdict(config), **overrides}) if overrides else config
    elif config is None or isinstance(config, Mapping):
        cfg = PoolConfig.from_mapping({**(config or {}), **overrides})
    else:
        raise ConfigError(f"Unsupported pool config: {config!r}")
    initial = max(cfg.initial_liquidity_eth, cfg.min_liquidity_eth)
    logger.debug("created pool liquidity=%.4f min=%.4f", initial, cfg.min_liquidity_eth)
    return Pool(
        eth_liquidity=initial,
        cumulative_fees_eth=0.0,
        treasury_eth=0.0,
        stakers=frozen_map(),
        last_event=None,
        config=cfg,
    )


def stake(pool: Pool, amount_eth: Any, staker_id: str = "anon", timestamp: Optional[int] = None) -> Pool:
    amount = coerce_amount(amount_eth)
    if not (math.isfinite(amount) and amount > 0):
        raise InvalidAmount("Stake amount must be greater than zero.")
    stakers = dict(pool.stakers)
    stakers[staker_id] = stakers.get(staker_id, 0.0) + amount
    nxt = replace(
        pool,
        eth_liquidity=pool.eth_liquidity + amount,
        stakers=frozen_map(stakers),
        last_event=PoolEvent("stake", amount, now_ms() if timestamp is None else timestamp, staker_id),
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("stake %s %.4f ETH -> liquidity=%.4f stakers={ %s }",
                     staker_id, amount, nxt.eth_liquidity, format_stakers(nxt.stakers))
    return nxt


def withdraw(pool: Pool, amount_eth: Any, staker_id: str = "anon", timestamp: Optional[int] = None) -> Pool:
    amount = coerce_amount(amount_eth)
    if not (math.isfinite(amount) and amount > 0):
        raise InvalidAmount("Withdrawal amount must be greater than zero.")
    balance = pool.staked(staker_id)
    if staker_id not in pool.stakers or balance < amount - BALANCE_EPSILON:
        raise InsufficientBalance("Insufficient staked balance for withdrawal.")
    next_liquidity = pool.eth_liquidity - amount
    if next_liquidity < pool.config.min_liquidity_eth - BALANCE_EPSILON:
        raise BelowMinimumLiquidity(
            f"Pool requires at least {pool.config.min_liquidity_eth} ETH to remain active."
        )

    stakers = dict(pool.stakers)
    remaining = balance - amount
    if remaining > BALANCE_EPSILON:
        stakers[staker_id] = remaining
    else:
        stakers.pop(staker_id, None)
    nxt = replace(
        pool,
        eth_liquidity=next_liquidity,
        stakers=frozen_map(stakers),
        last_event=PoolEvent("withdraw", amount, now_ms() if timestamp is None else timestamp, staker_id),
    )
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("withdraw %s %.4f ETH -> liquidity=%.4f stakers={ %s }",
                     staker_id, amount, nxt.eth_liquidity, format_stakers(nxt.stakers))
    return nxt


def distribute_fees(pool: Pool, fee_eth: Any, timestamp: Optional[int] = None) -> Pool:
    amount = coerce_amount(fee_eth)
    if not (math.isfinite(amount) and amount >= 0):
        raise InvalidAmount("Fee amount must be a valid number.")
    if amount == 0:
        return pool
    return replace(
        pool,
        eth_liquidity=pool.eth_liquidity + amount,
        cumulative_fees_eth=pool.cumulative_fees_eth + amount,
        last_event=PoolEvent("fee", amount, now_ms() if timestamp is None else timestamp),
    )


def credit_treasury(pool: Pool, amount_eth: Any, timestamp: Optional[int] = None) -> Pool:
    # treasury balance is not tradable liquidity
    amount = coerce_amount(amount_eth)
    if not (math.isfinite(amount) and amount >= 0):
        raise InvalidAmount("Treasury amount must be a valid number.")
    if amount == 0:
        return pool
    return replace(
        pool,
        treasury_eth=pool.treasury_eth + amount,
        last_event=PoolEvent("treasury", amount, now_ms() if timestamp is None else timestamp),
    )


def pool_metrics(pool: Pool) -> PoolMetrics:
    cfg = pool.config
    liquidity = pool.eth_liquidity
    coverage = math.inf if cfg.min_liquidity_eth == 0 else liquidity / cfg.min_liquidity_eth
    return PoolMetrics(
        supports_dex=liquidity >= cfg.min_liquidity_eth,
        eth_liquidity=liquidity,
        safety_buffer_eth=max(liquidity - cfg.min_liquidity_eth, 0.0),
        coverage_ratio=coverage,
        effective_depth_eth=liquidity * cfg.virtual_inventory_multiplier,
        depth_scalar=clamp(coverage / cfg.target_utilization, DEPTH_SCALAR_MIN, DEPTH_SCALAR_MAX),
        fee_bps=cfg.fee_bps,
        base_spread_bps=cfg.base_spread_bps,
        widened_spread_bps=cfg.widened_spread_bps,
        widen_threshold=cfg.widen_threshold,
        max_impact_bps=cfg.max_impact_bps,
        max_utilization=cfg.max_utilization,
        target_utilization=cfg.target_utilization,
        virtual_inventory_multiplier=cfg.virtual_inventory_multiplier,
        treasury_eth=pool.treasury_eth,
        cumulative_fees_eth=pool.cumulative_fees_eth,
        staker_count=len(pool.stakers),
    )
