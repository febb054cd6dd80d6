from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence
import numpy as np
import pandas as pd

from .config import HISTORY_LENGTH, STEP_INTERVAL_MS
from .core import OracleState
from .pool import Pool, pool_metrics


def realized_volatility(history: Sequence[float]) -> float:
    """Standard deviation of step log returns; 0 for fewer than two usable prices."""
    prices = np.asarray(history, dtype=float)
    prices = prices[np.isfinite(prices) & (prices > 0)]
    if prices.size < 2:
        return 0.0
    return float(np.std(np.diff(np.log(prices))))


def history_frame(state: OracleState) -> pd.DataFrame:
    """Long frame: one row per (asset, history point), oldest first."""
    offsets = np.arange(HISTORY_LENGTH - 1, -1, -1) * STEP_INTERVAL_MS
    frames = []
    for asset in state.assets:
        timestamps = state.last_updated - offsets[-len(asset.history):]
        frames.append(pd.DataFrame({
            "id": asset.id,
            "ticker": asset.ticker,
            "timestamp": pd.to_datetime(timestamps, unit="ms", utc=True),
            "price": np.asarray(asset.history, dtype=float),
        }))
    if not frames:
        return pd.DataFrame(columns=["id", "ticker", "timestamp", "price"])
    return pd.concat(frames, ignore_index=True)


def summary_frame(state: OracleState) -> pd.DataFrame:
    rows = []
    for asset in state.assets:
        rows.append({
            "id": asset.id,
            "ticker": asset.ticker,
            "price": asset.price,
            "change_pct": asset.change,
            "volume": asset.volume,
            "target_price": asset.target_price,
            "internal_score": asset.internal_score,
            "external_score": asset.external_score,
            "composite_score": asset.composite_score,
            "realized_vol": realized_volatility(asset.history),
        })
    return pd.DataFrame(rows)


@dataclass
class MetricsStore:
    oracle_rows: List[Dict[str, Any]] = field(default_factory=list)
    pool_rows: List[Dict[str, Any]] = field(default_factory=list)

    def add_oracle(self, state: OracleState) -> None:
        if self.oracle_rows and self.oracle_rows[-1]["timestamp"] == state.last_updated:
            return
        for asset in state.assets:
            self.oracle_rows.append({
                "timestamp": state.last_updated,
                "id": asset.id,
                "price": asset.price,
                "target_price": asset.target_price,
                "volume": asset.volume,
                "composite_score": asset.composite_score,
            })

    def add_pool(self, pool: Pool, timestamp: int) -> None:
        m = pool_metrics(pool)
        self.pool_rows.append({
            "timestamp": timestamp,
            "eth_liquidity": m.eth_liquidity,
            "effective_depth_eth": m.effective_depth_eth,
            "coverage_ratio": m.coverage_ratio,
            "cumulative_fees_eth": m.cumulative_fees_eth,
            "treasury_eth": m.treasury_eth,
            "stakers": m.staker_count,
        })

    def oracle_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.oracle_rows)

    def pool_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.pool_rows)
