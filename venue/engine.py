from __future__ import annotations
from dataclasses import replace
from typing import List, Optional, Sequence
import logging

from .config import COMPANY_IDS, HISTORY_LENGTH, ORACLE_UPDATE_INTERVAL_MS, STEP_INTERVAL_MS
from .core import (
    Asset,
    CompanySnapshot,
    OracleState,
    align_to_interval,
    clamp,
    get_company,
    now_ms,
    round2,
    round3,
)
from .pricing import derive_volume, price_step
from .snapshots import MetricSnapshotProvider
from .valuation import valuate

logger = logging.getLogger(__name__)

__all__ = [
    "COMPANY_IDS",
    "HISTORY_LENGTH",
    "ORACLE_UPDATE_INTERVAL_MS",
    "STEP_INTERVAL_MS",
    "OracleEngine",
    "initialize_state",
    "advance_state",
    "generate_snapshot_list",
    "get_synthetic_asset_snapshot",
]


def _percent_change(prior: float, latest: float) -> float:
    if prior == 0:
        return 0.0
    return (latest - prior) / prior * 100


class OracleEngine:
    """Steps every company's price in lock-step on a fixed 15-minute grid.

    States are immutable values: `bootstrap` builds one, `advance` returns a
    new one (or the same object when there is nothing to do). The caller owns
    the current state and swaps results in.
    """

    def __init__(
        self,
        provider: Optional[MetricSnapshotProvider] = None,
        company_ids: Sequence[str] = COMPANY_IDS,
    ) -> None:
        self.provider = provider or MetricSnapshotProvider()
        for cid in company_ids:
            get_company(cid)
        self.company_ids = tuple(company_ids)

    # -----------------------------
    # Asset construction
    # -----------------------------
    def bootstrap_asset(self, company_id: str, aligned_timestamp: int) -> Asset:
        """Replay HISTORY_LENGTH intervals ending at `aligned_timestamp`."""
        company = get_company(company_id)
        start = aligned_timestamp - STEP_INTERVAL_MS * (HISTORY_LENGTH - 1)
        history: List[float] = []
        previous: Optional[float] = None
        metrics = valuation = None

        for i in range(HISTORY_LENGTH):
            frame_ts = start + STEP_INTERVAL_MS * i
            metrics = self.provider.snapshot(company_id, frame_ts)
            valuation = valuate(company_id, metrics)
            if previous is None:
                raw = clamp(valuation.target_price, company.floor, company.ceiling)
            else:
                raw = price_step(company_id, previous, valuation.target_price, frame_ts)
            price = round2(raw)
            history.append(price)
            previous = price

        latest = history[-1]
        prior = history[-2] if len(history) > 1 else latest
        volume = derive_volume(
            company_id,
            valuation.normalized_internal,
            valuation.normalized_external,
            valuation.composite_score,
            aligned_timestamp,
            latest,
        )
        return Asset(
            id=company.id,
            name=company.name,
            ticker=company.ticker,
            category=company.category,
            price=latest,
            change=round2(_percent_change(prior, latest)),
            volume=volume,
            history=tuple(history),
            metrics=metrics,
            normalized_internal=valuation.normalized_internal,
            normalized_external=valuation.normalized_external,
            internal_score=round3(valuation.internal_score),
            external_score=round3(valuation.external_score),
            composite_score=round3(valuation.composite_score),
            target_price=round2(valuation.target_price),
        )

    def advance_asset(self, asset: Asset, timestamp: int) -> Asset:
        metrics = self.provider.snapshot(asset.id, timestamp)
        valuation = valuate(asset.id, metrics)
        next_price = round2(price_step(asset.id, asset.price, valuation.target_price, timestamp))
        history = asset.history[-(HISTORY_LENGTH - 1):] + (next_price,)
        volume = derive_volume(
            asset.id,
            valuation.normalized_internal,
            valuation.normalized_external,
            valuation.composite_score,
            timestamp,
            next_price,
        )
        return replace(
            asset,
            price=next_price,
            change=round2(_percent_change(asset.price, next_price)),
            volume=volume,
            history=history,
            metrics=metrics,
            normalized_internal=valuation.normalized_internal,
            normalized_external=valuation.normalized_external,
            internal_score=round3(valuation.internal_score),
            external_score=round3(valuation.external_score),
            composite_score=round3(valuation.composite_score),
            target_price=round2(valuation.target_price),
        )

    # -----------------------------
    # State transitions
    # -----------------------------
    def bootstrap(self, now: Optional[int] = None) -> OracleState:
        aligned = align_to_interval(now_ms() if now is None else now)
        assets = tuple(self.bootstrap_asset(cid, aligned) for cid in self.company_ids)
        logger.debug("bootstrapped %d assets at %d", len(assets), aligned)
        return OracleState(assets=assets, last_updated=aligned)

    def advance(self, state: OracleState, now: Optional[int] = None) -> OracleState:
        target = align_to_interval(now_ms() if now is None else now)
        if target <= state.last_updated:
            return state

        current = state
        steps = 0
        # missed intervals are replayed one by one so reversion/noise compound
        while current.last_updated + STEP_INTERVAL_MS <= target:
            step_ts = current.last_updated + STEP_INTERVAL_MS
            current = OracleState(
                assets=tuple(self.advance_asset(a, step_ts) for a in current.assets),
                last_updated=step_ts,
            )
            steps += 1
        logger.debug("advanced oracle %d step(s) to %d", steps, current.last_updated)
        return current

    def asset_snapshot(self, company_id: str, timestamp: Optional[int] = None) -> Asset:
        return self.bootstrap_asset(company_id, align_to_interval(now_ms() if timestamp is None else timestamp))

    def snapshot_list(self, timestamp: Optional[int] = None) -> List[CompanySnapshot]:
        aligned = align_to_interval(now_ms() if timestamp is None else timestamp)
        rows = []
        for cid in self.company_ids:
            company = get_company(cid)
            metrics = self.provider.snapshot(cid, aligned)
            valuation = valuate(cid, metrics)
            rows.append(CompanySnapshot(
                id=company.id,
                name=company.name,
                ticker=company.ticker,
                category=company.category,
                metrics=metrics,
                normalized_internal=valuation.normalized_internal,
                normalized_external=valuation.normalized_external,
                internal_score=round3(valuation.internal_score),
                external_score=round3(valuation.external_score),
                composite_score=round3(valuation.composite_score),
                target_price=round2(valuation.target_price),
                price_floor=company.floor,
                price_ceiling=company.ceiling,
                timestamp=aligned,
            ))
        return rows


# Module-level entry points bound to an engine without live enrichment.
_default_engine = OracleEngine()


def initialize_state(now: Optional[int] = None) -> OracleState:
    return _default_engine.bootstrap(now)


def advance_state(state: OracleState, timestamp: Optional[int] = None) -> OracleState:
    return _default_engine.advance(state, timestamp)


def generate_snapshot_list(timestamp: Optional[int] = None) -> List[CompanySnapshot]:
    return _default_engine.snapshot_list(timestamp)


def get_synthetic_asset_snapshot(company_id: str, timestamp: Optional[int] = None) -> Asset:
    return _default_engine.asset_snapshot(company_id, timestamp)
