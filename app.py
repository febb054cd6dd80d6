import logging
import os
from dataclasses import asdict

import pandas as pd
import streamlit as st

from venue.config import COMPANIES, HISTORY_LENGTH, STEP_INTERVAL_MS
from venue.coordinator import Coordinator
from venue.core import align_to_interval, now_ms
from venue.engine import OracleEngine
from venue.errors import PoolError
from venue.execution import build_orderbook, estimate_execution, settle_execution
from venue.metrics import MetricsStore, history_frame, summary_frame
from venue.pool import create_pool, pool_metrics, stake, withdraw
from venue.snapshots import MetricsContext, MetricSnapshotProvider

logging.basicConfig(level=os.getenv("VENUE_LOG_LEVEL", "WARNING"))

st.set_page_config(page_title="Synthetic Venue Simulator", layout="wide")

LP_ID = "demo-liquidity-provider"
ETH_TO_USD = 3200.0
DEMO_POOL = {"initial_liquidity_eth": 1.4, "min_liquidity_eth": 1.0}


def _build_session() -> None:
    live = os.getenv("VENUE_LIVE_METRICS", "").lower() in ("1", "true", "yes")
    context = MetricsContext.live() if live else MetricsContext()
    engine = OracleEngine(MetricSnapshotProvider(context))
    clock = align_to_interval(now_ms())
    st.session_state.context = context
    st.session_state.engine = engine
    st.session_state.clock = clock
    st.session_state.oracle = Coordinator(engine.bootstrap(clock))
    st.session_state.pool = Coordinator(create_pool(DEMO_POOL))
    st.session_state.store = MetricsStore()
    st.session_state.store.add_oracle(st.session_state.oracle.current)
    st.session_state.store.add_pool(st.session_state.pool.current, clock)


def get_session():
    if "engine" not in st.session_state:
        _build_session()
    return st.session_state


def reset_session() -> None:
    ctx = st.session_state.get("context")
    if ctx is not None:
        ctx.close()
    _build_session()


def _fmt(value: float, digits: int = 2) -> str:
    return f"{float(value):,.{digits}f}"


def _fmt_change(value: float) -> str:
    return f"{'+' if value >= 0 else ''}{value:.1f}%"


def _render_kpi_grid(kpis, columns: int = 4) -> None:
    for idx in range(0, len(kpis), columns):
        row = kpis[idx: idx + columns]
        cols = st.columns(columns)
        for col, (label, value) in zip(cols, row):
            col.metric(label, value)


def _apply_pool(transition, *args) -> None:
    session = get_session()
    try:
        session.pool.apply(transition, *args)
    except PoolError as e:
        st.error(str(e))
        return
    session.store.add_pool(session.pool.current, session.clock)


session = get_session()

st.title("Synthetic Venue Simulator")
st.caption(
    f"Oracle steps every {STEP_INTERVAL_MS // 60000} minutes; "
    f"{HISTORY_LENGTH} points of history per asset."
)

with st.sidebar:
    st.header("Oracle Clock")
    if st.button("Restart session"):
        reset_session()
        session = get_session()
    steps = st.slider("Intervals to advance", min_value=1, max_value=96, value=4)
    c1, c2 = st.columns(2)
    if c1.button("Advance"):
        session.clock += steps * STEP_INTERVAL_MS
        session.oracle.apply(session.engine.advance, session.clock)
        session.store.add_oracle(session.oracle.current)
    if c2.button("Catch up"):
        session.clock = max(session.clock, align_to_interval(now_ms()))
        session.oracle.apply(session.engine.advance, session.clock)
        session.store.add_oracle(session.oracle.current)
    st.write(pd.to_datetime(session.oracle.current.last_updated, unit="ms", utc=True))

    st.header("HIP-3 Pool")
    amount = st.number_input("Amount (ETH)", min_value=0.0, value=0.5, step=0.1)
    c3, c4 = st.columns(2)
    if c3.button("Stake"):
        _apply_pool(stake, amount, LP_ID, session.clock)
    if c4.button("Withdraw"):
        _apply_pool(withdraw, amount, LP_ID, session.clock)

oracle = session.oracle.current
pool = session.pool.current
metrics = pool_metrics(pool)

tab_markets, tab_trade, tab_pool = st.tabs(["Markets", "Trade", "Pool"])

with tab_markets:
    st.subheader("Market overview")
    cols = st.columns(len(oracle.assets))
    for col, asset in zip(cols, oracle.assets):
        col.metric(f"{asset.name} ({asset.ticker})", f"${_fmt(asset.price)}", _fmt_change(asset.change))
    hist = history_frame(oracle)
    st.line_chart(hist.pivot(index="timestamp", columns="ticker", values="price"))
    st.subheader("Valuation")
    st.dataframe(summary_frame(oracle), use_container_width=True)

with tab_trade:
    ids = [a.id for a in oracle.assets]
    selected_id = st.selectbox("Asset", ids, format_func=lambda cid: COMPANIES[cid].name)
    asset = oracle.asset(selected_id)
    side = st.radio("Side", ["buy", "sell"], horizontal=True)
    size_eth = st.number_input("Size (ETH)", min_value=0.0, value=1.0, step=0.25)
    st.caption(f"≈ ${_fmt(size_eth * ETH_TO_USD)}")

    result = estimate_execution(pool, size_eth, side)
    if not result.permitted:
        st.warning(result.reason)
    else:
        _render_kpi_grid([
            ("Utilization", f"{result.utilization:.1%}"),
            ("Spread (bps)", _fmt(result.spread_bps)),
            ("Impact (bps)", _fmt(result.impact_bps)),
            ("Fee (ETH)", _fmt(result.fee_eth, 5)),
            ("Total cost (ETH)", _fmt(result.total_cost_eth, 5)),
            ("Fill price", f"${_fmt(asset.price * result.slip_factor)}"),
        ], columns=3)
        if st.button("Execute"):
            session.pool.apply(settle_execution, result, session.clock)
            session.store.add_pool(session.pool.current, session.clock)
            st.success(f"{side} {size_eth:.4f} ETH of {asset.ticker} settled")

    st.subheader(f"Orderbook • {asset.ticker}")
    st.caption(
        f"HIP-3 depth ×{metrics.depth_scalar:.2f} • Effective {metrics.effective_depth_eth:.2f} ETH"
    )
    book = build_orderbook(asset.price, metrics.depth_scalar)
    c5, c6 = st.columns(2)
    c5.dataframe(pd.DataFrame([asdict(lvl) for lvl in book.bids]), use_container_width=True)
    c6.dataframe(pd.DataFrame([asdict(lvl) for lvl in book.asks]), use_container_width=True)

with tab_pool:
    st.subheader("Pool KPIs")
    _render_kpi_grid([
        ("Liquidity (ETH)", _fmt(metrics.eth_liquidity, 4)),
        ("Coverage", _fmt(metrics.coverage_ratio)),
        ("Effective depth (ETH)", _fmt(metrics.effective_depth_eth, 4)),
        ("Safety buffer (ETH)", _fmt(metrics.safety_buffer_eth, 4)),
        ("Fees to LPs (ETH)", _fmt(metrics.cumulative_fees_eth, 6)),
        ("Treasury (ETH)", _fmt(metrics.treasury_eth, 6)),
        ("Stakers", str(metrics.staker_count)),
        ("Trading", "enabled" if metrics.supports_dex else "disabled"),
    ])
    if pool.last_event is not None:
        st.json(pool.last_event.to_dict())
    pool_df = session.store.pool_df()
    if not pool_df.empty:
        st.line_chart(pool_df, y=["eth_liquidity", "treasury_eth", "cumulative_fees_eth"])
