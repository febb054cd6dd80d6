from dataclasses import replace

import pytest

from venue.execution import build_orderbook, estimate_execution, settle_execution
from venue.pool import create_pool, pool_metrics

from conftest import NOW


@pytest.fixture
def default_pool():
    # 1.2 ETH * 4.5 depth * 0.9 max utilization = 4.86 ETH of tradable size
    return create_pool()


def test_zero_size_is_free(default_pool):
    r = estimate_execution(default_pool, 0)
    assert r.permitted
    assert r.utilization == 0.0
    assert r.impact_bps == 0.0
    assert r.fee_eth == 0.0
    assert r.total_cost_eth == 0.0
    assert r.spread_bps == default_pool.config.base_spread_bps


def test_small_buy(default_pool):
    r = estimate_execution(default_pool, 1, "buy")
    assert r.permitted and r.side == "buy"
    assert not r.widened
    assert r.utilization == pytest.approx(1 / 4.86)
    assert r.impact_bps == pytest.approx(240 / 4.86)
    assert r.slippage_bps == pytest.approx(18 + 240 / 4.86)
    assert r.slip_factor == pytest.approx(1 + r.slippage_bps / 10_000)
    assert r.fee_eth == pytest.approx(0.0012)
    assert r.total_cost_eth == pytest.approx(r.slip_factor + 0.0012)


def test_large_trade_widens_spread(default_pool):
    r = estimate_execution(default_pool, 4)
    assert r.widened
    assert r.spread_bps == 45.0


def test_impact_is_monotonic_and_capped(default_pool):
    sizes = [0, 0.5, 1, 2, 3, 4.86, 10, 100]
    impacts = [estimate_execution(default_pool, s).impact_bps for s in sizes]
    assert impacts == sorted(impacts)
    assert impacts[-1] == 240.0
    assert estimate_execution(default_pool, 100).utilization == 1.0


def test_sell_discounts(default_pool):
    r = estimate_execution(default_pool, 1, "sell")
    assert r.slip_factor == pytest.approx(1 - r.slippage_bps / 10_000)
    assert r.slip_factor < 1


def test_sell_slip_factor_never_negative():
    pool = create_pool({"widened_spread_bps": 20_000})
    r = estimate_execution(pool, 50, "sell")
    assert r.permitted
    assert r.slip_factor == 0.0
    assert r.total_cost_eth == pytest.approx(r.fee_eth)


@pytest.mark.parametrize("size", [-1, "abc", None, float("nan"), float("inf")])
def test_invalid_size_is_refused(default_pool, size):
    r = estimate_execution(default_pool, size)
    assert not r.permitted
    assert r.reason
    assert r.metrics is None


def test_unknown_side_is_refused(default_pool):
    r = estimate_execution(default_pool, 1, "short")
    assert not r.permitted
    assert "short" in r.reason


def test_pool_below_minimum_is_refused(default_pool):
    thin = replace(default_pool, eth_liquidity=0.5)
    r = estimate_execution(thin, 1)
    assert not r.permitted
    assert r.metrics is not None and not r.metrics.supports_dex


def test_estimate_does_not_touch_pool(default_pool):
    estimate_execution(default_pool, 3)
    assert default_pool.eth_liquidity == 1.2
    assert default_pool.cumulative_fees_eth == 0.0


def test_to_dict(default_pool):
    d = estimate_execution(default_pool, 1).to_dict()
    assert d["permitted"] is True
    assert d["side"] == "buy"
    assert "metrics" not in d


def test_settle_splits_fee(default_pool):
    r = estimate_execution(default_pool, 1)
    settled = settle_execution(default_pool, r, NOW)
    assert settled.treasury_eth == pytest.approx(0.0012 * 0.2)
    assert settled.cumulative_fees_eth == pytest.approx(0.0012 * 0.8)
    assert settled.eth_liquidity == pytest.approx(1.2 + 0.0012 * 0.8)
    assert settled.last_event.kind == "fee"
    assert pool_metrics(settled).treasury_eth == settled.treasury_eth


def test_settle_refused_or_free_is_noop(default_pool):
    assert settle_execution(default_pool, estimate_execution(default_pool, -1)) is default_pool
    assert settle_execution(default_pool, estimate_execution(default_pool, 0)) is default_pool


def test_settle_all_fees_to_treasury():
    pool = create_pool({"treasury_fee_share": 1})
    settled = settle_execution(pool, estimate_execution(pool, 2), NOW)
    assert settled.eth_liquidity == pool.eth_liquidity
    assert settled.treasury_eth == pytest.approx(2 * 12 / 10_000)


def test_orderbook_is_symmetric_around_price():
    book = build_orderbook(200.0, depth_scalar=1.0, levels=4)
    assert len(book.bids) == len(book.asks) == 4
    assert all(b.price < 200.0 < a.price for b, a in zip(book.bids, book.asks))
    assert [b.price for b in book.bids] == sorted((b.price for b in book.bids), reverse=True)
    assert [a.price for a in book.asks] == sorted(a.price for a in book.asks)
    assert all(level.size >= 0.1 for level in book.bids + book.asks)


def test_orderbook_deepens_with_depth_scalar():
    thin = build_orderbook(200.0, depth_scalar=0.5)
    deep = build_orderbook(200.0, depth_scalar=3.0)
    assert deep.asks[0].size > thin.asks[0].size
    assert deep.asks[0].price - 200.0 < thin.asks[0].price - 200.0


def test_orderbook_handles_bad_inputs():
    book = build_orderbook(float("nan"), depth_scalar=-1)
    assert all(level.price == 0.0 for level in book.bids + book.asks)
