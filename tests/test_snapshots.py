import threading

import pytest

from venue.config import (
    ALPHA_VANTAGE_CACHE_TTL_MS,
    COMPANIES,
    DEFAULT_BASELINES,
    EXTERNAL_SCHEMA,
    INTERNAL_SCHEMA,
    SCRAPE_CACHE_TTL_MS,
    SCRAPE_FAILURE_BACKOFF_MS,
    STEP_INTERVAL_MS,
    ScrapeConfig,
)
from venue.errors import UnknownCompany
from venue.snapshots import (
    MetricsContext,
    MetricSnapshotProvider,
    apply_drift,
    default_baseline,
    merge_metrics,
    usable_metrics,
)

from conftest import NOW

HOUR = 60 * 60 * 1000


def _within_bounds(snapshot):
    for spec in INTERNAL_SCHEMA:
        assert spec.min <= snapshot.internal[spec.key] <= spec.max
    for spec in EXTERNAL_SCHEMA:
        assert spec.min <= snapshot.external[spec.key] <= spec.max


def test_snapshot_is_deterministic(provider):
    a = provider.snapshot("openai", NOW)
    b = provider.snapshot("openai", NOW)
    assert a == b
    assert dict(a.internal) == dict(b.internal)


def test_snapshot_is_independent_of_provider_instance(provider):
    other = MetricSnapshotProvider()
    assert dict(provider.snapshot("spacex", NOW).external) == dict(other.snapshot("spacex", NOW).external)


def test_drift_stays_within_bounds(provider):
    for cid in DEFAULT_BASELINES:
        for i in range(96):
            _within_bounds(provider.snapshot(cid, NOW + i * STEP_INTERVAL_MS))


def test_drift_is_bounded_by_jitter(provider):
    snap = provider.snapshot("openai", NOW)
    base = DEFAULT_BASELINES["openai"]["internal"]
    for spec in INTERNAL_SCHEMA:
        assert abs(snap.internal[spec.key] - base[spec.key]) <= spec.jitter + 1e-12


def test_extreme_baseline_is_clamped(provider):
    provider.ingest("neuralink", {"internal": {"annualRevenue": 10_000.0, "sentimentScore": -5.0}}, NOW)
    snap = provider.snapshot("neuralink", NOW)
    assert snap.internal["annualRevenue"] == 120.0
    assert snap.internal["sentimentScore"] == -1.0


def test_ingest_unknown_company(provider):
    with pytest.raises(UnknownCompany):
        provider.ingest("theranos", {"internal": {"annualRevenue": 1.0}}, NOW)


def test_ingest_merges_over_defaults(provider):
    merged = provider.ingest("openai", {"internal": {"annualRevenue": 11.0}}, NOW)
    defaults = DEFAULT_BASELINES["openai"]
    assert merged.internal["annualRevenue"] == 11.0
    assert merged.internal["sentimentScore"] == defaults["internal"]["sentimentScore"]
    assert dict(merged.external) == defaults["external"]


def test_ingest_replaces_previous_entry(provider):
    provider.ingest("openai", {"internal": {"annualRevenue": 11.0}}, NOW)
    provider.ingest("openai", {"external": {"fearGreedIndex": 10.0}}, NOW)
    base = provider.baseline("openai", NOW)
    assert base.internal["annualRevenue"] == DEFAULT_BASELINES["openai"]["internal"]["annualRevenue"]
    assert base.external["fearGreedIndex"] == 10.0


def test_cache_ttl(provider):
    provider.ingest("spacex", {"internal": {"annualRevenue": 50.0}}, NOW)
    assert provider.baseline("spacex", NOW + SCRAPE_CACHE_TTL_MS).internal["annualRevenue"] == 50.0
    expired = provider.baseline("spacex", NOW + SCRAPE_CACHE_TTL_MS + 1)
    assert expired == default_baseline("spacex")


def test_ingested_baseline_changes_snapshot(provider):
    before = provider.snapshot("openai", NOW)
    provider.ingest("openai", {"internal": {"annualRevenue": 60.0}}, NOW)
    after = provider.snapshot("openai", NOW)
    assert after.internal["annualRevenue"] > before.internal["annualRevenue"]
    assert after.external == before.external


def test_merged_baseline_is_read_only(provider):
    merged = provider.ingest("openai", {"internal": {"annualRevenue": 11.0}}, NOW)
    with pytest.raises(TypeError):
        merged.internal["annualRevenue"] = 0.0


def test_merge_metrics_without_overrides():
    defaults = default_baseline("openai")
    assert merge_metrics(defaults) == defaults


# -----------------------------
# Background refresh
# -----------------------------
class CountingFetcher:
    def __init__(self, payload=None, error=None, gate=None):
        self.payload = payload
        self.error = error
        self.gate = gate
        self.calls = 0
        self._lock = threading.Lock()

    def __call__(self, company_id):
        with self._lock:
            self.calls += 1
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.payload


def _provider(fetcher, **cfg):
    context = MetricsContext(cfg=ScrapeConfig(**cfg), fetcher=fetcher, clock=lambda: NOW)
    return MetricSnapshotProvider(context)


def test_refresh_populates_cache_for_future_calls():
    fetcher = CountingFetcher(payload={"internal": {"annualRevenue": 42.0}, "external": {}})
    provider = _provider(fetcher)
    first = provider.snapshot("openai", NOW)
    provider.context.wait_for_refreshes(timeout=5)
    assert fetcher.calls == 1
    assert provider.baseline("openai", NOW).internal["annualRevenue"] == 42.0
    assert provider.snapshot("openai", NOW) != first
    provider.context.close()


def test_refresh_failure_is_swallowed_and_backs_off():
    fetcher = CountingFetcher(error=RuntimeError("provider down"))
    provider = _provider(fetcher)
    snap = provider.snapshot("spacex", NOW)
    provider.context.wait_for_refreshes(timeout=5)
    _within_bounds(snap)
    assert provider.context.cached("spacex") is None
    provider.snapshot("spacex", NOW + STEP_INTERVAL_MS)
    provider.context.wait_for_refreshes(timeout=5)
    assert fetcher.calls == 1
    provider.context.close()


def test_single_refresh_in_flight_per_company():
    gate = threading.Event()
    fetcher = CountingFetcher(payload=None, gate=gate)
    provider = _provider(fetcher, failure_backoff_ms=0)
    provider.snapshot("neuralink", NOW)
    assert provider.context.in_flight("neuralink")
    provider.snapshot("neuralink", NOW)
    provider.snapshot("neuralink", NOW + STEP_INTERVAL_MS)
    gate.set()
    provider.context.wait_for_refreshes(timeout=5)
    assert fetcher.calls == 1
    assert not provider.context.in_flight("neuralink")
    provider.context.close()


def test_refresh_waits_for_refresh_window():
    fetcher = CountingFetcher(payload={"external": {"fearGreedIndex": 80.0}})
    provider = _provider(fetcher, failure_backoff_ms=0)
    provider.snapshot("openai", NOW)
    provider.context.wait_for_refreshes(timeout=5)
    provider.snapshot("openai", NOW + HOUR // 2)
    provider.context.wait_for_refreshes(timeout=5)
    assert fetcher.calls == 1
    provider.snapshot("openai", NOW + 2 * HOUR)
    provider.context.wait_for_refreshes(timeout=5)
    assert fetcher.calls == 2
    provider.context.close()


def test_no_refresh_without_fetcher(provider):
    provider.snapshot("openai", NOW)
    assert not provider.context.in_flight("openai")
    assert provider.context.cached("openai") is None


class ManualClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def test_refresh_retries_after_backoff_elapses():
    clock = ManualClock(NOW)
    fetcher = CountingFetcher(error=RuntimeError("provider down"))
    context = MetricsContext(cfg=ScrapeConfig(), fetcher=fetcher, clock=clock)
    provider = MetricSnapshotProvider(context)
    provider.snapshot("openai", NOW)
    context.wait_for_refreshes(timeout=5)
    clock.now += SCRAPE_FAILURE_BACKOFF_MS - 1
    provider.snapshot("openai", NOW + STEP_INTERVAL_MS)
    context.wait_for_refreshes(timeout=5)
    assert fetcher.calls == 1
    clock.now += 1
    provider.snapshot("openai", NOW + 2 * STEP_INTERVAL_MS)
    context.wait_for_refreshes(timeout=5)
    assert fetcher.calls == 2
    context.close()


# -----------------------------
# Non-finite enrichment values
# -----------------------------
def test_ingest_drops_non_finite_fields(provider):
    merged = provider.ingest(
        "openai",
        {
            "internal": {"annualRevenue": float("nan"), "sentimentScore": 0.5},
            "external": {"fearGreedIndex": "high", "marketPerformance": float("inf")},
        },
        NOW,
    )
    defaults = DEFAULT_BASELINES["openai"]
    assert merged.internal["annualRevenue"] == defaults["internal"]["annualRevenue"]
    assert merged.internal["sentimentScore"] == 0.5
    assert merged.external["fearGreedIndex"] == defaults["external"]["fearGreedIndex"]
    assert merged.external["marketPerformance"] == defaults["external"]["marketPerformance"]
    _within_bounds(provider.snapshot("openai", NOW))


def test_non_finite_ingest_does_not_break_advance(provider, engine):
    provider.ingest("openai", {"internal": {"annualRevenue": float("nan")}}, NOW)
    state = engine.bootstrap(NOW)
    nxt = engine.advance(state, NOW + STEP_INTERVAL_MS)
    band = COMPANIES["openai"]
    assert band.floor <= nxt.asset("openai").price <= band.ceiling


def test_drift_ignores_non_finite_baseline():
    drifted = apply_drift(INTERNAL_SCHEMA, {"annualRevenue": float("nan"), "sentimentScore": None}, NOW, 7)
    for spec in INTERNAL_SCHEMA:
        assert spec.min <= drifted[spec.key] <= spec.max


def test_usable_metrics():
    assert usable_metrics({"a": 1, "b": float("nan"), "c": True, "d": "2"}) == {"a": 1.0}
    assert usable_metrics(None) == {}


# -----------------------------
# Context-owned caches
# -----------------------------
def test_clear_drops_cached_baselines_and_deltas(provider):
    provider.ingest("openai", {"internal": {"annualRevenue": 11.0}}, NOW)
    provider.context.delta_cache.put("SPY", 0.01)
    provider.context.clear()
    assert provider.context.cached("openai") is None
    assert provider.context.delta_cache.get("SPY") is None
    assert provider.baseline("openai", NOW) == default_baseline("openai")


def test_delta_cache_follows_context_clock():
    clock = ManualClock(NOW)
    context = MetricsContext(clock=clock)
    context.delta_cache.put("QQQ", 0.02)
    clock.now += ALPHA_VANTAGE_CACHE_TTL_MS - 1
    assert context.delta_cache.get("QQQ") == 0.02
    clock.now += 1
    assert context.delta_cache.get("QQQ") is None


def test_live_context_has_fetcher_and_own_delta_cache():
    a = MetricsContext.live(clock=lambda: NOW)
    b = MetricsContext.live(clock=lambda: NOW)
    assert a.fetcher is not None
    assert a.delta_cache is not b.delta_cache
