from __future__ import annotations
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Sequence
import asyncio
import logging
import threading

from .config import (
    COMPANY_SOURCES,
    DEFAULT_BASELINES,
    EXTERNAL_SCHEMA,
    INTERNAL_SCHEMA,
    MetricSpec,
    ScrapeConfig,
)
from .core import MetricSnapshot, clamp, company_seed, frozen_map, is_finite_number, now_ms, seeded_noise
from .enrichment.market import DeltaCache
from .enrichment.scraper import scrape_live_metrics
from .errors import UnknownCompany

logger = logging.getLogger(__name__)

EXTERNAL_SEED_OFFSET = 97
METRIC_SEED_STRIDE = 31.71

MetricsPayload = Mapping[str, Mapping[str, float]]
Fetcher = Callable[[str], Optional[MetricsPayload]]


@dataclass(frozen=True)
class CachedBaseline:
    timestamp: int
    metrics: MetricSnapshot


def default_baseline(company_id: str) -> MetricSnapshot:
    defaults = DEFAULT_BASELINES.get(company_id)
    if defaults is None:
        raise UnknownCompany(company_id)
    return MetricSnapshot(internal=frozen_map(defaults["internal"]), external=frozen_map(defaults["external"]))


def usable_metrics(values: Optional[Mapping[str, float]]) -> Dict[str, float]:
    """Finite numeric fields only; anything else falls back to the default."""
    usable: Dict[str, float] = {}
    for key, value in (values or {}).items():
        if is_finite_number(value):
            usable[key] = float(value)
        else:
            logger.warning("dropping non-finite metric %s=%r", key, value)
    return usable


def merge_metrics(defaults: MetricSnapshot, overrides: Optional[MetricsPayload] = None) -> MetricSnapshot:
    overrides = overrides or {}
    internal = dict(defaults.internal)
    internal.update(usable_metrics(overrides.get("internal")))
    external = dict(defaults.external)
    external.update(usable_metrics(overrides.get("external")))
    return MetricSnapshot(internal=frozen_map(internal), external=frozen_map(external))


def apply_drift(
    schema: Sequence[MetricSpec], baseline: Mapping[str, float], timestamp: int, seed: float
) -> Mapping[str, float]:
    drifted: Dict[str, float] = {}
    for index, spec in enumerate(schema):
        base = baseline.get(spec.key, spec.min)
        if not is_finite_number(base):
            base = spec.min
        noise = seeded_noise(timestamp, seed + (index + 1) * METRIC_SEED_STRIDE) * spec.jitter
        drifted[spec.key] = clamp(base + noise, spec.min, spec.max)
    return frozen_map(drifted)


def live_fetcher(timeout: Optional[float] = None, delta_cache: Optional[DeltaCache] = None) -> Fetcher:
    """Blocking wrapper around the async scrapers, for use on a worker thread."""

    def fetch(company_id: str) -> Optional[MetricsPayload]:
        if timeout is None:
            return asyncio.run(scrape_live_metrics(company_id, delta_cache=delta_cache))
        return asyncio.run(scrape_live_metrics(company_id, timeout, delta_cache))

    return fetch


class MetricsContext:
    """Scrape caches plus refresh bookkeeping, owned by the application.

    One context per oracle instance; nothing here is process-global. When
    `fetcher` is None no background refresh is ever scheduled.
    """

    def __init__(
        self,
        cfg: Optional[ScrapeConfig] = None,
        fetcher: Optional[Fetcher] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.cfg = cfg or ScrapeConfig()
        self.fetcher = fetcher
        self.clock = clock
        self.delta_cache = DeltaCache(clock=clock)
        self._lock = threading.Lock()
        self._cache: Dict[str, CachedBaseline] = {}
        self._in_flight: Dict[str, Future] = {}
        self._last_attempt: Dict[str, int] = {}
        self._executor: Optional[ThreadPoolExecutor] = None

    @classmethod
    def live(cls, cfg: Optional[ScrapeConfig] = None, clock: Callable[[], int] = now_ms) -> "MetricsContext":
        context = cls(cfg=cfg, clock=clock)
        context.fetcher = live_fetcher(context.cfg.request_timeout_s, context.delta_cache)
        return context

    # cache
    def cached(self, company_id: str) -> Optional[CachedBaseline]:
        with self._lock:
            return self._cache.get(company_id)

    def store(self, company_id: str, entry: CachedBaseline) -> None:
        with self._lock:
            self._cache[company_id] = entry

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()
            self._last_attempt.clear()
        self.delta_cache.clear()

    # refresh bookkeeping
    def in_flight(self, company_id: str) -> bool:
        with self._lock:
            return company_id in self._in_flight

    def schedule(self, company_id: str, timestamp: int, job: Callable[[], None]) -> Optional[Future]:
        """Submit `job` unless a refresh is not due, already running, or backing off."""
        with self._lock:
            cached = self._cache.get(company_id)
            if cached is not None and timestamp - cached.timestamp < self.cfg.refresh_window_ms:
                return None
            if company_id in self._in_flight:
                return None
            wall = self.clock()
            last = self._last_attempt.get(company_id)
            if last is not None and wall - last < self.cfg.failure_backoff_ms:
                return None
            self._last_attempt[company_id] = wall
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.cfg.max_workers, thread_name_prefix="metrics-refresh"
                )
            future = self._executor.submit(self._run, company_id, job)
            self._in_flight[company_id] = future
            return future

    def _run(self, company_id: str, job: Callable[[], None]) -> None:
        try:
            job()
        except Exception as e:
            logger.warning("metrics refresh for %s failed: %s", company_id, e)
        finally:
            with self._lock:
                self._in_flight.pop(company_id, None)

    def wait_for_refreshes(self, timeout: Optional[float] = None) -> None:
        with self._lock:
            pending = list(self._in_flight.values())
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)


class MetricSnapshotProvider:
    def __init__(self, context: Optional[MetricsContext] = None) -> None:
        self.context = context or MetricsContext()

    def ingest(self, company_id: str, data: Optional[MetricsPayload], timestamp: Optional[int] = None) -> MetricSnapshot:
        defaults = default_baseline(company_id)
        merged = merge_metrics(defaults, data)
        stamp = self.context.clock() if timestamp is None else int(timestamp)
        self.context.store(company_id, CachedBaseline(timestamp=stamp, metrics=merged))
        logger.debug("ingested metrics for %s at %d", company_id, stamp)
        return merged

    def baseline(self, company_id: str, timestamp: int) -> MetricSnapshot:
        defaults = default_baseline(company_id)
        cached = self.context.cached(company_id)
        if cached is not None and timestamp - cached.timestamp <= self.context.cfg.cache_ttl_ms:
            return cached.metrics
        return defaults

    def snapshot(self, company_id: str, timestamp: int) -> MetricSnapshot:
        baseline = self.baseline(company_id, timestamp)
        self._trigger_refresh(company_id, timestamp)
        seed = company_seed(company_id)
        return MetricSnapshot(
            internal=apply_drift(INTERNAL_SCHEMA, baseline.internal, timestamp, seed),
            external=apply_drift(EXTERNAL_SCHEMA, baseline.external, timestamp, seed + EXTERNAL_SEED_OFFSET),
        )

    def _trigger_refresh(self, company_id: str, timestamp: int) -> None:
        fetcher = self.context.fetcher
        if fetcher is None or company_id not in COMPANY_SOURCES:
            return

        def job() -> None:
            payload = fetcher(company_id)
            if payload and (payload.get("internal") or payload.get("external")):
                self.ingest(company_id, payload, self.context.clock())

        if self.context.schedule(company_id, timestamp, job) is not None:
            logger.debug("scheduled metrics refresh for %s", company_id)
