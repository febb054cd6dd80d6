import pytest

from venue.config import STEP_INTERVAL_MS
from venue.engine import OracleEngine
from venue.pool import create_pool
from venue.snapshots import MetricsContext, MetricSnapshotProvider

# 2024-06-03 12:00:00 UTC, already on the 15-minute grid
NOW = 1_717_416_000_000


@pytest.fixture
def now() -> int:
    return NOW


@pytest.fixture
def step() -> int:
    return STEP_INTERVAL_MS


@pytest.fixture
def provider() -> MetricSnapshotProvider:
    return MetricSnapshotProvider(MetricsContext(clock=lambda: NOW))


@pytest.fixture
def engine(provider) -> OracleEngine:
    return OracleEngine(provider)


@pytest.fixture
def state(engine, now):
    return engine.bootstrap(now)


@pytest.fixture
def pool():
    return create_pool({"min_liquidity_eth": 1, "initial_liquidity_eth": 1.4})
