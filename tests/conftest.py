"""Pytest configuration and shared fixtures."""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from lp_keeper.curve.precision import PrecisionCurve
from lp_keeper.models.curve import PriceBin
from lp_keeper.models.jobs import Job, JobStatus, JobTrigger, JobType
from lp_keeper.models.positions import Pool, Position, Strategy
from lp_keeper.persistence.memory_store import InMemoryRepository
from lp_keeper.persistence.sqlite_store import SqliteRepository

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def base_time() -> datetime:
    """Fixed reference time for tests."""
    return BASE_TIME


@pytest.fixture
def curve() -> PrecisionCurve:
    """Curve engine with default tunables (69 bins, concentration 2.5)."""
    return PrecisionCurve()


@pytest.fixture
def memory_repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def sqlite_repo(tmp_path) -> SqliteRepository:
    return SqliteRepository(str(tmp_path / "keeper.db"))


@pytest.fixture(params=["memory", "sqlite"])
def repository(request, tmp_path):
    """Each repository implementation in turn."""
    if request.param == "memory":
        return InMemoryRepository()
    return SqliteRepository(str(tmp_path / "keeper.db"))


@pytest.fixture
def sample_pool() -> Pool:
    return Pool(id="pool-sol-usdc", token_a="SOL", token_b="USDC", volume_24h=125000.0,
                tvl=2500000.0)


@pytest.fixture
def sample_strategy(sample_pool) -> Strategy:
    return Strategy(id="strat-1", pool_id=sample_pool.id, name="default precision curve")


@pytest.fixture
def sample_position(sample_pool, sample_strategy) -> Position:
    return Position(
        id="pos-1",
        pool_id=sample_pool.id,
        lower_price=0.98,
        upper_price=1.02,
        liquidity=1000.0,
        strategy_id=sample_strategy.id,
        entry_price=1.00,
        user_id="user-1",
    )


@pytest.fixture
def single_bin() -> list[PriceBin]:
    """One bin covering [0.98, 1.02] with the full allocation."""
    return [PriceBin(index=0, lower_price=0.98, upper_price=1.02, allocation_pct=100.0)]


@pytest.fixture
def seeded_repo(memory_repo, sample_pool, sample_strategy, sample_position, single_bin):
    """In-memory repository holding one pool, strategy, position and bin set."""
    memory_repo.upsert_pool(sample_pool)
    memory_repo.upsert_strategy(sample_strategy)
    memory_repo.upsert_position(sample_position)
    memory_repo.replace_active_bins(sample_strategy.id, single_bin)
    return memory_repo


@pytest.fixture
def make_job() -> Callable[..., Job]:
    """Factory for pending rebalance jobs with increasing creation times."""
    counter = itertools.count()

    def _make(**overrides: Any) -> Job:
        n = next(counter)
        values: dict[str, Any] = {
            "id": f"job-{n}",
            "job_type": JobType.REBALANCE,
            "trigger": JobTrigger.RANGE_DRIFT,
            "position_id": f"pos-{n}",
            "strategy_id": "strat-1",
            "priority": 5,
            "status": JobStatus.PENDING,
            "created_at": BASE_TIME + timedelta(seconds=n),
        }
        values.update(overrides)
        return Job(**values)

    return _make
