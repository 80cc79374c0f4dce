"""In-memory repository for tests, dry runs and local development."""

import itertools
import threading
import uuid
from datetime import datetime
from typing import Any, Optional, Sequence

import structlog

from ..curve.precision import check_bin_set
from ..errors import DataUnavailableError
from ..models.curve import PriceBin
from ..models.jobs import Job, JobStatus, JobTrigger, JobType, RebalanceRecord
from ..models.positions import Pool, Position, PositionStatus, Strategy
from ..models.signals import AdvisorySignal, PricePoint
from ..utils.time import utc_now
from .repository import Repository

logger = structlog.get_logger(__name__)


class InMemoryRepository(Repository):
    """Dict-backed repository. A single re-entrant lock makes every call atomic."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._pools: dict[str, Pool] = {}
        self._positions: dict[str, Position] = {}
        self._strategies: dict[str, Strategy] = {}
        self._bins: dict[str, tuple[PriceBin, ...]] = {}
        self._prices: dict[str, list[PricePoint]] = {}
        self._jobs: dict[str, Job] = {}
        self._job_seq: dict[str, int] = {}
        self._seq = itertools.count()
        self._signals: list[tuple[str, str, AdvisorySignal]] = []
        self._rebalances: list[RebalanceRecord] = []

    # Positions, strategies, pools

    def get_active_positions(self) -> list[Position]:
        with self._lock:
            return [p for p in self._positions.values() if p.status == PositionStatus.ACTIVE]

    def get_position(self, position_id: str) -> Optional[Position]:
        with self._lock:
            return self._positions.get(position_id)

    def get_strategy(self, strategy_id: str) -> Optional[Strategy]:
        with self._lock:
            return self._strategies.get(strategy_id)

    def get_pool_strategies(self, pool_id: str) -> list[Strategy]:
        with self._lock:
            return sorted((s for s in self._strategies.values() if s.pool_id == pool_id),
                          key=lambda s: s.id)

    def get_active_pools(self) -> list[Pool]:
        with self._lock:
            return [p for p in self._pools.values() if p.active]

    def get_pool(self, pool_id: str) -> Optional[Pool]:
        with self._lock:
            return self._pools.get(pool_id)

    def upsert_pool(self, pool: Pool) -> None:
        with self._lock:
            self._pools[pool.id] = pool

    def upsert_position(self, position: Position) -> None:
        with self._lock:
            self._positions[position.id] = position

    def upsert_strategy(self, strategy: Strategy) -> None:
        with self._lock:
            self._strategies[strategy.id] = strategy

    def update_position_range(self, position_id: str, lower_price: float,
                              upper_price: float) -> Position:
        with self._lock:
            position = self._positions.get(position_id)
            if position is None:
                raise DataUnavailableError(f"Position {position_id} not found",
                                           data_type="position")
            updated = position.with_range(lower_price, upper_price)
            self._positions[position_id] = updated
            return updated

    # Prices and bins

    def get_latest_price(self, pool_id: str) -> Optional[float]:
        with self._lock:
            history = self._prices.get(pool_id)
            if not history:
                return None
            return history[-1].price

    def record_price(self, pool_id: str, price: float,
                     timestamp: Optional[datetime] = None) -> None:
        with self._lock:
            point = PricePoint(price=price, timestamp=timestamp or utc_now())
            history = self._prices.setdefault(pool_id, [])
            history.append(point)
            history.sort(key=lambda p: p.timestamp)

    def get_price_history(self, pool_id: str, limit: int = 100) -> list[PricePoint]:
        with self._lock:
            history = self._prices.get(pool_id, [])
            return list(reversed(history[-limit:])) if limit > 0 else []

    def get_active_bins(self, strategy_id: str) -> list[PriceBin]:
        with self._lock:
            return list(self._bins.get(strategy_id, ()))

    def replace_active_bins(self, strategy_id: str, bins: Sequence[PriceBin]) -> None:
        check_bin_set(bins)
        with self._lock:
            self._bins[strategy_id] = tuple(bins)
        logger.debug("Replaced active bins", strategy_id=strategy_id, bins=len(bins))

    # Jobs

    def insert_job(self, job: Job) -> str:
        with self._lock:
            self._jobs[job.id] = job
            self._job_seq[job.id] = next(self._seq)
            return job.id

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def update_job(self, job_id: str, patch: dict[str, Any]) -> Job:
        with self._lock:
            job = self._require_job(job_id)
            updated = job.with_patch(patch)
            self._jobs[job_id] = updated
            return updated

    def transition_job(self, job_id: str, expected_status: JobStatus,
                       patch: dict[str, Any]) -> Optional[Job]:
        with self._lock:
            job = self._require_job(job_id)
            if job.status != expected_status:
                return None
            updated = job.with_patch(patch)
            self._jobs[job_id] = updated
            return updated

    def list_pending_jobs(self, limit: int) -> list[Job]:
        with self._lock:
            pending = [j for j in self._jobs.values() if j.status == JobStatus.PENDING]
            pending.sort(key=lambda j: (-j.priority, j.created_at, self._job_seq[j.id]))
            return pending[:limit]

    def list_jobs(self, status: Optional[JobStatus] = None,
                  position_id: Optional[str] = None) -> list[Job]:
        with self._lock:
            jobs = [
                j for j in self._jobs.values()
                if (status is None or j.status == status)
                and (position_id is None or j.position_id == position_id)
            ]
            jobs.sort(key=lambda j: (j.created_at, self._job_seq[j.id]))
            return jobs

    def find_open_job(self, position_id: str, job_type: JobType,
                      trigger: JobTrigger) -> Optional[Job]:
        key = (position_id, job_type.value, trigger.value)
        with self._lock:
            for job in self._jobs.values():
                if job.is_open and job.dedupe_key() == key:
                    return job
            return None

    def _require_job(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise DataUnavailableError(f"Job {job_id} not found", data_type="job")
        return job

    # Signals and audit

    def save_signal(self, pool_id: str, signal: AdvisorySignal) -> str:
        signal_id = uuid.uuid4().hex
        with self._lock:
            self._signals.append((signal_id, pool_id, signal))
        return signal_id

    def get_signals(self, pool_id: str, min_confidence: float = 90.0,
                    limit: int = 10) -> list[AdvisorySignal]:
        with self._lock:
            matching = [
                s for _, pid, s in reversed(self._signals)
                if pid == pool_id and s.confidence >= min_confidence
            ]
            return matching[:limit]

    def record_rebalance(self, record: RebalanceRecord) -> None:
        with self._lock:
            self._rebalances.append(record)

    def get_rebalance_history(self, position_id: str) -> list[RebalanceRecord]:
        with self._lock:
            return [r for r in self._rebalances if r.position_id == position_id]
