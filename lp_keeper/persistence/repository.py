"""
Repository interface consumed by the monitor, scheduler and executors.

Implementations must make every job state transition an atomic
compare-and-set on the job's current status. Unreachable storage is reported
as PersistenceError, which aborts the current keeper cycle.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional, Sequence

from ..models.curve import PriceBin
from ..models.jobs import Job, JobStatus, JobTrigger, JobType, RebalanceRecord
from ..models.positions import Pool, Position, Strategy
from ..models.signals import AdvisorySignal, PricePoint


class Repository(ABC):
    """Storage contract for the keeper."""

    # Positions, strategies, pools

    @abstractmethod
    def get_active_positions(self) -> list[Position]:
        """All positions with status 'active'."""

    @abstractmethod
    def get_position(self, position_id: str) -> Optional[Position]:
        """Single position by id."""

    @abstractmethod
    def get_strategy(self, strategy_id: str) -> Optional[Strategy]:
        """Single strategy by id."""

    @abstractmethod
    def get_pool_strategies(self, pool_id: str) -> list[Strategy]:
        """Strategies attached to a pool, ordered by id."""

    @abstractmethod
    def get_active_pools(self) -> list[Pool]:
        """All pools flagged active."""

    @abstractmethod
    def get_pool(self, pool_id: str) -> Optional[Pool]:
        """Single pool by id."""

    @abstractmethod
    def upsert_pool(self, pool: Pool) -> None:
        """Create or replace a pool."""

    @abstractmethod
    def upsert_position(self, position: Position) -> None:
        """Create or replace a position."""

    @abstractmethod
    def upsert_strategy(self, strategy: Strategy) -> None:
        """Create or replace a strategy."""

    @abstractmethod
    def update_position_range(self, position_id: str, lower_price: float,
                              upper_price: float) -> Position:
        """Move a position to a new managed range."""

    # Prices and bins

    @abstractmethod
    def get_latest_price(self, pool_id: str) -> Optional[float]:
        """Most recent recorded price, or None if the pool has none."""

    @abstractmethod
    def record_price(self, pool_id: str, price: float,
                     timestamp: Optional[datetime] = None) -> None:
        """Append a price observation."""

    @abstractmethod
    def get_price_history(self, pool_id: str, limit: int = 100) -> list[PricePoint]:
        """Recorded prices, newest first."""

    @abstractmethod
    def get_active_bins(self, strategy_id: str) -> list[PriceBin]:
        """The live bin set for a strategy, index-ordered. Empty if none."""

    @abstractmethod
    def replace_active_bins(self, strategy_id: str, bins: Sequence[PriceBin]) -> None:
        """Retire the current set and make bins the live set, atomically."""

    # Jobs

    @abstractmethod
    def insert_job(self, job: Job) -> str:
        """Persist a new job and return its id."""

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Job]:
        """Single job by id."""

    @abstractmethod
    def update_job(self, job_id: str, patch: dict[str, Any]) -> Job:
        """Unconditionally patch job fields."""

    @abstractmethod
    def transition_job(self, job_id: str, expected_status: JobStatus,
                       patch: dict[str, Any]) -> Optional[Job]:
        """
        Apply patch only if the job is currently in expected_status.

        Returns:
            The updated job, or None when the status no longer matches
        """

    @abstractmethod
    def list_pending_jobs(self, limit: int) -> list[Job]:
        """Pending jobs ordered by priority desc, then created_at asc."""

    @abstractmethod
    def list_jobs(self, status: Optional[JobStatus] = None,
                  position_id: Optional[str] = None) -> list[Job]:
        """Jobs filtered by status and/or position, oldest first."""

    @abstractmethod
    def find_open_job(self, position_id: str, job_type: JobType,
                      trigger: JobTrigger) -> Optional[Job]:
        """A pending or processing job with the same dedupe key."""

    # Signals and audit

    @abstractmethod
    def save_signal(self, pool_id: str, signal: AdvisorySignal) -> str:
        """Persist an advisory signal and return its id."""

    @abstractmethod
    def get_signals(self, pool_id: str, min_confidence: float = 90.0,
                    limit: int = 10) -> list[AdvisorySignal]:
        """Stored signals for a pool at or above min_confidence, newest first."""

    @abstractmethod
    def record_rebalance(self, record: RebalanceRecord) -> None:
        """Append a rebalance audit row."""

    @abstractmethod
    def get_rebalance_history(self, position_id: str) -> list[RebalanceRecord]:
        """Audit rows for a position, oldest first."""
