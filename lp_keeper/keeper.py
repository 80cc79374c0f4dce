"""
Keeper cycle orchestration.

One cycle: reconcile stuck jobs, resubmit retriable failures, optionally
refresh pool prices, monitor positions, optionally refresh advisory signals,
then drain one batch from the job queue. Cycles never overlap.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterator, Optional

import structlog

from .config.defaults import KeeperConfig, get_default_config
from .curve.precision import PrecisionCurve
from .errors import CycleInProgressError
from .feeds.price_feed import BinancePriceFeed
from .monitor.position_monitor import MonitorReport, PositionMonitor
from .persistence.repository import Repository
from .scheduler.executors import CurveRebalanceExecutor, ExecutionAdapter, ExecutorRegistry
from .scheduler.queue import JobQueue
from .scheduler.scheduler import BatchReport, JobScheduler
from .signals.advisory import AdvisorySignalSource, SignalRefresher, SignalReport
from .utils.time import format_time, utc_now

logger = structlog.get_logger(__name__)


class CycleGuard:
    """Non-reentrant guard ensuring at most one keeper cycle runs at a time."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started_at: Optional[datetime] = None

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    @property
    def started_at(self) -> Optional[datetime]:
        return self._started_at

    @contextmanager
    def hold(self) -> Iterator[None]:
        """
        Raises:
            CycleInProgressError: another cycle holds the guard
        """
        if not self._lock.acquire(blocking=False):
            raise CycleInProgressError(
                "A keeper cycle is already running",
                started_at=format_time(self._started_at),
            )
        self._started_at = utc_now()
        try:
            yield
        finally:
            self._started_at = None
            self._lock.release()


@dataclass
class CycleReport:
    """Everything one cycle did."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    reconciled: list[str] = field(default_factory=list)
    resubmitted: list[str] = field(default_factory=list)
    prices_recorded: dict[str, float] = field(default_factory=dict)
    price_errors: dict[str, str] = field(default_factory=dict)
    monitor: MonitorReport = field(default_factory=MonitorReport)
    signals: Optional[SignalReport] = None
    batch: BatchReport = field(default_factory=BatchReport)
    cancelled: bool = False

    def summary(self) -> dict[str, Any]:
        return {
            "reconciled": len(self.reconciled),
            "resubmitted": len(self.resubmitted),
            "prices_recorded": len(self.prices_recorded),
            "price_errors": len(self.price_errors),
            "positions_evaluated": len(self.monitor.evaluations),
            "position_errors": len(self.monitor.errors),
            "jobs_requested": self.monitor.jobs_requested,
            "signals_saved": len(self.signals.saved) if self.signals else 0,
            "signal_errors": len(self.signals.errors) if self.signals else 0,
            "jobs_completed": self.batch.completed,
            "jobs_failed": self.batch.failed,
            "jobs_deferred": self.batch.deferred,
            "cancelled": self.cancelled,
        }


class KeeperCycle:
    """Wires the keeper components together and runs cycles."""

    def __init__(
        self,
        repository: Repository,
        config: Optional[KeeperConfig] = None,
        *,
        registry: Optional[ExecutorRegistry] = None,
        adapter: Optional[ExecutionAdapter] = None,
        price_feed: Optional[BinancePriceFeed] = None,
        signal_source: Optional[AdvisorySignalSource] = None,
        guard: Optional[CycleGuard] = None,
    ) -> None:
        self.repository = repository
        self.config = config or get_default_config()
        self.guard = guard or CycleGuard()
        self.logger = logger

        self.curve = PrecisionCurve.from_params(self.config.curve)
        self.queue = JobQueue(repository, max_retries=self.config.scheduler.max_retries)
        self.monitor = PositionMonitor(repository, self.queue, self.curve, self.config.monitor)

        if registry is None:
            registry = ExecutorRegistry()
            registry.register(CurveRebalanceExecutor(repository, self.curve, adapter))
        self.scheduler = JobScheduler(repository, registry, self.config.scheduler)

        self.price_feed = price_feed
        self.signal_refresher = (
            SignalRefresher(repository, signal_source, self.config.signals)
            if signal_source is not None else None
        )

    def run_cycle(self, cancel_event: Optional[threading.Event] = None) -> CycleReport:
        """
        Run one keeper cycle.

        Raises:
            CycleInProgressError: a cycle is already running
            FatalInfrastructureError: storage is unreachable; the cycle is aborted
        """
        cancel_event = cancel_event or threading.Event()
        with self.guard.hold():
            report = CycleReport(started_at=utc_now())
            self.logger.info("Keeper cycle started")

            report.reconciled = self.scheduler.reconcile_stuck_jobs()
            report.resubmitted = self.scheduler.resubmit_failed()

            if self.price_feed is not None and not cancel_event.is_set():
                self._refresh_prices(report, cancel_event)

            if not cancel_event.is_set():
                report.monitor = self.monitor.monitor_positions(cancel_event=cancel_event)

            if self.signal_refresher is not None and not cancel_event.is_set():
                report.signals = self.signal_refresher.refresh(cancel_event=cancel_event)

            report.batch = self.scheduler.run_batch(cancel_event)

            report.cancelled = cancel_event.is_set()
            report.finished_at = utc_now()
            self.logger.info("Keeper cycle finished", **report.summary())
            return report

    def _refresh_prices(self, report: CycleReport, cancel_event: threading.Event) -> None:
        for pool in self.repository.get_active_pools():
            if cancel_event.is_set():
                break
            price = self.price_feed.get_price(pool.pair_symbol)
            if price is None:
                self.logger.warning("Price feed returned no price",
                                    pool_id=pool.id, pair_symbol=pool.pair_symbol)
                report.price_errors[pool.id] = f"no price for {pool.pair_symbol}"
                continue
            self.repository.record_price(pool.id, price)
            report.prices_recorded[pool.id] = price
