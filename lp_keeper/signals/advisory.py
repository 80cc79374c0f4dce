"""
Advisory signal refresh.

Advisory sources are optional and untrusted: their output is only persisted
for operators and strategies to consult, and a failing source never affects
the rebalancing decisions of a cycle.
"""

import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Sequence

import structlog

from ..config.defaults import SignalParams
from ..errors import FatalInfrastructureError
from ..models.positions import Pool
from ..models.signals import AdvisorySignal, PoolSnapshot
from ..persistence.repository import Repository
from ..utils.timeouts import CallTimeout, call_with_timeout

logger = structlog.get_logger(__name__)


class AdvisorySignalSource(ABC):
    """Produces an advisory signal for a pool snapshot."""

    @abstractmethod
    def generate_signal(self, snapshot: PoolSnapshot) -> AdvisorySignal:
        """
        Raises:
            AdvisoryUnavailableError: the source could not produce a signal
        """


@dataclass
class SignalReport:
    """Summary of one advisory refresh."""
    saved: dict[str, str] = field(default_factory=dict)        # pool_id -> signal id
    discarded: dict[str, float] = field(default_factory=dict)  # pool_id -> confidence
    skipped: dict[str, str] = field(default_factory=dict)      # pool_id -> reason
    errors: dict[str, str] = field(default_factory=dict)
    cancelled: bool = False


class SignalRefresher:
    """Builds pool snapshots, asks the source for signals and stores confident ones."""

    def __init__(self, repository: Repository, source: AdvisorySignalSource,
                 params: Optional[SignalParams] = None) -> None:
        self.repository = repository
        self.source = source
        self.params = params or SignalParams()

    def build_snapshot(self, pool: Pool) -> Optional[PoolSnapshot]:
        """Snapshot from recorded history, or None with too few points."""
        history = self.repository.get_price_history(pool.id, self.params.history_limit)
        if len(history) < self.params.min_history:
            return None
        return PoolSnapshot(
            pool_id=pool.id,
            current_price=history[0].price,
            volume_24h=pool.volume_24h or 0.0,
            liquidity=pool.tvl or 0.0,
            price_history=tuple(history),
        )

    def confidence_floor_for(self, pool: Pool) -> Optional[float]:
        """
        Confidence a signal for this pool must reach to be stored.

        Pools whose strategies all have advisory signals turned off get None.
        Otherwise the floor is the loosest threshold among the opted-in
        strategies, never below the configured global floor. Pools with no
        strategy use the global floor.
        """
        strategies = self.repository.get_pool_strategies(pool.id)
        if not strategies:
            return self.params.confidence_floor
        thresholds = [s.ml_confidence_threshold for s in strategies if s.ml_enabled]
        if not thresholds:
            return None
        return max(self.params.confidence_floor, min(thresholds))

    def refresh(self, pools: Optional[Sequence[Pool]] = None,
                cancel_event: Optional[threading.Event] = None) -> SignalReport:
        cancel_event = cancel_event or threading.Event()
        if pools is None:
            pools = self.repository.get_active_pools()

        report = SignalReport()
        with ThreadPoolExecutor(max_workers=self.params.max_workers,
                                thread_name_prefix="lp-keeper-signal") as pool_executor:
            futures = {
                pool.id: pool_executor.submit(self._refresh_pool, pool, cancel_event, report)
                for pool in pools
            }
            for pool_id, future in futures.items():
                try:
                    future.result()
                except FatalInfrastructureError:
                    cancel_event.set()
                    raise
                except Exception as e:
                    logger.warning("Advisory signal refresh failed",
                                   pool_id=pool_id, error=str(e))
                    report.errors[pool_id] = str(e)

        report.cancelled = cancel_event.is_set()
        logger.info(
            "Advisory refresh finished",
            pools=len(pools),
            saved=len(report.saved),
            discarded=len(report.discarded),
            skipped=len(report.skipped),
            errors=len(report.errors),
        )
        return report

    def _refresh_pool(self, pool: Pool, cancel_event: threading.Event,
                      report: SignalReport) -> None:
        if cancel_event.is_set():
            report.skipped[pool.id] = "cancelled"
            return

        floor = self.confidence_floor_for(pool)
        if floor is None:
            report.skipped[pool.id] = "signals_disabled"
            return

        snapshot = self.build_snapshot(pool)
        if snapshot is None:
            report.skipped[pool.id] = "insufficient_history"
            return

        try:
            signal = call_with_timeout(self.source.generate_signal,
                                       self.params.timeout_seconds, snapshot)
        except CallTimeout as e:
            raise TimeoutError(f"Advisory source timed out after {e.timeout_seconds}s") from e

        if signal.confidence < floor:
            logger.info("Advisory signal below confidence floor", pool_id=pool.id,
                        confidence=signal.confidence, floor=floor)
            report.discarded[pool.id] = signal.confidence
            return

        report.saved[pool.id] = self.repository.save_signal(pool.id, signal)
        logger.info("Advisory signal saved", pool_id=pool.id, action=signal.action.value,
                    confidence=signal.confidence, urgency=signal.urgency.value)
