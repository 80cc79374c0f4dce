"""
Position monitor.

Reads positions, prices and active bins, asks the precision curve whether each
position still covers the market, and turns the answer (plus stop-loss and
take-profit checks) into job requests. Never mutates positions or bins.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, Sequence

import structlog

from ..config.defaults import MonitorParams
from ..curve.precision import PrecisionCurve
from ..errors import (
    DataQualityError,
    DataUnavailableError,
    FatalInfrastructureError,
    InvalidInputError,
)
from ..logging.config import get_decision_logger, log_rebalance_decision
from ..models.jobs import JobRequest, JobTrigger, JobType
from ..models.positions import Position, Strategy
from ..persistence.repository import Repository
from ..scheduler.queue import JobQueue
from ..utils.timeouts import CallTimeout, call_with_timeout

logger = structlog.get_logger(__name__)
decision_logger = get_decision_logger(__name__)


@dataclass
class PositionEvaluation:
    """Outcome of evaluating one position."""
    position_id: str
    skipped_reason: Optional[str] = None
    current_price: Optional[float] = None
    needs_rebalance: bool = False
    impermanent_loss_pct: Optional[float] = None
    price_change_pct: Optional[float] = None
    requests: list[JobRequest] = field(default_factory=list)
    job_ids: list[str] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.skipped_reason is not None


@dataclass
class MonitorReport:
    """Summary of one monitoring pass."""
    evaluations: list[PositionEvaluation] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def jobs_requested(self) -> int:
        return sum(len(e.job_ids) for e in self.evaluations)


class PositionMonitor:
    """Evaluates active positions and enqueues rebalance work."""

    def __init__(self, repository: Repository, queue: JobQueue,
                 curve: Optional[PrecisionCurve] = None,
                 params: Optional[MonitorParams] = None) -> None:
        self.repository = repository
        self.queue = queue
        self.curve = curve or PrecisionCurve()
        self.params = params or MonitorParams()

    def check_position(self, position: Position,
                       strategy: Optional[Strategy] = None) -> PositionEvaluation:
        """
        Evaluate one position without enqueueing anything.

        Raises:
            DataUnavailableError: no usable price for the position's pool
            InvalidInputError: the curve rejected the stored data
        """
        evaluation = PositionEvaluation(position_id=position.id)

        if strategy is None and position.strategy_id:
            strategy = self.repository.get_strategy(position.strategy_id)
        if strategy is None:
            evaluation.skipped_reason = "no_strategy"
            return evaluation
        if not strategy.auto_rebalance:
            evaluation.skipped_reason = "auto_rebalance_disabled"
            return evaluation

        price = self._latest_price(position)
        evaluation.current_price = price

        bins = self.repository.get_active_bins(strategy.id)
        needs_rebalance = self.curve.should_rebalance(price, bins,
                                                      strategy.rebalance_threshold_pct)
        evaluation.needs_rebalance = needs_rebalance
        log_rebalance_decision(
            decision_logger, position.id, JobTrigger.RANGE_DRIFT.value, needs_rebalance,
            "price outside active liquidity" if needs_rebalance else "price covered",
            price=price, bins=len(bins), threshold_pct=strategy.rebalance_threshold_pct,
        )
        if needs_rebalance:
            evaluation.requests.append(self._request(
                position, strategy, JobTrigger.RANGE_DRIFT, self.params.rebalance_priority))

        entry = position.reference_entry_price
        try:
            evaluation.impermanent_loss_pct = self.curve.calculate_impermanent_loss(
                entry, price, position.lower_price, position.upper_price)
        except InvalidInputError as e:
            # informational; never blocks the requests above
            logger.warning("Impermanent loss not computed",
                           position_id=position.id, error=str(e))
        change_pct = (price - entry) / entry * 100
        evaluation.price_change_pct = change_pct

        if strategy.stop_loss_pct is not None:
            breached = change_pct <= -strategy.stop_loss_pct
            log_rebalance_decision(
                decision_logger, position.id, JobTrigger.STOP_LOSS.value, breached,
                f"price change {change_pct:.2f}% vs stop loss -{strategy.stop_loss_pct}%",
                entry_price=entry, price=price,
            )
            if breached:
                evaluation.requests.append(self._request(
                    position, strategy, JobTrigger.STOP_LOSS, self.params.stop_loss_priority))

        if strategy.take_profit_pct is not None:
            reached = change_pct >= strategy.take_profit_pct
            log_rebalance_decision(
                decision_logger, position.id, JobTrigger.TAKE_PROFIT.value, reached,
                f"price change {change_pct:.2f}% vs take profit {strategy.take_profit_pct}%",
                entry_price=entry, price=price,
            )
            if reached:
                evaluation.requests.append(self._request(
                    position, strategy, JobTrigger.TAKE_PROFIT, self.params.take_profit_priority))

        return evaluation

    def monitor_position(self, position: Position) -> PositionEvaluation:
        """Evaluate one position and enqueue whatever it asks for."""
        evaluation = self.check_position(position)
        for request in evaluation.requests:
            evaluation.job_ids.append(self.queue.enqueue(request))
        return evaluation

    def monitor_positions(self, positions: Optional[Sequence[Position]] = None,
                          cancel_event: Optional[threading.Event] = None) -> MonitorReport:
        """
        Evaluate every active position on a bounded pool.

        Errors are captured per position; only infrastructure failures
        propagate.
        """
        cancel_event = cancel_event or threading.Event()
        if positions is None:
            positions = self.repository.get_active_positions()

        report = MonitorReport()
        with ThreadPoolExecutor(max_workers=self.params.max_workers,
                                thread_name_prefix="lp-keeper-monitor") as pool:
            futures = {
                position.id: pool.submit(self._monitor_one, position, cancel_event)
                for position in positions
            }
            for position_id, future in futures.items():
                try:
                    evaluation = future.result()
                except FatalInfrastructureError:
                    cancel_event.set()
                    raise
                except DataQualityError as e:
                    logger.warning("Position evaluation failed",
                                   position_id=position_id, error=str(e))
                    report.errors[position_id] = str(e)
                    continue
                except Exception as e:
                    logger.error("Unexpected error evaluating position",
                                 position_id=position_id, error=str(e), exc_info=True)
                    report.errors[position_id] = str(e)
                    continue
                if evaluation is not None:
                    report.evaluations.append(evaluation)

        report.cancelled = cancel_event.is_set()
        logger.info(
            "Monitoring pass finished",
            positions=len(positions),
            evaluated=len(report.evaluations),
            jobs_requested=report.jobs_requested,
            errors=len(report.errors),
        )
        return report

    def _monitor_one(self, position: Position,
                     cancel_event: threading.Event) -> Optional[PositionEvaluation]:
        if cancel_event.is_set():
            return None
        return self.monitor_position(position)

    def _latest_price(self, position: Position) -> float:
        try:
            price = call_with_timeout(self.repository.get_latest_price,
                                      self.params.price_timeout_seconds, position.pool_id)
        except CallTimeout as e:
            raise DataUnavailableError(
                f"Price read for pool {position.pool_id} timed out",
                data_type="price",
                context={"position_id": position.id, "timeout_seconds": e.timeout_seconds},
            ) from e
        except FatalInfrastructureError as e:
            raise DataUnavailableError(
                f"Price read for pool {position.pool_id} failed: {e}",
                data_type="price",
                context={"position_id": position.id},
            ) from e

        if price is None:
            raise DataUnavailableError(
                f"No price recorded for pool {position.pool_id}",
                data_type="price",
                context={"position_id": position.id},
            )
        return price

    def _request(self, position: Position, strategy: Strategy,
                 trigger: JobTrigger, priority: int) -> JobRequest:
        return JobRequest(
            job_type=JobType.REBALANCE,
            trigger=trigger,
            position_id=position.id,
            strategy_id=strategy.id,
            priority=priority,
        )
