"""Job executors, one per job type."""

from abc import ABC, abstractmethod
from typing import Optional, Sequence

import structlog

from ..curve.precision import PrecisionCurve
from ..errors import ExecutionFailureError
from ..models.curve import PriceBin
from ..models.jobs import Job, JobResult, JobType, RebalanceRecord, RebalanceResult
from ..models.positions import Position, Strategy
from ..persistence.repository import Repository

logger = structlog.get_logger(__name__)


class ExecutionAdapter(ABC):
    """Boundary to whatever moves liquidity on-chain."""

    @abstractmethod
    def rebalance(self, position: Position, strategy: Strategy,
                  bins: Sequence[PriceBin]) -> Optional[str]:
        """
        Move the position's liquidity onto the given bins.

        Returns:
            Transaction signature, if the adapter produced one
        """


class BaseJobExecutor(ABC):
    """Runs one job type. Any exception raised counts as a job failure."""

    job_type: JobType

    @abstractmethod
    def execute(self, job: Job) -> JobResult:
        """Execute the job and return its result payload."""


class ExecutorRegistry:
    """Maps job types to their executors."""

    def __init__(self) -> None:
        self._executors: dict[JobType, BaseJobExecutor] = {}

    def register(self, executor: BaseJobExecutor) -> None:
        self._executors[executor.job_type] = executor

    def get(self, job_type: JobType) -> BaseJobExecutor:
        executor = self._executors.get(job_type)
        if executor is None:
            raise ExecutionFailureError(f"No executor registered for job type {job_type.value}")
        return executor

    def __contains__(self, job_type: JobType) -> bool:
        return job_type in self._executors


class CurveRebalanceExecutor(BaseJobExecutor):
    """
    Re-centres a position on a freshly generated precision curve.

    The curve is built for the strategy at the latest recorded price, handed to
    the execution adapter, then persisted as the strategy's new active bin set
    together with the position's new range and an audit record. With no
    adapter configured the executor runs as a dry run.
    """

    job_type = JobType.REBALANCE

    def __init__(self, repository: Repository, curve: PrecisionCurve,
                 adapter: Optional[ExecutionAdapter] = None) -> None:
        self.repository = repository
        self.curve = curve
        self.adapter = adapter

    def execute(self, job: Job) -> RebalanceResult:
        position = self.repository.get_position(job.position_id)
        if position is None:
            raise ExecutionFailureError(f"Position {job.position_id} not found", job_id=job.id)

        strategy_id = job.strategy_id or position.strategy_id
        strategy = self.repository.get_strategy(strategy_id) if strategy_id else None
        if strategy is None:
            raise ExecutionFailureError(
                f"Strategy {strategy_id} not found for position {position.id}", job_id=job.id
            )

        price = self.repository.get_latest_price(position.pool_id)
        if price is None:
            raise ExecutionFailureError(f"No price recorded for pool {position.pool_id}",
                                        job_id=job.id)

        bins = self.curve.curve_for_strategy(strategy, price)
        new_lower = bins[0].lower_price
        new_upper = bins[-1].upper_price

        tx_signature = None
        if self.adapter is not None:
            try:
                tx_signature = self.adapter.rebalance(position, strategy, bins)
            except Exception as e:
                self.repository.record_rebalance(RebalanceRecord(
                    position_id=position.id,
                    strategy_id=strategy.id,
                    job_id=job.id,
                    trigger=job.trigger,
                    old_lower_price=position.lower_price,
                    old_upper_price=position.upper_price,
                    new_lower_price=new_lower,
                    new_upper_price=new_upper,
                    success=False,
                    error_message=str(e),
                ))
                raise ExecutionFailureError(f"Execution adapter failed: {e}", job_id=job.id) from e

        self.repository.replace_active_bins(strategy.id, bins)
        self.repository.update_position_range(position.id, new_lower, new_upper)
        self.repository.record_rebalance(RebalanceRecord(
            position_id=position.id,
            strategy_id=strategy.id,
            job_id=job.id,
            trigger=job.trigger,
            old_lower_price=position.lower_price,
            old_upper_price=position.upper_price,
            new_lower_price=new_lower,
            new_upper_price=new_upper,
            success=True,
            tx_signature=tx_signature,
        ))

        logger.info(
            "Position rebalanced",
            job_id=job.id,
            position_id=position.id,
            price=price,
            new_lower_price=new_lower,
            new_upper_price=new_upper,
            dry_run=self.adapter is None,
        )
        return RebalanceResult(
            new_lower_price=new_lower,
            new_upper_price=new_upper,
            bins_count=len(bins),
            tx_signature=tx_signature,
            dry_run=self.adapter is None,
        )
