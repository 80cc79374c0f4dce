"""Job queue, lifecycle state machine, executors and the batch scheduler."""

from .executors import BaseJobExecutor, CurveRebalanceExecutor, ExecutionAdapter, ExecutorRegistry
from .queue import JobQueue
from .scheduler import BatchReport, JobOutcome, JobScheduler
from .transitions import JobStateMachine

__all__ = [
    "BaseJobExecutor",
    "BatchReport",
    "CurveRebalanceExecutor",
    "ExecutionAdapter",
    "ExecutorRegistry",
    "JobOutcome",
    "JobQueue",
    "JobScheduler",
    "JobStateMachine",
]
