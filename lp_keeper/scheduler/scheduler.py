"""
Job scheduler: drains the pending queue in priority order.

One pass selects up to batch_size pending jobs (priority descending, then
oldest first), skipping any whose position already has a job in flight, and
runs them on a bounded thread pool. Each job is claimed atomically before it
runs and always ends completed or failed once claimed.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

import structlog

from ..config.defaults import SchedulerParams
from ..errors import FatalInfrastructureError, StateTransitionError
from ..models.jobs import Job, JobStatus
from ..persistence.repository import Repository
from ..utils.time import utc_now
from ..utils.timeouts import CallTimeout, call_with_timeout
from .executors import ExecutorRegistry
from .transitions import JobStateMachine

logger = structlog.get_logger(__name__)

STALE_PROCESSING_MESSAGE = "stale processing"


@dataclass
class JobOutcome:
    """What happened to one selected job."""
    job_id: str
    position_id: str
    status: str                                       # completed, failed, skipped
    error: Optional[str] = None


@dataclass
class BatchReport:
    """Summary of one scheduling pass."""
    selected: int = 0
    deferred: int = 0
    outcomes: list[JobOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def completed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "completed")

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "failed")

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "skipped")

    @property
    def failures(self) -> list[JobOutcome]:
        return [o for o in self.outcomes if o.status == "failed"]


class JobScheduler:
    """Selects, claims and executes pending jobs."""

    def __init__(
        self,
        repository: Repository,
        registry: ExecutorRegistry,
        params: Optional[SchedulerParams] = None,
        state_machine: Optional[JobStateMachine] = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.params = params or SchedulerParams()
        self.state_machine = state_machine or JobStateMachine(repository)
        self.logger = logger
        # Positions whose timed-out execution is still running in the background
        self._abandoned: dict[str, Future] = {}
        self._abandoned_lock = threading.Lock()

    def busy_positions(self) -> set[str]:
        """Positions with a job processing, or a timed-out execution still running."""
        busy = {job.position_id for job in self.repository.list_jobs(status=JobStatus.PROCESSING)}
        with self._abandoned_lock:
            busy.update(self._abandoned)
        return busy

    def _track_abandoned(self, position_id: str, future: Optional[Future]) -> None:
        if future is None or future.done():
            return
        with self._abandoned_lock:
            self._abandoned[position_id] = future

        def _release(done: Future) -> None:
            with self._abandoned_lock:
                if self._abandoned.get(position_id) is done:
                    del self._abandoned[position_id]

        future.add_done_callback(_release)

    def select_batch(self) -> tuple[list[Job], int]:
        """
        Pick the jobs for one pass.

        Returns:
            (selected jobs in execution order, number deferred for position exclusion)
        """
        candidates = self.repository.list_pending_jobs(self.params.candidate_window)
        busy = self.busy_positions()

        selected: list[Job] = []
        deferred = 0
        for job in candidates:
            if len(selected) >= self.params.batch_size:
                break
            if job.position_id in busy:
                deferred += 1
                self.logger.debug("Job deferred, position busy",
                                  job_id=job.id, position_id=job.position_id)
                continue
            busy.add(job.position_id)
            selected.append(job)
        return selected, deferred

    def run_batch(self, cancel_event: Optional[threading.Event] = None) -> BatchReport:
        """
        Execute one pass over the pending queue.

        Raises:
            FatalInfrastructureError: storage became unreachable mid-pass
        """
        cancel_event = cancel_event or threading.Event()
        report = BatchReport()
        if cancel_event.is_set():
            report.cancelled = True
            return report

        selected, report.deferred = self.select_batch()
        report.selected = len(selected)
        if not selected:
            return report

        stop = threading.Event()
        with ThreadPoolExecutor(max_workers=self.params.max_workers,
                                thread_name_prefix="lp-keeper-job") as pool:
            futures = [pool.submit(self._process, job, cancel_event, stop) for job in selected]
            try:
                for future in futures:
                    report.outcomes.append(future.result())
            except FatalInfrastructureError:
                stop.set()
                raise

        report.cancelled = cancel_event.is_set()
        self.logger.info(
            "Scheduler pass finished",
            selected=report.selected,
            completed=report.completed,
            failed=report.failed,
            skipped=report.skipped,
            deferred=report.deferred,
        )
        return report

    def _process(self, job: Job, cancel_event: threading.Event,
                 stop: threading.Event) -> JobOutcome:
        if cancel_event.is_set() or stop.is_set():
            return JobOutcome(job.id, job.position_id, "skipped", "cancelled")

        claimed = self.state_machine.claim(job)
        if claimed is None:
            return JobOutcome(job.id, job.position_id, "skipped", "claimed elsewhere")

        try:
            executor = self.registry.get(claimed.job_type)
            result = call_with_timeout(executor.execute, self.params.job_timeout_seconds, claimed)
        except CallTimeout as e:
            error = f"Job timed out after {e.timeout_seconds}s"
            self._track_abandoned(claimed.position_id, e.future)
            self.logger.warning("Job timed out, execution left running", job_id=job.id,
                                position_id=job.position_id, timeout=e.timeout_seconds)
            self.state_machine.fail(claimed, error, trigger="timeout")
            return JobOutcome(job.id, job.position_id, "failed", error)
        except FatalInfrastructureError as e:
            self.state_machine.fail(claimed, _describe(e))
            raise
        except Exception as e:
            error = _describe(e)
            self.logger.warning("Job execution failed", job_id=job.id,
                                position_id=job.position_id, error=error)
            self.state_machine.fail(claimed, error)
            return JobOutcome(job.id, job.position_id, "failed", error)

        self.state_machine.complete(claimed, result)
        return JobOutcome(job.id, job.position_id, "completed")

    def reconcile_stuck_jobs(self, older_than_seconds: Optional[float] = None,
                             now: Optional[datetime] = None) -> list[str]:
        """Fail jobs left processing for too long. Returns their ids."""
        limit = older_than_seconds if older_than_seconds is not None \
            else self.params.stuck_after_seconds
        cutoff = (now or utc_now()) - timedelta(seconds=limit)

        reconciled = []
        for job in self.repository.list_jobs(status=JobStatus.PROCESSING):
            started = job.started_at or job.created_at
            if started > cutoff:
                continue
            try:
                self.state_machine.fail(job, STALE_PROCESSING_MESSAGE, trigger="reconcile")
            except StateTransitionError:
                # finished while we were looking
                continue
            reconciled.append(job.id)

        if reconciled:
            self.logger.warning("Reconciled stuck jobs", count=len(reconciled), job_ids=reconciled)
        return reconciled

    def resubmit_failed(self) -> list[str]:
        """Return failed jobs with retries left to the queue. Returns their ids."""
        resubmitted = []
        for job in self.repository.list_jobs(status=JobStatus.FAILED):
            if not job.is_retriable:
                continue
            try:
                self.state_machine.resubmit(job)
            except StateTransitionError:
                continue
            resubmitted.append(job.id)

        if resubmitted:
            self.logger.info("Resubmitted failed jobs", count=len(resubmitted))
        return resubmitted


def _describe(error: Exception) -> str:
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__
