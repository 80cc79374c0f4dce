"""
Job lifecycle state machine.

Allowed transitions:

    pending    -> processing   (claim)
    processing -> completed    (success)
    processing -> failed       (failure, retry_count + 1)
    failed     -> pending      (resubmit, only while retries remain)

Every transition is persisted with a compare-and-set on the job's current
status, so two keepers never claim the same job.
"""

from datetime import datetime
from typing import Any, Callable, Optional

import structlog

from ..errors import StateTransitionError
from ..logging.config import get_state_logger, log_job_transition
from ..models.jobs import Job, JobResult, JobStatus
from ..persistence.repository import Repository
from ..utils.time import utc_now

logger = structlog.get_logger(__name__)
state_logger = get_state_logger(__name__)

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.FAILED: frozenset({JobStatus.PENDING}),
    JobStatus.COMPLETED: frozenset(),
}


class JobStateMachine:
    """Applies validated, atomic job transitions through the repository."""

    def __init__(self, repository: Repository,
                 clock: Callable[[], datetime] = utc_now) -> None:
        self.repository = repository
        self.clock = clock

    def claim(self, job: Job) -> Optional[Job]:
        """
        Move a pending job to processing.

        Returns:
            The claimed job, or None if another worker changed it first
        """
        self._validate(job, JobStatus.PROCESSING)
        claimed = self.repository.transition_job(
            job.id, JobStatus.PENDING,
            {"status": JobStatus.PROCESSING, "started_at": self.clock()},
        )
        if claimed is None:
            logger.debug("Lost claim race", job_id=job.id)
            return None
        log_job_transition(state_logger, job, claimed, "claim")
        return claimed

    def complete(self, job: Job, result: Optional[JobResult]) -> Job:
        """Mark a processing job completed with its result."""
        self._validate(job, JobStatus.COMPLETED)
        updated = self._apply(job, JobStatus.PROCESSING, {
            "status": JobStatus.COMPLETED,
            "completed_at": self.clock(),
            "error_message": None,
            "result": result,
        })
        log_job_transition(state_logger, job, updated, "executor_success")
        return updated

    def fail(self, job: Job, error_message: str, trigger: str = "executor_failure") -> Job:
        """Mark a processing job failed and count the attempt."""
        self._validate(job, JobStatus.FAILED)
        updated = self._apply(job, JobStatus.PROCESSING, {
            "status": JobStatus.FAILED,
            "completed_at": self.clock(),
            "error_message": error_message,
            "retry_count": job.retry_count + 1,
        })
        log_job_transition(state_logger, job, updated, trigger, error=error_message)
        return updated

    def resubmit(self, job: Job) -> Job:
        """Put a failed job with retries left back into the queue."""
        self._validate(job, JobStatus.PENDING)
        if not job.is_retriable:
            raise StateTransitionError(
                f"Job {job.id} has exhausted its retries "
                f"({job.retry_count}/{job.max_retries})",
                current_state=job.status.value,
                attempted_transition=JobStatus.PENDING.value,
            )
        updated = self._apply(job, JobStatus.FAILED, {
            "status": JobStatus.PENDING,
            "started_at": None,
            "completed_at": None,
        })
        log_job_transition(state_logger, job, updated, "resubmit")
        return updated

    def _validate(self, job: Job, target: JobStatus) -> None:
        if target not in ALLOWED_TRANSITIONS[job.status]:
            raise StateTransitionError(
                f"Invalid job transition {job.status.value} -> {target.value}",
                current_state=job.status.value,
                attempted_transition=target.value,
            )

    def _apply(self, job: Job, expected: JobStatus, patch: dict[str, Any]) -> Job:
        updated = self.repository.transition_job(job.id, expected, patch)
        if updated is None:
            stored = self.repository.get_job(job.id)
            current = stored.status.value if stored else None
            raise StateTransitionError(
                f"Job {job.id} is no longer {expected.value}",
                current_state=current,
                attempted_transition=patch["status"].value,
            )
        return updated
