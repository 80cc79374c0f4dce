"""Job queue: turns monitor requests into pending jobs."""

import threading
from typing import Optional

import structlog

from ..models.jobs import Job, JobRequest
from ..persistence.repository import Repository

logger = structlog.get_logger(__name__)


class JobQueue:
    """
    Enqueue side of the scheduler.

    Requests for a (position, job type, trigger) that already has a pending or
    processing job collapse onto that job.
    """

    def __init__(self, repository: Repository, max_retries: int = 3) -> None:
        self.repository = repository
        self.max_retries = max_retries
        self._lock = threading.Lock()

    def enqueue(self, request: JobRequest) -> str:
        """Create a pending job for the request, or return the open duplicate's id."""
        with self._lock:
            existing = self._find_open(request)
            if existing is not None:
                logger.debug(
                    "Duplicate job request collapsed",
                    job_id=existing.id,
                    position_id=request.position_id,
                    trigger=request.trigger.value,
                )
                return existing.id

            job = Job.from_request(request, max_retries=self.max_retries)
            self.repository.insert_job(job)

        logger.info(
            "Job enqueued",
            job_id=job.id,
            job_type=job.job_type.value,
            trigger=job.trigger.value,
            position_id=job.position_id,
            priority=job.priority,
        )
        return job.id

    def _find_open(self, request: JobRequest) -> Optional[Job]:
        return self.repository.find_open_job(
            request.position_id, request.job_type, request.trigger
        )
