"""Tests for batch selection and execution."""

import threading
import time
from datetime import timedelta

import pytest

from lp_keeper.config.defaults import SchedulerParams
from lp_keeper.errors import PersistenceError
from lp_keeper.models.jobs import Job, JobStatus, JobType, RebalanceResult
from lp_keeper.scheduler.executors import BaseJobExecutor, ExecutorRegistry
from lp_keeper.scheduler.scheduler import STALE_PROCESSING_MESSAGE, JobScheduler


class RecordingExecutor(BaseJobExecutor):
    """Records execution order and optionally fails."""

    job_type = JobType.REBALANCE

    def __init__(self, error: Exception = None, block: threading.Event = None):
        self.executed: list[Job] = []
        self.error = error
        self.block = block
        self._lock = threading.Lock()

    def execute(self, job: Job) -> RebalanceResult:
        with self._lock:
            self.executed.append(job)
        if self.block is not None:
            self.block.wait(5)
        if self.error is not None:
            raise self.error
        return RebalanceResult(new_lower_price=1.0, new_upper_price=2.0, bins_count=69)


def _scheduler(repo, executor=None, **params):
    registry = ExecutorRegistry()
    if executor is not None:
        registry.register(executor)
    return JobScheduler(repo, registry, SchedulerParams(**params))


class TestBatchSelection:

    def test_priority_then_age(self, memory_repo, make_job):
        for priority in (5, 10, 5, 7):
            memory_repo.insert_job(make_job(priority=priority))
        executor = RecordingExecutor()

        report = _scheduler(memory_repo, executor, max_workers=1).run_batch()

        assert [j.priority for j in executor.executed] == [10, 7, 5, 5]
        assert [j.id for j in executor.executed] == ["job-1", "job-3", "job-0", "job-2"]
        assert report.completed == 4

    def test_batch_size_limits_a_pass(self, memory_repo, make_job):
        for _ in range(12):
            memory_repo.insert_job(make_job())
        executor = RecordingExecutor()

        report = _scheduler(memory_repo, executor, batch_size=10).run_batch()

        assert report.selected == 10
        assert len(memory_repo.list_jobs(status=JobStatus.COMPLETED)) == 10
        remaining = memory_repo.list_jobs(status=JobStatus.PENDING)
        assert [j.id for j in remaining] == ["job-10", "job-11"]
        assert all(j.started_at is None for j in remaining)

    def test_one_job_per_position_per_pass(self, memory_repo, make_job):
        memory_repo.insert_job(make_job(position_id="pos-a", priority=10))
        memory_repo.insert_job(make_job(position_id="pos-a", priority=7))
        memory_repo.insert_job(make_job(position_id="pos-b", priority=5))
        executor = RecordingExecutor()

        report = _scheduler(memory_repo, executor).run_batch()

        assert report.deferred == 1
        assert sorted(j.id for j in executor.executed) == ["job-0", "job-2"]
        assert memory_repo.get_job("job-1").status == JobStatus.PENDING

    def test_position_with_processing_job_is_deferred(self, memory_repo, make_job):
        memory_repo.insert_job(make_job(position_id="pos-a", status=JobStatus.PROCESSING))
        memory_repo.insert_job(make_job(position_id="pos-a"))

        selected, deferred = _scheduler(memory_repo, RecordingExecutor()).select_batch()
        assert selected == []
        assert deferred == 1


class TestExecution:

    def test_failure_is_recorded(self, memory_repo, make_job):
        memory_repo.insert_job(make_job())
        executor = RecordingExecutor(error=RuntimeError("adapter offline"))

        report = _scheduler(memory_repo, executor).run_batch()

        job = memory_repo.get_job("job-0")
        assert job.status == JobStatus.FAILED
        assert job.retry_count == 1
        assert "adapter offline" in job.error_message
        assert report.failed == 1
        assert report.failures[0].job_id == "job-0"

    def test_retry_exhaustion(self, memory_repo, make_job):
        memory_repo.insert_job(make_job(max_retries=2))
        scheduler = _scheduler(memory_repo, RecordingExecutor(error=RuntimeError("boom")))

        scheduler.run_batch()
        assert scheduler.resubmit_failed() == ["job-0"]
        scheduler.run_batch()
        assert scheduler.resubmit_failed() == []

        job = memory_repo.get_job("job-0")
        assert job.status == JobStatus.FAILED
        assert job.retry_count == 2
        assert scheduler.run_batch().selected == 0

    def test_timeout_fails_the_job(self, memory_repo, make_job):
        memory_repo.insert_job(make_job())
        release = threading.Event()
        executor = RecordingExecutor(block=release)

        try:
            report = _scheduler(memory_repo, executor, job_timeout_seconds=0.05).run_batch()
        finally:
            release.set()

        job = memory_repo.get_job("job-0")
        assert job.status == JobStatus.FAILED
        assert "timed out" in job.error_message
        assert report.failed == 1

    def test_timed_out_execution_keeps_position_busy(self, memory_repo, make_job):
        memory_repo.insert_job(make_job())
        release = threading.Event()
        executor = RecordingExecutor(block=release)
        scheduler = _scheduler(memory_repo, executor, job_timeout_seconds=0.05)

        try:
            scheduler.run_batch()
            assert memory_repo.get_job("job-0").status == JobStatus.FAILED
            assert "pos-0" in scheduler.busy_positions()

            assert scheduler.resubmit_failed() == ["job-0"]
            report = scheduler.run_batch()

            assert report.selected == 0
            assert report.deferred == 1
            assert len(executor.executed) == 1
            assert memory_repo.get_job("job-0").status == JobStatus.PENDING
        finally:
            release.set()

        deadline = time.monotonic() + 5
        while "pos-0" in scheduler.busy_positions() and time.monotonic() < deadline:
            time.sleep(0.01)
        assert scheduler.busy_positions() == set()

        executor.block = None
        assert scheduler.run_batch().completed == 1
        assert len(executor.executed) == 2

    def test_missing_executor_fails_the_job(self, memory_repo, make_job):
        memory_repo.insert_job(make_job())

        _scheduler(memory_repo).run_batch()

        job = memory_repo.get_job("job-0")
        assert job.status == JobStatus.FAILED
        assert "No executor registered" in job.error_message

    def test_cancelled_pass_claims_nothing(self, memory_repo, make_job):
        memory_repo.insert_job(make_job())
        cancel = threading.Event()
        cancel.set()

        report = _scheduler(memory_repo, RecordingExecutor()).run_batch(cancel)

        assert report.cancelled is True
        assert memory_repo.get_job("job-0").status == JobStatus.PENDING

    def test_fatal_error_propagates_after_recording(self, memory_repo, make_job):
        memory_repo.insert_job(make_job())
        executor = RecordingExecutor(error=PersistenceError("database is locked"))

        with pytest.raises(PersistenceError):
            _scheduler(memory_repo, executor).run_batch()
        assert memory_repo.get_job("job-0").status == JobStatus.FAILED

    def test_sqlite_backed_pass(self, sqlite_repo, make_job):
        for priority in (5, 10, 5, 7):
            sqlite_repo.insert_job(make_job(priority=priority))
        executor = RecordingExecutor()

        _scheduler(sqlite_repo, executor, max_workers=1).run_batch()

        assert [j.priority for j in executor.executed] == [10, 7, 5, 5]
        completed = sqlite_repo.get_job("job-1")
        assert completed.status == JobStatus.COMPLETED
        assert completed.result.bins_count == 69


class TestReconciliation:

    def test_stuck_jobs_are_failed(self, memory_repo, make_job, base_time):
        memory_repo.insert_job(make_job(status=JobStatus.PROCESSING,
                                        started_at=base_time - timedelta(minutes=20)))
        memory_repo.insert_job(make_job(status=JobStatus.PROCESSING,
                                        started_at=base_time - timedelta(minutes=1)))
        scheduler = _scheduler(memory_repo, stuck_after_seconds=600)

        assert scheduler.reconcile_stuck_jobs(now=base_time) == ["job-0"]

        stuck = memory_repo.get_job("job-0")
        assert stuck.status == JobStatus.FAILED
        assert stuck.error_message == STALE_PROCESSING_MESSAGE
        assert stuck.retry_count == 1
        assert memory_repo.get_job("job-1").status == JobStatus.PROCESSING

    def test_reconciled_job_is_resubmitted(self, memory_repo, make_job, base_time):
        memory_repo.insert_job(make_job(status=JobStatus.PROCESSING,
                                        started_at=base_time - timedelta(hours=1)))
        scheduler = _scheduler(memory_repo)

        scheduler.reconcile_stuck_jobs(now=base_time)
        assert scheduler.resubmit_failed() == ["job-0"]
        assert memory_repo.get_job("job-0").status == JobStatus.PENDING
