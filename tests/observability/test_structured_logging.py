"""
Tests for the structured logging helpers.
"""

from dataclasses import replace

from structlog.testing import capture_logs

from lp_keeper.logging.config import (
    get_decision_logger,
    get_state_logger,
    log_job_transition,
    log_rebalance_decision,
)
from lp_keeper.models.jobs import JobStatus


class TestDecisionLogging:
    """Test rebalance decision records."""

    def test_triggered_rule_logged_at_info(self):
        with capture_logs() as logs:
            logger = get_decision_logger("tests.monitor")
            log_rebalance_decision(logger, "pos-1", "stop_loss", True,
                                   "price fell 12%", entry_price=1.0, price=0.88)

        assert len(logs) == 1
        record = logs[0]
        assert record["log_level"] == "info"
        assert record["event"] == "Rebalance requested"
        assert record["subsystem"] == "rebalance"
        assert record["audit_trail"] is True
        assert record["outcome"] == "enqueue"
        assert record["trigger"] == "stop_loss"
        assert (record["entry_price"], record["price"]) == (1.0, 0.88)

    def test_held_rule_logged_at_debug(self):
        with capture_logs() as logs:
            logger = get_decision_logger("tests.monitor")
            log_rebalance_decision(logger, "pos-1", "range_drift", False, "price covered")

        assert logs[0]["log_level"] == "debug"
        assert logs[0]["outcome"] == "hold"


class TestTransitionLogging:
    """Test job state transition records."""

    def test_claim_carries_job_fields(self, make_job):
        pending = make_job(priority=10)
        claimed = replace(pending, status=JobStatus.PROCESSING)

        with capture_logs() as logs:
            log_job_transition(get_state_logger("tests.scheduler"), pending, claimed, "claim")

        record = logs[0]
        assert record["event"] == "Job state transition"
        assert record["subsystem"] == "job_state_machine"
        assert (record["from_state"], record["to_state"]) == ("pending", "processing")
        assert record["job_id"] == pending.id
        assert record["position_id"] == pending.position_id
        assert record["priority"] == 10
        assert record["job_trigger"] == "range_drift"
        assert record["trigger"] == "claim"

    def test_final_failure_is_a_warning(self, make_job):
        running = make_job(status=JobStatus.PROCESSING, retry_count=2, max_retries=3)
        failed = replace(running, status=JobStatus.FAILED, retry_count=3)

        with capture_logs() as logs:
            log_job_transition(get_state_logger("tests.scheduler"), running, failed,
                               "executor_failure", error="RuntimeError: boom")

        assert logs[0]["log_level"] == "warning"
        assert logs[0]["retry_count"] == 3
        assert logs[0]["error"] == "RuntimeError: boom"

    def test_retriable_failure_is_info(self, make_job):
        running = make_job(status=JobStatus.PROCESSING)
        failed = replace(running, status=JobStatus.FAILED, retry_count=1)

        with capture_logs() as logs:
            log_job_transition(get_state_logger("tests.scheduler"), running, failed, "timeout")

        assert logs[0]["log_level"] == "info"
