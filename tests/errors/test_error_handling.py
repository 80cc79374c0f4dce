"""
Error classification tests.

Checks the hierarchy that decides how far a failure propagates: a single
position, a single job, or the whole keeper cycle.
"""

import pytest

from lp_keeper.errors import (
    AdvisoryUnavailableError,
    CycleInProgressError,
    DataQualityError,
    DataUnavailableError,
    ExecutionFailureError,
    FatalInfrastructureError,
    GracefulDegradationError,
    InvalidInputError,
    MalformedDataError,
    PersistenceError,
    RecoverableError,
    StateTransitionError,
    SystemFailureError,
)


class TestErrorClassification:
    """Test error classification system."""

    def test_data_quality_errors_are_recoverable(self):
        base_error = DataQualityError("base error")
        assert base_error.recoverable is True
        assert base_error.context == {}

        invalid = InvalidInputError("bad price", parameter="current_price", value=-1,
                                    context={"position_id": "pos-1"})
        assert isinstance(invalid, DataQualityError)
        assert isinstance(invalid, ValueError)
        assert invalid.parameter == "current_price"
        assert invalid.context == {"position_id": "pos-1"}

        missing = DataUnavailableError("no price", data_type="price")
        assert missing.data_type == "price"

        malformed = MalformedDataError("bad payload", raw_data="{", expected_format="json")
        assert malformed.expected_format == "json"

    def test_persistence_errors_are_fatal(self):
        error = PersistenceError("locked", operation="insert_job", target="keeper.db")

        assert isinstance(error, FatalInfrastructureError)
        assert isinstance(error, SystemFailureError)
        assert error.recoverable is False
        assert (error.operation, error.target) == ("insert_job", "keeper.db")

    def test_state_and_cycle_errors(self):
        transition = StateTransitionError("nope", current_state="completed",
                                          attempted_transition="processing")
        assert transition.attempted_transition == "processing"
        assert not isinstance(transition, FatalInfrastructureError)

        busy = CycleInProgressError("busy", started_at="2024-01-01T00:00:00+00:00")
        assert busy.started_at.startswith("2024")

    def test_execution_failure_is_retriable(self):
        error = ExecutionFailureError("timeout", job_id="job-1", timed_out=True)

        assert isinstance(error, RecoverableError)
        assert error.recoverable is True
        assert error.job_id == "job-1"
        assert error.timed_out is True

    def test_advisory_failure_degrades(self):
        error = AdvisoryUnavailableError("model down", pool_id="pool-1")

        assert isinstance(error, GracefulDegradationError)
        assert error.allows_degradation is True
        assert error.degraded_functionality == "advisory_signals"
        assert error.pool_id == "pool-1"

    def test_catching_by_category(self):
        with pytest.raises(DataQualityError):
            raise DataUnavailableError("no price")
        with pytest.raises(FatalInfrastructureError):
            raise PersistenceError("disk full")

    def test_unrecoverable_errors_require_review(self):
        from lp_keeper.errors import UnrecoverableError

        assert UnrecoverableError("manual review").recoverable is False
