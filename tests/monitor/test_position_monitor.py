"""Tests for position monitoring and job requests."""

import threading
from dataclasses import replace
from unittest.mock import patch

import pytest

from lp_keeper.config.defaults import MonitorParams
from lp_keeper.errors import DataUnavailableError, PersistenceError
from lp_keeper.models.jobs import JobStatus, JobTrigger
from lp_keeper.monitor.position_monitor import PositionMonitor
from lp_keeper.scheduler.queue import JobQueue


def _monitor(repo, curve, **params):
    return PositionMonitor(repo, JobQueue(repo), curve, MonitorParams(**params))


def _jobs_by_trigger(repo):
    return {j.trigger: j.priority for j in repo.list_jobs(status=JobStatus.PENDING)}


class TestCheckPosition:

    def test_price_in_range_requests_nothing(self, seeded_repo, curve, sample_position):
        seeded_repo.record_price("pool-sol-usdc", 1.00)

        evaluation = _monitor(seeded_repo, curve).check_position(sample_position)

        assert evaluation.needs_rebalance is False
        assert evaluation.requests == []
        assert evaluation.current_price == 1.00
        assert evaluation.impermanent_loss_pct == pytest.approx(0.0)
        assert evaluation.price_change_pct == pytest.approx(0.0)

    def test_check_does_not_enqueue(self, seeded_repo, curve, sample_position):
        seeded_repo.record_price("pool-sol-usdc", 1.06)

        evaluation = _monitor(seeded_repo, curve).check_position(sample_position)

        assert evaluation.needs_rebalance is True
        assert evaluation.impermanent_loss_pct == 100.0
        assert [r.trigger for r in evaluation.requests] == [JobTrigger.RANGE_DRIFT]
        assert seeded_repo.list_jobs() == []

    def test_missing_price_is_data_unavailable(self, seeded_repo, curve, sample_position):
        with pytest.raises(DataUnavailableError) as exc_info:
            _monitor(seeded_repo, curve).check_position(sample_position)
        assert exc_info.value.data_type == "price"

    def test_auto_rebalance_disabled(self, seeded_repo, curve, sample_position, sample_strategy):
        seeded_repo.upsert_strategy(replace(sample_strategy, auto_rebalance=False))
        seeded_repo.record_price("pool-sol-usdc", 1.06)

        evaluation = _monitor(seeded_repo, curve).check_position(sample_position)
        assert evaluation.skipped_reason == "auto_rebalance_disabled"
        assert evaluation.requests == []

    def test_position_without_strategy(self, seeded_repo, curve, sample_position):
        evaluation = _monitor(seeded_repo, curve).check_position(
            replace(sample_position, strategy_id=None))
        assert evaluation.skipped is True
        assert evaluation.skipped_reason == "no_strategy"


class TestMonitorPositions:

    def test_range_drift_job(self, seeded_repo, curve):
        seeded_repo.record_price("pool-sol-usdc", 1.06)

        report = _monitor(seeded_repo, curve).monitor_positions()

        assert report.jobs_requested == 1
        assert _jobs_by_trigger(seeded_repo) == {JobTrigger.RANGE_DRIFT: 7}

    def test_stop_loss_adds_urgent_job(self, seeded_repo, curve, sample_strategy):
        seeded_repo.upsert_strategy(replace(sample_strategy, stop_loss_pct=5.0))
        seeded_repo.record_price("pool-sol-usdc", 0.94)

        _monitor(seeded_repo, curve).monitor_positions()

        assert _jobs_by_trigger(seeded_repo) == {
            JobTrigger.RANGE_DRIFT: 7,
            JobTrigger.STOP_LOSS: 10,
        }
        assert seeded_repo.list_pending_jobs(1)[0].trigger == JobTrigger.STOP_LOSS

    def test_take_profit_job(self, seeded_repo, curve, sample_strategy):
        seeded_repo.upsert_strategy(replace(sample_strategy, take_profit_pct=5.0,
                                            stop_loss_pct=5.0))
        seeded_repo.record_price("pool-sol-usdc", 1.06)

        _monitor(seeded_repo, curve).monitor_positions()

        assert _jobs_by_trigger(seeded_repo) == {
            JobTrigger.RANGE_DRIFT: 7,
            JobTrigger.TAKE_PROFIT: 8,
        }

    def test_lower_bound_is_reference_without_entry_price(self, seeded_repo, curve,
                                                          sample_position, sample_strategy):
        seeded_repo.upsert_position(replace(sample_position, entry_price=None))
        seeded_repo.upsert_strategy(replace(sample_strategy, take_profit_pct=5.0))
        # 1.03 is 5.1% above the 0.98 lower bound but only 3% above 1.00
        seeded_repo.record_price("pool-sol-usdc", 1.03)

        _monitor(seeded_repo, curve).monitor_positions()

        assert JobTrigger.TAKE_PROFIT in _jobs_by_trigger(seeded_repo)

    def test_repeated_monitoring_collapses_jobs(self, seeded_repo, curve):
        seeded_repo.record_price("pool-sol-usdc", 1.06)
        monitor = _monitor(seeded_repo, curve)

        first = monitor.monitor_positions()
        second = monitor.monitor_positions()

        assert first.evaluations[0].job_ids == second.evaluations[0].job_ids
        assert len(seeded_repo.list_jobs()) == 1

    def test_missing_price_is_reported_not_raised(self, seeded_repo, curve):
        report = _monitor(seeded_repo, curve).monitor_positions()

        assert "pos-1" in report.errors
        assert seeded_repo.list_jobs() == []

    def test_price_read_timeout(self, seeded_repo, curve):
        release = threading.Event()

        def slow_price(pool_id):
            release.wait(5)
            return 1.06

        try:
            with patch.object(seeded_repo, "get_latest_price", side_effect=slow_price):
                report = _monitor(seeded_repo, curve,
                                  price_timeout_seconds=0.05).monitor_positions()
        finally:
            release.set()

        assert "timed out" in report.errors["pos-1"]
        assert seeded_repo.list_jobs() == []

    def test_price_read_failure(self, seeded_repo, curve):
        with patch.object(seeded_repo, "get_latest_price",
                          side_effect=PersistenceError("disk I/O error")):
            report = _monitor(seeded_repo, curve).monitor_positions()

        assert "disk I/O error" in report.errors["pos-1"]
        assert seeded_repo.list_jobs() == []

    def test_curve_error_only_affects_one_position(self, seeded_repo, curve, sample_position,
                                                   sample_strategy, single_bin):
        broken = replace(sample_strategy, id="strat-broken", rebalance_threshold_pct=float("nan"))
        seeded_repo.upsert_strategy(broken)
        seeded_repo.replace_active_bins("strat-broken", single_bin)
        seeded_repo.upsert_position(replace(sample_position, id="pos-2",
                                            strategy_id="strat-broken"))
        seeded_repo.record_price("pool-sol-usdc", 1.00)

        report = _monitor(seeded_repo, curve).monitor_positions()

        assert "threshold_pct" in report.errors["pos-2"]
        assert [e.position_id for e in report.evaluations] == ["pos-1"]
        assert seeded_repo.list_jobs() == []

    def test_impermanent_loss_error_keeps_drift_job(self, seeded_repo, curve, sample_position):
        seeded_repo.upsert_position(replace(sample_position, lower_price=1.02, upper_price=0.98))
        seeded_repo.record_price("pool-sol-usdc", 1.06)

        report = _monitor(seeded_repo, curve).monitor_positions()

        assert report.errors == {}
        evaluation = report.evaluations[0]
        assert evaluation.impermanent_loss_pct is None
        assert evaluation.needs_rebalance is True
        assert _jobs_by_trigger(seeded_repo) == {JobTrigger.RANGE_DRIFT: 7}

    def test_cancelled_before_start(self, seeded_repo, curve):
        seeded_repo.record_price("pool-sol-usdc", 1.06)
        cancel = threading.Event()
        cancel.set()

        report = _monitor(seeded_repo, curve).monitor_positions(cancel_event=cancel)

        assert report.cancelled is True
        assert report.evaluations == []
        assert seeded_repo.list_jobs() == []

    def test_repository_outage_propagates(self, seeded_repo, curve):
        with patch.object(seeded_repo, "get_active_positions",
                          side_effect=PersistenceError("database is locked")):
            with pytest.raises(PersistenceError):
                _monitor(seeded_repo, curve).monitor_positions()
