"""
Tests for RecalculationScheduler, APSchedulerJobScheduler and the periodic jobs
"""

from unittest.mock import Mock, patch

import pytest
from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.date import DateTrigger

from app import scheduler as app_scheduler
from app.services.recalculation import (
    ALREADY_PENDING,
    BATCH_SKIPPED,
    DEFERRED,
    SCHEDULED,
    APSchedulerJobScheduler,
    BatchReport,
    BatchStateStore,
    RecalculationScheduler,
)
from app.services.recalculation.scheduler import RECALCULATION_JOB_ID


@pytest.fixture
def job_scheduler():
    return Mock()


@pytest.fixture
def state_store():
    store = Mock()
    store.is_running.return_value = False
    return store


@pytest.fixture
def engine():
    engine = Mock()
    engine.run.return_value = BatchReport(status="completed")
    return engine


@pytest.fixture
def recalc(job_scheduler, state_store, engine):
    return RecalculationScheduler(job_scheduler, lambda: engine, state_store=state_store)


def fire_scheduled_job(job_scheduler):
    """Invoke the callable passed to the most recent schedule() call."""
    func = job_scheduler.schedule.call_args[0][1]
    func()


class TestRequestRecalculation:

    def test_first_request_schedules(self, recalc, job_scheduler):
        assert recalc.request_recalculation(delay_seconds=30) == SCHEDULED

        job_scheduler.schedule.assert_called_once()
        delay, _func, job_id = job_scheduler.schedule.call_args[0]
        assert delay == 30
        assert job_id == RECALCULATION_JOB_ID
        assert recalc.pending is True

    def test_burst_of_requests_coalesces_into_one_job(self, recalc, job_scheduler):
        results = [recalc.request_recalculation() for _ in range(5)]

        assert results == [SCHEDULED] + [ALREADY_PENDING] * 4
        assert job_scheduler.schedule.call_count == 1

    def test_default_delay_from_settings(self, recalc, job_scheduler):
        with patch("app.services.recalculation.scheduler.settings") as mock_settings:
            mock_settings.recalculation_delay_seconds = 45
            recalc.request_recalculation()

        assert job_scheduler.schedule.call_args[0][0] == 45

    def test_request_during_active_run_is_deferred(self, recalc, job_scheduler, state_store):
        state_store.is_running.return_value = True

        assert recalc.request_recalculation() == DEFERRED
        assert recalc.rerun_requested is True
        job_scheduler.schedule.assert_not_called()

    def test_schedule_failure_releases_pending_flag(self, recalc, job_scheduler):
        job_scheduler.schedule.side_effect = RuntimeError("scheduler shut down")

        with pytest.raises(RuntimeError):
            recalc.request_recalculation()
        assert recalc.pending is False

    def test_no_state_store_never_defers(self, job_scheduler, engine):
        recalc = RecalculationScheduler(job_scheduler, lambda: engine)

        assert recalc.request_recalculation() == SCHEDULED


class TestFire:

    def test_fire_runs_engine_and_clears_pending(self, recalc, job_scheduler, engine):
        recalc.request_recalculation()

        fire_scheduled_job(job_scheduler)

        engine.run.assert_called_once()
        assert recalc.pending is False
        assert recalc.request_recalculation() == SCHEDULED

    def test_deferred_request_released_after_local_run(self, recalc, job_scheduler, state_store):
        state_store.is_running.return_value = True
        assert recalc.request_recalculation() == DEFERRED

        state_store.is_running.return_value = False
        assert recalc.request_recalculation() == SCHEDULED
        fire_scheduled_job(job_scheduler)

        assert job_scheduler.schedule.call_count == 2
        assert recalc.rerun_requested is False
        assert recalc.pending is True

    def test_skipped_run_requests_follow_up(self, recalc, job_scheduler, engine):
        engine.run.return_value = BatchReport(status=BATCH_SKIPPED)
        recalc.request_recalculation()

        fire_scheduled_job(job_scheduler)

        assert recalc.rerun_requested is True
        assert job_scheduler.schedule.call_count == 1

    def test_engine_crash_is_logged_not_raised(self, recalc, job_scheduler, engine):
        engine.run.side_effect = RuntimeError("boom")
        recalc.request_recalculation()

        fire_scheduled_job(job_scheduler)

        assert recalc.pending is False


class TestResumeDeferred:

    def test_noop_without_deferred_request(self, recalc, job_scheduler):
        assert recalc.resume_deferred() is None
        job_scheduler.schedule.assert_not_called()

    def test_waits_while_run_active(self, recalc, state_store):
        state_store.is_running.return_value = True
        recalc.request_recalculation()

        assert recalc.resume_deferred() is None
        assert recalc.rerun_requested is True

    def test_schedules_once_run_finished(self, recalc, job_scheduler, state_store):
        state_store.is_running.return_value = True
        recalc.request_recalculation()
        state_store.is_running.return_value = False

        assert recalc.resume_deferred() == SCHEDULED
        assert recalc.rerun_requested is False
        job_scheduler.schedule.assert_called_once()


class TestCancelPending:

    def test_cancel(self, recalc, job_scheduler):
        job_scheduler.cancel_pending.return_value = True
        recalc.request_recalculation()

        assert recalc.cancel_pending() is True
        job_scheduler.cancel_pending.assert_called_once_with(RECALCULATION_JOB_ID)
        assert recalc.pending is False

    def test_cancel_without_pending(self, recalc, job_scheduler):
        assert recalc.cancel_pending() is False
        job_scheduler.cancel_pending.assert_not_called()


class TestAPSchedulerJobScheduler:

    def test_schedule_adds_date_job(self):
        scheduler = Mock()
        func = Mock()

        APSchedulerJobScheduler(scheduler).schedule(60, func, "job-1")

        args, kwargs = scheduler.add_job.call_args
        assert args == (func,)
        assert isinstance(kwargs["trigger"], DateTrigger)
        assert kwargs["id"] == "job-1"
        assert kwargs["replace_existing"] is True

    def test_cancel_unknown_job(self):
        scheduler = Mock()
        scheduler.remove_job.side_effect = JobLookupError("job-1")

        assert APSchedulerJobScheduler(scheduler).cancel_pending("job-1") is False

    def test_cancel_known_job(self):
        scheduler = Mock()

        assert APSchedulerJobScheduler(scheduler).cancel_pending("job-1") is True
        scheduler.remove_job.assert_called_once_with("job-1")


class TestPeriodicJobs:

    def test_watchdog_expires_and_resumes(self, session_factory):
        recalc = Mock()
        with patch("app.database.SessionLocal", session_factory), \
                patch.object(app_scheduler, "recalculation_scheduler", recalc), \
                patch.object(BatchStateStore, "expire_stale_run") as expire:
            app_scheduler.run_batch_watchdog()

        expire.assert_called_once()
        recalc.resume_deferred.assert_called_once()

    def test_watchdog_without_database(self):
        with patch("app.database.SessionLocal", None), \
                patch.object(BatchStateStore, "expire_stale_run") as expire:
            app_scheduler.run_batch_watchdog()

        expire.assert_not_called()

    def test_nightly_goes_through_debounce(self):
        recalc = Mock()
        recalc.request_recalculation.return_value = SCHEDULED
        with patch.object(app_scheduler, "recalculation_scheduler", recalc):
            app_scheduler.run_nightly_recalculation()

        recalc.request_recalculation.assert_called_once_with(delay_seconds=0)

    def test_nightly_crash_is_swallowed(self):
        recalc = Mock()
        recalc.request_recalculation.side_effect = RuntimeError("boom")
        with patch.object(app_scheduler, "recalculation_scheduler", recalc):
            app_scheduler.run_nightly_recalculation()

    def test_history_pruning(self, session_factory):
        with patch("app.database.SessionLocal", session_factory), \
                patch("app.services.matching.MatchResultStore.prune_history", return_value=3) as prune:
            app_scheduler.run_history_pruning()

        prune.assert_called_once()

    def test_start_scheduler_skipped_in_testing(self):
        scheduler = app_scheduler.start_scheduler("testing")

        assert scheduler.running is False
        assert app_scheduler.get_recalculation_scheduler() is None
