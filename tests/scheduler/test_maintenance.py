"""
Test cases for the maintenance scheduler, its configuration and alerting.
"""

from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError
from pymongo.errors import OperationFailure

from catalog.jobs import JobStatus, PropagationJob
from scheduler.alerting import AlertManager
from scheduler.models import AlertConfig, AlertSeverity, SchedulerConfig, SweepReport, SweepType
from scheduler.scheduler_service import MaintenanceScheduler


@pytest.fixture
def scheduler_config():
    return SchedulerConfig(overdue_hour=2, overdue_minute=45, recovery_interval_minutes=10)


@pytest.fixture
def maintenance(scheduler_config, catalog):
    return MaintenanceScheduler(scheduler_config, catalog)


class TestSchedulerConfig:
    """Test cases for SchedulerConfig model."""

    def test_defaults(self):
        config = SchedulerConfig()

        assert config.overdue_hour == 1
        assert config.overdue_minute == 0
        assert config.enable_recovery is True
        assert config.alert_config.enabled is True

    def test_invalid_times(self):
        with pytest.raises(ValidationError):
            SchedulerConfig(overdue_hour=24)
        with pytest.raises(ValidationError):
            SchedulerConfig(overdue_minute=60)
        with pytest.raises(ValidationError):
            SchedulerConfig(recovery_interval_minutes=0)

    def test_prune_time_wraps_past_midnight(self):
        assert SchedulerConfig(overdue_hour=2, overdue_minute=45).prune_time() == {"hour": 3, "minute": 15}
        assert SchedulerConfig(overdue_hour=23, overdue_minute=40).prune_time() == {"hour": 0, "minute": 10}


class TestMaintenanceScheduler:

    def test_add_jobs_registers_three_jobs(self, maintenance):
        maintenance.add_jobs()

        status = maintenance.get_scheduler_status()
        assert status["running"] is False
        assert {job["id"] for job in status["jobs"]} == {"overdue_sweep", "recovery_sweep", "intent_prune"}

    def test_recovery_job_can_be_disabled(self, catalog):
        maintenance = MaintenanceScheduler(SchedulerConfig(enable_recovery=False), catalog)
        maintenance.add_jobs()

        assert {job["id"] for job in maintenance.get_scheduler_status()["jobs"]} == {"overdue_sweep", "intent_prune"}

    @pytest.mark.asyncio
    async def test_overdue_sweep_report(self, maintenance, catalog, make_book_request, make_user_request):
        book = await catalog.books.create_book(make_book_request())
        user = await catalog.users.create_user(make_user_request())
        await catalog.loans.create_loan(
            book.id, user.id, loan_date=date(2024, 1, 1), expected_return_date=date(2024, 1, 10)
        )

        report = await maintenance.run_overdue_sweep(today=date(2024, 2, 1))

        assert report.sweep_type == SweepType.OVERDUE
        assert report.success is True
        assert report.loans_marked_overdue == 1

    @pytest.mark.asyncio
    async def test_recovery_sweep_report(self, maintenance, collections, catalog, make_book_request):
        collections["categories"].fail_next("update_one")
        with pytest.raises(OperationFailure):
            await catalog.books.create_book(make_book_request())

        report = await maintenance.run_recovery_sweep(now=datetime.utcnow() + timedelta(seconds=1))

        assert report.intents_reconciled == 1
        assert report.intents_failed == 0

    @pytest.mark.asyncio
    async def test_run_once_runs_every_sweep(self, maintenance):
        reports = await maintenance.run_once()

        assert [report.sweep_type for report in reports] == [SweepType.OVERDUE, SweepType.RECOVERY, SweepType.PRUNE]
        assert all(report.success for report in reports)

    @pytest.mark.asyncio
    async def test_failed_sweep_is_reported_and_alerted(self, scheduler_config, catalog):
        alert_manager = MagicMock()
        maintenance = MaintenanceScheduler(scheduler_config, catalog, alert_manager=alert_manager)
        catalog.loans.mark_overdue_loans = AsyncMock(side_effect=OperationFailure("connection lost"))

        report = await maintenance.run_overdue_sweep()

        assert report.success is False
        assert report.errors == ["connection lost"]
        alert_manager.process_sweep.assert_called_once_with(report)


class TestAlertManager:

    def test_failed_sweep_alerts(self):
        manager = AlertManager(AlertConfig())
        report = SweepReport(sweep_type=SweepType.RECOVERY, success=False, errors=["boom"])

        assert manager.process_sweep(report) is True
        assert manager.sent_alerts == 1

    def test_unreconciled_intents_threshold(self):
        manager = AlertManager(AlertConfig(unreconciled_intents_threshold=2))

        assert manager.process_sweep(SweepReport(sweep_type=SweepType.RECOVERY, intents_failed=1)) is False
        assert manager.process_sweep(SweepReport(sweep_type=SweepType.RECOVERY, intents_failed=2)) is True

    def test_cooldown_suppresses_repeats(self):
        manager = AlertManager(AlertConfig(alert_cooldown_minutes=30))
        report = SweepReport(sweep_type=SweepType.RECOVERY, intents_failed=3)

        assert manager.process_sweep(report) is True
        assert manager.process_sweep(report) is False
        assert manager.sent_alerts == 1

    def test_rate_limit(self):
        manager = AlertManager(AlertConfig(alert_cooldown_minutes=0, max_alerts_per_hour=2))
        job = PropagationJob(job_type="author_rename", status=JobStatus.FAILED, error="boom")

        results = [manager.job_failed(job) for _ in range(3)]

        assert results == [True, True, False]

    def test_severity_filter_and_disabled(self):
        job = PropagationJob(job_type="author_rename", status=JobStatus.FAILED, error="boom")

        assert AlertManager(AlertConfig(min_severity_for_log=AlertSeverity.CRITICAL)).job_failed(job) is False
        assert AlertManager(AlertConfig(enabled=False)).job_failed(job) is False
