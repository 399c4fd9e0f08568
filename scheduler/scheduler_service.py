"""
Maintenance scheduler for the library catalogue.

This module provides:
- A daily overdue-loan sweep (cron)
- A periodic recovery sweep replaying unreconciled propagation intents (interval)
- Daily pruning of completed intents
- Log-based alerting when a sweep leaves work behind
"""

import asyncio
import signal
import sys
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

import structlog
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from catalog.app import LibraryCatalog
from scheduler.alerting import AlertManager
from scheduler.models import SchedulerConfig, SweepReport, SweepType

logger = structlog.get_logger(__name__)


class MaintenanceScheduler:
    """Runs the catalogue's periodic maintenance sweeps."""

    def __init__(self, config: SchedulerConfig, catalog: LibraryCatalog, alert_manager: Optional[AlertManager] = None):
        """
        Initialize the maintenance scheduler.

        Args:
            config: Scheduler configuration
            catalog: Catalogue whose loans and intents are maintained
            alert_manager: Alert manager; built from ``config.alert_config`` when omitted
        """
        self.config = config
        self.catalog = catalog
        self.scheduler = AsyncIOScheduler(timezone=config.timezone)
        self.alert_manager = alert_manager or AlertManager(config.alert_config)
        self.logger = logger.bind(component="maintenance_scheduler")

        self._setup_scheduler_listeners()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            self.logger.info("Received signal, shutting down gracefully", signal=signum)
            self.stop()
            sys.exit(0)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _setup_scheduler_listeners(self) -> None:
        def job_executed_listener(event):
            report = event.retval
            self.logger.info(
                "Job executed successfully",
                job_id=event.job_id,
                duration=report.duration_seconds if isinstance(report, SweepReport) else 0
            )

        def job_error_listener(event):
            self.logger.error(
                "Job execution failed",
                job_id=event.job_id,
                error=str(event.exception)
            )

        self.scheduler.add_listener(job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(job_error_listener, EVENT_JOB_ERROR)

    def add_jobs(self) -> None:
        """Register the maintenance jobs with the scheduler."""
        self.scheduler.add_job(
            func=self.run_overdue_sweep,
            trigger=CronTrigger(
                hour=self.config.overdue_hour,
                minute=self.config.overdue_minute,
                timezone=self.config.timezone
            ),
            id='overdue_sweep',
            name='Daily Overdue Loan Sweep',
            max_instances=1,
            replace_existing=True
        )

        if self.config.enable_recovery:
            self.scheduler.add_job(
                func=self.run_recovery_sweep,
                trigger=IntervalTrigger(minutes=self.config.recovery_interval_minutes),
                id='recovery_sweep',
                name='Propagation Recovery Sweep',
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )

        prune_time = self.config.prune_time()
        self.scheduler.add_job(
            func=self.run_prune,
            trigger=CronTrigger(timezone=self.config.timezone, **prune_time),
            id='intent_prune',
            name='Daily Intent Pruning',
            max_instances=1,
            replace_existing=True
        )

        self.logger.info(
            "Maintenance jobs added",
            overdue_hour=self.config.overdue_hour,
            overdue_minute=self.config.overdue_minute,
            recovery_interval_minutes=self.config.recovery_interval_minutes if self.config.enable_recovery else None,
            timezone=self.config.timezone
        )

    async def start(self, run_once: bool = False) -> None:
        """Start the scheduler, or run every sweep once and return."""
        if run_once:
            self.logger.info("Starting maintenance scheduler in RUN ONCE MODE")
            await self.run_once()
            return

        self.logger.info("Starting maintenance scheduler")
        self._setup_signal_handlers()
        self.add_jobs()
        self.scheduler.start()

        try:
            while True:
                await asyncio.sleep(1)
        except (KeyboardInterrupt, asyncio.CancelledError):
            self.logger.info("Shutting down maintenance scheduler")
            self.stop()

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        self.logger.info("Maintenance scheduler stopped")

    async def run_once(self) -> List[SweepReport]:
        """Run the overdue, recovery and prune sweeps in sequence."""
        reports = [
            await self.run_overdue_sweep(),
            await self.run_recovery_sweep(),
            await self.run_prune(),
        ]
        self.logger.info(
            "Run once mode completed",
            successful=sum(1 for report in reports if report.success),
            total=len(reports)
        )
        return reports

    # ------------------------------------------------------------------
    # Sweeps
    # ------------------------------------------------------------------

    async def run_overdue_sweep(self, today: Optional[date] = None) -> SweepReport:
        report = SweepReport(sweep_type=SweepType.OVERDUE)
        try:
            marked = await self.catalog.loans.mark_overdue_loans(today)
            report.loans_marked_overdue = len(marked)
        except Exception as e:
            self._record_failure(report, e)
        return self._finish(report)

    async def run_recovery_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        report = SweepReport(sweep_type=SweepType.RECOVERY)
        try:
            result = await self.catalog.recovery.sweep(now)
            report.intents_reconciled = len(result.reconciled)
            report.intents_failed = len(result.failed)
            report.failed_intents = dict(result.failed)
        except Exception as e:
            self._record_failure(report, e)
        return self._finish(report)

    async def run_prune(self) -> SweepReport:
        report = SweepReport(sweep_type=SweepType.PRUNE)
        try:
            report.intents_pruned = await self.catalog.intents.prune(
                timedelta(days=self.config.intent_retention_days)
            )
        except Exception as e:
            self._record_failure(report, e)
        return self._finish(report)

    def _record_failure(self, report: SweepReport, error: Exception) -> None:
        report.success = False
        report.errors.append(str(error))
        self.logger.error("Maintenance sweep failed", sweep_type=report.sweep_type.value, error=str(error))

    def _finish(self, report: SweepReport) -> SweepReport:
        report.duration_seconds = (datetime.utcnow() - report.started_at).total_seconds()
        self.alert_manager.process_sweep(report)
        self.logger.info(
            "Maintenance sweep completed",
            **report.model_dump(mode="json", exclude={"failed_intents", "errors"})
        )
        return report

    def get_scheduler_status(self) -> Dict:
        jobs = []
        for job in self.scheduler.get_jobs():
            jobs.append({
                'id': job.id,
                'name': job.name,
                'next_run_time': job.next_run_time.isoformat() if getattr(job, 'next_run_time', None) else None,
                'trigger': str(job.trigger)
            })

        return {
            'running': self.scheduler.running,
            'timezone': self.config.timezone,
            'jobs': jobs,
            'job_count': len(jobs)
        }
