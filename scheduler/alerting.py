"""
Alerting for catalogue maintenance.

This module provides:
- Log-based alerts for unreconciled intents and failed propagation jobs
- Rate limiting and cooldown per alert type
- Alert severity filtering
"""

from datetime import datetime, timedelta
from typing import Dict, List

import structlog

from catalog.jobs import PropagationJob
from scheduler.models import AlertConfig, AlertSeverity, SweepReport

logger = structlog.get_logger(__name__)

SEVERITY_ORDER = {
    AlertSeverity.LOW: 1,
    AlertSeverity.MEDIUM: 2,
    AlertSeverity.HIGH: 3,
    AlertSeverity.CRITICAL: 4,
}


class AlertManager:
    """Manager for handling maintenance alerts."""

    def __init__(self, alert_config: AlertConfig):
        """
        Initialize alert manager.

        Args:
            alert_config: Alert configuration
        """
        self.config = alert_config
        self.logger = logger.bind(component="alert_manager")
        self.alert_history: Dict[str, List[datetime]] = {}  # alert type -> send times, last hour only
        self.last_alert_times: Dict[str, datetime] = {}
        self.sent_alerts = 0

    def process_sweep(self, report: SweepReport) -> bool:
        """
        Raise an alert when a sweep failed or left intents unreconciled.

        Returns:
            True if an alert was logged
        """
        if not report.success:
            return self._send_alert(
                f"sweep:{report.sweep_type.value}",
                AlertSeverity.CRITICAL,
                f"{report.sweep_type.value} sweep failed: " + "; ".join(report.errors),
                sweep_type=report.sweep_type.value,
            )

        if report.intents_failed >= self.config.unreconciled_intents_threshold:
            return self._send_alert(
                "unreconciled_intents",
                AlertSeverity.HIGH,
                f"{report.intents_failed} propagation intents remain unreconciled",
                failed_intents=report.failed_intents,
            )
        return False

    def job_failed(self, job: PropagationJob) -> bool:
        """Alert on a propagation job that ended in failure."""
        return self._send_alert(
            "job_failed",
            AlertSeverity.HIGH,
            f"Propagation job {job.job_type} failed: {job.error}",
            job_id=job.id,
            params=job.params,
        )

    def _send_alert(self, alert_type: str, severity: AlertSeverity, message: str, **context) -> bool:
        if not self.config.enabled or not self.config.log_enabled:
            return False

        if SEVERITY_ORDER[severity] < SEVERITY_ORDER[self.config.min_severity_for_log]:
            return False

        if not self._check_rate_limit(alert_type) or not self._check_cooldown(alert_type):
            self.logger.debug("Alert suppressed", alert_type=alert_type)
            return False

        self.logger.warning(
            "Catalogue maintenance alert",
            alert_type=alert_type,
            severity=severity.value,
            message=message,
            **context
        )
        self._update_alert_history(alert_type)
        self.sent_alerts += 1
        return True

    def _check_rate_limit(self, alert_type: str) -> bool:
        hour_ago = datetime.utcnow() - timedelta(hours=1)
        recent_alerts = [time for time in self.alert_history.get(alert_type, []) if time > hour_ago]
        return len(recent_alerts) < self.config.max_alerts_per_hour

    def _check_cooldown(self, alert_type: str) -> bool:
        last_alert_time = self.last_alert_times.get(alert_type)
        if last_alert_time is None:
            return True
        cooldown_period = timedelta(minutes=self.config.alert_cooldown_minutes)
        return datetime.utcnow() - last_alert_time >= cooldown_period

    def _update_alert_history(self, alert_type: str) -> None:
        current_time = datetime.utcnow()
        hour_ago = current_time - timedelta(hours=1)

        history = [time for time in self.alert_history.get(alert_type, []) if time > hour_ago]
        history.append(current_time)
        self.alert_history[alert_type] = history
        self.last_alert_times[alert_type] = current_time
