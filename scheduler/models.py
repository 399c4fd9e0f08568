"""
Models for the catalogue maintenance scheduler.

This module defines Pydantic models for:
- Scheduler and alert configuration
- Results of the periodic maintenance sweeps
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, Field


class SweepType(str, Enum):
    """Maintenance tasks run by the scheduler."""
    OVERDUE = "overdue"
    RECOVERY = "recovery"
    PRUNE = "prune"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SweepReport(BaseModel):
    """Outcome of one maintenance sweep."""
    sweep_type: SweepType
    started_at: datetime = Field(default_factory=datetime.utcnow)
    duration_seconds: float = Field(default=0.0)
    success: bool = Field(default=True)

    # Sweep-specific counters
    loans_marked_overdue: int = Field(default=0)
    intents_reconciled: int = Field(default=0)
    intents_failed: int = Field(default=0)
    intents_pruned: int = Field(default=0)

    failed_intents: Dict[str, str] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)


class AlertConfig(BaseModel):
    """Configuration for alerting system (logging only)."""
    enabled: bool = Field(default=True)
    log_enabled: bool = Field(default=True)

    # Alert thresholds
    min_severity_for_log: AlertSeverity = Field(default=AlertSeverity.LOW)
    unreconciled_intents_threshold: int = Field(default=1, ge=1, description="Pending intents that trigger an alert")

    # Rate limiting
    max_alerts_per_hour: int = Field(default=10)
    alert_cooldown_minutes: int = Field(default=30)


class SchedulerConfig(BaseModel):
    """Configuration for the maintenance scheduler."""
    # Overdue sweep (daily)
    overdue_hour: int = Field(default=1, ge=0, le=23, description="Hour to run the overdue sweep (24h format)")
    overdue_minute: int = Field(default=0, ge=0, le=59, description="Minute to run the overdue sweep")
    timezone: str = Field(default="UTC", description="Timezone for scheduling")

    # Recovery sweep (interval)
    enable_recovery: bool = Field(default=True)
    recovery_interval_minutes: int = Field(default=5, ge=1, le=1440)

    # Intent pruning (daily, after the overdue sweep)
    intent_retention_days: int = Field(default=7, ge=1, description="Days to keep completed intents")

    # Alerting
    alert_config: AlertConfig = Field(default_factory=AlertConfig)

    def prune_time(self) -> Dict[str, int]:
        """Pruning runs 30 minutes after the overdue sweep."""
        minute = self.overdue_minute + 30
        return {"hour": (self.overdue_hour + minute // 60) % 24, "minute": minute % 60}
