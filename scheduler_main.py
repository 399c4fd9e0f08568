"""
Main entry point for the catalogue maintenance scheduler.

Usage: python scheduler_main.py [--once]
"""

import asyncio
import sys

import structlog

from catalog.app import LibraryCatalog
from catalog.database import MongoDBManager
from scheduler.alerting import AlertManager
from scheduler.models import AlertConfig, SchedulerConfig
from scheduler.scheduler_service import MaintenanceScheduler
from utilities.config import config
from utilities.logger import setup_logging


async def main():
    """Connect to MongoDB and run the maintenance scheduler."""
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file,
        debug=config.debug
    )
    logger = structlog.get_logger(__name__)

    run_once = False
    if len(sys.argv) > 1:
        if sys.argv[1] == '--once':
            run_once = True
        else:
            print(f"Unknown argument: {sys.argv[1]}")
            print("Usage: python scheduler_main.py [--once]")
            sys.exit(1)

    scheduler_config = SchedulerConfig(
        overdue_hour=config.overdue_sweep_hour,
        overdue_minute=config.overdue_sweep_minute,
        timezone=config.timezone,
        recovery_interval_minutes=config.recovery_interval_minutes,
        intent_retention_days=config.intent_retention_days,
        alert_config=AlertConfig(),
    )
    alert_manager = AlertManager(scheduler_config.alert_config)

    db_manager = MongoDBManager(
        connection_url=config.mongodb_url,
        database_name=config.mongodb_database,
        collection_names=config.get_collection_names()
    )

    try:
        catalog = await LibraryCatalog.from_manager(db_manager, config, on_job_failure=alert_manager.job_failed)
        scheduler = MaintenanceScheduler(scheduler_config, catalog, alert_manager)
        logger.info(
            "Maintenance scheduler configured",
            run_once=run_once,
            overdue_hour=scheduler_config.overdue_hour,
            overdue_minute=scheduler_config.overdue_minute,
            timezone=scheduler_config.timezone
        )
        await scheduler.start(run_once=run_once)
        await catalog.close()
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
    except Exception as e:
        logger.error("Failed to run maintenance scheduler", error=str(e))
        sys.exit(1)
    finally:
        await db_manager.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
