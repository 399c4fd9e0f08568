"""
Structured logging for the catalogue using structlog.
Provides JSON or console output and a context-aware logger for fan-out writes.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[Union[str, Path]] = None,
    debug: bool = False
) -> None:
    """
    Set up structured logging with configurable output formats.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        log_file: Optional log file path
        debug: Add call-site information to every event
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    if debug:
        processors.append(structlog.processors.CallsiteParameterAdder())

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter('%(message)s'))
        logging.getLogger().addHandler(file_handler)

    structlog.get_logger(__name__).info(
        "Logging system initialized",
        level=log_level,
        format=log_format,
        file=str(log_file) if log_file else None,
        debug=debug
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


class FanoutLogger:
    """
    Logger for fan-out propagation with per-operation context.
    """

    def __init__(self, name: str = "fanout"):
        self.logger = structlog.get_logger(name)
        self.context = {}

    def bind_context(self, **kwargs) -> 'FanoutLogger':
        """Bind context variables that are added to every event."""
        self.context.update(kwargs)
        return self

    def clear_context(self) -> 'FanoutLogger':
        """Clear all context variables."""
        self.context.clear()
        return self

    def log_fanout_start(self, operation: str, entity_type: str, entity_id: str) -> None:
        self.logger.debug(
            "Fan-out started",
            operation=operation,
            entity_type=entity_type,
            entity_id=entity_id,
            **self.context
        )

    def log_fanout_complete(self, operation: str, entity_id: str, writes: int) -> None:
        self.logger.info(
            "Fan-out completed",
            operation=operation,
            entity_id=entity_id,
            writes=writes,
            **self.context
        )

    def log_dependent_write(
        self,
        collection: str,
        action: str,
        target: str,
        affected: Optional[int] = None
    ) -> None:
        """Log a single write against a document that embeds a copy."""
        self.logger.debug(
            "Dependent write",
            collection=collection,
            action=action,
            target=target,
            affected=affected,
            **self.context
        )

    def log_write_failure(self, collection: str, action: str, target: str, error: str) -> None:
        self.logger.error(
            "Dependent write failed",
            collection=collection,
            action=action,
            target=target,
            error=error,
            **self.context
        )
