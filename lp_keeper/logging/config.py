"""
Centralized logging configuration for the LP keeper.

All components log through structlog on top of the standard library
logging backend, so that rebalance decisions and job state transitions
carry structured context and can be rendered as JSON in production.
"""
import logging
import sys
from typing import Any, Optional

import structlog
from structlog.types import FilteringBoundLogger

from ..models.jobs import Job, JobStatus

# HTTP client libraries used by the advisory source; chatty at INFO
NOISY_LIBRARIES = ("httpx", "httpcore", "openai")


def configure_logging(
    level: str = "INFO",
    format_json: bool = False,
    include_timestamp: bool = True,
    include_caller: bool = False,
    extra_processors: Optional[list] = None
) -> None:
    """
    Configure structlog for the keeper process.

    Called once by the CLI before the first cycle. Third-party HTTP clients
    are held at WARNING or above whatever the keeper level is.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_json: If True, output JSON format; otherwise human-readable
        include_timestamp: Include timestamp in log output
        include_caller: Include caller information (filename, line number)
        extra_processors: Additional structlog processors to include
    """
    log_level = getattr(logging, level.upper())

    logging.basicConfig(
        level=log_level,
        stream=sys.stdout,
        format="%(message)s"
    )
    for library in NOISY_LIBRARIES:
        logging.getLogger(library).setLevel(max(log_level, logging.WARNING))

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if include_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))

    if include_caller:
        processors.append(structlog.processors.CallsiteParameterAdder(
            parameters=[structlog.processors.CallsiteParameter.FILENAME,
                       structlog.processors.CallsiteParameter.LINENO]
        ))

    if extra_processors:
        processors.extend(extra_processors)

    if format_json:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    """Module logger; pass __name__."""
    return structlog.get_logger(name)


def get_decision_logger(name: str) -> FilteringBoundLogger:
    """
    Logger for the monitor's per-position rule outcomes.

    Records carry subsystem="rebalance" and audit_trail=True so the reason a
    job was or was not requested can be filtered out of the cycle noise.
    """
    return get_logger(name).bind(subsystem="rebalance", audit_trail=True)


def get_state_logger(name: str) -> FilteringBoundLogger:
    """Logger for keeper job lifecycle transitions."""
    return get_logger(name).bind(subsystem="job_state_machine", audit_trail=True)


def log_rebalance_decision(
    logger: FilteringBoundLogger,
    position_id: str,
    trigger: str,
    triggered: bool,
    reason: str,
    **details: Any
) -> None:
    """
    Record one monitoring rule outcome for a position.

    Args:
        logger: Decision logger
        position_id: Position being evaluated
        trigger: Job trigger the rule maps to (range_drift, stop_loss, take_profit)
        triggered: Whether the rule asks for a job
        reason: Human-readable explanation, e.g. the price change against the limit
        **details: Prices, thresholds and bin counts behind the outcome
    """
    bound_logger = logger.bind(
        position_id=position_id,
        trigger=trigger,
        outcome="enqueue" if triggered else "hold",
        reason=reason,
        **details,
    )

    if triggered:
        bound_logger.info("Rebalance requested")
    else:
        bound_logger.debug("Rebalance not needed")


def log_job_transition(
    logger: FilteringBoundLogger,
    before: Job,
    after: Job,
    trigger: str,
    **details: Any
) -> None:
    """
    Record a persisted job transition.

    A failure that leaves no retries is logged as a warning, since nothing
    will pick the job up again without an operator.

    Args:
        logger: State logger
        before: Job as it was read before the compare-and-set
        after: Job as stored after it
        trigger: What caused the transition (claim, executor_success, timeout, ...)
        **details: Extra fields such as the error message
    """
    bound_logger = logger.bind(
        job_id=after.id,
        position_id=after.position_id,
        job_type=after.job_type.value,
        job_trigger=after.trigger.value,
        priority=after.priority,
        from_state=before.status.value,
        to_state=after.status.value,
        retry_count=after.retry_count,
        max_retries=after.max_retries,
        trigger=trigger,
        **details,
    )

    if after.status == JobStatus.FAILED and not after.is_retriable:
        bound_logger.warning("Job failed with no retries left")
    else:
        bound_logger.info("Job state transition")
