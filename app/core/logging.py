"""
Structured logging configuration with correlation IDs and driver run context.
"""
import logging
import time
import uuid
from typing import Any, Dict, Optional
from contextlib import contextmanager
from contextvars import ContextVar
import structlog

# Context variables for request- and run-scoped data
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
driver_var: ContextVar[Optional[str]] = ContextVar('driver', default=None)
run_id_var: ContextVar[Optional[str]] = ContextVar('run_id', default=None)
case_id_var: ContextVar[Optional[str]] = ContextVar('case_id', default=None)

_service_context: Dict[str, str] = {
    "service": "renewal-reminder-orchestrator",
    "version": "1.0.0",
    "environment": "development",
}


def add_correlation_id(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add correlation ID to log events."""
    correlation_id = correlation_id_var.get()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def add_run_context(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add driver run and case context to log events."""
    driver = driver_var.get()
    if driver:
        event_dict.setdefault("driver", driver)

    run_id = run_id_var.get()
    if run_id:
        event_dict.setdefault("run_id", run_id)

    case_id = case_id_var.get()
    if case_id:
        event_dict.setdefault("case_id", case_id)

    return event_dict


def add_service_context(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add service context to log events."""
    event_dict.update(_service_context)
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    version: Optional[str] = None,
    environment: Optional[str] = None,
) -> None:
    """
    Configure structured JSON logging.

    Args:
        log_level: Minimum stdlib level to emit
        service_name: Service name stamped on every event
        version: Service version stamped on every event
        environment: Deployment environment stamped on every event
    """
    if service_name:
        _service_context["service"] = service_name
    if version:
        _service_context["version"] = version
    if environment:
        _service_context["environment"] = environment

    logging.basicConfig(format="%(message)s", level=getattr(logging, log_level.upper(), logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            add_service_context,
            add_correlation_id,
            add_run_context,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def get_business_logger() -> structlog.stdlib.BoundLogger:
    """Get a business event logger instance."""
    return structlog.get_logger("business")


def get_performance_logger() -> structlog.stdlib.BoundLogger:
    """Get a performance logger instance."""
    return structlog.get_logger("performance")


def set_correlation_id(correlation_id: str) -> None:
    """Set correlation ID in the current context."""
    correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Get correlation ID from current context."""
    return correlation_id_var.get()


@contextmanager
def correlation_context(correlation_id: Optional[str] = None):
    """Context manager for setting the request correlation ID."""
    token = correlation_id_var.set(correlation_id or str(uuid.uuid4())[:8])
    try:
        yield
    finally:
        correlation_id_var.reset(token)


@contextmanager
def driver_run_context(driver: str, run_id: Optional[str] = None):
    """
    Bind driver name and run ID to every log event emitted inside the block.

    Args:
        driver: Driver name (progression, follow_up, catch_up)
        run_id: Run identifier; generated when omitted

    Yields:
        The run ID in effect
    """
    run_id = run_id or str(uuid.uuid4())[:12]
    driver_token = driver_var.set(driver)
    run_token = run_id_var.set(run_id)
    try:
        yield run_id
    finally:
        run_id_var.reset(run_token)
        driver_var.reset(driver_token)


@contextmanager
def case_context(case_id: str):
    """Bind a case ID to every log event emitted inside the block."""
    token = case_id_var.set(case_id)
    try:
        yield
    finally:
        case_id_var.reset(token)


@contextmanager
def performance_timing(operation_name: str):
    """
    Context manager for timing operations.

    Args:
        operation_name: Name of the operation being timed
    """
    start_time = time.monotonic()
    logger = get_performance_logger()
    logger.info("Operation started", operation=operation_name)

    try:
        yield
    finally:
        duration = time.monotonic() - start_time
        logger.info(
            "Operation completed",
            operation=operation_name,
            duration_ms=round(duration * 1000, 2),
        )


def log_business_event(event_type: str, **kwargs):
    """
    Log a structured business event.

    Args:
        event_type: Type of business event
        **kwargs: Additional event data
    """
    logger = get_business_logger()
    logger.info("Business event", event_type=event_type, **kwargs)
