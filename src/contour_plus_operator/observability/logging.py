"""
Structured logging utilities for the Contour Plus operator.

This module provides correlation ID tracking and structured JSON log
formatting so that each HTTPProxy reconciliation can be followed through
the logs, including certificate applies performed later by the worker.
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime

# Context variable for tracking correlation IDs across async operations
correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")

# Paths that should be filtered from access logs (health probes)
HEALTH_PROBE_PATHS = frozenset({"/healthz", "/metrics"})

# Extra attributes copied from log records into the JSON payload
STRUCTURED_FIELDS = (
    "resource_kind",
    "resource_name",
    "namespace",
    "operation",
    "duration",
    "error_type",
    "parent",
    "certificate",
    "via_queue",
    "target_namespace",
)


class HealthProbeFilter(logging.Filter):
    """Drops access log lines of the probe and scrape endpoints."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return all(path not in message for path in HEALTH_PROBE_PATHS)


class CorrelationIDFilter(logging.Filter):
    """Logging filter that adds correlation ID to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        """
        Add correlation ID to the log record.

        Args:
            record: The log record to process

        Returns:
            True to allow the record to be processed
        """
        current_correlation_id = correlation_id.get()
        if not current_correlation_id:
            current_correlation_id = generate_correlation_id()
            correlation_id.set(current_correlation_id)

        record.correlation_id = current_correlation_id
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, including the known structured fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", ""),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # extra= values arrive as attributes on the record
        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        return json.dumps(log_data, default=str)


def generate_correlation_id() -> str:
    """Short random ID tying together the log lines of one reconcile."""
    return str(uuid.uuid4())[:8]


def set_correlation_id(corr_id: str) -> str:
    correlation_id.set(corr_id)
    return corr_id


def setup_structured_logging(
    log_level: str = "INFO",
    enable_json_formatting: bool = True,
    correlation_id_enabled: bool = True,
    log_health_probes: bool = False,
) -> None:
    """
    Set up structured logging for the operator.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        enable_json_formatting: Whether to use JSON formatting
        correlation_id_enabled: Whether to enable correlation ID tracking
        log_health_probes: Whether to log health probe requests (default: False)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()

    if enable_json_formatting:
        formatter = StructuredFormatter()
    elif correlation_id_enabled:
        formatter = logging.Formatter(
            "%(asctime)s - %(correlation_id)s - %(name)s - %(levelname)s - %(message)s"
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)

    if correlation_id_enabled:
        handler.addFilter(CorrelationIDFilter())

    if not log_health_probes:
        handler.addFilter(HealthProbeFilter())

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for noisy in ("kopf", "kubernetes", "urllib3", "aiohttp.access", "aiohttp.server"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class OperatorLogger:
    """
    Logger for operator operations with structured logging support.

    Provides convenient methods for logging reconciliation and certificate
    apply events with correlation ID tracking and structured data.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def log_reconciliation_start(
        self,
        resource_kind: str,
        resource_name: str,
        namespace: str,
        correlation_id: str | None = None,
    ) -> str:
        """
        Log the start of a reconciliation operation.

        Args:
            resource_kind: Kind of resource being reconciled
            resource_name: Name of the resource
            namespace: Namespace of the resource
            correlation_id: Optional correlation ID (will generate if not provided)

        Returns:
            The correlation ID used for this operation
        """
        if correlation_id is None:
            correlation_id = generate_correlation_id()

        set_correlation_id(correlation_id)

        self.logger.debug(
            f"Starting reconciliation for {resource_kind} {namespace}/{resource_name}",
            extra={
                "resource_kind": resource_kind,
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "reconcile_start",
            },
        )

        return correlation_id

    def log_reconciliation_success(
        self, resource_kind: str, resource_name: str, namespace: str, duration: float
    ) -> None:
        self.logger.info(
            f"Reconciliation completed for {resource_kind} {namespace}/{resource_name}",
            extra={
                "resource_kind": resource_kind,
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "reconcile_success",
                "duration": duration,
            },
        )

    def log_reconciliation_error(
        self,
        resource_kind: str,
        resource_name: str,
        namespace: str,
        error: Exception,
        duration: float,
    ) -> None:
        """
        Log reconciliation error.

        Args:
            resource_kind: Kind of resource
            resource_name: Name of the resource
            namespace: Namespace of the resource
            error: The error that occurred
            duration: Reconciliation duration in seconds
        """
        self.logger.error(
            f"Reconciliation failed for {resource_kind} {namespace}/{resource_name}: {error}",
            extra={
                "resource_kind": resource_kind,
                "resource_name": resource_name,
                "namespace": namespace,
                "operation": "reconcile_error",
                "error_type": type(error).__name__,
                "duration": duration,
            },
            exc_info=True,
        )

    def log_certificate_apply(
        self,
        certificate: str,
        via_queue: bool,
        success: bool,
        error: Exception | None = None,
    ) -> None:
        """
        Log the outcome of a Certificate apply.

        Args:
            certificate: "namespace/name" of the Certificate
            via_queue: Whether the apply went through the rate-limited queue
            success: Whether the apply succeeded
            error: Error raised by a failed apply
        """
        path = "from queue" if via_queue else "without queueing"
        extra = {
            "certificate": certificate,
            "via_queue": via_queue,
            "operation": "certificate_apply",
        }
        if success:
            self.logger.info(f"Certificate {certificate} applied {path}", extra=extra)
        else:
            extra["error_type"] = type(error).__name__ if error else ""
            self.logger.error(
                f"Certificate {certificate} apply {path} failed: {error}", extra=extra
            )

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message with extra data."""
        self.logger.debug(message, extra=kwargs)

    def info(self, message: str, **kwargs) -> None:
        """Log info message with extra data."""
        self.logger.info(message, extra=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message with extra data."""
        self.logger.warning(message, extra=kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs) -> None:
        """Log error message with extra data."""
        self.logger.error(message, exc_info=exc_info, extra=kwargs)
