"""
Observability utilities for the Contour Plus operator.

This module provides metrics and structured logging capabilities for
production monitoring and troubleshooting.
"""

from .logging import OperatorLogger, setup_structured_logging
from .metrics import MetricsServer, get_metrics_registry, metrics_collector

__all__ = [
    "MetricsServer",
    "get_metrics_registry",
    "metrics_collector",
    "OperatorLogger",
    "setup_structured_logging",
]
