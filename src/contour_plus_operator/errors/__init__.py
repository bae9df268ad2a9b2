"""
Error handling module for the Contour Plus operator.

This module provides an error hierarchy that drives the retry decisions of
the reconcile queue and integrates with kopf for startup failures.
"""

from .operator_errors import (
    AnnotationValueError,
    ConfigurationError,
    ExternalServiceError,
    KubernetesAPIError,
    OperatorError,
    PermanentError,
    TemporaryError,
    ValidationError,
)

__all__ = [
    "OperatorError",
    "ValidationError",
    "AnnotationValueError",
    "TemporaryError",
    "PermanentError",
    "ExternalServiceError",
    "KubernetesAPIError",
    "ConfigurationError",
]
