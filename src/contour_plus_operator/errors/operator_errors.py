"""
Operator error hierarchy with categorization and retry logic.

This module defines the error types used throughout the Contour Plus operator,
providing clear categorization for the reconcile queue's retry decisions and
integration with kopf for startup failures.
"""

import kopf


class OperatorError(Exception):
    """
    Base error class for all operator-related exceptions.

    Provides categorization, retry behavior, and user guidance for resolution.
    """

    def __init__(
        self,
        message: str,
        category: str,
        retryable: bool = True,
        user_action: str | None = None,
    ):
        """
        Initialize operator error.

        Args:
            message: Human-readable error description
            category: Error category (validation, api, configuration, external)
            retryable: Whether the reconcile should be retried
            user_action: What user should do to resolve the issue
        """
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.user_action = user_action

    def as_kopf_error(self):
        """Convert to appropriate kopf exception type."""
        if self.retryable:
            return kopf.TemporaryError(str(self))
        else:
            return kopf.PermanentError(str(self))

    def __str__(self) -> str:
        """Enhanced string representation with user guidance."""
        base_msg = super().__str__()
        if self.user_action:
            return f"{base_msg}\nAction required: {self.user_action}"
        return base_msg


class ValidationError(OperatorError):
    """Error in resource specification validation."""

    def __init__(
        self, message: str, field: str | None = None, user_action: str | None = None
    ):
        action = user_action or "Check resource specification and fix validation errors"
        if field:
            message = f"Validation error in field '{field}': {message}"
        super().__init__(
            message=message, category="validation", retryable=False, user_action=action
        )


class AnnotationValueError(ValidationError):
    """An HTTPProxy annotation holds a value that cannot be parsed."""

    def __init__(self, annotation: str, value: str, expected: str):
        self.annotation = annotation
        self.value = value
        super().__init__(
            message=f"invalid value {value!r}, expected {expected}",
            field=f"metadata.annotations[{annotation}]",
            user_action=f"Fix or remove the {annotation} annotation",
        )


class TemporaryError(OperatorError):
    """Temporary error that should be retried."""

    def __init__(self, message: str, user_action: str | None = None):
        super().__init__(
            message=message,
            category="temporary",
            retryable=True,
            user_action=user_action
            or "Wait for automatic retry or check system status",
        )


class PermanentError(OperatorError):
    """Permanent error that should not be retried."""

    def __init__(self, message: str, user_action: str | None = None):
        super().__init__(
            message=message,
            category="permanent",
            retryable=False,
            user_action=user_action or "Manual intervention required to resolve",
        )


class ExternalServiceError(OperatorError):
    """Error communicating with external services."""

    def __init__(
        self,
        service: str,
        message: str,
        retryable: bool = True,
        user_action: str | None = None,
    ):
        action = user_action or f"Check {service} connectivity and credentials"
        super().__init__(
            message=f"{service} error: {message}",
            category="external",
            retryable=retryable,
            user_action=action,
        )


class KubernetesAPIError(ExternalServiceError):
    """Error communicating with Kubernetes API."""

    # Conflicts and throttling resolve themselves on a later attempt
    RETRYABLE_STATUSES = frozenset({409, 429})
    NON_RETRYABLE_REASONS = frozenset({"Forbidden", "Unauthorized", "Invalid"})

    def __init__(
        self,
        message: str,
        reason: str | None = None,
        status: int | None = None,
        retryable: bool | None = None,
    ):
        if reason:
            message = f"{message} (reason: {reason})"

        if retryable is None:
            retryable = status is None or status >= 500 or status in self.RETRYABLE_STATUSES
        if reason in self.NON_RETRYABLE_REASONS:
            retryable = False

        self.status = status
        self.reason = reason
        super().__init__(
            service="Kubernetes API",
            message=message,
            retryable=retryable,
            user_action="Check RBAC permissions and cluster connectivity",
        )


class ConfigurationError(OperatorError):
    """Error in operator configuration."""

    def __init__(
        self, message: str, retryable: bool = False, user_action: str | None = None
    ):
        super().__init__(
            message=message,
            category="configuration",
            retryable=retryable,
            user_action=user_action or "Review and correct configuration",
        )

