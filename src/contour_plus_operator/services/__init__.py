"""
Service layer for the Contour Plus operator.

This module provides the controller and reconciler that handle the business
logic for HTTPProxy children, separated from the kopf handler layer.
"""

from .certificate_applier import (
    DirectCertificateApplier,
    RateLimitedCertificateApplyWorker,
    RetryChannel,
    RetrySignal,
)
from .controller import HTTPProxyController
from .httpproxy_reconciler import HTTPProxyReconciler

__all__ = [
    "DirectCertificateApplier",
    "HTTPProxyController",
    "HTTPProxyReconciler",
    "RateLimitedCertificateApplyWorker",
    "RetryChannel",
    "RetrySignal",
]
