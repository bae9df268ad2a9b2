"""
Prometheus metrics for the Contour Plus operator.

This module provides metrics for HTTPProxy reconciliation, the certificate
apply worker and its retry channel, and an HTTP server exposing them.
"""

import logging
import time
from collections.abc import Callable
from contextlib import asynccontextmanager

from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
    json_response,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Global metrics registry
_metrics_registry: CollectorRegistry | None = None

# Metrics definitions
RECONCILIATION_TOTAL = Counter(
    "contour_plus_reconciliation_total",
    "Total number of HTTPProxy reconciliation attempts",
    ["result"],
    registry=None,  # Registered in get_metrics_registry()
)

RECONCILIATION_DURATION = Histogram(
    "contour_plus_reconciliation_duration_seconds",
    "Time spent reconciling a single HTTPProxy",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=None,
)

RECONCILIATION_ERRORS = Counter(
    "contour_plus_reconciliation_errors_total",
    "Total number of HTTPProxy reconciliation errors",
    ["error_type", "retryable"],
    registry=None,
)

CERTIFICATES_APPLIED_TOTAL = Counter(
    "contour_plus_certificates_applied_total",
    "Total number of Certificate applies",
    ["applier", "via_queue", "result"],
    registry=None,
)

CERTIFICATE_QUEUE_DEPTH = Gauge(
    "contour_plus_certificate_queue_depth",
    "Number of Certificates waiting in the rate-limited apply queue",
    registry=None,
)

RECONCILE_QUEUE_DEPTH = Gauge(
    "contour_plus_reconcile_queue_depth",
    "Number of HTTPProxies waiting to be reconciled",
    registry=None,
)

RETRY_SIGNALS_TOTAL = Counter(
    "contour_plus_retry_signals_total",
    "Retry signals from the certificate worker to the HTTPProxy queue",
    ["result"],
    registry=None,
)

CROSS_NAMESPACE_DELETIONS_TOTAL = Counter(
    "contour_plus_cross_namespace_deletions_total",
    "Cross-namespace child resources deleted during HTTPProxy cleanup",
    ["kind"],
    registry=None,
)

_ALL_METRICS = (
    RECONCILIATION_TOTAL,
    RECONCILIATION_DURATION,
    RECONCILIATION_ERRORS,
    CERTIFICATES_APPLIED_TOTAL,
    CERTIFICATE_QUEUE_DEPTH,
    RECONCILE_QUEUE_DEPTH,
    RETRY_SIGNALS_TOTAL,
    CROSS_NAMESPACE_DELETIONS_TOTAL,
)

CERTIFICATE_APPLIER_NAME = "certificate-applier"


def get_metrics_registry() -> CollectorRegistry:
    """Get or create the global metrics registry."""
    global _metrics_registry

    if _metrics_registry is None:
        _metrics_registry = CollectorRegistry()
        for metric in _ALL_METRICS:
            _metrics_registry.register(metric)

    return _metrics_registry


class MetricsCollector:
    """Collects and manages metrics for the Contour Plus operator."""

    def __init__(self):
        self.registry = get_metrics_registry()

    @asynccontextmanager
    async def track_reconciliation(self):
        """Context manager recording the outcome and duration of a reconcile."""
        start_time = time.time()
        result = "unknown"

        try:
            yield
            result = "success"
        except Exception as e:
            result = "error"
            retryable = "true" if getattr(e, "retryable", False) else "false"
            RECONCILIATION_ERRORS.labels(
                error_type=type(e).__name__, retryable=retryable
            ).inc()
            raise
        finally:
            RECONCILIATION_TOTAL.labels(result=result).inc()
            RECONCILIATION_DURATION.observe(time.time() - start_time)

    def record_certificate_apply(self, via_queue: bool, success: bool) -> None:
        CERTIFICATES_APPLIED_TOTAL.labels(
            applier=CERTIFICATE_APPLIER_NAME,
            via_queue="yes" if via_queue else "no",
            result="success" if success else "error",
        ).inc()

    def set_certificate_queue_depth(self, depth: int) -> None:
        CERTIFICATE_QUEUE_DEPTH.set(depth)

    def set_reconcile_queue_depth(self, depth: int) -> None:
        RECONCILE_QUEUE_DEPTH.set(depth)

    def record_retry_signal(self, result: str) -> None:
        """
        Record what happened to a retry signal.

        Args:
            result: "sent", "dropped" (channel full) or "unresolved" (no owner)
        """
        RETRY_SIGNALS_TOTAL.labels(result=result).inc()

    def record_cross_namespace_deletion(self, kind: str) -> None:
        CROSS_NAMESPACE_DELETIONS_TOTAL.labels(kind=kind).inc()


class MetricsServer:
    """HTTP server for exposing Prometheus metrics."""

    def __init__(
        self,
        port: int = 8180,
        host: str = "0.0.0.0",
        readiness: Callable[[], bool] | None = None,
    ):
        """
        Initialize metrics server.

        Args:
            port: Port to serve metrics on
            host: Host interface to bind to
            readiness: Callable reporting whether the controller is running
        """
        self.port = port
        self.host = host
        self.readiness = readiness
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self._setup_routes()

    def _setup_routes(self) -> None:
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)
        self.app.router.add_get("/readyz", self._readyz_handler)

    async def _metrics_handler(self, request: Request) -> Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        try:
            metrics_data = generate_latest(get_metrics_registry())
            # CONTENT_TYPE_LATEST carries a charset, which content_type= rejects
            return Response(
                body=metrics_data, headers={"Content-Type": CONTENT_TYPE_LATEST}
            )
        except Exception as e:
            logger.error(f"Failed to generate metrics: {e}")
            return Response(
                text=f"Error generating metrics: {type(e).__name__}. Check logs for details.",
                status=500,
            )

    async def _healthz_handler(self, request: Request) -> Response:
        return Response(text="ok")

    async def _readyz_handler(self, request: Request) -> Response:
        ready = self.readiness() if self.readiness is not None else True
        return json_response(
            {"status": "ready" if ready else "not_ready", "timestamp": time.time()},
            status=200 if ready else 503,
        )

    async def start(self) -> None:
        """Start the metrics server."""
        try:
            self.runner = AppRunner(self.app)
            await self.runner.setup()

            self.site = TCPSite(self.runner, self.host, self.port)
            await self.site.start()

            logger.info(f"Metrics server started on {self.host}:{self.port}")
        except Exception as e:
            logger.error(f"Failed to start metrics server: {e}")
            raise

    async def stop(self) -> None:
        """Stop the metrics server."""
        try:
            if self.site:
                await self.site.stop()
                self.site = None

            if self.runner:
                await self.runner.cleanup()
                self.runner = None

            logger.info("Metrics server stopped")
        except Exception as e:
            logger.error(f"Error stopping metrics server: {e}")


# Global metrics collector instance
metrics_collector = MetricsCollector()
