"""
HTTPProxy controller.

Ties the kopf watch handlers to the reconciler: admitted events put
HTTPProxy keys on a deduplicating work queue, a bounded pool of workers
reconciles them, failed reconciles are retried with backoff, and failed
queued Certificate applies come back through the retry channel.
"""

import asyncio
from typing import Any

from ..constants import SHUTDOWN_GRACE_PERIOD
from ..errors import OperatorError
from ..models.common import ObjectKey
from ..observability.logging import OperatorLogger
from ..observability.metrics import metrics_collector
from ..resources import ResourceRegistry
from ..settings import ReconcilerOptions
from ..utils.kubernetes import KubernetesResources
from ..utils.work_queue import WorkQueue
from .certificate_applier import (
    RateLimitedCertificateApplyWorker,
    RetryChannel,
    build_certificate_applier,
)
from .event_filters import ChildChangeFilter, ParentChangeFilter, ServiceChangeFilter
from .httpproxy_reconciler import HTTPProxyReconciler
from .ownership import owner_key_of


class HTTPProxyController:
    """Work queue, workers and event routing for HTTPProxy reconciliation."""

    def __init__(
        self,
        kube: KubernetesResources,
        registry: ResourceRegistry,
        options: ReconcilerOptions,
        max_concurrent_reconciles: int = 4,
        retry_channel_size: int = 100,
    ):
        """
        Initialize the controller.

        Args:
            kube: Kubernetes API access
            registry: Resource registry
            options: Validated reconciler policy
            max_concurrent_reconciles: Size of the reconcile worker pool
            retry_channel_size: Capacity of the certificate retry channel
        """
        self.kube = kube
        self.registry = registry
        self.options = options
        self.max_concurrent_reconciles = max(1, max_concurrent_reconciles)

        self.queue: WorkQueue[ObjectKey] = WorkQueue(
            "httpproxy", on_depth_change=metrics_collector.set_reconcile_queue_depth
        )
        self.retry_channel: RetryChannel | None = None
        if options.certificate_apply_limit > 0:
            self.retry_channel = RetryChannel(maxsize=retry_channel_size)
        self.certificate_applier = build_certificate_applier(
            options, kube, registry, self.retry_channel
        )
        self.reconciler = HTTPProxyReconciler(
            kube, registry, options, self.certificate_applier
        )

        self.parent_filter = ParentChangeFilter()
        self.child_filter = ChildChangeFilter()
        self.service_filter = ServiceChangeFilter(options.service_key)

        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task] = []
        self._retry_task: asyncio.Task | None = None
        self.logger = OperatorLogger(self.__class__.__name__)

    @property
    def running(self) -> bool:
        return bool(self._tasks) and not self._stop.is_set()

    async def start(self) -> None:
        """Start reconcile workers, the certificate worker and the retry consumer."""
        if self._tasks:
            return
        for index in range(self.max_concurrent_reconciles):
            self._tasks.append(
                asyncio.create_task(self._run_worker(), name=f"httpproxy-worker-{index}")
            )
        if isinstance(self.certificate_applier, RateLimitedCertificateApplyWorker):
            self._tasks.append(
                asyncio.create_task(
                    self.certificate_applier.run(self._stop),
                    name="certificate-apply-worker",
                )
            )
        if self.retry_channel is not None:
            self._retry_task = asyncio.create_task(
                self._drain_retry_channel(self.retry_channel), name="certificate-retry"
            )
            self._tasks.append(self._retry_task)
        self.logger.info(
            f"HTTPProxy controller started with {self.max_concurrent_reconciles} workers"
        )

    async def stop(self, grace_period: float = SHUTDOWN_GRACE_PERIOD) -> None:
        """Stop all background tasks, cancelling those that do not finish in time."""
        self._stop.set()
        self.queue.shutdown()
        if isinstance(self.certificate_applier, RateLimitedCertificateApplyWorker):
            self.certificate_applier.shutdown()
        if self._retry_task is not None:
            # Blocked on the channel; nothing to drain after shutdown
            self._retry_task.cancel()
            self._retry_task = None

        tasks, self._tasks = self._tasks, []
        if not tasks:
            return
        _, pending = await asyncio.wait(tasks, timeout=grace_period)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self.logger.info("HTTPProxy controller stopped")

    def enqueue(self, key: ObjectKey) -> None:
        self.queue.add(key)

    def handle_httpproxy_event(self, event_type: str | None, body: dict[str, Any]) -> bool:
        if not self.parent_filter.admit(event_type, body):
            return False
        self.enqueue(ObjectKey.of(body))
        return True

    async def handle_service_event(
        self, event_type: str | None, body: dict[str, Any]
    ) -> int:
        """
        Re-reconcile every HTTPProxy when the load balancer Service changes.

        Returns:
            Number of HTTPProxies enqueued
        """
        if not self.service_filter.admit(event_type, body):
            return 0
        try:
            proxies = await self.kube.list(self.registry.httpproxy)
        except Exception as e:
            self.logger.error(f"Listing HTTPProxies failed: {e}", exc_info=True)
            return 0
        for proxy in proxies:
            self.enqueue(ObjectKey.of(proxy))
        return len(proxies)

    def handle_child_event(
        self, kind: str, event_type: str | None, body: dict[str, Any]
    ) -> bool:
        if not self.child_filter.admit(kind, event_type, body):
            return False
        owner = owner_key_of(body, self.registry)
        if owner is None:
            return False
        self.enqueue(owner)
        return True

    async def _run_worker(self) -> None:
        while True:
            key = await self.queue.get()
            if key is None:
                return
            try:
                await self.reconciler.reconcile(key)
            except OperatorError as e:
                if e.retryable and not self._stop.is_set():
                    delay = self.queue.add_rate_limited(key)
                    self.logger.warning(
                        f"Retrying HTTPProxy {key} in {delay:.1f}s",
                        resource_name=key.name,
                        namespace=key.namespace,
                    )
                else:
                    self.logger.warning(
                        f"Not retrying HTTPProxy {key} after {e.category} error",
                        resource_name=key.name,
                        namespace=key.namespace,
                        error_type=type(e).__name__,
                    )
                    self.queue.forget(key)
            else:
                self.queue.forget(key)
            finally:
                self.queue.done(key)

    async def _drain_retry_channel(self, channel: RetryChannel) -> None:
        while not self._stop.is_set():
            signal = await channel.receive()
            self.logger.info(
                f"Requeueing HTTPProxy {signal.parent} after failed apply of "
                f"Certificate {signal.certificate}",
                parent=str(signal.parent),
                certificate=str(signal.certificate),
            )
            self.enqueue(signal.parent)
