"""
Rate-gated Certificate applies.

Every apply of a new Certificate, or of a spec change that makes
cert-manager re-issue it, ends up as an order against the ACME issuer, and
issuers enforce quotas. When a rate is configured, such applies are queued
and drained by a single background worker through a token bucket. Changes
that only touch the secret template are applied straight away because they
do not trigger re-issuance.

The worker never retries by itself. A failed apply is reported on the retry
channel as the owning HTTPProxy, which is reconciled again and re-submits
its current desired Certificate.
"""

import asyncio
import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from ..models.common import ObjectKey
from ..observability.logging import OperatorLogger
from ..observability.metrics import metrics_collector
from ..resources import ResourceRegistry
from ..settings import ReconcilerOptions
from ..utils.kubernetes import KubernetesResources
from ..utils.rate_limiter import TokenBucket
from ..utils.work_queue import WorkQueue
from .ownership import owner_key_of

logger = logging.getLogger(__name__)

# Spec fields whose change does not cause cert-manager to re-issue
REISSUE_NEUTRAL_FIELDS = ("secretTemplate",)


class ApplyOutcome(str, Enum):
    APPLIED_DIRECT = "applied-direct"
    QUEUED = "queued"


@dataclass(frozen=True)
class RetrySignal:
    """Request to reconcile an HTTPProxy again after its Certificate failed."""

    parent: ObjectKey
    certificate: ObjectKey
    reason: str = ""


class RetryChannel:
    """
    Bounded channel from the certificate worker to the reconcile queue.

    Publishing never blocks the worker. When the channel is full the signal
    is dropped and logged; the HTTPProxy is still reconciled on its next
    change or resync.
    """

    def __init__(self, maxsize: int = 100):
        self._queue: asyncio.Queue[RetrySignal] = asyncio.Queue(maxsize=maxsize)

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    def __len__(self) -> int:
        return self._queue.qsize()

    def publish(self, signal: RetrySignal) -> bool:
        try:
            self._queue.put_nowait(signal)
        except asyncio.QueueFull:
            logger.warning(
                f"Retry channel full, dropping retry of HTTPProxy {signal.parent}",
                extra={"parent": str(signal.parent), "certificate": str(signal.certificate)},
            )
            metrics_collector.record_retry_signal("dropped")
            return False
        metrics_collector.record_retry_signal("sent")
        return True

    async def receive(self) -> RetrySignal:
        return await self._queue.get()


class CertificateApplier(Protocol):
    """Applies desired Certificate manifests."""

    async def apply(self, manifest: dict[str, Any]) -> ApplyOutcome: ...


def masked_spec(spec: dict[str, Any] | None) -> dict[str, Any]:
    """Certificate spec without the fields that never trigger re-issuance."""
    masked = dict(spec or {})
    for field in REISSUE_NEUTRAL_FIELDS:
        masked.pop(field, None)
    return masked


def certificate_key(manifest: dict[str, Any]) -> ObjectKey:
    metadata = manifest["metadata"]
    return ObjectKey(metadata["namespace"], metadata["name"])


class DirectCertificateApplier:
    """Applies every Certificate immediately; errors propagate to the reconcile."""

    def __init__(self, kube: KubernetesResources, registry: ResourceRegistry):
        self.kube = kube
        self.registry = registry
        self.logger = OperatorLogger(self.__class__.__name__)

    async def apply(self, manifest: dict[str, Any]) -> ApplyOutcome:
        await _apply_certificate(
            self.kube, self.registry, self.logger, manifest, via_queue=False
        )
        return ApplyOutcome.APPLIED_DIRECT


class RateLimitedCertificateApplyWorker:
    """
    Queues re-issuing Certificate applies behind a global token bucket.

    The latest manifest per Certificate is kept in ``manifests``; submitting
    the same Certificate again before the worker reaches it replaces the
    manifest and does not add a second queue entry.
    """

    def __init__(
        self,
        kube: KubernetesResources,
        registry: ResourceRegistry,
        rate: float,
        retry_channel: RetryChannel,
    ):
        """
        Initialize the worker.

        Args:
            kube: Kubernetes API access
            registry: Resource registry
            rate: Queued applies per second; burst is the rate rounded up
            retry_channel: Channel receiving failed applies
        """
        self.kube = kube
        self.registry = registry
        self.retry_channel = retry_channel
        self.limiter = TokenBucket.for_rate(rate)
        self.queue: WorkQueue[ObjectKey] = WorkQueue(
            "certificate-apply",
            limiter=self.limiter,
            on_depth_change=metrics_collector.set_certificate_queue_depth,
        )
        self.manifests: dict[ObjectKey, dict[str, Any]] = {}
        self.lock = asyncio.Lock()
        self.logger = OperatorLogger(self.__class__.__name__)

    async def requires_queue(self, key: ObjectKey, manifest: dict[str, Any]) -> bool:
        """
        Whether applying the manifest must wait for the rate limiter.

        A Certificate that does not exist yet must be queued, as must any
        change outside the secret template. Errors other than not-found
        propagate.
        """
        current = await self.kube.get(self.registry.certificate, key.namespace, key.name)
        if current is None:
            return True
        return masked_spec(manifest.get("spec")) != masked_spec(current.get("spec"))

    async def apply(self, manifest: dict[str, Any]) -> ApplyOutcome:
        key = certificate_key(manifest)
        async with self.lock:
            pending = key in self.manifests
        # A pending manifest would overwrite a direct apply once dequeued
        if pending or await self.requires_queue(key, manifest):
            async with self.lock:
                self.manifests[key] = copy.deepcopy(manifest)
                self.queue.add(key)
            self.logger.info(
                f"Certificate {key} queued for apply",
                certificate=str(key),
                via_queue=True,
            )
            return ApplyOutcome.QUEUED

        await _apply_certificate(
            self.kube, self.registry, self.logger, manifest, via_queue=False
        )
        return ApplyOutcome.APPLIED_DIRECT

    async def run(self, stop: asyncio.Event) -> None:
        """Drain the queue until ``stop`` is set or the queue is shut down."""
        self.logger.info("Certificate apply worker started")
        try:
            while await self.process_next(stop):
                pass
        finally:
            self.queue.shutdown()
            self.logger.info("Certificate apply worker stopped")

    async def process_next(self, stop: asyncio.Event) -> bool:
        """
        Apply the next queued Certificate.

        Returns:
            False once the worker should stop, True otherwise
        """
        if stop.is_set():
            return False
        key = await self.queue.get()
        if key is None:
            return False

        try:
            async with self.lock:
                manifest = self.manifests.pop(key, None)
            if manifest is None:
                self.logger.error(
                    f"Cannot find Certificate manifest for {key}", certificate=str(key)
                )
                return True
            if stop.is_set():
                return False

            try:
                await _apply_certificate(
                    self.kube, self.registry, self.logger, manifest, via_queue=True
                )
            except Exception as e:
                self._signal_retry(key, manifest, e)
            return True
        finally:
            self.queue.done(key)

    def shutdown(self) -> None:
        self.queue.shutdown()

    def _signal_retry(
        self, key: ObjectKey, manifest: dict[str, Any], error: Exception
    ) -> None:
        owner = owner_key_of(manifest, self.registry)
        if owner is None:
            self.logger.error(
                f"Cannot resolve owning HTTPProxy of Certificate {key}, not retrying",
                certificate=str(key),
            )
            metrics_collector.record_retry_signal("unresolved")
            return
        self.retry_channel.publish(
            RetrySignal(parent=owner, certificate=key, reason=str(error))
        )


async def _apply_certificate(
    kube: KubernetesResources,
    registry: ResourceRegistry,
    operator_logger: OperatorLogger,
    manifest: dict[str, Any],
    via_queue: bool,
) -> None:
    key = str(certificate_key(manifest))
    try:
        await kube.apply(registry.certificate, manifest)
    except Exception as e:
        metrics_collector.record_certificate_apply(via_queue=via_queue, success=False)
        operator_logger.log_certificate_apply(key, via_queue, success=False, error=e)
        raise
    metrics_collector.record_certificate_apply(via_queue=via_queue, success=True)
    operator_logger.log_certificate_apply(key, via_queue, success=True)


def build_certificate_applier(
    options: ReconcilerOptions,
    kube: KubernetesResources,
    registry: ResourceRegistry,
    retry_channel: RetryChannel | None,
) -> CertificateApplier:
    """
    Choose the applier for the configured rate.

    A positive certificate apply limit selects the rate-limited worker, which
    needs a retry channel; otherwise Certificates are applied directly.
    """
    if options.certificate_apply_limit > 0:
        if retry_channel is None:
            raise ValueError("a retry channel is required for rate-limited applies")
        return RateLimitedCertificateApplyWorker(
            kube, registry, options.certificate_apply_limit, retry_channel
        )
    return DirectCertificateApplier(kube, registry)
