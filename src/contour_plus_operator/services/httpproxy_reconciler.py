"""
HTTPProxy reconciler.

Reconciles one HTTPProxy per call: the children are brought in line with
the desired state computed from the HTTPProxy and the operator policy, and
cross-namespace children are deleted once the HTTPProxy is being deleted.
Reconciling an unchanged HTTPProxy again results in no further changes.
"""

import time

from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from ..errors import (
    AnnotationValueError,
    KubernetesAPIError,
    OperatorError,
    PermanentError,
    TemporaryError,
)
from ..models.children import DesiredChild
from ..models.common import ObjectKey
from ..models.httpproxy import HTTPProxy
from ..observability.logging import OperatorLogger
from ..observability.metrics import metrics_collector
from ..resources import ResourceRegistry
from ..settings import ReconcilerOptions
from ..utils.kubernetes import KubernetesResources
from . import desired_state
from .certificate_applier import CertificateApplier
from .event_filters import class_name_matches, is_excluded
from .ownership import FinalizerState, OwnershipTracker, finalizer_state


class HTTPProxyReconciler:
    """Derives and maintains the children of HTTPProxy resources."""

    resource_kind = "HTTPProxy"

    def __init__(
        self,
        kube: KubernetesResources,
        registry: ResourceRegistry,
        options: ReconcilerOptions,
        certificate_applier: CertificateApplier,
    ):
        self.kube = kube
        self.registry = registry
        self.options = options
        self.certificate_applier = certificate_applier
        self.ownership = OwnershipTracker(kube, registry)
        self.logger = OperatorLogger(self.__class__.__name__)

    async def reconcile(self, key: ObjectKey) -> None:
        """
        Reconcile a single HTTPProxy with metrics and error classification.

        Args:
            key: Namespace and name of the HTTPProxy

        Raises:
            OperatorError: Classified failure; ``retryable`` tells the
                reconcile queue whether to try again
        """
        start_time = time.time()
        self.logger.log_reconciliation_start(
            resource_kind=self.resource_kind,
            resource_name=key.name,
            namespace=key.namespace,
        )

        async with metrics_collector.track_reconciliation():
            try:
                await self.do_reconcile(key)
            except OperatorError as e:
                self._log_error(key, e, start_time)
                raise
            except ApiException as e:
                error = KubernetesAPIError(
                    message=f"request failed with HTTP {e.status}",
                    reason=e.reason,
                    status=e.status,
                )
                self._log_error(key, error, start_time)
                raise error from e
            except Exception as e:
                # Wrap unexpected errors as temporary to allow retry
                error = TemporaryError(f"Unexpected error during reconciliation: {e}")
                self._log_error(key, error, start_time)
                raise error from e

        self.logger.log_reconciliation_success(
            resource_kind=self.resource_kind,
            resource_name=key.name,
            namespace=key.namespace,
            duration=time.time() - start_time,
        )

    async def do_reconcile(self, key: ObjectKey) -> None:
        body = await self.kube.get(self.registry.httpproxy, key.namespace, key.name)
        if body is None:
            self.logger.debug(f"HTTPProxy {key} is gone", namespace=key.namespace)
            return

        try:
            parent = HTTPProxy.from_body(body)
        except ValidationError as e:
            # A new revision of the object enqueues it again
            raise PermanentError(f"HTTPProxy {key} cannot be parsed: {e}") from e

        state = finalizer_state(parent)
        if state is FinalizerState.TERMINATING_WITH_CHILDREN:
            await self.cleanup(parent)
            return
        if state is FinalizerState.TERMINATING_CLEAN:
            return

        if is_excluded(parent):
            self.logger.debug(f"HTTPProxy {key} is excluded", namespace=key.namespace)
            return
        if not class_name_matches(parent, self.options.ingress_class_name):
            self.logger.debug(
                f"HTTPProxy {key} does not match ingress class "
                f"{self.options.ingress_class_name}",
                namespace=key.namespace,
            )
            return

        await self.reconcile_dns_endpoint(parent)
        await self.reconcile_delegation_dns_endpoint(parent)
        await self.reconcile_certificate(parent)
        await self.reconcile_tls_certificate_delegation(parent)
        await self.reconcile_secret_name(parent)

    async def reconcile_dns_endpoint(self, parent: HTTPProxy) -> None:
        if not self.options.create_dns_endpoint or not parent.fqdn:
            return

        service_key = self.options.service_key
        if service_key is None:
            return
        service = await self.kube.get(
            self.registry.service, service_key.namespace, service_key.name
        )
        addresses = desired_state.load_balancer_addresses(service)
        if not addresses:
            # A Service update triggers a new reconcile once an address is assigned
            self.logger.info(
                f"No IP address for service {service_key}",
                resource_name=parent.name,
                namespace=parent.namespace,
            )
            return

        child = desired_state.build_dns_endpoint(
            parent, self.options, self.registry, addresses
        )
        if child is not None:
            await self._apply_child(parent, child)

    async def reconcile_delegation_dns_endpoint(self, parent: HTTPProxy) -> None:
        child = desired_state.build_delegation_dns_endpoint(
            parent, self.options, self.registry
        )
        if child is not None:
            await self._apply_child(parent, child)

    async def reconcile_certificate(self, parent: HTTPProxy) -> None:
        try:
            child = desired_state.build_certificate(parent, self.options, self.registry)
        except AnnotationValueError as e:
            # Only the Certificate is skipped; the rest of the reconcile goes on
            self.logger.error(
                f"Skipping Certificate for HTTPProxy {parent.key}: {e}",
                resource_name=parent.name,
                namespace=parent.namespace,
                error_type=type(e).__name__,
            )
            return
        if child is None:
            return

        await self.ownership.track(parent, child)
        await self.certificate_applier.apply(child.manifest())

    async def reconcile_tls_certificate_delegation(self, parent: HTTPProxy) -> None:
        child = desired_state.build_tls_certificate_delegation(
            parent, self.options, self.registry
        )
        if child is not None:
            await self._apply_child(parent, child)

    async def reconcile_secret_name(self, parent: HTTPProxy) -> None:
        """Point the HTTPProxy at the Secret delegated from the issuer namespace."""
        if not self.options.create_certificate or parent.spec.virtualhost is None:
            return
        reference = desired_state.desired_secret_reference(parent, self.options)
        if reference is None or parent.tls_secret_name == reference:
            return

        await self.kube.patch(
            self.registry.httpproxy,
            parent.namespace,
            parent.name,
            {"spec": {"virtualhost": {"tls": {"secretName": reference}}}},
        )
        self.logger.info(
            f"HTTPProxy {parent.key} now uses secret {reference}",
            resource_name=parent.name,
            namespace=parent.namespace,
        )

    async def cleanup(self, parent: HTTPProxy) -> None:
        """Delete cross-namespace children of a terminating HTTPProxy."""
        targets = []
        if self.options.create_dns_endpoint:
            targets.append((self.registry.dns_endpoint, self.options.allowed_dns_namespaces))
        if self.options.create_certificate:
            targets.append((self.registry.certificate, self.options.allowed_issuer_namespaces))
            targets.append(
                (
                    self.registry.tls_certificate_delegation,
                    self.options.allowed_issuer_namespaces,
                )
            )
        deleted = await self.ownership.cleanup(parent, targets)
        self.logger.info(
            f"Cleaned up {deleted} cross-namespace children of HTTPProxy {parent.key}",
            resource_name=parent.name,
            namespace=parent.namespace,
        )

    async def _apply_child(self, parent: HTTPProxy, child: DesiredChild) -> None:
        await self.ownership.track(parent, child)
        await self.kube.apply(child.kind, child.manifest())
        self.logger.info(
            f"{child.kind.kind} {child.key} reconciled",
            resource_kind=child.kind.kind,
            resource_name=child.name,
            namespace=child.namespace,
            parent=str(parent.key),
        )

    def _log_error(self, key: ObjectKey, error: Exception, start_time: float) -> None:
        self.logger.log_reconciliation_error(
            resource_kind=self.resource_kind,
            resource_name=key.name,
            namespace=key.namespace,
            error=error,
            duration=time.time() - start_time,
        )
