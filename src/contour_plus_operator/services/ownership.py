"""
Ownership of HTTPProxy children.

Children in the HTTPProxy's own namespace get a controller owner reference
and are garbage collected by Kubernetes. Children placed in another
namespace cannot be owned that way; they carry an owner annotation instead
and the HTTPProxy holds a finalizer until the operator has deleted them.

Deletion of an HTTPProxy moves through three states:

    ACTIVE                      no deletion timestamp
    TERMINATING_WITH_CHILDREN   deletion requested, finalizer still present
    TERMINATING_CLEAN           deletion requested, finalizer removed
"""

from collections.abc import Iterable
from enum import Enum
from typing import Any

from ..constants import FINALIZER, OWNER_ANNOTATION
from ..models.children import DesiredChild
from ..models.common import ObjectKey
from ..models.httpproxy import HTTPProxy
from ..observability.logging import OperatorLogger
from ..observability.metrics import metrics_collector
from ..resources import ResourceKind, ResourceRegistry
from ..utils.kubernetes import KubernetesResources


class FinalizerState(Enum):
    ACTIVE = "Active"
    TERMINATING_WITH_CHILDREN = "TerminatingWithChildren"
    TERMINATING_CLEAN = "TerminatingClean"


def finalizer_state(parent: HTTPProxy) -> FinalizerState:
    if not parent.is_deleting:
        return FinalizerState.ACTIVE
    if parent.has_finalizer:
        return FinalizerState.TERMINATING_WITH_CHILDREN
    return FinalizerState.TERMINATING_CLEAN


def owner_annotation_value(parent: HTTPProxy) -> str:
    return str(parent.key)


def parse_owner_annotation(value: str | None) -> ObjectKey | None:
    return ObjectKey.parse(value)


def owner_reference(parent: HTTPProxy, registry: ResourceRegistry) -> dict[str, Any]:
    """Controller owner reference pointing at the HTTPProxy."""
    return {
        "apiVersion": registry.httpproxy.api_version,
        "kind": registry.httpproxy.kind,
        "name": parent.name,
        "uid": parent.metadata.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }


def owner_key_of(body: dict[str, Any], registry: ResourceRegistry) -> ObjectKey | None:
    """
    Find the HTTPProxy that owns a child object.

    The owner annotation is checked first; otherwise a controller owner
    reference to an HTTPProxy in the child's namespace is used.

    Args:
        body: Raw child object
        registry: Resource registry

    Returns:
        Key of the owning HTTPProxy, or None if the object has no such owner
    """
    metadata = body.get("metadata") or {}
    annotations = metadata.get("annotations") or {}
    owner = parse_owner_annotation(annotations.get(OWNER_ANNOTATION))
    if owner is not None:
        return owner

    for ref in metadata.get("ownerReferences") or []:
        if (
            ref.get("controller")
            and ref.get("kind") == registry.httpproxy.kind
            and ref.get("apiVersion") == registry.httpproxy.api_version
        ):
            return ObjectKey(metadata.get("namespace", ""), ref.get("name", ""))
    return None


class OwnershipTracker:
    """Links children to their HTTPProxy and cleans up cross-namespace ones."""

    def __init__(self, kube: KubernetesResources, registry: ResourceRegistry):
        self.kube = kube
        self.registry = registry
        self.logger = OperatorLogger(self.__class__.__name__)

    async def track(self, parent: HTTPProxy, child: DesiredChild) -> None:
        """
        Record ownership on a child before it is applied.

        For a cross-namespace child the finalizer is persisted on the
        HTTPProxy first, so a child never exists without the finalizer that
        guarantees its deletion.
        """
        if child.namespace == parent.namespace:
            child.owner_references = [owner_reference(parent, self.registry)]
            return

        child.annotations[OWNER_ANNOTATION] = owner_annotation_value(parent)
        await self.ensure_finalizer(parent)

    async def ensure_finalizer(self, parent: HTTPProxy) -> None:
        if parent.has_finalizer:
            return
        await self._set_finalizers(parent, [*parent.metadata.finalizers, FINALIZER])
        self.logger.info(
            f"Added finalizer to HTTPProxy {parent.key}",
            resource_name=parent.name,
            namespace=parent.namespace,
        )

    async def remove_finalizer(self, parent: HTTPProxy) -> None:
        if not parent.has_finalizer:
            return
        await self._set_finalizers(
            parent, [f for f in parent.metadata.finalizers if f != FINALIZER]
        )
        self.logger.info(
            f"Removed finalizer from HTTPProxy {parent.key}",
            resource_name=parent.name,
            namespace=parent.namespace,
        )

    async def cleanup(
        self,
        parent: HTTPProxy,
        targets: Iterable[tuple[ResourceKind, Iterable[str]]],
    ) -> int:
        """
        Delete every cross-namespace child of a terminating HTTPProxy.

        The finalizer is removed only after all deletions succeeded; any
        error propagates and leaves the finalizer in place for a retry.

        Args:
            parent: The HTTPProxy being deleted
            targets: Child kinds paired with the namespaces to search

        Returns:
            Number of children deleted
        """
        owner = owner_annotation_value(parent)
        deleted = 0
        for kind, namespaces in targets:
            for namespace in dict.fromkeys(namespaces):
                if namespace == parent.namespace:
                    continue
                deleted += await self._delete_owned(kind, namespace, owner)

        await self.remove_finalizer(parent)
        return deleted

    async def _delete_owned(self, kind: ResourceKind, namespace: str, owner: str) -> int:
        deleted = 0
        for item in await self.kube.list(kind, namespace):
            metadata = item.get("metadata") or {}
            annotations = metadata.get("annotations") or {}
            if annotations.get(OWNER_ANNOTATION) != owner:
                continue
            name = metadata.get("name", "")
            if await self.kube.delete(kind, namespace, name):
                deleted += 1
                metrics_collector.record_cross_namespace_deletion(kind.kind)
            self.logger.info(
                f"Deleted cross-namespace {kind.kind} {namespace}/{name}",
                resource_kind=kind.kind,
                resource_name=name,
                namespace=namespace,
                parent=owner,
            )
        return deleted

    async def _set_finalizers(self, parent: HTTPProxy, finalizers: list[str]) -> None:
        # resourceVersion makes the merge patch fail on a concurrent update
        metadata: dict[str, Any] = {"finalizers": finalizers}
        if parent.metadata.resource_version:
            metadata["resourceVersion"] = parent.metadata.resource_version
        updated = await self.kube.patch(
            self.registry.httpproxy, parent.namespace, parent.name, {"metadata": metadata}
        )
        parent.metadata.finalizers = finalizers
        new_version = ((updated or {}).get("metadata") or {}).get("resourceVersion")
        if new_version:
            parent.metadata.resource_version = new_version
