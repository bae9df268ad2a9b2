"""
Kubernetes API access for the Contour Plus operator.

The kubernetes client is synchronous, so every call is executed in a worker
thread with ``asyncio.to_thread`` to keep the kopf event loop responsive.

Conventions:
- Lookups return None for objects that do not exist
- Deletes return False for objects that are already gone
- Every other ApiException propagates to the caller
"""

import asyncio
import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from ..constants import FIELD_MANAGER
from ..resources import ResourceKind

logger = logging.getLogger(__name__)

APPLY_PATCH_CONTENT_TYPE = "application/apply-patch+yaml"
MERGE_PATCH_CONTENT_TYPE = "application/merge-patch+json"


def load_kubernetes_config() -> None:
    """
    Load cluster credentials.

    Uses the in-cluster service account when running in a pod and falls back
    to the local kubeconfig for development.
    """
    try:
        config.load_incluster_config()
        logger.debug("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        try:
            config.load_kube_config()
            logger.debug("Loaded kubeconfig from local environment")
        except config.ConfigException as e:
            logger.error(f"Failed to load Kubernetes configuration: {e}")
            raise


def get_kubernetes_client() -> client.ApiClient:
    """Get configured Kubernetes API client."""
    load_kubernetes_config()
    return client.ApiClient()


def is_not_found(error: ApiException) -> bool:
    return getattr(error, "status", None) == 404


class KubernetesResources:
    """Async facade over the Kubernetes API for the kinds the operator manages."""

    def __init__(
        self,
        api_client: client.ApiClient | None = None,
        field_manager: str = FIELD_MANAGER,
    ):
        self.api_client = api_client or get_kubernetes_client()
        self.field_manager = field_manager
        self.custom_api = client.CustomObjectsApi(self.api_client)
        self.core_api = client.CoreV1Api(self.api_client)

    async def get(
        self, kind: ResourceKind, namespace: str, name: str
    ) -> dict[str, Any] | None:
        """Fetch an object, or None if it does not exist."""
        try:
            return await asyncio.to_thread(self._sync_get, kind, namespace, name)
        except ApiException as e:
            if is_not_found(e):
                return None
            raise

    async def list(
        self, kind: ResourceKind, namespace: str | None = None
    ) -> list[dict[str, Any]]:
        """List objects in a namespace, or in all namespaces when None."""
        result = await asyncio.to_thread(self._sync_list, kind, namespace)
        return list(result.get("items") or [])

    async def apply(self, kind: ResourceKind, manifest: dict[str, Any]) -> dict[str, Any]:
        """Server-side apply a manifest, taking over conflicting fields."""
        metadata = manifest["metadata"]
        logger.debug(
            f"Applying {kind.kind} {metadata['namespace']}/{metadata['name']}"
        )
        return await asyncio.to_thread(self._sync_apply, kind, manifest)

    async def patch(
        self, kind: ResourceKind, namespace: str, name: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        """Apply a JSON merge patch to an object."""
        return await asyncio.to_thread(self._sync_patch, kind, namespace, name, body)

    async def delete(self, kind: ResourceKind, namespace: str, name: str) -> bool:
        """
        Delete an object.

        Returns:
            True if the object was deleted, False if it was already gone
        """
        try:
            await asyncio.to_thread(self._sync_delete, kind, namespace, name)
        except ApiException as e:
            if is_not_found(e):
                return False
            raise
        return True

    def _sync_get(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any]:
        if kind.is_core:
            service = self.core_api.read_namespaced_service(name=name, namespace=namespace)
            return self.api_client.sanitize_for_serialization(service)
        return self.custom_api.get_namespaced_custom_object(
            group=kind.group,
            version=kind.version,
            namespace=namespace,
            plural=kind.plural,
            name=name,
        )

    def _sync_list(self, kind: ResourceKind, namespace: str | None) -> dict[str, Any]:
        if kind.is_core:
            if namespace is None:
                services = self.core_api.list_service_for_all_namespaces()
            else:
                services = self.core_api.list_namespaced_service(namespace=namespace)
            return self.api_client.sanitize_for_serialization(services)
        if namespace is None:
            return self.custom_api.list_cluster_custom_object(
                group=kind.group, version=kind.version, plural=kind.plural
            )
        return self.custom_api.list_namespaced_custom_object(
            group=kind.group,
            version=kind.version,
            namespace=namespace,
            plural=kind.plural,
        )

    def _sync_apply(self, kind: ResourceKind, manifest: dict[str, Any]) -> dict[str, Any]:
        metadata = manifest["metadata"]
        return self.custom_api.patch_namespaced_custom_object(
            group=kind.group,
            version=kind.version,
            namespace=metadata["namespace"],
            plural=kind.plural,
            name=metadata["name"],
            body=manifest,
            field_manager=self.field_manager,
            force=True,
            _content_type=APPLY_PATCH_CONTENT_TYPE,
        )

    def _sync_patch(
        self, kind: ResourceKind, namespace: str, name: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        return self.custom_api.patch_namespaced_custom_object(
            group=kind.group,
            version=kind.version,
            namespace=namespace,
            plural=kind.plural,
            name=name,
            body=body,
            field_manager=self.field_manager,
            _content_type=MERGE_PATCH_CONTENT_TYPE,
        )

    def _sync_delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        self.custom_api.delete_namespaced_custom_object(
            group=kind.group,
            version=kind.version,
            namespace=namespace,
            plural=kind.plural,
            name=name,
        )
