"""Shared pytest fixtures for the Contour Plus operator unit tests."""

import copy
from typing import Any

import pytest
from kubernetes.client.rest import ApiException

from contour_plus_operator.models.common import ObjectKey
from contour_plus_operator.resources import ResourceKind, register_resource_kinds
from contour_plus_operator.settings import ReconcilerOptions


def merge_patch(target: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Apply JSON merge patch semantics: maps merge, None removes, lists replace."""
    result = copy.deepcopy(target)
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        elif isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = merge_patch(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


class FakeKubernetes:
    """
    In-memory stand-in for KubernetesResources.

    Objects are stored per plural/namespace/name. Writes are recorded, and
    ``mutations`` only counts writes that changed a stored object, which is
    what the idempotence tests look at.
    """

    def __init__(self):
        self.objects: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.applied: list[tuple[str, dict[str, Any]]] = []
        self.patched: list[tuple[str, str, str, dict[str, Any]]] = []
        self.deleted: list[tuple[str, str, str]] = []
        self.mutations = 0
        self.apply_errors: dict[str, Exception] = {}
        self.get_calls = 0

    def put(self, kind: ResourceKind, body: dict[str, Any]) -> None:
        metadata = body["metadata"]
        self.objects[(kind.plural, metadata.get("namespace", ""), metadata["name"])] = (
            copy.deepcopy(body)
        )

    def stored(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any] | None:
        return self.objects.get((kind.plural, namespace, name))

    def names(self, kind: ResourceKind) -> list[tuple[str, str]]:
        return sorted((ns, name) for plural, ns, name in self.objects if plural == kind.plural)

    async def get(self, kind: ResourceKind, namespace: str, name: str) -> dict[str, Any] | None:
        self.get_calls += 1
        body = self.stored(kind, namespace, name)
        return copy.deepcopy(body) if body is not None else None

    async def list(self, kind: ResourceKind, namespace: str | None = None) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(body)
            for (plural, ns, _), body in sorted(self.objects.items())
            if plural == kind.plural and (namespace is None or ns == namespace)
        ]

    async def apply(self, kind: ResourceKind, manifest: dict[str, Any]) -> dict[str, Any]:
        self.applied.append((kind.kind, copy.deepcopy(manifest)))
        if kind.kind in self.apply_errors:
            raise self.apply_errors[kind.kind]
        metadata = manifest["metadata"]
        key = (kind.plural, metadata["namespace"], metadata["name"])
        self._write(key, merge_patch(self.objects.get(key, {}), manifest))
        return copy.deepcopy(self.objects[key])

    async def patch(
        self, kind: ResourceKind, namespace: str, name: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        self.patched.append((kind.kind, namespace, name, copy.deepcopy(body)))
        key = (kind.plural, namespace, name)
        if key not in self.objects:
            raise ApiException(status=404, reason="Not Found")
        patch = copy.deepcopy(body)
        patch.get("metadata", {}).pop("resourceVersion", None)
        self._write(key, merge_patch(self.objects[key], patch))
        return copy.deepcopy(self.objects[key])

    async def delete(self, kind: ResourceKind, namespace: str, name: str) -> bool:
        key = (kind.plural, namespace, name)
        if key not in self.objects:
            return False
        del self.objects[key]
        self.deleted.append((kind.kind, namespace, name))
        self.mutations += 1
        return True

    def _write(self, key: tuple[str, str, str], body: dict[str, Any]) -> None:
        if self.objects.get(key) != body:
            self.mutations += 1
            self.objects[key] = body


def httpproxy_body(
    name: str = "foo",
    namespace: str = "default",
    fqdn: str | None = "test.example.com",
    secret_name: str | None = None,
    annotations: dict[str, str] | None = None,
    labels: dict[str, str] | None = None,
    ingress_class_name: str | None = None,
    finalizers: list[str] | None = None,
    deleting: bool = False,
    generation: int = 1,
) -> dict[str, Any]:
    """Build a raw HTTPProxy object."""
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "uid": f"uid-{namespace}-{name}",
        "generation": generation,
        "resourceVersion": "1",
        "annotations": dict(annotations or {}),
        "labels": dict(labels or {}),
    }
    if finalizers:
        metadata["finalizers"] = list(finalizers)
    if deleting:
        metadata["deletionTimestamp"] = "2024-01-01T00:00:00Z"

    spec: dict[str, Any] = {}
    if fqdn is not None:
        virtualhost: dict[str, Any] = {"fqdn": fqdn}
        if secret_name is not None:
            virtualhost["tls"] = {"secretName": secret_name}
        spec["virtualhost"] = virtualhost
    if ingress_class_name is not None:
        spec["ingressClassName"] = ingress_class_name
    return {
        "apiVersion": "projectcontour.io/v1",
        "kind": "HTTPProxy",
        "metadata": metadata,
        "spec": spec,
    }


def service_body(
    ips: list[str] | None = None, namespace: str = "ingress", name: str = "envoy"
) -> dict[str, Any]:
    """Build a raw load balancer Service with the given ingress IPs."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"type": "LoadBalancer"},
        "status": {"loadBalancer": {"ingress": [{"ip": ip} for ip in ips or []]}},
    }


@pytest.fixture
def registry():
    """Resource registry as built at operator startup."""
    return register_resource_kinds()


@pytest.fixture
def fake_kube():
    """Fresh in-memory Kubernetes API."""
    return FakeKubernetes()


@pytest.fixture
def make_options():
    """Factory for ReconcilerOptions with test defaults."""

    def _make(**overrides) -> ReconcilerOptions:
        values: dict[str, Any] = {
            "service_key": ObjectKey("ingress", "envoy"),
            "default_issuer_name": "test-issuer",
            "default_issuer_kind": "Issuer",
        }
        values.update(overrides)
        return ReconcilerOptions(**values)

    return _make


@pytest.fixture
def make_httpproxy():
    """Factory for raw HTTPProxy objects."""
    return httpproxy_body


@pytest.fixture
def make_service():
    """Factory for raw load balancer Services."""
    return service_body
