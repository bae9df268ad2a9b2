"""
Registry of the Kubernetes resource kinds the operator reads and writes.

The registry is built once by ``register_resource_kinds()`` during operator
startup and handed to the components that need it; nothing registers kinds
as an import side effect.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ResourceKind:
    """Group/version/plural/kind coordinates of an API resource."""

    group: str
    version: str
    plural: str
    kind: str

    @property
    def api_version(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"

    @property
    def is_core(self) -> bool:
        return not self.group


@dataclass(frozen=True)
class ResourceRegistry:
    """The set of resource kinds known to the operator."""

    httpproxy: ResourceKind
    tls_certificate_delegation: ResourceKind
    dns_endpoint: ResourceKind
    certificate: ResourceKind
    service: ResourceKind


def register_resource_kinds() -> ResourceRegistry:
    """Build the resource registry used for the lifetime of the operator."""
    return ResourceRegistry(
        httpproxy=ResourceKind("projectcontour.io", "v1", "httpproxies", "HTTPProxy"),
        tls_certificate_delegation=ResourceKind(
            "projectcontour.io",
            "v1",
            "tlscertificatedelegations",
            "TLSCertificateDelegation",
        ),
        dns_endpoint=ResourceKind(
            "externaldns.k8s.io", "v1alpha1", "dnsendpoints", "DNSEndpoint"
        ),
        certificate=ResourceKind("cert-manager.io", "v1", "certificates", "Certificate"),
        service=ResourceKind("", "v1", "services", "Service"),
    )
