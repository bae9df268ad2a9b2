"""
Pydantic models for the child resources derived from an HTTPProxy.

These mirror the spec shapes of external-dns DNSEndpoint, cert-manager
Certificate and Contour TLSCertificateDelegation as far as the operator
writes them. Field aliases follow the camelCase wire format.
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from ..resources import ResourceKind
from .common import ObjectKey


class Targets(list):
    """DNS record targets, compared without regard to order."""

    def same(self, other: list[str]) -> bool:
        """Whether both target lists hold the same entries in any order."""
        if len(self) != len(other):
            return False
        return sorted(self) == sorted(other)

    def is_less(self, other: list[str]) -> bool:
        """
        Ordering used when sorting endpoints.

        A shorter list is always the lesser one. Lists of equal length are
        compared element-wise after sorting both.
        """
        if len(self) != len(other):
            return len(self) < len(other)
        for mine, theirs in zip(sorted(self), sorted(other), strict=True):
            if mine != theirs:
                return mine < theirs
        return False


class Endpoint(BaseModel):
    """A single DNS record published by external-dns."""

    model_config = {"populate_by_name": True}

    dns_name: str = Field(..., alias="dnsName")
    targets: list[str] = Field(default_factory=list)
    record_type: str = Field(..., alias="recordType")
    record_ttl: int | None = Field(None, alias="recordTTL")
    labels: dict[str, str] | None = None

    @property
    def target_list(self) -> Targets:
        return Targets(self.targets)


class DNSEndpointSpec(BaseModel):
    model_config = {"populate_by_name": True}

    endpoints: list[Endpoint] = Field(default_factory=list)


class IssuerReference(BaseModel):
    model_config = {"populate_by_name": True}

    name: str
    kind: str


class CertificateSecretTemplate(BaseModel):
    """Metadata stamped onto the Secret cert-manager maintains."""

    model_config = {"populate_by_name": True}

    annotations: dict[str, str] | None = None
    labels: dict[str, str] | None = None


class CertificatePrivateKey(BaseModel):
    model_config = {"populate_by_name": True}

    algorithm: str
    size: int | None = None


class CertificateSpec(BaseModel):
    """cert-manager Certificate spec as written by the operator."""

    model_config = {"populate_by_name": True}

    dns_names: list[str] = Field(..., alias="dnsNames")
    secret_name: str = Field(..., alias="secretName")
    common_name: str = Field(..., alias="commonName")
    issuer_ref: IssuerReference = Field(..., alias="issuerRef")
    usages: list[str] = Field(default_factory=list)
    revision_history_limit: int | None = Field(None, alias="revisionHistoryLimit")
    secret_template: CertificateSecretTemplate | None = Field(
        None, alias="secretTemplate"
    )
    private_key: CertificatePrivateKey | None = Field(None, alias="privateKey")


class CertificateDelegation(BaseModel):
    model_config = {"populate_by_name": True}

    secret_name: str = Field(..., alias="secretName")
    target_namespaces: list[str] = Field(..., alias="targetNamespaces")


class TLSCertificateDelegationSpec(BaseModel):
    model_config = {"populate_by_name": True}

    delegations: list[CertificateDelegation]


@dataclass
class DesiredChild:
    """A child object the reconciler wants to exist, ready to be applied."""

    kind: ResourceKind
    namespace: str
    name: str
    spec: BaseModel
    annotations: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    owner_references: list[dict[str, Any]] = field(default_factory=list)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.namespace, self.name)

    def manifest(self) -> dict[str, Any]:
        """Render the server-side apply manifest for this child."""
        metadata: dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        # Empty maps are left out so the apply does not claim ownership of them
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        if self.labels:
            metadata["labels"] = dict(self.labels)
        if self.owner_references:
            metadata["ownerReferences"] = [dict(ref) for ref in self.owner_references]
        return {
            "apiVersion": self.kind.api_version,
            "kind": self.kind.kind,
            "metadata": metadata,
            "spec": self.spec.model_dump(by_alias=True, exclude_none=True),
        }
