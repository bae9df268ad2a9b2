"""
Pydantic view of the Contour HTTPProxy resource.

Only the fields the operator reads are modelled; everything else in the
object is ignored.
"""

from typing import Any

from pydantic import BaseModel, Field

from ..constants import FINALIZER
from .common import ObjectKey, ObjectMeta


class TLS(BaseModel):
    """TLS settings of a virtual host."""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    secret_name: str = Field(
        "", alias="secretName", description="Secret holding the serving certificate"
    )


class VirtualHost(BaseModel):
    """Virtual host of a root HTTPProxy."""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    fqdn: str = Field("", description="Fully qualified domain name")
    tls: TLS | None = Field(None, description="TLS settings")


class HTTPProxySpec(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore"}

    ingress_class_name: str = Field("", alias="ingressClassName")
    virtualhost: VirtualHost | None = Field(None, description="Virtual host")


class HTTPProxy(BaseModel):
    """The parent resource watched by the operator."""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    metadata: ObjectMeta
    spec: HTTPProxySpec = Field(default_factory=HTTPProxySpec)

    @classmethod
    def from_body(cls, body: dict[str, Any]) -> "HTTPProxy":
        return cls.model_validate(body)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(self.metadata.namespace, self.metadata.name)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def annotations(self) -> dict[str, str]:
        return self.metadata.annotations

    @property
    def labels(self) -> dict[str, str]:
        return self.metadata.labels

    @property
    def fqdn(self) -> str:
        if self.spec.virtualhost is None:
            return ""
        return self.spec.virtualhost.fqdn

    @property
    def tls_secret_name(self) -> str:
        vhost = self.spec.virtualhost
        if vhost is None or vhost.tls is None:
            return ""
        return vhost.tls.secret_name

    @property
    def is_deleting(self) -> bool:
        return self.metadata.deletion_timestamp is not None

    @property
    def has_finalizer(self) -> bool:
        return FINALIZER in self.metadata.finalizers
