"""
Common models shared across parent and child resources.

This module defines object identity and Kubernetes object metadata as used by
the reconciler and the certificate apply worker.
"""

from typing import Any, NamedTuple

from pydantic import BaseModel, Field, field_validator


class ObjectKey(NamedTuple):
    """Namespace/name identity of a namespaced Kubernetes object."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str | None) -> "ObjectKey | None":
        """
        Parse a "namespace/name" string.

        Args:
            value: String to parse

        Returns:
            ObjectKey, or None when the value is not of the form "namespace/name"
        """
        if not value:
            return None
        namespace, sep, name = value.partition("/")
        if not sep or not namespace or not name or "/" in name:
            return None
        return cls(namespace, name)

    @classmethod
    def of(cls, body: dict[str, Any]) -> "ObjectKey":
        """Identity of a raw Kubernetes object body."""
        metadata = body.get("metadata") or {}
        return cls(metadata.get("namespace", ""), metadata.get("name", ""))


class ObjectMeta(BaseModel):
    """Subset of Kubernetes object metadata read by the operator."""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    name: str = Field(..., description="Object name")
    namespace: str = Field("", description="Object namespace")
    uid: str = Field("", description="Object UID")
    generation: int = Field(0, description="Spec generation")
    resource_version: str = Field("", alias="resourceVersion")
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    finalizers: list[str] = Field(default_factory=list)
    deletion_timestamp: str | None = Field(None, alias="deletionTimestamp")

    @field_validator("labels", "annotations", mode="before")
    @classmethod
    def null_map_as_empty(cls, v):
        return {} if v is None else v

    @field_validator("finalizers", mode="before")
    @classmethod
    def null_list_as_empty(cls, v):
        return [] if v is None else v
