"""
Admission filters for watch events.

kopf delivers every watch event, including the initial listing (event type
None) and status-only updates. These filters decide which events turn into
an HTTPProxy reconcile, so the operator's own writes to children do not
trigger reconcile loops.
"""

from typing import Any

from ..constants import (
    CONTOUR_INGRESS_CLASS_ANNOTATION,
    EXCLUDE_ANNOTATION,
    INGRESS_CLASS_ANNOTATION,
)
from ..models.common import ObjectKey
from ..models.httpproxy import HTTPProxy

ADDED = "ADDED"
MODIFIED = "MODIFIED"
DELETED = "DELETED"


def class_name_matches(parent: HTTPProxy, target: str) -> bool:
    """
    Whether an HTTPProxy belongs to the configured ingress class.

    Every non-empty class source (the generic annotation, the Contour
    annotation and spec.ingressClassName) must equal the target, and at
    least one of them must be set. An empty target admits everything.
    """
    if not target:
        return True
    sources = [
        parent.annotations.get(INGRESS_CLASS_ANNOTATION, ""),
        parent.annotations.get(CONTOUR_INGRESS_CLASS_ANNOTATION, ""),
        parent.spec.ingress_class_name,
    ]
    present = [source for source in sources if source]
    if not present:
        return False
    return all(source == target for source in present)


def is_excluded(parent: HTTPProxy) -> bool:
    return parent.annotations.get(EXCLUDE_ANNOTATION) == "true"


def _metadata(body: dict[str, Any]) -> dict[str, Any]:
    return body.get("metadata") or {}


class ParentChangeFilter:
    """
    Admits HTTPProxy events that change generation, labels or annotations.

    The last seen fingerprint of every HTTPProxy is remembered, so
    status-only updates and repeated deliveries of the initial listing are
    dropped.
    """

    def __init__(self):
        self._fingerprints: dict[ObjectKey, tuple[Any, ...]] = {}

    @staticmethod
    def fingerprint(body: dict[str, Any]) -> tuple[Any, ...]:
        metadata = _metadata(body)
        return (
            metadata.get("generation"),
            tuple(sorted((metadata.get("labels") or {}).items())),
            tuple(sorted((metadata.get("annotations") or {}).items())),
        )

    def admit(self, event_type: str | None, body: dict[str, Any]) -> bool:
        key = ObjectKey.of(body)
        if event_type == DELETED:
            self._fingerprints.pop(key, None)
            return True

        fingerprint = self.fingerprint(body)
        previous = self._fingerprints.get(key)
        self._fingerprints[key] = fingerprint
        return previous != fingerprint

    def __len__(self) -> int:
        return len(self._fingerprints)


class ChildChangeFilter:
    """
    Admits child events that can require the HTTPProxy to act.

    Creations (mostly caused by the operator itself) and the initial listing
    are never admitted; spec changes by someone else and deletions are.
    """

    def __init__(self):
        self._generations: dict[tuple[str, ObjectKey], Any] = {}

    def admit(self, kind: str, event_type: str | None, body: dict[str, Any]) -> bool:
        key = (kind, ObjectKey.of(body))
        if event_type == DELETED:
            self._generations.pop(key, None)
            return True

        generation = _metadata(body).get("generation")
        unseen = key not in self._generations
        previous = self._generations.get(key)
        self._generations[key] = generation
        if event_type in (None, ADDED):
            return False
        return unseen or previous != generation


class ServiceChangeFilter:
    """Admits events of the load balancer Service, except its initial listing."""

    def __init__(self, service_key: ObjectKey | None):
        self.service_key = service_key

    def admit(self, event_type: str | None, body: dict[str, Any]) -> bool:
        if self.service_key is None:
            return False
        if ObjectKey.of(body) != self.service_key:
            return False
        return event_type is not None
