"""
Desired state of the children of an HTTPProxy.

Everything in this module is a pure function of the HTTPProxy, the
ReconcilerOptions policy and (for DNS records) the load balancer addresses.
Builders return None when there is nothing to create for the parent.
"""

import ipaddress
import logging
import re
from collections.abc import Iterable
from typing import Any

from ..constants import (
    ACME_CHALLENGE_PREFIX,
    CERTIFICATE_USAGES,
    CLUSTER_ISSUER_ANNOTATION,
    CLUSTER_ISSUER_KIND,
    DELEGATED_DOMAIN_ANNOTATION,
    DELEGATION_NAME_SUFFIX,
    DNS_NAMESPACE_ANNOTATION,
    DNS_RECORD_TTL,
    ISSUER_ANNOTATION,
    ISSUER_KIND,
    ISSUER_NAMESPACE_ANNOTATION,
    MAX_UINT32,
    PRIVATE_KEY_ALGORITHM_ANNOTATION,
    PRIVATE_KEY_SIZE_ANNOTATION,
    REVISION_HISTORY_LIMIT_ANNOTATION,
    TLS_ACME_ANNOTATION,
)
from ..errors import AnnotationValueError
from ..models.children import (
    CertificateDelegation,
    CertificatePrivateKey,
    CertificateSecretTemplate,
    CertificateSpec,
    DesiredChild,
    DNSEndpointSpec,
    Endpoint,
    IssuerReference,
    TLSCertificateDelegationSpec,
)
from ..models.httpproxy import HTTPProxy
from ..resources import ResourceRegistry
from ..settings import ReconcilerOptions

logger = logging.getLogger(__name__)

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

_UINT_PATTERN = re.compile(r"[0-9]+")


def parse_uint32(value: str) -> int | None:
    """Parse a base-10 unsigned 32-bit integer, or None if it is not one."""
    if not _UINT_PATTERN.fullmatch(value):
        return None
    number = int(value)
    if number > MAX_UINT32:
        return None
    return number


# Placement and naming


def _allowed_foreign_namespace(
    parent: HTTPProxy, annotation: str, allowed: Iterable[str]
) -> str | None:
    namespace = parent.annotations.get(annotation, "")
    if not namespace or namespace == parent.namespace:
        return None
    if namespace not in allowed:
        return None
    return namespace


def _child_name(parent: HTTPProxy, options: ReconcilerOptions, cross: bool) -> str:
    if cross:
        return f"{options.name_prefix}{parent.namespace}-{parent.name}"
    return f"{options.name_prefix}{parent.name}"


def cross_namespace_dns(parent: HTTPProxy, options: ReconcilerOptions) -> str | None:
    """Allowed foreign namespace for DNS records, or None."""
    return _allowed_foreign_namespace(
        parent, DNS_NAMESPACE_ANNOTATION, options.allowed_dns_namespaces
    )


def cross_namespace_issuer(parent: HTTPProxy, options: ReconcilerOptions) -> str | None:
    """Allowed foreign namespace for the Certificate, or None."""
    return _allowed_foreign_namespace(
        parent, ISSUER_NAMESPACE_ANNOTATION, options.allowed_issuer_namespaces
    )


def dns_namespace(parent: HTTPProxy, options: ReconcilerOptions) -> str:
    return cross_namespace_dns(parent, options) or parent.namespace


def dns_endpoint_name(parent: HTTPProxy, options: ReconcilerOptions) -> str:
    return _child_name(parent, options, cross_namespace_dns(parent, options) is not None)


def issuer_namespace(parent: HTTPProxy, options: ReconcilerOptions) -> str:
    return cross_namespace_issuer(parent, options) or parent.namespace


def certificate_name(parent: HTTPProxy, options: ReconcilerOptions) -> str:
    return _child_name(
        parent, options, cross_namespace_issuer(parent, options) is not None
    )


def certificate_secret_name(parent: HTTPProxy, options: ReconcilerOptions) -> str:
    """
    Name of the Secret the Certificate writes.

    Same-namespace certificates write the Secret the HTTPProxy already
    references; an empty result means the HTTPProxy references none.
    Cross-namespace certificates use the generated child name.
    """
    if cross_namespace_issuer(parent, options) is not None:
        return _child_name(parent, options, cross=True)
    return parent.tls_secret_name


def desired_secret_reference(parent: HTTPProxy, options: ReconcilerOptions) -> str | None:
    """The "namespace/name" TLS secret reference a delegated HTTPProxy must carry."""
    namespace = cross_namespace_issuer(parent, options)
    if namespace is None:
        return None
    return f"{namespace}/{certificate_name(parent, options)}"


# Policy resolution


def resolve_issuer(parent: HTTPProxy, options: ReconcilerOptions) -> IssuerReference:
    """
    Resolve the issuer for the Certificate.

    Precedence is cluster-issuer annotation, then issuer annotation, then the
    configured default. The presence of an annotation wins even when its
    value is empty; callers skip the Certificate if the name is empty.
    """
    name = options.default_issuer_name
    kind = options.default_issuer_kind
    if ISSUER_ANNOTATION in parent.annotations:
        name = parent.annotations[ISSUER_ANNOTATION]
        kind = ISSUER_KIND
    if CLUSTER_ISSUER_ANNOTATION in parent.annotations:
        name = parent.annotations[CLUSTER_ISSUER_ANNOTATION]
        kind = CLUSTER_ISSUER_KIND
    return IssuerReference(name=name, kind=kind)


def resolve_delegated_domain(parent: HTTPProxy, options: ReconcilerOptions) -> str:
    requested = parent.annotations.get(DELEGATED_DOMAIN_ANNOTATION, "")
    if (
        requested
        and options.allow_custom_delegations
        and requested in options.allowed_delegated_domains
    ):
        return requested
    return options.default_delegated_domain


def resolve_revision_history_limit(
    parent: HTTPProxy, options: ReconcilerOptions
) -> int | None:
    """
    Resolve revisionHistoryLimit for the Certificate.

    Raises:
        AnnotationValueError: If the annotation is not an unsigned 32-bit integer
    """
    if REVISION_HISTORY_LIMIT_ANNOTATION in parent.annotations:
        value = parent.annotations[REVISION_HISTORY_LIMIT_ANNOTATION]
        limit = parse_uint32(value)
        if limit is None:
            raise AnnotationValueError(
                REVISION_HISTORY_LIMIT_ANNOTATION, value, "an unsigned integer"
            )
        return limit
    if options.csr_revision_limit > 0:
        return options.csr_revision_limit
    return None


def resolve_private_key(parent: HTTPProxy) -> CertificatePrivateKey | None:
    if PRIVATE_KEY_ALGORITHM_ANNOTATION not in parent.annotations:
        return None
    private_key = CertificatePrivateKey(
        algorithm=parent.annotations[PRIVATE_KEY_ALGORITHM_ANNOTATION]
    )
    if PRIVATE_KEY_SIZE_ANNOTATION in parent.annotations:
        value = parent.annotations[PRIVATE_KEY_SIZE_ANNOTATION]
        size = parse_uint32(value)
        if size is None:
            # The issuer default key size applies
            logger.debug(
                f"Ignoring invalid {PRIVATE_KEY_SIZE_ANNOTATION} value {value!r}",
                extra={"resource_name": parent.name, "namespace": parent.namespace},
            )
        else:
            private_key.size = size
    return private_key


def _propagated(source: dict[str, str], keys: Iterable[str]) -> dict[str, str] | None:
    selected = {key: source[key] for key in keys if key in source}
    return selected or None


def propagated_annotations(
    parent: HTTPProxy, options: ReconcilerOptions
) -> dict[str, str] | None:
    return _propagated(parent.annotations, options.propagated_annotations)


def propagated_labels(parent: HTTPProxy, options: ReconcilerOptions) -> dict[str, str] | None:
    return _propagated(parent.labels, options.propagated_labels)


# DNS records


def load_balancer_addresses(service: dict[str, Any] | None) -> list[IPAddress]:
    """IP addresses assigned to a load balancer Service; hostnames are ignored."""
    if not service:
        return []
    status = service.get("status") or {}
    load_balancer = status.get("loadBalancer") or {}
    addresses: list[IPAddress] = []
    for ingress in load_balancer.get("ingress") or []:
        ip = (ingress or {}).get("ip")
        if not ip:
            continue
        try:
            addresses.append(ipaddress.ip_address(ip))
        except ValueError:
            logger.warning(f"Ignoring invalid load balancer address {ip!r}")
    return addresses


def make_endpoints(fqdn: str, addresses: Iterable[IPAddress]) -> list[Endpoint]:
    """One A record for the IPv4 addresses and one AAAA record for the IPv6 ones."""
    ipv4: list[str] = []
    ipv6: list[str] = []
    for address in addresses:
        if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped:
            address = address.ipv4_mapped
        if address.version == 4:
            ipv4.append(str(address))
        else:
            ipv6.append(str(address))

    endpoints = []
    if ipv4:
        endpoints.append(
            Endpoint(dns_name=fqdn, targets=ipv4, record_type="A", record_ttl=DNS_RECORD_TTL)
        )
    if ipv6:
        endpoints.append(
            Endpoint(
                dns_name=fqdn, targets=ipv6, record_type="AAAA", record_ttl=DNS_RECORD_TTL
            )
        )
    return endpoints


def make_delegation_endpoint(fqdn: str, delegated_domain: str) -> Endpoint:
    """CNAME delegating the ACME DNS-01 challenge of ``fqdn`` to another zone."""
    name = f"{ACME_CHALLENGE_PREFIX}.{fqdn.strip('.')}"
    return Endpoint(
        dns_name=name,
        targets=[f"{name}.{delegated_domain}"],
        record_type="CNAME",
        record_ttl=DNS_RECORD_TTL,
    )


def _metadata(parent: HTTPProxy, options: ReconcilerOptions) -> dict[str, Any]:
    return {
        "annotations": dict(propagated_annotations(parent, options) or {}),
        "labels": dict(propagated_labels(parent, options) or {}),
    }


def build_dns_endpoint(
    parent: HTTPProxy,
    options: ReconcilerOptions,
    registry: ResourceRegistry,
    addresses: list[IPAddress],
) -> DesiredChild | None:
    if not options.create_dns_endpoint or not parent.fqdn:
        return None
    endpoints = make_endpoints(parent.fqdn, addresses)
    if not endpoints:
        return None
    return DesiredChild(
        kind=registry.dns_endpoint,
        namespace=dns_namespace(parent, options),
        name=dns_endpoint_name(parent, options),
        spec=DNSEndpointSpec(endpoints=endpoints),
        **_metadata(parent, options),
    )


def build_delegation_dns_endpoint(
    parent: HTTPProxy, options: ReconcilerOptions, registry: ResourceRegistry
) -> DesiredChild | None:
    if not options.create_dns_endpoint or not parent.fqdn:
        return None
    delegated_domain = resolve_delegated_domain(parent, options)
    if not delegated_domain:
        return None
    return DesiredChild(
        kind=registry.dns_endpoint,
        namespace=dns_namespace(parent, options),
        name=dns_endpoint_name(parent, options) + DELEGATION_NAME_SUFFIX,
        spec=DNSEndpointSpec(
            endpoints=[make_delegation_endpoint(parent.fqdn, delegated_domain)]
        ),
        **_metadata(parent, options),
    )


def build_certificate(
    parent: HTTPProxy, options: ReconcilerOptions, registry: ResourceRegistry
) -> DesiredChild | None:
    """
    Build the cert-manager Certificate for an HTTPProxy.

    Returns None when certificates are disabled, the HTTPProxy does not ask
    for one via the tls-acme annotation, has no FQDN, has no secret to write
    to, or no issuer can be resolved.

    Raises:
        AnnotationValueError: If revision-history-limit cannot be parsed
    """
    if not options.create_certificate:
        return None
    if parent.annotations.get(TLS_ACME_ANNOTATION) != "true":
        return None
    if not parent.fqdn:
        return None

    secret_name = certificate_secret_name(parent, options)
    if not secret_name:
        return None

    issuer = resolve_issuer(parent, options)
    if not issuer.name:
        logger.info(
            f"No issuer name for HTTPProxy {parent.key}",
            extra={"resource_name": parent.name, "namespace": parent.namespace},
        )
        return None

    annotations = propagated_annotations(parent, options)
    labels = propagated_labels(parent, options)
    secret_template = None
    if annotations is not None or labels is not None:
        secret_template = CertificateSecretTemplate(annotations=annotations, labels=labels)

    spec = CertificateSpec(
        dns_names=[parent.fqdn],
        secret_name=secret_name,
        common_name=parent.fqdn,
        issuer_ref=issuer,
        usages=list(CERTIFICATE_USAGES),
        revision_history_limit=resolve_revision_history_limit(parent, options),
        secret_template=secret_template,
        private_key=resolve_private_key(parent),
    )
    return DesiredChild(
        kind=registry.certificate,
        namespace=issuer_namespace(parent, options),
        name=certificate_name(parent, options),
        spec=spec,
        annotations=dict(annotations or {}),
        labels=dict(labels or {}),
    )


def build_tls_certificate_delegation(
    parent: HTTPProxy, options: ReconcilerOptions, registry: ResourceRegistry
) -> DesiredChild | None:
    """Delegation letting the HTTPProxy use a Secret from the issuer namespace."""
    if not options.create_certificate:
        return None
    namespace = cross_namespace_issuer(parent, options)
    if namespace is None:
        return None
    name = certificate_name(parent, options)
    return DesiredChild(
        kind=registry.tls_certificate_delegation,
        namespace=namespace,
        name=name,
        spec=TLSCertificateDelegationSpec(
            delegations=[
                CertificateDelegation(
                    secret_name=certificate_secret_name(parent, options),
                    target_namespaces=[parent.namespace],
                )
            ]
        ),
        **_metadata(parent, options),
    )
