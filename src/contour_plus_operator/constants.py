"""
Constants used throughout the Contour Plus operator.

This module defines all constant values used by the operator including:
- Finalizer and bookkeeping annotation names
- Annotations read from HTTPProxy objects
- Field manager and fixed child resource values
"""

# Finalizer held by an HTTPProxy while it owns cross-namespace children
FINALIZER = "contour-plus.cybozu.com/finalizer"

# Bookkeeping annotation recording "namespace/name" of the owning HTTPProxy
OWNER_ANNOTATION = "contour-plus.cybozu.com/owned-by"

# Field manager used for server-side apply and patches
FIELD_MANAGER = "contour-plus"

# Annotations read from the HTTPProxy
EXCLUDE_ANNOTATION = "contour-plus.cybozu.com/exclude"
TLS_ACME_ANNOTATION = "kubernetes.io/tls-acme"
DELEGATED_DOMAIN_ANNOTATION = "contour-plus.cybozu.com/delegated-domain"
DNS_NAMESPACE_ANNOTATION = "contour-plus.cybozu.com/dns-namespace"
ISSUER_NAMESPACE_ANNOTATION = "contour-plus.cybozu.com/issuer-namespace"

# cert-manager annotations
ISSUER_ANNOTATION = "cert-manager.io/issuer"
CLUSTER_ISSUER_ANNOTATION = "cert-manager.io/cluster-issuer"
REVISION_HISTORY_LIMIT_ANNOTATION = "cert-manager.io/revision-history-limit"
PRIVATE_KEY_ALGORITHM_ANNOTATION = "cert-manager.io/private-key-algorithm"
PRIVATE_KEY_SIZE_ANNOTATION = "cert-manager.io/private-key-size"

# Ingress class sources, checked together with spec.ingressClassName
INGRESS_CLASS_ANNOTATION = "kubernetes.io/ingress.class"
CONTOUR_INGRESS_CLASS_ANNOTATION = "projectcontour.io/ingress.class"

# Issuer kinds
ISSUER_KIND = "Issuer"
CLUSTER_ISSUER_KIND = "ClusterIssuer"
ISSUER_KINDS = frozenset({ISSUER_KIND, CLUSTER_ISSUER_KIND})

# Child kinds that can be enabled via configuration
DNS_ENDPOINT_KIND = "DNSEndpoint"
CERTIFICATE_KIND = "Certificate"
TLS_CERTIFICATE_DELEGATION_KIND = "TLSCertificateDelegation"
SUPPORTED_CRDS = frozenset({DNS_ENDPOINT_KIND, CERTIFICATE_KIND})

# Fixed child resource values
DNS_RECORD_TTL = 3600
ACME_CHALLENGE_PREFIX = "_acme-challenge"
DELEGATION_NAME_SUFFIX = "-delegation"
CERTIFICATE_USAGES = ("digital signature", "key encipherment", "server auth")

# Largest value accepted for unsigned 32-bit annotation values
MAX_UINT32 = 0xFFFFFFFF

# Reconcile queue backoff (seconds)
RECONCILE_BACKOFF_BASE = 0.5
RECONCILE_BACKOFF_MAX = 300.0

# Grace period for background tasks on shutdown (seconds)
SHUTDOWN_GRACE_PERIOD = 10.0
