"""Centralized operator settings using pydantic-settings.

This module provides a single source of truth for all operator configuration
loaded from environment variables, and the validated ``ReconcilerOptions``
policy object derived from it at startup.
"""

from dataclasses import dataclass

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import (
    CERTIFICATE_KIND,
    CLUSTER_ISSUER_KIND,
    DNS_ENDPOINT_KIND,
    ISSUER_KINDS,
    SUPPORTED_CRDS,
)
from .errors import ConfigurationError
from .models.common import ObjectKey


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """Operator configuration loaded from environment variables.

    Variable names follow the ``CP_`` prefix of the operator's command line
    flags. List-valued settings are comma separated.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Load balancer service whose addresses are published via DNS
    service_name: str = Field(
        default="",
        validation_alias="CP_SERVICE_NAME",
        description="Load balancer Service as namespace/name",
    )

    # Child resources
    crds: str = Field(
        default=f"{DNS_ENDPOINT_KIND},{CERTIFICATE_KIND}",
        validation_alias="CP_CRDS",
        description="Comma-separated child kinds to manage (DNSEndpoint, Certificate)",
    )
    name_prefix: str = Field(
        default="",
        validation_alias="CP_NAME_PREFIX",
        description="Prefix prepended to the names of child resources",
    )

    # Certificate issuance
    default_issuer_name: str = Field(
        default="",
        validation_alias="CP_DEFAULT_ISSUER_NAME",
        description="Issuer used when an HTTPProxy names none",
    )
    default_issuer_kind: str = Field(
        default=CLUSTER_ISSUER_KIND,
        validation_alias="CP_DEFAULT_ISSUER_KIND",
        description="Kind of the default issuer (Issuer or ClusterIssuer)",
    )
    csr_revision_limit: int = Field(
        default=0,
        validation_alias="CP_CSR_REVISION_LIMIT",
        description="Default revisionHistoryLimit for Certificates (0 leaves it unset)",
    )
    certificate_apply_limit: float = Field(
        default=0.0,
        validation_alias="CP_CERTIFICATE_APPLY_LIMIT",
        description="Rate limit for Certificate applies per second (<= 0 disables the queue)",
    )
    retry_channel_size: int = Field(
        default=100,
        validation_alias="CP_RETRY_CHANNEL_SIZE",
        description="Capacity of the retry channel from the certificate worker",
    )

    # ACME challenge delegation
    default_delegated_domain: str = Field(
        default="",
        validation_alias="CP_DEFAULT_DELEGATED_DOMAIN",
        description="Domain that receives delegated ACME challenge records",
    )
    allowed_delegated_domains: str = Field(
        default="",
        validation_alias="CP_ALLOWED_DELEGATED_DOMAINS",
        description="Comma-separated delegated domains an HTTPProxy may choose",
    )
    allow_custom_delegations: bool = Field(
        default=False,
        validation_alias="CP_ALLOW_CUSTOM_DELEGATIONS",
        description="Allow HTTPProxy annotations to choose the delegated domain",
    )

    # Filtering and propagation
    ingress_class_name: str = Field(
        default="",
        validation_alias="CP_INGRESS_CLASS_NAME",
        description="Only handle HTTPProxies of this ingress class (empty = all)",
    )
    propagated_annotations: str = Field(
        default="",
        validation_alias="CP_PROPAGATED_ANNOTATIONS",
        description="Comma-separated annotation keys copied to child resources",
    )
    propagated_labels: str = Field(
        default="",
        validation_alias="CP_PROPAGATED_LABELS",
        description="Comma-separated label keys copied to child resources",
    )
    allowed_dns_namespaces: str = Field(
        default="",
        validation_alias="CP_ALLOWED_DNS_NAMESPACES",
        description="Comma-separated namespaces DNSEndpoints may be placed in",
    )
    allowed_issuer_namespaces: str = Field(
        default="",
        validation_alias="CP_ALLOWED_ISSUER_NAMESPACES",
        description="Comma-separated namespaces Certificates may be placed in",
    )

    # Controller behavior
    max_concurrent_reconciles: int = Field(
        default=4,
        validation_alias="CP_MAX_CONCURRENT_RECONCILES",
        description="Number of HTTPProxies reconciled in parallel",
    )
    leader_election: bool = Field(
        default=True,
        validation_alias="CP_LEADER_ELECTION",
        description="Use kopf peering so only one replica is active",
    )
    namespaces: str = Field(
        default="",
        validation_alias="CP_NAMESPACES",
        description="Comma-separated list of namespaces to watch (empty = all namespaces)",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="CP_LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="CP_JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CP_CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )

    # Metrics and observability
    metrics_port: int = Field(
        default=8180,
        validation_alias="CP_METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="CP_METRICS_HOST",
        description="Host address to bind metrics server",
    )

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Parse watched namespaces from comma-separated string.

        Returns:
            List of namespace names, or None to watch all namespaces
        """
        if self.namespaces:
            return _split_list(self.namespaces) or None
        return None

    @property
    def enabled_crds(self) -> list[str]:
        return _split_list(self.crds)


@dataclass(frozen=True)
class ReconcilerOptions:
    """Validated policy shared by the reconciler and the certificate applier."""

    service_key: ObjectKey | None = None
    name_prefix: str = ""
    default_issuer_name: str = ""
    default_issuer_kind: str = CLUSTER_ISSUER_KIND
    default_delegated_domain: str = ""
    allowed_delegated_domains: tuple[str, ...] = ()
    allow_custom_delegations: bool = False
    csr_revision_limit: int = 0
    create_dns_endpoint: bool = True
    create_certificate: bool = True
    ingress_class_name: str = ""
    propagated_annotations: tuple[str, ...] = ()
    propagated_labels: tuple[str, ...] = ()
    allowed_dns_namespaces: tuple[str, ...] = ()
    allowed_issuer_namespaces: tuple[str, ...] = ()
    certificate_apply_limit: float = 0.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "ReconcilerOptions":
        """
        Validate settings and build the reconciler policy.

        Args:
            settings: Loaded operator settings

        Returns:
            ReconcilerOptions for the lifetime of the operator

        Raises:
            ConfigurationError: If the settings are inconsistent
        """
        crds = settings.enabled_crds
        if not crds:
            raise ConfigurationError(
                "CP_CRDS must enable at least one child kind",
                user_action=f"Set CP_CRDS to one or more of {', '.join(sorted(SUPPORTED_CRDS))}",
            )
        unknown = sorted(set(crds) - SUPPORTED_CRDS)
        if unknown:
            raise ConfigurationError(
                f"unsupported CRD kinds in CP_CRDS: {', '.join(unknown)}",
                user_action=f"Use only {', '.join(sorted(SUPPORTED_CRDS))}",
            )
        create_dns_endpoint = DNS_ENDPOINT_KIND in crds
        create_certificate = CERTIFICATE_KIND in crds

        service_key = None
        if settings.service_name:
            service_key = ObjectKey.parse(settings.service_name)
            if service_key is None:
                raise ConfigurationError(
                    f"invalid service name {settings.service_name!r}",
                    user_action="Set CP_SERVICE_NAME to namespace/name",
                )
        elif create_dns_endpoint:
            raise ConfigurationError(
                "CP_SERVICE_NAME is required when DNSEndpoint creation is enabled",
                user_action="Set CP_SERVICE_NAME to the namespace/name of the load balancer Service",
            )

        if settings.default_issuer_kind not in ISSUER_KINDS:
            raise ConfigurationError(
                f"invalid default issuer kind {settings.default_issuer_kind!r}",
                user_action="Set CP_DEFAULT_ISSUER_KIND to Issuer or ClusterIssuer",
            )

        if settings.csr_revision_limit < 0:
            raise ConfigurationError(
                "CP_CSR_REVISION_LIMIT must not be negative",
            )

        return cls(
            service_key=service_key,
            name_prefix=settings.name_prefix,
            default_issuer_name=settings.default_issuer_name,
            default_issuer_kind=settings.default_issuer_kind,
            default_delegated_domain=settings.default_delegated_domain,
            allowed_delegated_domains=tuple(
                _split_list(settings.allowed_delegated_domains)
            ),
            allow_custom_delegations=settings.allow_custom_delegations,
            csr_revision_limit=settings.csr_revision_limit,
            create_dns_endpoint=create_dns_endpoint,
            create_certificate=create_certificate,
            ingress_class_name=settings.ingress_class_name,
            propagated_annotations=tuple(_split_list(settings.propagated_annotations)),
            propagated_labels=tuple(_split_list(settings.propagated_labels)),
            allowed_dns_namespaces=tuple(_split_list(settings.allowed_dns_namespaces)),
            allowed_issuer_namespaces=tuple(
                _split_list(settings.allowed_issuer_namespaces)
            ),
            certificate_apply_limit=settings.certificate_apply_limit,
        )


# Global settings instance - initialized once at module import
settings = Settings()
