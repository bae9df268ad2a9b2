"""
Unit tests for desired state computation.

Covers child naming and placement, issuer and delegation policy, annotation
parsing and the rendered child manifests.
"""

import ipaddress

import pytest

from contour_plus_operator.constants import (
    CLUSTER_ISSUER_ANNOTATION,
    DELEGATED_DOMAIN_ANNOTATION,
    DNS_NAMESPACE_ANNOTATION,
    ISSUER_ANNOTATION,
    ISSUER_NAMESPACE_ANNOTATION,
    PRIVATE_KEY_ALGORITHM_ANNOTATION,
    PRIVATE_KEY_SIZE_ANNOTATION,
    REVISION_HISTORY_LIMIT_ANNOTATION,
    TLS_ACME_ANNOTATION,
)
from contour_plus_operator.errors import AnnotationValueError
from contour_plus_operator.models.httpproxy import HTTPProxy
from contour_plus_operator.services import desired_state


def proxy(make_httpproxy, **kwargs) -> HTTPProxy:
    return HTTPProxy.from_body(make_httpproxy(**kwargs))


def acme_proxy(make_httpproxy, annotations=None, **kwargs) -> HTTPProxy:
    merged = {TLS_ACME_ANNOTATION: "true", **(annotations or {})}
    kwargs.setdefault("secret_name", "foo-tls")
    return proxy(make_httpproxy, annotations=merged, **kwargs)


class TestParseUint32:
    """Test unsigned integer annotation parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("0", 0),
            ("5", 5),
            ("4294967295", 4294967295),
            ("4294967296", None),
            ("-1", None),
            ("", None),
            ("abc", None),
            ("1.5", None),
        ],
    )
    def test_parse_uint32(self, value, expected):
        """Only base-10 values within the unsigned 32-bit range are accepted."""
        assert desired_state.parse_uint32(value) == expected


class TestNaming:
    """Test child names and namespaces."""

    def test_same_namespace_name(self, make_httpproxy, make_options):
        """Children in the parent namespace are named after the parent."""
        parent = proxy(make_httpproxy)

        assert desired_state.dns_endpoint_name(parent, make_options()) == "foo"
        assert desired_state.certificate_name(parent, make_options()) == "foo"
        assert desired_state.dns_namespace(parent, make_options()) == "default"
        assert desired_state.issuer_namespace(parent, make_options()) == "default"

    def test_prefix_is_prepended(self, make_httpproxy, make_options):
        """The configured prefix is prepended to child names."""
        parent = proxy(make_httpproxy)
        options = make_options(name_prefix="cp-")

        assert desired_state.dns_endpoint_name(parent, options) == "cp-foo"
        assert desired_state.certificate_name(parent, options) == "cp-foo"

    def test_cross_namespace_certificate_name(self, make_httpproxy, make_options):
        """An allowed issuer namespace adds the parent namespace to the name."""
        parent = proxy(
            make_httpproxy,
            namespace="bar",
            annotations={ISSUER_NAMESPACE_ANNOTATION: "certs"},
        )

        with_prefix = make_options(name_prefix="cp-", allowed_issuer_namespaces=("certs",))
        without_prefix = make_options(allowed_issuer_namespaces=("certs",))

        assert desired_state.certificate_name(parent, with_prefix) == "cp-bar-foo"
        assert desired_state.certificate_name(parent, without_prefix) == "bar-foo"
        assert desired_state.issuer_namespace(parent, without_prefix) == "certs"

    def test_disallowed_namespace_is_ignored(self, make_httpproxy, make_options):
        """A namespace missing from the allow-list falls back to the parent's."""
        parent = proxy(
            make_httpproxy,
            namespace="bar",
            annotations={
                ISSUER_NAMESPACE_ANNOTATION: "certs",
                DNS_NAMESPACE_ANNOTATION: "dns",
            },
        )
        options = make_options(allowed_dns_namespaces=("other",))

        assert desired_state.issuer_namespace(parent, options) == "bar"
        assert desired_state.certificate_name(parent, options) == "foo"
        assert desired_state.dns_namespace(parent, options) == "bar"
        assert desired_state.dns_endpoint_name(parent, options) == "foo"

    def test_own_namespace_annotation_is_not_cross_namespace(
        self, make_httpproxy, make_options
    ):
        """Naming the parent's own namespace keeps the plain name."""
        parent = proxy(
            make_httpproxy,
            namespace="bar",
            annotations={DNS_NAMESPACE_ANNOTATION: "bar"},
        )
        options = make_options(allowed_dns_namespaces=("bar",))

        assert desired_state.cross_namespace_dns(parent, options) is None
        assert desired_state.dns_endpoint_name(parent, options) == "foo"

    def test_secret_reference(self, make_httpproxy, make_options):
        """Delegated certificates are referenced as namespace/name."""
        parent = proxy(
            make_httpproxy,
            namespace="bar",
            annotations={ISSUER_NAMESPACE_ANNOTATION: "certs"},
        )
        options = make_options(allowed_issuer_namespaces=("certs",))

        assert desired_state.desired_secret_reference(parent, options) == "certs/bar-foo"
        assert desired_state.desired_secret_reference(parent, make_options()) is None


class TestIssuerResolution:
    """Test issuer precedence."""

    def test_default_issuer(self, make_httpproxy, make_options):
        """Without annotations the configured default is used."""
        issuer = desired_state.resolve_issuer(proxy(make_httpproxy), make_options())

        assert issuer.name == "test-issuer"
        assert issuer.kind == "Issuer"

    def test_issuer_annotation(self, make_httpproxy, make_options):
        """The issuer annotation overrides the default."""
        parent = proxy(make_httpproxy, annotations={ISSUER_ANNOTATION: "custom"})
        issuer = desired_state.resolve_issuer(
            parent, make_options(default_issuer_kind="ClusterIssuer")
        )

        assert issuer.name == "custom"
        assert issuer.kind == "Issuer"

    def test_cluster_issuer_wins(self, make_httpproxy, make_options):
        """The cluster-issuer annotation takes precedence over the issuer one."""
        parent = proxy(
            make_httpproxy,
            annotations={ISSUER_ANNOTATION: "ns-issuer", CLUSTER_ISSUER_ANNOTATION: "global"},
        )
        issuer = desired_state.resolve_issuer(parent, make_options())

        assert issuer.name == "global"
        assert issuer.kind == "ClusterIssuer"


class TestDelegatedDomain:
    """Test delegated domain resolution and the delegation record."""

    def test_delegation_record(self, make_httpproxy, make_options, registry):
        """The challenge name is delegated below the delegated domain."""
        parent = proxy(make_httpproxy, fqdn="foo.example.com.")
        options = make_options(default_delegated_domain="delegated.com")

        child = desired_state.build_delegation_dns_endpoint(parent, options, registry)

        assert child is not None
        assert child.name == "foo-delegation"
        assert child.namespace == "default"
        endpoint = child.manifest()["spec"]["endpoints"][0]
        assert endpoint == {
            "dnsName": "_acme-challenge.foo.example.com",
            "targets": ["_acme-challenge.foo.example.com.delegated.com"],
            "recordType": "CNAME",
            "recordTTL": 3600,
        }

    def test_delegated_domain_used_verbatim(self, make_httpproxy, make_options):
        """The delegated domain is appended as configured, trailing dot included."""
        parent = proxy(make_httpproxy, fqdn="foo.example.com")
        options = make_options(default_delegated_domain="delegated.com.")

        endpoint = desired_state.make_delegation_endpoint(
            parent.fqdn, desired_state.resolve_delegated_domain(parent, options)
        )

        assert endpoint.dns_name == "_acme-challenge.foo.example.com"
        assert endpoint.targets == ["_acme-challenge.foo.example.com.delegated.com."]

    def test_no_delegated_domain(self, make_httpproxy, make_options, registry):
        """Without a delegated domain no delegation record is built."""
        child = desired_state.build_delegation_dns_endpoint(
            proxy(make_httpproxy), make_options(), registry
        )
        assert child is None

    def test_custom_delegation_requires_permission(self, make_httpproxy, make_options):
        """An annotation only overrides the default when allowed and listed."""
        parent = proxy(make_httpproxy, annotations={DELEGATED_DOMAIN_ANNOTATION: "other.com"})

        allowed = make_options(
            default_delegated_domain="delegated.com",
            allow_custom_delegations=True,
            allowed_delegated_domains=("other.com",),
        )
        not_enabled = make_options(
            default_delegated_domain="delegated.com",
            allowed_delegated_domains=("other.com",),
        )
        not_listed = make_options(
            default_delegated_domain="delegated.com", allow_custom_delegations=True
        )

        assert desired_state.resolve_delegated_domain(parent, allowed) == "other.com"
        assert desired_state.resolve_delegated_domain(parent, not_enabled) == "delegated.com"
        assert desired_state.resolve_delegated_domain(parent, not_listed) == "delegated.com"


class TestDNSRecords:
    """Test load balancer address handling and DNS endpoints."""

    def test_load_balancer_addresses(self, make_service):
        """Valid IPs are collected; hostnames and invalid values are skipped."""
        service = make_service(["10.0.0.1", "not-an-ip"])
        service["status"]["loadBalancer"]["ingress"].append({"hostname": "lb.example"})

        addresses = desired_state.load_balancer_addresses(service)

        assert addresses == [ipaddress.ip_address("10.0.0.1")]
        assert desired_state.load_balancer_addresses(None) == []

    def test_endpoints_split_by_family(self):
        """IPv4 and IPv4-mapped addresses become A records, others AAAA."""
        addresses = [
            ipaddress.ip_address("10.0.0.1"),
            ipaddress.ip_address("::ffff:10.0.0.2"),
            ipaddress.ip_address("2001:db8::1"),
        ]

        endpoints = desired_state.make_endpoints("foo.example.com", addresses)

        assert [e.record_type for e in endpoints] == ["A", "AAAA"]
        assert endpoints[0].targets == ["10.0.0.1", "10.0.0.2"]
        assert endpoints[1].targets == ["2001:db8::1"]
        assert all(e.record_ttl == 3600 for e in endpoints)

    def test_dns_endpoint_without_addresses(self, make_httpproxy, make_options, registry):
        """No addresses means no DNS record."""
        child = desired_state.build_dns_endpoint(
            proxy(make_httpproxy), make_options(), registry, []
        )
        assert child is None

    def test_dns_endpoint_disabled(self, make_httpproxy, make_options, registry):
        """DNS records are not built when DNSEndpoint creation is disabled."""
        child = desired_state.build_dns_endpoint(
            proxy(make_httpproxy),
            make_options(create_dns_endpoint=False),
            registry,
            [ipaddress.ip_address("10.0.0.1")],
        )
        assert child is None


class TestBuildCertificate:
    """Test the Certificate built for an HTTPProxy."""

    def test_certificate_spec(self, make_httpproxy, make_options, registry):
        """A tls-acme HTTPProxy gets a Certificate for its FQDN."""
        child = desired_state.build_certificate(
            acme_proxy(make_httpproxy), make_options(), registry
        )

        assert child is not None
        manifest = child.manifest()
        assert manifest["apiVersion"] == "cert-manager.io/v1"
        assert manifest["kind"] == "Certificate"
        assert manifest["metadata"] == {"name": "foo", "namespace": "default"}
        spec = manifest["spec"]
        assert spec["dnsNames"] == ["test.example.com"]
        assert spec["commonName"] == "test.example.com"
        assert spec["secretName"] == "foo-tls"
        assert spec["issuerRef"] == {"kind": "Issuer", "name": "test-issuer"}
        assert spec["usages"] == ["digital signature", "key encipherment", "server auth"]
        assert "revisionHistoryLimit" not in spec
        assert "privateKey" not in spec
        assert "secretTemplate" not in spec

    def test_requires_tls_acme(self, make_httpproxy, make_options, registry):
        """Without tls-acme set to true no Certificate is built."""
        parent = proxy(make_httpproxy, secret_name="foo-tls")
        assert desired_state.build_certificate(parent, make_options(), registry) is None

    def test_requires_secret_name(self, make_httpproxy, make_options, registry):
        """A same-namespace Certificate needs the HTTPProxy's secret reference."""
        parent = acme_proxy(make_httpproxy, secret_name=None)
        assert desired_state.build_certificate(parent, make_options(), registry) is None

    def test_requires_issuer_name(self, make_httpproxy, make_options, registry):
        """No Certificate is built when no issuer name resolves."""
        child = desired_state.build_certificate(
            acme_proxy(make_httpproxy), make_options(default_issuer_name=""), registry
        )
        assert child is None

    def test_disabled(self, make_httpproxy, make_options, registry):
        """No Certificate is built when Certificate creation is disabled."""
        child = desired_state.build_certificate(
            acme_proxy(make_httpproxy), make_options(create_certificate=False), registry
        )
        assert child is None

    def test_cross_namespace_certificate(self, make_httpproxy, make_options, registry):
        """A Certificate in the issuer namespace writes a generated Secret."""
        parent = acme_proxy(
            make_httpproxy,
            namespace="bar",
            secret_name=None,
            annotations={ISSUER_NAMESPACE_ANNOTATION: "certs"},
        )
        options = make_options(allowed_issuer_namespaces=("certs",))

        child = desired_state.build_certificate(parent, options, registry)

        assert child is not None
        assert child.key == ("certs", "bar-foo")
        assert child.manifest()["spec"]["secretName"] == "bar-foo"

    def test_revision_history_limit_annotation(self, make_httpproxy, make_options, registry):
        """The annotation overrides the configured revision limit."""
        parent = acme_proxy(
            make_httpproxy, annotations={REVISION_HISTORY_LIMIT_ANNOTATION: "5"}
        )
        child = desired_state.build_certificate(
            parent, make_options(csr_revision_limit=3), registry
        )
        assert child.manifest()["spec"]["revisionHistoryLimit"] == 5

    def test_revision_history_limit_default(self, make_httpproxy, make_options, registry):
        """A positive configured limit applies without the annotation."""
        child = desired_state.build_certificate(
            acme_proxy(make_httpproxy), make_options(csr_revision_limit=3), registry
        )
        assert child.manifest()["spec"]["revisionHistoryLimit"] == 3

    def test_invalid_revision_history_limit(self, make_httpproxy, make_options, registry):
        """An unparsable revision limit aborts the Certificate."""
        parent = acme_proxy(
            make_httpproxy, annotations={REVISION_HISTORY_LIMIT_ANNOTATION: "many"}
        )
        with pytest.raises(AnnotationValueError) as exc_info:
            desired_state.build_certificate(parent, make_options(), registry)

        assert exc_info.value.annotation == REVISION_HISTORY_LIMIT_ANNOTATION
        assert "many" in str(exc_info.value)

    def test_private_key(self, make_httpproxy, make_options, registry):
        """Algorithm and a valid size are passed through."""
        parent = acme_proxy(
            make_httpproxy,
            annotations={
                PRIVATE_KEY_ALGORITHM_ANNOTATION: "ECDSA",
                PRIVATE_KEY_SIZE_ANNOTATION: "384",
            },
        )
        child = desired_state.build_certificate(parent, make_options(), registry)
        assert child.manifest()["spec"]["privateKey"] == {"algorithm": "ECDSA", "size": 384}

    def test_invalid_private_key_size_is_omitted(
        self, make_httpproxy, make_options, registry
    ):
        """An unparsable size leaves the size to the issuer default."""
        parent = acme_proxy(
            make_httpproxy,
            annotations={
                PRIVATE_KEY_ALGORITHM_ANNOTATION: "RSA",
                PRIVATE_KEY_SIZE_ANNOTATION: "big",
            },
        )
        child = desired_state.build_certificate(parent, make_options(), registry)
        assert child.manifest()["spec"]["privateKey"] == {"algorithm": "RSA"}

    def test_size_without_algorithm_is_ignored(self, make_httpproxy, make_options, registry):
        """The size annotation alone does not add a private key override."""
        parent = acme_proxy(make_httpproxy, annotations={PRIVATE_KEY_SIZE_ANNOTATION: "384"})
        child = desired_state.build_certificate(parent, make_options(), registry)
        assert "privateKey" not in child.manifest()["spec"]

    def test_propagated_metadata(self, make_httpproxy, make_options, registry):
        """Allow-listed annotations and labels reach the child and its Secret."""
        parent = acme_proxy(
            make_httpproxy,
            annotations={"team": "a", "other": "x"},
            labels={"app": "web", "tier": "front"},
        )
        options = make_options(
            propagated_annotations=("team", "missing"), propagated_labels=("app",)
        )

        manifest = desired_state.build_certificate(parent, options, registry).manifest()

        assert manifest["metadata"]["annotations"] == {"team": "a"}
        assert manifest["metadata"]["labels"] == {"app": "web"}
        assert manifest["spec"]["secretTemplate"] == {
            "annotations": {"team": "a"},
            "labels": {"app": "web"},
        }


class TestBuildTLSCertificateDelegation:
    """Test the TLSCertificateDelegation for cross-namespace certificates."""

    def test_delegation(self, make_httpproxy, make_options, registry):
        """The issuer namespace delegates the Secret to the parent namespace."""
        parent = proxy(
            make_httpproxy,
            namespace="bar",
            annotations={ISSUER_NAMESPACE_ANNOTATION: "certs"},
        )
        options = make_options(allowed_issuer_namespaces=("certs",))

        child = desired_state.build_tls_certificate_delegation(parent, options, registry)

        assert child is not None
        manifest = child.manifest()
        assert manifest["apiVersion"] == "projectcontour.io/v1"
        assert manifest["kind"] == "TLSCertificateDelegation"
        assert child.key == ("certs", "bar-foo")
        assert manifest["spec"] == {
            "delegations": [{"secretName": "bar-foo", "targetNamespaces": ["bar"]}]
        }

    def test_no_delegation_in_same_namespace(self, make_httpproxy, make_options, registry):
        """Same-namespace certificates need no delegation."""
        child = desired_state.build_tls_certificate_delegation(
            proxy(make_httpproxy), make_options(), registry
        )
        assert child is None
