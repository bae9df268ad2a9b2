"""
Contour Plus Operator - companion controller for Contour HTTPProxy resources.

This operator derives dependent resources from annotated HTTPProxy objects:
- external-dns DNSEndpoint records for the load balancer addresses
- ACME challenge delegation records
- cert-manager Certificates and cross-namespace TLS delegations
"""

__version__ = "0.1.0"
