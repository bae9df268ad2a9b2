"""
Handlers package - kopf watch handlers feeding the HTTPProxy controller.

This package organizes handlers by watched resource:
- httpproxy.py: the HTTPProxy parents
- service.py: the load balancer Service
- dnsendpoint.py: DNSEndpoint children
- certificate.py: Certificate and TLSCertificateDelegation children
"""
