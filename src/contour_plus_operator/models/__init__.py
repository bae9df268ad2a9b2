"""
Models package - Pydantic models for type-safe resource handling.

Defines data models for:
- Object identity and metadata
- The HTTPProxy parent resource
- DNSEndpoint, Certificate and TLSCertificateDelegation children
"""
