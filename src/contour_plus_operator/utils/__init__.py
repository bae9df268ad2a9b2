"""
Utils package - Utility modules for Contour Plus operator functionality.

Contains helper modules for:
- Kubernetes API access
- Token bucket rate limiting
- Deduplicating work queues
"""
