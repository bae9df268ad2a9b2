"""
Tests package - Test suite for the Contour Plus operator.

Contains:
- unit/: Unit tests run against an in-memory Kubernetes API
"""
