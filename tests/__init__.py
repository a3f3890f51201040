"""
KSRT Test Suite.

This package contains:
- unit/: Unit tests (no network, no registry)
- integration/: Publish and retrieval runs against the in-memory registry
"""
