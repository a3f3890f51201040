"""
Schema registry access for KSRT.

This module provides:
- RegistryClient protocol and RegisteredSchema type
- HttpRegistryClient for Confluent-compatible registries
- InMemoryRegistryClient for tests and dry runs
- Bounded retry helper for transient failures

Invariants:
    - Pipeline components receive a client; they never create one
    - Only the retry helper retries; clients fail fast
"""

from .base import RegisteredSchema, RegistryClient
from .retry import RetryPolicy, call_with_retry
from .http import HttpRegistryClient
from .memory import InMemoryRegistryClient

__all__ = [
    "RegistryClient",
    "RegisteredSchema",
    "RetryPolicy",
    "call_with_retry",
    "HttpRegistryClient",
    "InMemoryRegistryClient",
]
