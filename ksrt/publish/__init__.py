"""
Publication for KSRT.

Registers a sequenced dependency graph in dependency order, reusing
existing versions whenever canonical content and references are unchanged.
"""

from .publisher import PublishResult, PublishStatus, RegistryPublisher
from .pipeline import publish_schema, publish_schemas

__all__ = [
    "RegistryPublisher",
    "PublishResult",
    "PublishStatus",
    "publish_schema",
    "publish_schemas",
]
