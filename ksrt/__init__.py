"""
KSRT - Kafka Schema Registry Tool.

This package publishes and retrieves schemas to/from a Confluent-compatible
schema registry, handling cross-file imports:

    ┌──────────┐    ┌─────────────┐    ┌───────────┐    ┌─────────────┐
    │  Loader  │───▶│ Graph       │───▶│ Sequencer │───▶│  Publisher  │
    │ (.proto) │    │ Builder     │    │ (topo)    │    │ (per node)  │
    └──────────┘    └─────────────┘    └───────────┘    └──────┬──────┘
                                                               │
                                                               ▼
                                                     ┌───────────────────┐
                                                     │  Schema Registry  │
                                                     └─────────┬─────────┘
                                                               │
                                                               ▼
                                                     ┌───────────────────┐
                                                     │ Retriever → files │
                                                     └───────────────────┘

Invariants:
    - Dependencies are always registered before their dependents
    - Re-publishing unchanged schemas never creates a new version
    - The registry client is passed in explicitly, never a global
    - Each registry write is durable on its own; there is no rollback

How to change safely:
    - New schema formats plug in through a Canonicalizer and the loader
    - Keep canonical output stable: changing it creates new versions
      for every subject on the next publish
"""

from ._version import __version__

__all__ = ["__version__"]
