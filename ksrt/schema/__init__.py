"""
Schema module for KSRT.

This module turns local schema files into a publishable graph:
- Source loading and import extraction (loader, protobuf)
- Dependency graph construction (graph, externals)
- Publish ordering and cycle detection (sequencer)
- Canonical form and fingerprints (canonical)
- Subject naming (naming)

Invariants:
    - A graph is frozen before it is sequenced or published
    - Dependencies always precede dependents in a publish order
    - Canonical text is a pure function of the token stream
"""

from .types import (
    DependencyGraph,
    PublishRecord,
    ReferenceDescriptor,
    SchemaNode,
    SchemaRoot,
    SchemaType,
)
from .canonical import (
    Canonicalizer,
    JsonCanonicalizer,
    ProtobufCanonicalizer,
    compute_fingerprint,
    get_canonicalizer,
)
from .loader import FileSystemResolver, SchemaSource, SchemaSourceLoader, SourceResolver
from .naming import ReferenceSubjects, SubjectNameStrategy, dependency_subject
from .externals import ExternalReference, ExternalReferences
from .sequencer import find_cycle, sequence
from .graph import DEFAULT_BUILTIN_PREFIXES, ImportGraphBuilder

__all__ = [
    # Types
    "SchemaType",
    "SchemaNode",
    "SchemaRoot",
    "DependencyGraph",
    "PublishRecord",
    "ReferenceDescriptor",
    # Canonical form
    "Canonicalizer",
    "ProtobufCanonicalizer",
    "JsonCanonicalizer",
    "get_canonicalizer",
    "compute_fingerprint",
    # Loading
    "SchemaSource",
    "SchemaSourceLoader",
    "SourceResolver",
    "FileSystemResolver",
    # Naming
    "SubjectNameStrategy",
    "ReferenceSubjects",
    "dependency_subject",
    # Graph
    "ExternalReference",
    "ExternalReferences",
    "ImportGraphBuilder",
    "DEFAULT_BUILTIN_PREFIXES",
    "sequence",
    "find_cycle",
]
