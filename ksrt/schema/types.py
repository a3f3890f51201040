"""
Core schema types for KSRT.

This module defines the data model shared by the publication and
retrieval pipelines:
- SchemaType: Supported schema formats
- SchemaNode: One schema file in the dependency graph
- DependencyGraph: All nodes reachable from the roots
- PublishRecord: Result of publishing (or reusing) one node
- ReferenceDescriptor: (name, subject, version) sent to the registry

Invariants:
    - A SchemaNode is identified by its logical path
    - Every dependency path of a node exists in the graph once frozen
    - A frozen graph is never modified
    - PublishRecord and ReferenceDescriptor are immutable

How to change safely:
    - Add new SchemaType members together with a canonicalizer
    - Never change the field order of to_dict() output; it feeds fingerprints
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..errors import GraphFrozenError, UnresolvedImportError

logger = logging.getLogger(__name__)


class SchemaType(Enum):
    """Supported schema formats."""

    AVRO = "avro"
    JSON = "json"
    PROTOBUF = "protobuf"

    @classmethod
    def from_str(cls, value: str) -> SchemaType:
        """Parse a schema type name (case-insensitive).

        Raises:
            ValueError: If the name is not a supported schema type
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ValueError(f"Unsupported schema type '{value}'. Must be one of: {valid}")

    @property
    def registry_name(self) -> str:
        """Name used for `schemaType` on the registry wire."""
        return self.value.upper()

    @property
    def suffix(self) -> str:
        """Default file suffix for schemas of this type."""
        return {
            SchemaType.AVRO: ".avsc",
            SchemaType.JSON: ".json",
            SchemaType.PROTOBUF: ".proto",
        }[self]


@dataclass(frozen=True)
class ReferenceDescriptor:
    """A declared dependency on an already-registered schema version.

    Attributes:
        name: Import name as it appears in the referencing schema
        subject: Registry subject of the dependency
        version: Registered version of the dependency
    """

    name: str
    subject: str
    version: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "subject": self.subject, "version": self.version}


@dataclass(frozen=True)
class PublishRecord:
    """Result of publishing one schema.

    Attributes:
        subject: Registry subject
        version: Version number assigned by the registry
        schema_id: Registry-wide schema id
        fingerprint: Fingerprint of canonical content plus references
    """

    subject: str
    version: int
    schema_id: int
    fingerprint: str

    def as_reference(self, name: str) -> ReferenceDescriptor:
        """Reference descriptor for a dependent importing this schema as `name`."""
        return ReferenceDescriptor(name=name, subject=self.subject, version=self.version)


@dataclass(frozen=True)
class SchemaRoot:
    """A root schema file and the subject to publish it under.

    Attributes:
        path: Schema file path
        subject: Target subject (derived from the file when None)
    """

    path: Path
    subject: Optional[str] = None


@dataclass(frozen=True)
class SchemaNode:
    """A schema file in the dependency graph.

    Stub nodes represent dependencies that already live in the registry;
    they have no local content and carry their existing PublishRecord.

    Attributes:
        path: Logical path (import path relative to an include root)
        schema_type: Schema format
        subject: Registry subject this node publishes to
        content: Raw schema text (empty for stubs)
        dependencies: Logical paths of imported schemas, in import order
        location: File the content was read from (None for stubs)
        stub_record: Existing registration (stubs only)
    """

    path: str
    schema_type: SchemaType
    subject: str
    content: str = ""
    dependencies: Tuple[str, ...] = ()
    location: Optional[Path] = None
    stub_record: Optional[PublishRecord] = None

    @property
    def is_stub(self) -> bool:
        """Whether this node is already registered and never re-published."""
        return self.stub_record is not None


class DependencyGraph:
    """Directed graph of schema files keyed by logical path.

    The graph is mutable while the builder loads sources and frozen
    before sequencing. Freezing validates that no edge dangles.

    Example:
        >>> graph = DependencyGraph()
        >>> graph.add_node(b, root=False)
        >>> graph.add_node(a, root=True)
        >>> graph.freeze()
        >>> graph.dependencies("a.proto")
        ('b.proto',)
    """

    def __init__(self) -> None:
        self._nodes: Dict[str, SchemaNode] = {}
        self._roots: List[str] = []
        self._frozen = False

    @property
    def frozen(self) -> bool:
        """Whether the graph is frozen."""
        return self._frozen

    @property
    def roots(self) -> Tuple[str, ...]:
        """Logical paths of the root schemas, in the order given."""
        return tuple(self._roots)

    def add_node(self, node: SchemaNode, root: bool = False) -> None:
        """Add a node to the graph.

        Raises:
            GraphFrozenError: If the graph is frozen
            ValueError: If a node with the same path exists
        """
        if self._frozen:
            raise GraphFrozenError(f"Cannot add '{node.path}': dependency graph is frozen")
        if node.path in self._nodes:
            raise ValueError(f"Schema '{node.path}' already in dependency graph")
        self._nodes[node.path] = node
        if root:
            self._roots.append(node.path)

    def mark_root(self, path: str) -> None:
        """Mark an existing node as a root."""
        if self._frozen:
            raise GraphFrozenError(f"Cannot mark '{path}' as root: dependency graph is frozen")
        if path not in self._roots:
            self._roots.append(path)

    def freeze(self) -> None:
        """Validate edges and make the graph immutable.

        Raises:
            UnresolvedImportError: If any dependency is not a node
        """
        if self._frozen:
            return
        for node in self._nodes.values():
            for dep in node.dependencies:
                if dep not in self._nodes:
                    raise UnresolvedImportError(dep, node.path)
        self._frozen = True
        logger.debug(f"Dependency graph frozen with {len(self._nodes)} node(s)")

    def get(self, path: str) -> Optional[SchemaNode]:
        return self._nodes.get(path)

    def __getitem__(self, path: str) -> SchemaNode:
        return self._nodes[path]

    def __contains__(self, path: object) -> bool:
        return path in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._nodes)

    def nodes(self) -> Iterator[SchemaNode]:
        """Iterate over all nodes."""
        yield from self._nodes.values()

    def dependencies(self, path: str) -> Tuple[str, ...]:
        """Dependency paths of a node, in import order."""
        return self._nodes[path].dependencies

    def dependents(self) -> Dict[str, List[str]]:
        """Reverse adjacency: path -> paths of nodes importing it."""
        reverse: Dict[str, List[str]] = {path: [] for path in self._nodes}
        for node in self._nodes.values():
            for dep in node.dependencies:
                reverse.setdefault(dep, []).append(node.path)
        return reverse
