"""
Import graph construction for KSRT.

The ImportGraphBuilder starts from one or more root files and loads every
transitively imported schema exactly once, producing a frozen
DependencyGraph. Traversal is an explicit work list keyed by logical path,
so deep import chains never hit recursion limits and cycles are left for
the sequencer to report.

Import resolution policy, checked per import in this order:
    1. Builtin prefixes (default `google/protobuf/`): provided by the
       registry itself; neither a node nor a reference.
    2. External references: become stub nodes carrying their existing
       registry version, even when a local file with that path exists.
    3. Everything else must resolve to a local file, or the build fails
       with UnresolvedImportError.

How to change safely:
    - Keep the policy order; tests in test_graph.py pin it down
    - Stubs must never get dependencies of their own
    - Roots are identified by file name; two distinct roots may not share
      one, and a root may not be declared external
"""

from __future__ import annotations

import logging
from collections import deque
from pathlib import Path
from typing import TYPE_CHECKING, Deque, Dict, Iterable, Optional, Sequence, Tuple, Union

from ..errors import ConfigError, NotFoundError, UnresolvedImportError
from ..registry.retry import RetryPolicy, call_with_retry
from .canonical import compute_fingerprint
from .externals import ExternalReference, ExternalReferences
from .loader import SchemaSourceLoader, SourceResolver
from .naming import ReferenceSubjects, dependency_subject
from .types import DependencyGraph, PublishRecord, SchemaNode, SchemaRoot

if TYPE_CHECKING:
    from ..registry.base import RegistryClient

logger = logging.getLogger(__name__)

DEFAULT_BUILTIN_PREFIXES: Tuple[str, ...] = ("google/protobuf/",)

RootLike = Union[SchemaRoot, Path, str]


class ImportGraphBuilder:
    """Build a DependencyGraph from root schema files.

    Attributes:
        loader: Reads schema files
        resolver: Locates imported files
        externals: Imports satisfied by existing registry subjects
        registry: Registry used to resolve external references
        builtin_prefixes: Import prefixes supplied by the registry

    Example:
        >>> builder = ImportGraphBuilder(
        ...     SchemaSourceLoader(SchemaType.PROTOBUF),
        ...     FileSystemResolver(["protos"]),
        ... )
        >>> graph = await builder.build([SchemaRoot(Path("protos/order.proto"), "orders-value")])
        >>> sorted(graph)
        ['acme/common/money.proto', 'order.proto']
    """

    def __init__(
        self,
        loader: SchemaSourceLoader,
        resolver: SourceResolver,
        externals: Optional[ExternalReferences] = None,
        registry: Optional[RegistryClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
        builtin_prefixes: Sequence[str] = DEFAULT_BUILTIN_PREFIXES,
        reference_subjects: ReferenceSubjects = ReferenceSubjects.RECORD,
    ) -> None:
        self.loader = loader
        self.resolver = resolver
        self.externals = externals or ExternalReferences()
        self.registry = registry
        self.retry_policy = retry_policy or RetryPolicy()
        self.builtin_prefixes = tuple(builtin_prefixes)
        self.reference_subjects = reference_subjects

    def is_builtin(self, import_name: str) -> bool:
        """Whether an import is supplied by the registry itself."""
        return any(import_name.startswith(prefix) for prefix in self.builtin_prefixes)

    async def build(self, roots: Iterable[RootLike]) -> DependencyGraph:
        """Load all schemas reachable from the roots.

        Args:
            roots: Root files, as paths or SchemaRoot (with target subject)

        Returns:
            Frozen DependencyGraph

        Raises:
            NotFoundError: If a root file cannot be read, or an external
                subject does not exist in the registry
            ParseError: If a schema's imports cannot be extracted
            UnresolvedImportError: If an import cannot be located
            ConfigError: If there are no roots, two distinct roots share a file
                name, or a root is declared external
        """
        graph = DependencyGraph()
        # (logical path, location, subject override, is_root)
        work: Deque[Tuple[str, Path, Optional[str], bool]] = deque()
        queued = set()
        root_files: Dict[str, Tuple[Path, Optional[str]]] = {}

        for root in roots:
            if not isinstance(root, SchemaRoot):
                root = SchemaRoot(Path(root))
            location = Path(root.path)
            logical = location.name

            if logical in self.externals:
                raise ConfigError(
                    f"Root schema '{logical}' is also declared as an external reference"
                )
            if logical in root_files:
                seen_location, seen_subject = root_files[logical]
                if seen_location.resolve() != location.resolve():
                    raise ConfigError(
                        f"Root schemas {seen_location} and {location} share the file name "
                        f"'{logical}'"
                    )
                if seen_subject != root.subject:
                    raise ConfigError(
                        f"Root schema {location} given twice with different subjects "
                        f"('{seen_subject}', '{root.subject}')"
                    )
                continue

            root_files[logical] = (location, root.subject)
            work.append((logical, location, root.subject, True))
            queued.add(logical)

        if not work:
            raise ConfigError("At least one root schema is required")

        while work:
            logical, location, subject, is_root = work.popleft()

            if logical in graph:
                if is_root:
                    graph.mark_root(logical)
                continue

            source = self.loader.load(location, logical)
            dependencies = []

            for import_name in source.imports:
                if self.is_builtin(import_name):
                    logger.debug(f"Skipping builtin import {import_name} in {logical}")
                    continue

                dependencies.append(import_name)

                if import_name in self.externals:
                    if import_name not in graph:
                        stub = await self._resolve_external(import_name, self.externals[import_name])
                        graph.add_node(stub)
                    continue

                if import_name in queued:
                    continue

                try:
                    dep_location = self.resolver.resolve(import_name, location)
                except NotFoundError as e:
                    raise UnresolvedImportError(import_name, logical) from e

                work.append((import_name, dep_location, None, False))
                queued.add(import_name)

            node = SchemaNode(
                path=logical,
                schema_type=self.loader.schema_type,
                subject=subject or dependency_subject(source, self.reference_subjects),
                content=source.content,
                dependencies=tuple(dependencies),
                location=location,
            )
            graph.add_node(node, root=is_root)
            logger.debug(
                f"Added {logical} to dependency graph",
                extra={"subject": node.subject, "dependencies": list(node.dependencies)},
            )

        graph.freeze()
        logger.info(
            f"Resolved {len(graph)} schema(s) from {len(graph.roots)} root(s)",
            extra={"stubs": sum(1 for node in graph.nodes() if node.is_stub)},
        )
        return graph

    async def _resolve_external(self, import_name: str, ref: ExternalReference) -> SchemaNode:
        if self.registry is None:
            raise ConfigError(
                f"External reference '{import_name}' -> '{ref.subject}' requires a registry client"
            )

        registry = self.registry
        if ref.version is None:
            registered = await call_with_retry(
                lambda: registry.get_latest_version(ref.subject),
                self.retry_policy,
                f"get latest version of {ref.subject}",
            )
        else:
            version = ref.version
            registered = await call_with_retry(
                lambda: registry.get_by_version(ref.subject, version),
                self.retry_policy,
                f"get {ref.subject} version {version}",
            )

        record = PublishRecord(
            subject=registered.subject,
            version=registered.version,
            schema_id=registered.schema_id,
            fingerprint=compute_fingerprint(registered.content, registered.references),
        )
        logger.info(
            f"Import {import_name} is external: {record.subject} version {record.version}",
            extra={"schema_id": record.schema_id},
        )
        return SchemaNode(
            path=import_name,
            schema_type=registered.schema_type,
            subject=record.subject,
            stub_record=record,
        )
