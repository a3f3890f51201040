"""
End-to-end publish pipeline: load -> graph -> sequence -> publish.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Sequence, Union

from ..registry.base import RegistryClient
from ..registry.retry import RetryPolicy
from ..schema.canonical import get_canonicalizer
from ..schema.externals import ExternalReferences
from ..schema.graph import DEFAULT_BUILTIN_PREFIXES, ImportGraphBuilder
from ..schema.loader import FileSystemResolver, SchemaSourceLoader
from ..schema.naming import ReferenceSubjects
from ..schema.sequencer import sequence
from ..schema.types import SchemaRoot, SchemaType
from .publisher import PublishResult, RegistryPublisher

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


async def publish_schemas(
    registry: RegistryClient,
    roots: Sequence[SchemaRoot],
    schema_type: SchemaType = SchemaType.PROTOBUF,
    include_dirs: Sequence[PathLike] = (),
    strip_comments: bool = False,
    externals: Optional[ExternalReferences] = None,
    retry_policy: Optional[RetryPolicy] = None,
    reference_subjects: ReferenceSubjects = ReferenceSubjects.RECORD,
    builtin_prefixes: Sequence[str] = DEFAULT_BUILTIN_PREFIXES,
    cancel_event: Optional[asyncio.Event] = None,
) -> PublishResult:
    """Publish root schemas and everything they import.

    Each root's directory is searched for imports before `include_dirs`.

    Args:
        registry: Registry client
        roots: Root files with their target subjects
        schema_type: Format of all files
        include_dirs: Additional import search directories
        strip_comments: Drop comments from registered content
        externals: Imports satisfied by existing registry subjects
        retry_policy: Retry settings for registry calls
        reference_subjects: Subject rule for imported schemas
        builtin_prefixes: Imports supplied by the registry
        cancel_event: Stops publication between nodes when set

    Returns:
        PublishResult
    """
    retry_policy = retry_policy or RetryPolicy()

    search_path = []
    for root in roots:
        parent = Path(root.path).parent
        if parent not in search_path:
            search_path.append(parent)
    search_path.extend(Path(d) for d in include_dirs)

    builder = ImportGraphBuilder(
        loader=SchemaSourceLoader(schema_type),
        resolver=FileSystemResolver(search_path),
        externals=externals,
        registry=registry,
        retry_policy=retry_policy,
        builtin_prefixes=builtin_prefixes,
        reference_subjects=reference_subjects,
    )
    graph = await builder.build(roots)
    order = sequence(graph)

    publisher = RegistryPublisher(
        registry=registry,
        canonicalizer=get_canonicalizer(schema_type, strip_comments),
        retry_policy=retry_policy,
        cancel_event=cancel_event,
    )
    return await publisher.publish(graph, order)


async def publish_schema(
    registry: RegistryClient,
    file: PathLike,
    subject: str,
    **options,
) -> PublishResult:
    """Publish one root schema under `subject`. See publish_schemas()."""
    return await publish_schemas(registry, [SchemaRoot(Path(file), subject)], **options)
