"""
Registry publisher for KSRT.

The publisher walks a sequenced dependency graph and makes sure every
schema is registered, in order, with references to the exact versions its
dependencies ended up at.

Invariants:
    - Nodes are processed strictly in the given order, one at a time
    - A node's references come only from PublishRecords of earlier nodes
    - A subject gets a new version only if canonical content or the
      reference set differs from its latest version
    - Stub nodes are never registered
    - Cancellation is honored between nodes, never inside one

How to change safely:
    - Do not parallelize: a node's references require its dependencies'
      final versions
    - There is no rollback; each accepted version is durable and valid,
      and a re-run converges through the idempotency check
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import CanonicalizationError, NotFoundError, PublishCancelledError
from ..registry.base import RegisteredSchema, RegistryClient
from ..registry.retry import RetryPolicy, call_with_retry
from ..schema.canonical import Canonicalizer, compute_fingerprint
from ..schema.types import DependencyGraph, PublishRecord, ReferenceDescriptor, SchemaNode

logger = logging.getLogger(__name__)


class PublishStatus(Enum):
    """What happened to a node during publication."""

    REGISTERED = "registered"  # new version created
    REUSED = "reused"  # latest version already matched
    EXTERNAL = "external"  # stub, carried forward


@dataclass
class PublishResult:
    """Outcome of a publish run.

    Attributes:
        order: Logical paths in the order they were processed
        records: Logical path -> PublishRecord
        statuses: Logical path -> PublishStatus
        roots: Logical paths of the root schemas
    """

    order: List[str] = field(default_factory=list)
    records: Dict[str, PublishRecord] = field(default_factory=dict)
    statuses: Dict[str, PublishStatus] = field(default_factory=dict)
    roots: Tuple[str, ...] = ()

    @property
    def registered(self) -> List[str]:
        """Paths that got a new registry version."""
        return [p for p in self.order if self.statuses[p] is PublishStatus.REGISTERED]

    @property
    def reused(self) -> List[str]:
        """Paths whose latest version already matched."""
        return [p for p in self.order if self.statuses[p] is PublishStatus.REUSED]

    def root_record(self) -> PublishRecord:
        """PublishRecord of the first root."""
        return self.records[self.roots[0]]


class RegistryPublisher:
    """Publish a sequenced dependency graph to the registry.

    Attributes:
        registry: Registry client (borrowed, not closed here)
        canonicalizer: Canonicalization strategy for local content
        retry_policy: Retry settings for every registry call
        cancel_event: When set, publication stops before the next node

    Example:
        >>> publisher = RegistryPublisher(registry, get_canonicalizer(SchemaType.PROTOBUF))
        >>> result = await publisher.publish(graph, sequence(graph))
        >>> result.order
        ['b.proto', 'a.proto']
    """

    def __init__(
        self,
        registry: RegistryClient,
        canonicalizer: Canonicalizer,
        retry_policy: Optional[RetryPolicy] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        self.registry = registry
        self.canonicalizer = canonicalizer
        self.retry_policy = retry_policy or RetryPolicy()
        self.cancel_event = cancel_event

    async def publish(self, graph: DependencyGraph, order: Sequence[str]) -> PublishResult:
        """Publish every node in order.

        Args:
            graph: Frozen dependency graph
            order: Publish order from sequence()

        Returns:
            PublishResult with a record for every node

        Raises:
            CanonicalizationError: If a schema cannot be canonicalized
            RegistrationRejectedError: If the registry refuses a schema;
                nodes before it stay registered
            RegistryUnavailableError: If the registry stays unreachable
            PublishCancelledError: If cancel_event is set between nodes
        """
        result = PublishResult(roots=graph.roots)

        for path in order:
            if self.cancel_event is not None and self.cancel_event.is_set():
                logger.warning(f"Publication cancelled before {path}")
                raise PublishCancelledError(result.records)

            node = graph[path]
            if node.is_stub:
                record, status = node.stub_record, PublishStatus.EXTERNAL
                logger.info(
                    f"{path}: using existing {record.subject} version {record.version}",
                    extra={"subject": record.subject, "version": record.version},
                )
            else:
                record, status = await self._publish_node(node, result.records)

            result.order.append(path)
            result.records[path] = record
            result.statuses[path] = status

        logger.info(
            f"Published {len(result.order)} schema(s): "
            f"{len(result.registered)} registered, {len(result.reused)} unchanged"
        )
        return result

    def references_for(
        self,
        node: SchemaNode,
        records: Dict[str, PublishRecord],
    ) -> List[ReferenceDescriptor]:
        """Reference descriptors for a node's dependencies, in import order."""
        return [records[dep].as_reference(dep) for dep in node.dependencies]

    async def _publish_node(
        self,
        node: SchemaNode,
        records: Dict[str, PublishRecord],
    ) -> Tuple[PublishRecord, PublishStatus]:
        canonical = self.canonicalizer.canonicalize(node.content, node.path)
        references = self.references_for(node, records)
        fingerprint = compute_fingerprint(canonical, references)

        latest = await self._latest(node.subject)
        if (
            latest is not None
            and latest.schema_type is node.schema_type
            and self._fingerprint_of(latest) == fingerprint
        ):
            logger.info(
                f"{node.path}: unchanged, reusing {node.subject} version {latest.version}",
                extra={"subject": node.subject, "version": latest.version, "schema_id": latest.schema_id},
            )
            record = PublishRecord(
                subject=node.subject,
                version=latest.version,
                schema_id=latest.schema_id,
                fingerprint=fingerprint,
            )
            return record, PublishStatus.REUSED

        registry = self.registry
        version, schema_id = await call_with_retry(
            lambda: registry.register(node.subject, canonical, node.schema_type, references),
            self.retry_policy,
            f"register {node.subject}",
        )
        logger.info(
            f"{node.path}: registered {node.subject} version {version}",
            extra={
                "subject": node.subject,
                "version": version,
                "schema_id": schema_id,
                "references": [ref.to_dict() for ref in references],
            },
        )
        record = PublishRecord(
            subject=node.subject,
            version=version,
            schema_id=schema_id,
            fingerprint=fingerprint,
        )
        return record, PublishStatus.REGISTERED

    async def _latest(self, subject: str) -> Optional[RegisteredSchema]:
        registry = self.registry
        try:
            return await call_with_retry(
                lambda: registry.get_latest_version(subject),
                self.retry_policy,
                f"get latest version of {subject}",
            )
        except NotFoundError:
            logger.debug(f"Subject {subject} has no versions yet")
            return None

    def _fingerprint_of(self, latest: RegisteredSchema) -> Optional[str]:
        try:
            canonical = self.canonicalizer.canonicalize(latest.content, latest.subject)
        except CanonicalizationError as e:
            logger.warning(
                f"Latest version of {latest.subject} cannot be canonicalized, "
                f"treating it as different: {e.message}"
            )
            return None
        return compute_fingerprint(canonical, latest.references)
