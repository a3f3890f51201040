"""
Registry retriever for KSRT.

Fetches a subject version and, transitively, every version it references.
This is graph resolution in reverse: edges come from registry reference
metadata instead of local imports, and all targets already exist, so
sibling fetches can run concurrently.

Invariants:
    - Each (subject, version) is fetched at most once per retrieve() call
    - Concurrent requests for the same identity share one fetch task
    - At most `max_concurrency` registry calls are in flight
    - Reference cycles are reported, never followed forever

How to change safely:
    - Memo lookup and insert must stay free of awaits between them;
      that is what makes the first requester win
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Dict, List, Optional, Tuple

from ..errors import CyclicReferenceError
from ..registry.base import RegisteredSchema, RegistryClient
from ..registry.retry import RetryPolicy, call_with_retry
from ..schema.types import ReferenceDescriptor, SchemaType

logger = logging.getLogger(__name__)

Identity = Tuple[str, int]


@dataclass(eq=False)
class RetrievalNode:
    """A retrieved schema version and its resolved references.

    Attributes:
        schema: Registry data for this version
        children: Reference name -> retrieved node
        local_path: Path assigned when materialized
    """

    schema: RegisteredSchema
    children: Dict[str, RetrievalNode] = field(default_factory=dict)
    local_path: Optional[str] = None

    @property
    def identity(self) -> Identity:
        return self.schema.identity

    @property
    def subject(self) -> str:
        return self.schema.subject

    @property
    def version(self) -> int:
        return self.schema.version

    @property
    def content(self) -> str:
        return self.schema.content

    @property
    def schema_type(self) -> SchemaType:
        return self.schema.schema_type

    @property
    def references(self) -> Tuple[ReferenceDescriptor, ...]:
        return self.schema.references


@dataclass
class RetrievalResult:
    """Outcome of a retrieval.

    Attributes:
        root: The requested schema version
        nodes: All retrieved versions keyed by (subject, version)
        fetches: Registry fetches performed
    """

    root: RetrievalNode
    nodes: Dict[Identity, RetrievalNode]
    fetches: int = 0


class RegistryRetriever:
    """Retrieve a schema version together with all referenced versions.

    Attributes:
        registry: Registry client (borrowed, not closed here)
        retry_policy: Retry settings for every registry call
        max_concurrency: Maximum registry calls in flight

    Example:
        >>> retriever = RegistryRetriever(registry, max_concurrency=4)
        >>> result = await retriever.retrieve("orders-value")
        >>> sorted(result.nodes)
        [('acme.common.Money', 1), ('orders-value', 3)]
    """

    def __init__(
        self,
        registry: RegistryClient,
        retry_policy: Optional[RetryPolicy] = None,
        max_concurrency: int = 8,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.registry = registry
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_concurrency = max_concurrency

    async def retrieve(self, subject: str, version: Optional[int] = None) -> RetrievalResult:
        """Fetch a schema version and everything it references.

        Args:
            subject: Registry subject
            version: Version to fetch (latest when None)

        Returns:
            RetrievalResult with linked RetrievalNodes

        Raises:
            NotFoundError: If a subject or version does not exist
            RegistryUnavailableError: If the registry stays unreachable
            CyclicReferenceError: If references form a cycle
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)
        memo: Dict[Identity, asyncio.Future] = {}
        counter = [0]

        root = await self._get(subject, version, semaphore, counter)
        root_future: asyncio.Future = asyncio.get_running_loop().create_future()
        root_future.set_result(root)
        memo[root.identity] = root_future

        fetched: Dict[Identity, RegisteredSchema] = {root.identity: root}
        level: List[RegisteredSchema] = [root]

        while level:
            wanted: Dict[Identity, Awaitable[RegisteredSchema]] = {}
            for schema in level:
                for ref in schema.references:
                    key = (ref.subject, ref.version)
                    if key not in fetched and key not in wanted:
                        wanted[key] = self._fetch(key, memo, semaphore, counter)

            results = await asyncio.gather(*wanted.values(), return_exceptions=True)
            errors = [r for r in results if isinstance(r, BaseException)]
            if errors:
                raise errors[0]

            level = []
            for key, schema in zip(wanted, results):
                fetched[key] = schema
                level.append(schema)

        nodes = {key: RetrievalNode(schema) for key, schema in fetched.items()}
        _check_cycles(nodes, root.identity)
        for node in nodes.values():
            for ref in node.references:
                node.children[ref.name] = nodes[(ref.subject, ref.version)]

        logger.info(
            f"Retrieved {root.subject} version {root.version} with {len(nodes) - 1} reference(s)",
            extra={"fetches": counter[0]},
        )
        return RetrievalResult(root=nodes[root.identity], nodes=nodes, fetches=counter[0])

    def _fetch(
        self,
        key: Identity,
        memo: Dict[Identity, asyncio.Future],
        semaphore: asyncio.Semaphore,
        counter: List[int],
    ) -> asyncio.Future:
        # No await between lookup and insert: the first requester wins
        # and later requesters share its task.
        task = memo.get(key)
        if task is None:
            subject, version = key
            task = asyncio.ensure_future(self._get(subject, version, semaphore, counter))
            memo[key] = task
        return task

    async def _get(
        self,
        subject: str,
        version: Optional[int],
        semaphore: asyncio.Semaphore,
        counter: List[int],
    ) -> RegisteredSchema:
        registry = self.registry
        async with semaphore:
            counter[0] += 1
            if version is None:
                return await call_with_retry(
                    lambda: registry.get_latest_version(subject),
                    self.retry_policy,
                    f"get latest version of {subject}",
                )
            return await call_with_retry(
                lambda: registry.get_by_version(subject, version),
                self.retry_policy,
                f"get {subject} version {version}",
            )


def _check_cycles(nodes: Dict[Identity, RetrievalNode], start: Identity) -> None:
    """Depth-first walk from `start`; raise on the first back edge."""

    def edges(key: Identity) -> List[Identity]:
        return [(ref.subject, ref.version) for ref in nodes[key].references]

    visiting = {start}
    done = set()
    path = [start]
    stack = [iter(edges(start))]

    while stack:
        nxt = next(stack[-1], None)
        if nxt is None:
            finished = path.pop()
            visiting.discard(finished)
            done.add(finished)
            stack.pop()
            continue
        if nxt in visiting:
            cycle = path[path.index(nxt):] + [nxt]
            raise CyclicReferenceError(cycle)
        if nxt not in done:
            visiting.add(nxt)
            path.append(nxt)
            stack.append(iter(edges(nxt)))
