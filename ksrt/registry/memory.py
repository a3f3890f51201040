"""
In-memory schema registry for testing.

This module provides a registry backend that keeps all subjects in memory,
for:
- Unit and integration tests
- Dry runs of the publish pipeline without a registry

It mirrors the behavior KSRT relies on from a real registry: versions
start at 1 per subject, identical schemas share one global id,
re-registering an identical schema returns the existing version, and
references must point at existing versions.

Invariants:
    - All data is lost when the instance is discarded
    - Every call is counted in `calls` for assertions

How to change safely:
    - This is test support code, but keep it faithful to the REST
      registry's semantics or tests stop meaning anything
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, defaultdict
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..errors import NotFoundError, RegistrationRejectedError, RegistryTransientError
from ..schema.types import ReferenceDescriptor, SchemaType
from .base import RegisteredSchema

logger = logging.getLogger(__name__)


class InMemoryRegistryClient:
    """In-memory implementation of RegistryClient.

    Attributes:
        calls: Counter of (operation, subject, version) tuples
        latency_seconds: Artificial delay added to every call

    Example:
        >>> registry = InMemoryRegistryClient()
        >>> await registry.register("b", "message B {}", SchemaType.PROTOBUF)
        (1, 1)
        >>> (await registry.get_latest_version("b")).version
        1
    """

    def __init__(self, latency_seconds: float = 0.0) -> None:
        self.latency_seconds = latency_seconds
        self.calls: Counter = Counter()
        self._subjects: Dict[str, List[RegisteredSchema]] = defaultdict(list)
        self._ids: Dict[Tuple[str, SchemaType, Tuple[ReferenceDescriptor, ...]], int] = {}
        self._next_id = 1
        self._transient_failures = 0
        self._rejected: Dict[str, str] = {}
        self._closed = False

    @property
    def subjects(self) -> List[str]:
        """Subjects with at least one version."""
        return sorted(s for s, versions in self._subjects.items() if versions)

    def versions(self, subject: str) -> List[RegisteredSchema]:
        """All versions of a subject, oldest first."""
        return list(self._subjects.get(subject, []))

    def fail_next(self, count: int = 1) -> None:
        """Make the next `count` calls raise RegistryTransientError."""
        self._transient_failures += count

    def reject(self, subject: str, message: str = "Schema being registered is incompatible") -> None:
        """Make registrations under `subject` fail with a compatibility error."""
        self._rejected[subject] = message

    def accept(self, subject: str) -> None:
        """Undo reject()."""
        self._rejected.pop(subject, None)

    def registration_count(self, subject: Optional[str] = None) -> int:
        """Number of register() calls, optionally for one subject."""
        return sum(
            count
            for (op, s, _), count in self.calls.items()
            if op == "register" and (subject is None or s == subject)
        )

    async def close(self) -> None:
        self._closed = True

    async def get_latest_version(self, subject: str) -> RegisteredSchema:
        await self._enter("get_latest_version", subject, None)
        versions = self._subjects.get(subject)
        if not versions:
            raise NotFoundError(
                f"Subject '{subject}' not found",
                resource_type="subject",
                resource_id=subject,
            )
        return versions[-1]

    async def get_by_version(self, subject: str, version: int) -> RegisteredSchema:
        await self._enter("get_by_version", subject, version)
        versions = self._subjects.get(subject)
        if not versions or not 1 <= version <= len(versions):
            raise NotFoundError(
                f"Subject '{subject}' version {version} not found",
                resource_type="version",
                resource_id=f"{subject}@{version}",
            )
        return versions[version - 1]

    async def register(
        self,
        subject: str,
        content: str,
        schema_type: SchemaType,
        references: Sequence[ReferenceDescriptor] = (),
    ) -> Tuple[int, int]:
        await self._enter("register", subject, None)

        if subject in self._rejected:
            raise RegistrationRejectedError(
                self._rejected[subject],
                subject=subject,
                status_code=409,
                error_code=409,
            )

        refs = tuple(references)
        self._check_references(subject, refs)

        for existing in self._subjects.get(subject, []):
            if (
                existing.content == content
                and existing.schema_type is schema_type
                and existing.references == refs
            ):
                return existing.version, existing.schema_id

        key = (content, schema_type, refs)
        schema_id = self._ids.get(key)
        if schema_id is None:
            schema_id = self._next_id
            self._next_id += 1
            self._ids[key] = schema_id

        versions = self._subjects[subject]
        registered = RegisteredSchema(
            subject=subject,
            version=len(versions) + 1,
            schema_id=schema_id,
            schema_type=schema_type,
            content=content,
            references=refs,
        )
        versions.append(registered)
        logger.debug(f"Registered {subject} version {registered.version} (id={schema_id})")
        return registered.version, registered.schema_id

    def _check_references(self, subject: str, refs: Tuple[ReferenceDescriptor, ...]) -> None:
        names: Set[str] = set()
        for ref in refs:
            versions = self._subjects.get(ref.subject, [])
            if not 1 <= ref.version <= len(versions):
                raise RegistrationRejectedError(
                    f"Invalid schema: reference '{ref.name}' points to missing "
                    f"{ref.subject} version {ref.version}",
                    subject=subject,
                    status_code=422,
                    error_code=42201,
                )
            if ref.name in names:
                raise RegistrationRejectedError(
                    f"Invalid schema: duplicate reference name '{ref.name}'",
                    subject=subject,
                    status_code=422,
                    error_code=42201,
                )
            names.add(ref.name)

    async def _enter(self, operation: str, subject: str, version: Optional[int]) -> None:
        self.calls[(operation, subject, version)] += 1
        if self.latency_seconds:
            await asyncio.sleep(self.latency_seconds)
        if self._transient_failures > 0:
            self._transient_failures -= 1
            raise RegistryTransientError(f"Injected transient failure for {operation} {subject}")
