"""
Base protocol and types for schema registry access.

This module defines the RegistryClient protocol that all registry
backends implement, and the RegisteredSchema type they return.

Invariants:
    - Missing subjects/versions raise NotFoundError, never return None
    - Registry-side semantic rejections raise RegistrationRejectedError
    - Transient failures raise RegistryTransientError; retries are the
      caller's decision (see retry.py), not the client's
    - Clients own their connections; the pipeline only borrows them

How to change safely:
    - Protocol changes require updating HttpRegistryClient and
      InMemoryRegistryClient together
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Protocol, Sequence, Tuple, runtime_checkable

from ..schema.types import ReferenceDescriptor, SchemaType


@dataclass(frozen=True)
class RegisteredSchema:
    """A schema version as reported by the registry.

    Attributes:
        subject: Registry subject
        version: Version number within the subject
        schema_id: Registry-wide schema id
        schema_type: Schema format
        content: Schema text as stored
        references: Declared references of this version
    """

    subject: str
    version: int
    schema_id: int
    schema_type: SchemaType
    content: str
    references: Tuple[ReferenceDescriptor, ...] = ()

    @property
    def identity(self) -> Tuple[str, int]:
        """(subject, version) pair identifying this version."""
        return (self.subject, self.version)


@runtime_checkable
class RegistryClient(Protocol):
    """Protocol for schema registry backends.

    Example:
        >>> registry = HttpRegistryClient(["http://localhost:8081"])
        >>> latest = await registry.get_latest_version("orders-value")
        >>> version, schema_id = await registry.register(
        ...     "orders-value", text, SchemaType.PROTOBUF, refs
        ... )
    """

    @abstractmethod
    async def get_latest_version(self, subject: str) -> RegisteredSchema:
        """Get the latest version of a subject.

        Raises:
            NotFoundError: If the subject has no versions
        """
        ...

    @abstractmethod
    async def get_by_version(self, subject: str, version: int) -> RegisteredSchema:
        """Get a specific version of a subject.

        Raises:
            NotFoundError: If the subject or version does not exist
        """
        ...

    @abstractmethod
    async def register(
        self,
        subject: str,
        content: str,
        schema_type: SchemaType,
        references: Sequence[ReferenceDescriptor] = (),
    ) -> Tuple[int, int]:
        """Register a schema version.

        If the registry already holds an identical schema under the
        subject it returns that version instead of creating a new one.

        Returns:
            (version, schema_id)

        Raises:
            RegistrationRejectedError: If the registry refuses the schema
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""
        ...
