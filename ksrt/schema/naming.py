"""
Subject naming for KSRT.

Root schemas are published under a subject derived from a Kafka topic
and/or record name; imported schemas get a subject derived from their own
declarations.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..errors import ConfigError
from .loader import SchemaSource


class ReferenceSubjects(Enum):
    """How imported schemas are named in the registry."""

    RECORD = "record"  # package + first top-level type
    PATH = "path"  # the import path itself


@dataclass(frozen=True)
class SubjectNameStrategy:
    """Subject for a root schema.

    Attributes:
        topic: Kafka topic name
        record: Fully-qualified record name
        is_key: Whether the schema is for the topic key (vs. value)
    """

    topic: Optional[str] = None
    record: Optional[str] = None
    is_key: bool = False

    @classmethod
    def from_options(
        cls,
        topic: Optional[str] = None,
        record: Optional[str] = None,
        is_key: bool = False,
    ) -> SubjectNameStrategy:
        """Build a strategy from CLI-style options.

        Raises:
            ConfigError: If neither topic nor record is given
        """
        if not topic and not record:
            raise ConfigError("either `--topic' or `--record' are required")
        return cls(topic=topic or None, record=record or None, is_key=is_key)

    def subject(self) -> str:
        """Resolve the subject name.

        - topic only: `<topic>-key` or `<topic>-value`
        - record only: `<record>`
        - both: `<topic>-<record>`
        """
        if self.topic and self.record:
            return f"{self.topic}-{self.record}"
        if self.topic:
            return f"{self.topic}-{'key' if self.is_key else 'value'}"
        if self.record:
            return self.record
        raise ConfigError("either `--topic' or `--record' are required")


def dependency_subject(
    source: SchemaSource,
    mode: ReferenceSubjects = ReferenceSubjects.RECORD,
) -> str:
    """Subject for an imported schema.

    In RECORD mode this is the package joined with the first top-level
    message (or enum, if the file declares no messages). Files without
    type declarations, and PATH mode, use the logical path.
    """
    if mode is ReferenceSubjects.PATH:
        return source.logical_path

    type_names = source.messages or source.enums
    if not type_names:
        return source.logical_path

    if source.package:
        return f"{source.package}.{type_names[0]}"
    return type_names[0]
