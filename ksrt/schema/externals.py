"""
External reference declarations for KSRT.

An external reference tells the graph builder that an import is already
published in the registry and must be referenced, not re-published. It
can be given on the command line (`IMPORT=SUBJECT[:VERSION]`) or in a
YAML file:

    references:
      acme/common/money.proto:
        subject: acme.common.Money
        version: 3        # optional; latest when omitted
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Union

import yaml

from ..errors import ConfigError


@dataclass(frozen=True)
class ExternalReference:
    """An import satisfied by an existing registry subject.

    Attributes:
        subject: Registry subject
        version: Pinned version (None means the subject's latest)
    """

    subject: str
    version: Optional[int] = None


class ExternalReferences(Mapping[str, ExternalReference]):
    """Import path -> ExternalReference mapping."""

    def __init__(self, entries: Optional[Mapping[str, ExternalReference]] = None) -> None:
        self._entries: Dict[str, ExternalReference] = dict(entries or {})

    def __getitem__(self, import_name: str) -> ExternalReference:
        return self._entries[import_name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def merged(self, other: Mapping[str, ExternalReference]) -> ExternalReferences:
        """Return a new mapping with `other` taking precedence."""
        combined = dict(self._entries)
        combined.update(other)
        return ExternalReferences(combined)

    @classmethod
    def from_options(cls, options: Iterable[str]) -> ExternalReferences:
        """Parse `IMPORT=SUBJECT[:VERSION]` options.

        Raises:
            ConfigError: If an option is malformed or pins a version below 1
        """
        entries: Dict[str, ExternalReference] = {}
        for option in options:
            import_name, sep, target = option.partition("=")
            if not sep or not import_name.strip() or not target.strip():
                raise ConfigError(
                    f"Invalid external reference '{option}'. Expected IMPORT=SUBJECT[:VERSION]"
                )
            subject, _, version = target.strip().rpartition(":")
            if not subject or not version.isdigit():
                subject, version = target.strip(), ""
            entries[import_name.strip()] = ExternalReference(
                subject=subject,
                version=_checked_version(import_name.strip(), int(version)) if version else None,
            )
        return cls(entries)

    @classmethod
    def from_dict(cls, data: Mapping) -> ExternalReferences:
        """Create from the `references` document structure.

        Raises:
            ConfigError: If the structure is invalid
        """
        references = data.get("references", {}) if data else {}
        if not isinstance(references, Mapping):
            raise ConfigError("'references' must be a mapping of import path to subject")

        entries: Dict[str, ExternalReference] = {}
        for import_name, entry in references.items():
            if isinstance(entry, str):
                entries[str(import_name)] = ExternalReference(subject=entry)
                continue
            if not isinstance(entry, Mapping) or not entry.get("subject"):
                raise ConfigError(f"External reference '{import_name}' must declare a subject")
            version = entry.get("version")
            if version is not None:
                version = _checked_version(str(import_name), version)
            entries[str(import_name)] = ExternalReference(subject=str(entry["subject"]), version=version)
        return cls(entries)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> ExternalReferences:
        """Load external references from a YAML file.

        Raises:
            ConfigError: If the file cannot be read or parsed
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read external references file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in external references file {path}: {e}") from e
        return cls.from_dict(data or {})


def _checked_version(import_name: str, version: Any) -> int:
    if not isinstance(version, int) or isinstance(version, bool) or version < 1:
        raise ConfigError(f"External reference '{import_name}' has invalid version {version!r}")
    return version
