"""
Schema source loading and import resolution for KSRT.

The loader reads one schema file and reports its declared imports; the
resolver maps an import identifier to a file on disk. Neither follows
imports recursively - that is the graph builder's job.

Invariants:
    - Imports are reported in declaration order with duplicates removed
    - Loading never modifies the source file
    - Include directories are searched in the order given

How to change safely:
    - Resolution order decides which file wins when several include
      directories contain the same path; keep it stable
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Sequence, Tuple, Union

from ..errors import NotFoundError, ParseError
from .protobuf import parse_file_info
from .types import SchemaType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchemaSource:
    """A loaded schema file.

    Attributes:
        logical_path: Import path identifying the file
        location: File the content was read from
        content: Raw text
        imports: Declared imports, in order, duplicates removed
        package: Declared protobuf package (protobuf only)
        messages: Top-level message names (protobuf only)
        enums: Top-level enum names (protobuf only)
    """

    logical_path: str
    location: Path
    content: str
    imports: Tuple[str, ...] = ()
    package: Optional[str] = None
    messages: Tuple[str, ...] = ()
    enums: Tuple[str, ...] = ()


class SourceResolver(Protocol):
    """Maps an import identifier to a source location."""

    def resolve(self, import_name: str, from_path: Optional[Path] = None) -> Path:
        """Locate an imported schema.

        Args:
            import_name: Import identifier as written
            from_path: File declaring the import

        Raises:
            NotFoundError: If the import cannot be located
        """
        ...


class FileSystemResolver:
    """Resolve imports against include directories.

    Directories are searched in order; the directory of the importing
    file is searched last.

    Example:
        >>> resolver = FileSystemResolver(["protos", "third_party"])
        >>> resolver.resolve("acme/common/money.proto")
        PosixPath('protos/acme/common/money.proto')
    """

    def __init__(self, include_dirs: Sequence[Union[str, Path]]) -> None:
        self.include_dirs: Tuple[Path, ...] = tuple(Path(d) for d in include_dirs)

    def resolve(self, import_name: str, from_path: Optional[Path] = None) -> Path:
        candidates = list(self.include_dirs)
        if from_path is not None:
            candidates.append(Path(from_path).parent)

        for directory in candidates:
            candidate = directory / import_name
            if candidate.is_file():
                return candidate

        raise NotFoundError(
            f"Schema '{import_name}' not found in include path",
            resource_type="source",
            resource_id=import_name,
        )

    def logical_path(self, location: Path) -> str:
        """Logical path of a file: relative to the first include dir containing it."""
        resolved = Path(location).resolve()
        for directory in self.include_dirs:
            try:
                return resolved.relative_to(Path(directory).resolve()).as_posix()
            except ValueError:
                continue
        return Path(location).name


class SchemaSourceLoader:
    """Read schema files and extract their imports.

    Attributes:
        schema_type: Format of the files this loader reads
    """

    def __init__(self, schema_type: SchemaType = SchemaType.PROTOBUF) -> None:
        self.schema_type = schema_type

    def load(self, location: Union[str, Path], logical_path: Optional[str] = None) -> SchemaSource:
        """Load a schema file.

        Args:
            location: File to read
            logical_path: Identity of the file (defaults to its name)

        Returns:
            SchemaSource with content and imports

        Raises:
            NotFoundError: If the file cannot be read
            ParseError: If the content is not UTF-8 or imports are malformed
        """
        location = Path(location)
        name = logical_path or location.name

        try:
            content = location.read_text(encoding="utf-8")
        except UnicodeDecodeError as e:
            raise ParseError(f"Schema '{name}' is not valid UTF-8: {e}", path=name) from e
        except OSError as e:
            raise NotFoundError(
                f"Cannot read schema '{name}' from {location}: {e.strerror or e}",
                resource_type="source",
                resource_id=name,
            ) from e

        if self.schema_type is not SchemaType.PROTOBUF:
            logger.debug(f"Loaded {self.schema_type.value} schema {name}")
            return SchemaSource(logical_path=name, location=location, content=content)

        info = parse_file_info(content, name)
        logger.debug(
            f"Loaded protobuf schema {name}",
            extra={"imports": list(info.import_paths), "package": info.package},
        )
        return SchemaSource(
            logical_path=name,
            location=location,
            content=content,
            imports=info.import_paths,
            package=info.package,
            messages=info.messages,
            enums=info.enums,
        )
