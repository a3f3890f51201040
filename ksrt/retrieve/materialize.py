"""
Write retrieved schemas to a local file tree.

Each retrieved version gets a local path: the root gets the requested
file name (or `<subject><suffix>`), referenced versions get the name they
were first referenced by. Protobuf imports are rewritten to the assigned
paths, so the written tree compiles and re-publishes as-is.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from pathlib import Path, PurePosixPath
from typing import Deque, Dict, List, Optional, Set, Union

from ..schema.protobuf import rewrite_imports
from ..schema.types import SchemaType
from .retriever import Identity, RetrievalNode, RetrievalResult

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def assign_local_paths(
    result: RetrievalResult,
    root_filename: Optional[str] = None,
) -> Dict[Identity, str]:
    """Choose a relative file path for every retrieved version.

    Paths are assigned breadth-first from the root, in reference order,
    so the same retrieval always produces the same layout.

    Returns:
        (subject, version) -> relative POSIX path
    """
    root = result.root
    paths: Dict[Identity, str] = {}
    taken: Set[str] = set()

    def claim(node: RetrievalNode, wanted: Optional[str]) -> None:
        candidate = wanted if wanted and _is_safe(wanted) else _default_name(node)
        if candidate in taken:
            candidate = _versioned(candidate, node.version)
        counter = 2
        base = candidate
        while candidate in taken:
            candidate = _versioned(base, counter, prefix="_")
            counter += 1
        paths[node.identity] = candidate
        taken.add(candidate)

    claim(root, root_filename)
    queue: Deque[RetrievalNode] = deque([root])
    while queue:
        node = queue.popleft()
        for name, child in node.children.items():
            if child.identity not in paths:
                claim(child, name)
                queue.append(child)

    return paths


def materialize(
    result: RetrievalResult,
    output_dir: Union[str, Path],
    root_filename: Optional[str] = None,
) -> List[Path]:
    """Write a retrieval result to `output_dir`.

    Args:
        result: Retrieved schemas
        output_dir: Destination directory (created if missing)
        root_filename: File name for the root schema

    Returns:
        Written file paths, root first
    """
    output_dir = Path(output_dir)
    paths = assign_local_paths(result, root_filename)
    written: List[Path] = []

    for identity, local in paths.items():
        node = result.nodes[identity]
        node.local_path = local

        content = node.content
        if node.schema_type is SchemaType.PROTOBUF and node.references:
            mapping = {
                ref.name: paths[(ref.subject, ref.version)]
                for ref in node.references
            }
            content = rewrite_imports(content, mapping, local)

        target = output_dir / local
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        written.append(target)
        logger.debug(f"Wrote {node.subject} version {node.version} to {target}")

    logger.info(f"Wrote {len(written)} schema file(s) to {output_dir}")
    return written


def render_schema(node: RetrievalNode) -> str:
    """Human-readable summary of one retrieved version."""
    lines = [
        f"subject: {node.subject}",
        f"version: {node.version}",
        f"id: {node.schema.schema_id}",
        f"type: {node.schema_type.value}",
        "schema:",
    ]
    lines.extend(f"\t{line}" for line in node.content.splitlines())

    if node.references:
        lines.append("references:")
        for ref in node.references:
            lines.append(f"\tname: {ref.name}")
            lines.append(f"\tsubject: {ref.subject}")
            lines.append(f"\tversion: {ref.version}")

    return "\n".join(lines)


def _is_safe(name: str) -> bool:
    path = PurePosixPath(name)
    return bool(name) and not path.is_absolute() and ".." not in path.parts and "\\" not in name


def _default_name(node: RetrievalNode) -> str:
    return _UNSAFE_CHARS.sub("_", node.subject) + node.schema_type.suffix


def _versioned(name: str, number: int, prefix: str = "_v") -> str:
    path = PurePosixPath(name)
    return str(path.with_name(f"{path.stem}{prefix}{number}{path.suffix}"))
