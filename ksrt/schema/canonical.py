"""
Schema canonicalization and fingerprinting for KSRT.

Canonical text is what KSRT registers and what it compares against the
registry's latest version. Two sources that differ only in insignificant
whitespace (or only in comments, when comment stripping is on) have the
same canonical text and therefore the same fingerprint.

Invariants:
    - canonicalize(canonicalize(x)) == canonicalize(x)
    - Comment stripping is chosen by the caller, never inferred
    - Fingerprints cover canonical text AND the reference set

How to change safely:
    - Canonical output is persisted in the registry; changing the layout
      makes every subject look modified on the next publish
    - Keep the fingerprint document format stable for the same reason

Example:
    >>> canon = get_canonicalizer(SchemaType.PROTOBUF, strip_comments=True)
    >>> text = canon.canonicalize('syntax="proto3"; // c\\nmessage A{int32 x=1;}')
    >>> print(text)
    syntax = "proto3";
    message A {
      int32 x = 1;
    }
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Iterable, List, Optional, Protocol

from ..errors import CanonicalizationError, ParseError
from .protobuf import Token, TokenKind, tokenize
from .types import ReferenceDescriptor, SchemaType

logger = logging.getLogger(__name__)

_INDENT = "  "

# Layout rules for the protobuf token stream
_NO_SPACE_BEFORE = frozenset({";", ",", ")", "]", ">", "<"})
_NO_SPACE_AFTER = frozenset({"(", "[", "<", "-", "+"})
_ATTACH_AFTER_CLOSE = frozenset({";", ",", ")", "]"})


class Canonicalizer(Protocol):
    """Format-specific canonicalization strategy."""

    strip_comments: bool

    def canonicalize(self, text: str, path: Optional[str] = None) -> str:
        """Return canonical text.

        Raises:
            CanonicalizationError: If the input is structurally broken
        """
        ...


class ProtobufCanonicalizer:
    """Canonical layout for protobuf sources.

    Re-emits the token stream one statement per line, indented two spaces
    per brace depth, with single spaces between tokens except around
    punctuation. Comments are kept on their own lines unless stripped.

    This checks structure only (balanced braces, valid tokens); semantic
    validation is left to the registry.
    """

    def __init__(self, strip_comments: bool = False) -> None:
        self.strip_comments = strip_comments

    def canonicalize(self, text: str, path: Optional[str] = None) -> str:
        try:
            tokens = tokenize(text, path, keep_comments=not self.strip_comments)
        except CanonicalizationError:
            raise
        except ParseError as e:
            raise CanonicalizationError(e.message, path=e.path, line=e.line) from e
        return _layout(tokens, path)


class JsonCanonicalizer:
    """Canonical form for Avro and JSON Schema documents.

    Keys are sorted and separators compacted. JSON has no comments, so
    `strip_comments` is accepted for interface parity and ignored.
    """

    def __init__(self, strip_comments: bool = False) -> None:
        self.strip_comments = strip_comments

    def canonicalize(self, text: str, path: Optional[str] = None) -> str:
        try:
            document = json.loads(text)
        except json.JSONDecodeError as e:
            raise CanonicalizationError(
                f"Invalid JSON in {path or '<input>'}: {e.msg}",
                path=path,
                line=e.lineno,
            ) from e
        return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def get_canonicalizer(schema_type: SchemaType, strip_comments: bool = False) -> Canonicalizer:
    """Create the canonicalizer for a schema type.

    Args:
        schema_type: Schema format
        strip_comments: Whether comments are dropped from canonical text

    Returns:
        Canonicalizer instance
    """
    if schema_type is SchemaType.PROTOBUF:
        return ProtobufCanonicalizer(strip_comments=strip_comments)
    return JsonCanonicalizer(strip_comments=strip_comments)


def compute_fingerprint(
    canonical: str,
    references: Iterable[ReferenceDescriptor] = (),
) -> str:
    """Compute the SHA-256 fingerprint of canonical content and references.

    References are compared as a set, so their order does not matter.

    Returns:
        Fingerprint string in format 'sha256:<hash>'
    """
    document = {
        "schema": canonical,
        "references": sorted(
            (ref.to_dict() for ref in references),
            key=lambda r: (r["name"], r["subject"], r["version"]),
        ),
    }
    encoded = json.dumps(document, sort_keys=True, separators=(",", ":"))
    return f"sha256:{hashlib.sha256(encoded.encode('utf-8')).hexdigest()}"


def _layout(tokens: List[Token], path: Optional[str]) -> str:
    lines: List[str] = []
    current: List[str] = []
    depth = 0
    after_close = False

    def flush() -> None:
        if current:
            lines.append(_INDENT * depth + "".join(current))
            current.clear()

    for tok in tokens:
        text = tok.text

        if after_close:
            after_close = False
            if text in _ATTACH_AFTER_CLOSE:
                current.append(text)
                if text == ";":
                    flush()
                else:
                    after_close = True
                continue
            flush()

        if tok.kind is TokenKind.COMMENT:
            flush()
            lines.append(_INDENT * depth + text)
            continue

        if tok.kind is TokenKind.SYMBOL and text == "}":
            flush()
            depth -= 1
            if depth < 0:
                raise CanonicalizationError(
                    f"Unbalanced '}}' in {path or '<input>'} at line {tok.line}",
                    path=path,
                    line=tok.line,
                )
            current.append("}")
            after_close = True
            continue

        if current and _needs_space(current[-1], text):
            current.append(" ")
        current.append(text)

        if tok.kind is TokenKind.SYMBOL and text == "{":
            flush()
            depth += 1
        elif tok.kind is TokenKind.SYMBOL and text == ";":
            flush()

    flush()

    if depth != 0:
        raise CanonicalizationError(
            f"Unbalanced '{{' in {path or '<input>'}: {depth} block(s) not closed",
            path=path,
        )

    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def _needs_space(prev: str, text: str) -> bool:
    if text in _NO_SPACE_BEFORE or prev in _NO_SPACE_AFTER:
        return False
    if prev == ")" and text.startswith("."):
        return False
    return True
