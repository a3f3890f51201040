"""
Protobuf source scanning for KSRT.

This is a targeted lexer for `.proto` files, not a full grammar. It is
enough to:
- Split source text into tokens (comments and string literals included)
- Extract `syntax`, `package`, `import` and top-level type declarations
- Rewrite import paths in place, preserving everything else byte for byte

Invariants:
    - Tokens never span comment or string boundaries
    - Dotted names (`google.protobuf.Timestamp`, `.pkg.Msg`) are one token,
      with any inner whitespace removed
    - Only declarations at brace depth zero are considered file-level

How to change safely:
    - Any change to tokenization changes canonical output and therefore
      fingerprints; add tests in test_protobuf.py and test_canonical.py
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..errors import ParseError


class TokenKind(Enum):
    """Lexical token categories."""

    IDENT = "ident"
    NUMBER = "number"
    STRING = "string"
    SYMBOL = "symbol"
    COMMENT = "comment"


@dataclass(frozen=True)
class Token:
    """A lexical token.

    Attributes:
        kind: Token category
        text: Token text (normalized for dotted identifiers)
        start: Offset of the first character in the source
        end: Offset one past the last character in the source
        line: 1-based line of the first character
    """

    kind: TokenKind
    text: str
    start: int
    end: int
    line: int


_TOKEN_RE = re.compile(
    r"""
      (?P<ws>\s+)
    | (?P<line_comment>//[^\n]*)
    | (?P<block_comment>/\*.*?\*/)
    | (?P<string>"(?:[^"\\\n]|\\.)*"|'(?:[^'\\\n]|\\.)*')
    | (?P<number>0[xX][0-9a-fA-F]+|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?[fF]?)
    | (?P<ident>(?:\.\s*)?[A-Za-z_]\w*(?:\s*\.\s*[A-Za-z_]\w*)*)
    | (?P<symbol>[{}()\[\]<>;,=:+\-])
    """,
    re.VERBOSE | re.DOTALL,
)

_WS_RE = re.compile(r"\s+")

_KIND_BY_GROUP = {
    "line_comment": TokenKind.COMMENT,
    "block_comment": TokenKind.COMMENT,
    "string": TokenKind.STRING,
    "number": TokenKind.NUMBER,
    "ident": TokenKind.IDENT,
    "symbol": TokenKind.SYMBOL,
}


def tokenize(
    text: str,
    path: Optional[str] = None,
    keep_comments: bool = True,
) -> List[Token]:
    """Split protobuf source into tokens.

    Args:
        text: Source text
        path: Source path, used in error messages only
        keep_comments: Whether to include COMMENT tokens

    Returns:
        Tokens in source order

    Raises:
        ParseError: On unterminated comments or strings, or characters
            that cannot start any protobuf token
    """
    tokens: List[Token] = []
    pos = 0
    line = 1
    length = len(text)

    while pos < length:
        match = _TOKEN_RE.match(text, pos)
        if match is None:
            char = text[pos]
            if text.startswith("/*", pos):
                raise ParseError(f"Unterminated block comment in {path or '<input>'}", path, line)
            if char in "\"'":
                raise ParseError(f"Unterminated string literal in {path or '<input>'}", path, line)
            raise ParseError(
                f"Unexpected character {char!r} in {path or '<input>'} at line {line}",
                path,
                line,
            )

        group = match.lastgroup
        raw = match.group()
        if group != "ws":
            kind = _KIND_BY_GROUP[group]
            if kind is not TokenKind.COMMENT or keep_comments:
                value = raw
                if kind is TokenKind.IDENT:
                    value = _WS_RE.sub("", raw)
                elif group == "line_comment":
                    value = raw.rstrip()
                tokens.append(Token(kind, value, match.start(), match.end(), line))

        line += raw.count("\n")
        pos = match.end()

    return tokens


def unquote(literal: str) -> str:
    """Return the value of a protobuf string literal token."""
    body = literal[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


@dataclass(frozen=True)
class ProtoImport:
    """An `import` declaration.

    Attributes:
        path: Imported path
        modifier: `public`, `weak` or None
        token: The string literal token holding the path
    """

    path: str
    modifier: Optional[str]
    token: Token


@dataclass(frozen=True)
class ProtoFileInfo:
    """File-level declarations of a `.proto` file."""

    syntax: Optional[str] = None
    package: Optional[str] = None
    imports: Tuple[ProtoImport, ...] = ()
    messages: Tuple[str, ...] = ()
    enums: Tuple[str, ...] = ()

    @property
    def import_paths(self) -> Tuple[str, ...]:
        """Imported paths in declaration order, duplicates removed."""
        return tuple(dict.fromkeys(imp.path for imp in self.imports))


def parse_file_info(text: str, path: Optional[str] = None) -> ProtoFileInfo:
    """Extract file-level declarations from protobuf source.

    Args:
        text: Source text
        path: Source path, used in error messages only

    Returns:
        ProtoFileInfo with syntax, package, imports and top-level types

    Raises:
        ParseError: If the source cannot be tokenized or an import,
            package or syntax declaration is malformed
    """
    tokens = tokenize(text, path, keep_comments=False)
    where = path or "<input>"

    syntax = None
    package = None
    imports: List[ProtoImport] = []
    messages: List[str] = []
    enums: List[str] = []

    depth = 0
    i = 0
    n = len(tokens)

    def at(index: int) -> Optional[Token]:
        return tokens[index] if index < n else None

    while i < n:
        tok = tokens[i]

        if tok.kind is TokenKind.SYMBOL and tok.text == "{":
            depth += 1
        elif tok.kind is TokenKind.SYMBOL and tok.text == "}":
            depth = max(depth - 1, 0)
        elif depth == 0 and tok.kind is TokenKind.IDENT:
            if tok.text == "import":
                j = i + 1
                modifier = None
                nxt = at(j)
                if nxt is not None and nxt.kind is TokenKind.IDENT and nxt.text in ("public", "weak"):
                    modifier = nxt.text
                    j += 1
                literal = at(j)
                end = at(j + 1)
                if (
                    literal is None
                    or literal.kind is not TokenKind.STRING
                    or end is None
                    or end.text != ";"
                ):
                    raise ParseError(
                        f"Malformed import declaration in {where} at line {tok.line}",
                        path,
                        tok.line,
                    )
                imports.append(ProtoImport(unquote(literal.text), modifier, literal))
                i = j + 2
                continue

            if tok.text == "package":
                name = at(i + 1)
                end = at(i + 2)
                if name is None or name.kind is not TokenKind.IDENT or end is None or end.text != ";":
                    raise ParseError(
                        f"Malformed package declaration in {where} at line {tok.line}",
                        path,
                        tok.line,
                    )
                package = name.text
                i += 3
                continue

            if tok.text in ("syntax", "edition"):
                eq = at(i + 1)
                literal = at(i + 2)
                if eq is not None and eq.text == "=" and literal is not None and literal.kind is TokenKind.STRING:
                    syntax = unquote(literal.text)

            elif tok.text in ("message", "enum"):
                name = at(i + 1)
                if name is not None and name.kind is TokenKind.IDENT:
                    (messages if tok.text == "message" else enums).append(name.text)

        i += 1

    return ProtoFileInfo(
        syntax=syntax,
        package=package,
        imports=tuple(imports),
        messages=tuple(messages),
        enums=tuple(enums),
    )


def rewrite_imports(text: str, mapping: Dict[str, str], path: Optional[str] = None) -> str:
    """Replace import paths, leaving the rest of the source untouched.

    Args:
        text: Protobuf source
        mapping: Old import path -> new import path
        path: Source path, used in error messages only

    Returns:
        Source with matching import string literals replaced
    """
    info = parse_file_info(text, path)
    edits = [
        (imp.token.start, imp.token.end, mapping[imp.path])
        for imp in info.imports
        if imp.path in mapping and mapping[imp.path] != imp.path
    ]
    for start, end, new_path in sorted(edits, reverse=True):
        text = text[:start] + '"' + new_path.replace('"', '\\"') + '"' + text[end:]
    return text
