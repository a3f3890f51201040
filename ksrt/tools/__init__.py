"""
Command-line tools for KSRT.
"""

from .cli import SchemaToolCLI, build_parser, format_publish_result, resolve_subject, run_command

__all__ = [
    "SchemaToolCLI",
    "build_parser",
    "format_publish_result",
    "resolve_subject",
    "run_command",
]
