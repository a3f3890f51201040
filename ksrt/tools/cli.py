"""
Command-line interface for KSRT.

Commands:
- post: Publish a schema file and everything it imports
- get: Retrieve a schema version with all its references

Usage:
    ksrt post --type protobuf --topic orders --file orders.proto http://localhost:8081
    ksrt get --topic orders --output ./schemas http://localhost:8081

Invariants:
    - Exit code 0 on success, 1 on tool errors, 2 on usage errors,
      130 when interrupted
    - Error messages go to stderr, results to stdout
    - Registry URLs on the command line replace KSRT_REGISTRY_URL

How to change safely:
    - Add new options with defaults matching current behavior
    - Keep output format stable for CI parsing
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, TextIO

from .._version import __version__
from ..config import ToolConfig
from ..errors import KsrtError, PublishCancelledError
from ..publish import PublishResult, publish_schemas
from ..registry.base import RegistryClient
from ..registry.http import HttpRegistryClient
from ..registry.retry import call_with_retry
from ..retrieve import RegistryRetriever, RetrievalNode, RetrievalResult, materialize, render_schema
from ..schema.externals import ExternalReferences
from ..schema.naming import ReferenceSubjects, SubjectNameStrategy
from ..schema.types import SchemaRoot, SchemaType

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_USAGE = 2
EXIT_CANCELLED = 130


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for all commands."""
    parser = argparse.ArgumentParser(
        prog="ksrt",
        description="Publish and retrieve schemas with a Kafka Schema Registry",
    )
    parser.add_argument("--version", action="version", version=f"ksrt {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # post command
    post_parser = subparsers.add_parser("post", help="Publish a schema and its imports")
    post_parser.add_argument(
        "--type",
        "-t",
        dest="schema_type",
        required=True,
        choices=[t.value for t in SchemaType],
        help="Schema format",
    )
    _add_subject_arguments(post_parser)
    post_parser.add_argument("--file", "-f", required=True, help="Root schema file")
    post_parser.add_argument(
        "--include",
        "-I",
        action="append",
        default=[],
        metavar="DIR",
        help="Additional import search directory (repeatable)",
    )
    post_parser.add_argument(
        "--external",
        "-e",
        action="append",
        default=[],
        metavar="IMPORT=SUBJECT[:VERSION]",
        help="Satisfy an import with an existing registry subject (repeatable)",
    )
    post_parser.add_argument("--externals-file", help="YAML file of external references")
    post_parser.add_argument(
        "--strip-comments", action="store_true", help="Remove comments before registering"
    )
    post_parser.add_argument(
        "--reference-subjects",
        choices=[m.value for m in ReferenceSubjects],
        help="Subject rule for imported schemas (default: KSRT_REFERENCE_SUBJECTS or record)",
    )
    post_parser.add_argument("urls", nargs="*", metavar="URL", help="Schema registry URL(s)")

    # get command
    get_parser = subparsers.add_parser("get", help="Retrieve a schema and its references")
    _add_subject_arguments(get_parser)
    get_parser.add_argument("--subject", "-s", help="Explicit subject name")
    get_parser.add_argument("--version", "-v", type=int, help="Version (default: latest)")
    get_parser.add_argument("--output", "-o", help="Write the schema tree to this directory")
    get_parser.add_argument("--root-file", help="File name for the root schema")
    get_parser.add_argument("urls", nargs="*", metavar="URL", help="Schema registry URL(s)")

    return parser


def _add_subject_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--topic", help="Kafka topic (subject <topic>-key/-value)")
    parser.add_argument("--record", help="Fully-qualified record name")
    parser.add_argument(
        "--key", "-k", action="store_true", help="Schema is for the topic key (default: value)"
    )


def resolve_subject(args: argparse.Namespace) -> str:
    """Subject named by --subject, or by the topic/record options."""
    explicit = getattr(args, "subject", None)
    if explicit:
        return explicit
    return SubjectNameStrategy.from_options(args.topic, args.record, args.key).subject()


def format_publish_result(result: PublishResult) -> List[str]:
    """One line per processed node, in publish order."""
    lines = []
    for path in result.order:
        record = result.records[path]
        status = result.statuses[path]
        lines.append(
            f"{status.value:<10} {path} -> {record.subject} "
            f"version {record.version} (id {record.schema_id})"
        )
    return lines


class SchemaToolCLI:
    """Runs CLI commands against a schema registry.

    Attributes:
        config: Tool configuration (command-line URLs already applied)
        registry: Registry client to use instead of opening one over HTTP
        out: Stream for results

    Example:
        >>> cli = SchemaToolCLI(config, registry=InMemoryRegistryClient())
        >>> await cli.post(args)
    """

    def __init__(
        self,
        config: ToolConfig,
        registry: Optional[RegistryClient] = None,
        out: Optional[TextIO] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        self.config = config
        self.registry = registry
        self.out = out or sys.stdout
        self.cancel_event = cancel_event

    async def run(self, args: argparse.Namespace) -> int:
        """Dispatch a parsed command. Returns the exit code."""
        try:
            if args.command == "post":
                await self.post(args)
            elif args.command == "get":
                await self.get(args)
            else:
                raise KsrtError(f"Unknown command '{args.command}'")
        except PublishCancelledError as e:
            print(f"Cancelled: {e.message}", file=sys.stderr)
            return EXIT_CANCELLED
        except KsrtError as e:
            logger.debug(f"Command failed: {e.code}", extra={"details": e.details})
            print(f"Error: {e.message}", file=sys.stderr)
            return EXIT_ERROR
        return EXIT_OK

    async def post(self, args: argparse.Namespace) -> PublishResult:
        """Publish the root file and its imports, then print the outcome."""
        subject = resolve_subject(args)
        schema_type = SchemaType.from_str(args.schema_type)

        externals = ExternalReferences()
        if args.externals_file:
            externals = ExternalReferences.from_yaml(args.externals_file)
        externals = externals.merged(ExternalReferences.from_options(args.external))

        config = self.config
        if args.reference_subjects:
            config = replace(config, reference_subjects=ReferenceSubjects(args.reference_subjects))

        policy = config.retry_policy()
        async with self._registry() as registry:
            result = await publish_schemas(
                registry,
                [SchemaRoot(Path(args.file), subject)],
                schema_type=schema_type,
                include_dirs=args.include,
                strip_comments=args.strip_comments,
                externals=externals,
                retry_policy=policy,
                reference_subjects=config.reference_subjects,
                cancel_event=self.cancel_event,
            )
            root = result.root_record()
            registered = await call_with_retry(
                lambda: registry.get_by_version(root.subject, root.version),
                policy,
                f"get {root.subject} version {root.version}",
            )

        for line in format_publish_result(result):
            print(line, file=self.out)
        print(render_schema(RetrievalNode(registered)), file=self.out)
        return result

    async def get(self, args: argparse.Namespace) -> RetrievalResult:
        """Retrieve a schema version, then print it or write it to --output."""
        subject = resolve_subject(args)

        async with self._registry() as registry:
            retriever = RegistryRetriever(
                registry,
                retry_policy=self.config.retry_policy(),
                max_concurrency=self.config.retrieval.max_concurrency,
            )
            result = await retriever.retrieve(subject, args.version)

        if args.output:
            for path in materialize(result, args.output, args.root_file):
                print(path, file=self.out)
        else:
            print(render_schema(result.root), file=self.out)
        return result

    def _registry(self) -> _RegistryContext:
        if self.registry is not None:
            return _RegistryContext(self.registry, owned=False)
        self.config.require_registry()
        settings = self.config.registry
        return _RegistryContext(
            HttpRegistryClient(
                settings.urls,
                username=settings.username,
                password=settings.password if settings.username else None,
                timeout_seconds=settings.timeout_seconds,
            ),
            owned=True,
        )


class _RegistryContext:
    """Closes the registry client on exit only if the CLI opened it."""

    def __init__(self, registry: RegistryClient, owned: bool) -> None:
        self.registry = registry
        self.owned = owned

    async def __aenter__(self) -> RegistryClient:
        return self.registry

    async def __aexit__(self, *args: object) -> None:
        if self.owned:
            await self.registry.close()


async def run_command(
    args: argparse.Namespace,
    config: ToolConfig,
    registry: Optional[RegistryClient] = None,
    cancel_event: Optional[asyncio.Event] = None,
    out: Optional[TextIO] = None,
) -> int:
    """Run a parsed command and return its exit code.

    `post` stops cleanly between schemas when `cancel_event` is set;
    `get` is abandoned outright since it writes nothing until the end.
    """
    config = config.with_urls(args.urls)
    cli = SchemaToolCLI(config, registry=registry, out=out, cancel_event=cancel_event)
    if cancel_event is None or args.command == "post":
        return await cli.run(args)

    task = asyncio.ensure_future(cli.run(args))
    waiter = asyncio.ensure_future(cancel_event.wait())
    done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    if task in done:
        waiter.cancel()
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    print("Cancelled", file=sys.stderr)
    return EXIT_CANCELLED
