"""
KSRT - Main entry point.

Parses the command line, loads configuration, sets up logging and runs
one command on a fresh event loop.

Usage:
    ksrt post --type protobuf --topic orders --file orders.proto http://localhost:8081
    python -m ksrt.main get --topic orders http://localhost:8081

Configuration comes from environment variables (see config.py);
command-line options override them.

Invariants:
    - SIGINT/SIGTERM never interrupt a registration in flight; publication
      stops before the next schema
    - The process exit code reflects the outcome (see tools/cli.py)

How to change safely:
    - Keep logging on stderr; stdout carries command results
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Optional, Sequence

import json_log_formatter

from .config import ToolConfig
from .errors import ConfigError
from .tools.cli import EXIT_CANCELLED, EXIT_ERROR, build_parser, run_command

logger = logging.getLogger(__name__)


def setup_logging(config: ToolConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Tool configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.WARNING)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    # Load configuration
    try:
        config = ToolConfig.from_env()
    except ConfigError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        sys.exit(EXIT_ERROR)

    setup_logging(config)
    config.log_config()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    cancel_event = asyncio.Event()

    def handle_signal(sig: int) -> None:
        logger.warning(f"Received signal {sig}, stopping")
        cancel_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        code = loop.run_until_complete(run_command(args, config, cancel_event=cancel_event))
    except KeyboardInterrupt:
        code = EXIT_CANCELLED
    finally:
        loop.close()
        asyncio.set_event_loop(None)

    sys.exit(code)


if __name__ == "__main__":
    main()
