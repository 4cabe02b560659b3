"""
Main entry point for mlti.

Parses the command line, configures logging and runs the supervisor.
"""

import asyncio
import logging
import os
import sys
from typing import Optional, Sequence

import structlog
from dotenv import load_dotenv

from .cli import parse_config
from .core.errors import ConfigError
from .orchestrator.supervisor import Supervisor


def configure_logging() -> None:
    """Structured logging to stderr, kept apart from multiplexed output."""
    level_name = os.getenv("MLTI_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level_name, logging.WARNING),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if os.getenv("LOG_FORMAT") == "json"
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


logger = structlog.get_logger()


async def main(argv: Optional[Sequence[str]] = None) -> int:
    """Parse arguments and run. Returns the exit code."""
    try:
        config = parse_config(argv)
    except ConfigError as e:
        print(f"mlti: {e.message}", file=sys.stderr)
        return 2

    supervisor = Supervisor(config)
    try:
        return await supervisor.run()
    except ConfigError as e:
        print(f"mlti: {e.message}", file=sys.stderr)
        return 2


def run() -> None:
    """Console script entry point."""
    load_dotenv()
    configure_logging()
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
