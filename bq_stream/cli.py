"""Command line interface for running the streaming-insert demo."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from bq_stream.config import initialize_environment
from bq_stream.errors import BQStreamError
from bq_stream.logging_setup import configure_logging
from bq_stream.pipeline import run_pipeline

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Return the argument parser for the command line interface."""
    p = argparse.ArgumentParser(
        description="Stream nested rows into a BigQuery table and count them")
    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level (DEBUG, INFO, WARNING, ERROR). Defaults to $LOG_LEVEL or INFO.",
    )
    p.add_argument(
        "--keep",
        action="store_true",
        help="Keep the dataset and table instead of deleting them (env BQ_KEEP_RESOURCES)",
    )
    return p


async def main(argv: Optional[List[str]] = None) -> int:
    """Run the demo using command line arguments; return the exit code."""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = await initialize_environment()
        if args.keep:
            config.keep_resources = True
        await run_pipeline(config)
    except BQStreamError:
        logger.exception("Streaming demo failed")
        return 1
    return 0


def run() -> None:
    """Console-script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.warning("Interrupted.")
        sys.exit(130)
