"""Command line entry point.

Usage:
    python -m pumpfun_indexer standalone
    python -m pumpfun_indexer ingest
    python -m pumpfun_indexer worker
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pumpfun_indexer.config import get_settings
from pumpfun_indexer.errors import IngesterFatalError
from pumpfun_indexer.pipeline import Pipeline, PipelineMode

logger = logging.getLogger(__name__)


def build_argparser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="pumpfun_indexer",
        description="pump.fun indexer: log stream ingestion and trade reconciliation",
    )
    sub = p.add_subparsers(dest="cmd")

    sub.add_parser("ingest", help="Stream program logs and publish signatures to Redis")
    sub.add_parser("worker", help="Consume signatures from Redis and persist state")
    sub.add_parser("standalone", help="Run ingester and worker in one process")

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_argparser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return 2

    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Settings: %s", settings.redacted_summary())

    pipeline = Pipeline(settings, mode=PipelineMode(args.cmd))
    try:
        asyncio.run(pipeline.run())
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except IngesterFatalError as e:
        logger.error("Exiting: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
