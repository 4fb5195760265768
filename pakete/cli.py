"""CLI entrypoint for the CRAN ingestion jobs and the API server."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from pakete.core.config import IndexerConfig
from pakete.core.errors import PaketeError
from pakete.services.cran import CranClient
from pakete.services.pipeline import IngestionPipeline
from pakete.storage.sqlite_db_manager import SqliteDatabaseManager

logger = logging.getLogger("pakete")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(prog="pakete", description="Index CRAN packages into a relational store")
    parser.add_argument("--config", type=Path, default=None, help="YAML configuration file")
    parser.add_argument("--db", type=Path, default=None, help="SQLite database file")
    parser.add_argument("--max-items", type=int, default=None, help="Maximum packages taken from the CRAN index")
    parser.add_argument("--limit", type=int, default=None, help="Only process the N most recently loaded packages")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create the database schema")
    sub.add_parser("load", help="Fetch the CRAN package list and save it")
    sub.add_parser("download", help="Download archives of pending packages")
    sub.add_parser("parse", help="Parse downloaded archives and save package info and authors")
    run = sub.add_parser("run", help="Download and parse pending packages in one go")
    run.add_argument("--with-index", action="store_true", help="Load the CRAN package list first")
    sub.add_parser("serve", help="Start the HTTP API")
    return parser.parse_args(argv)


async def _run_job(config: IndexerConfig, job: Callable[[IngestionPipeline], Awaitable[object]]) -> None:
    db = SqliteDatabaseManager(config.database_path, batch_size=config.insert_chunk_size)
    db.initialize()
    try:
        async with CranClient(config) as client:
            await job(IngestionPipeline(config, db, client))
    finally:
        db.close()


JOBS = {
    "load": lambda p: p.load_index(),
    "download": lambda p: p.download(),
    "parse": lambda p: p.parse(),
}


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    start = time.perf_counter()
    try:
        config = IndexerConfig.load(
            config_file=args.config,
            db_path=args.db,
            max_items=args.max_items,
            load_limit=args.limit,
        )

        if args.command == "serve":
            from pakete.main import serve

            serve(config)
            return 0

        if args.command == "init-db":
            db = SqliteDatabaseManager(config.database_path)
            db.initialize()
            db.close()
        elif args.command == "run":
            asyncio.run(_run_job(config, lambda p: p.run(load_index=args.with_index)))
        else:
            asyncio.run(_run_job(config, JOBS[args.command]))
    except PaketeError as e:
        logger.error(f"[{args.command}] Error encountered: {e}")
        return 1
    except Exception:
        logger.exception(f"[{args.command}] Unexpected error")
        return 1

    logger.info(f"[{args.command}] Execution time: {time.perf_counter() - start:.3f}s")
    return 0


if __name__ == "__main__":
    sys.exit(main())
