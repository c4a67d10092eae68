#!/usr/bin/env python3
"""
Queue Worker Runner Script

Runs the queue workers outside the API process. Each named queue gets its
own worker with the queue's configured concurrency; SIGINT/SIGTERM drain
in-flight jobs before exiting.

Usage:
    python scripts/run_workers.py
    python scripts/run_workers.py --queues email notification
"""

import argparse
import asyncio
import logging
import signal

from app.config import settings
from app.core.cache import CacheManager
from app.core.logging import setup_logging
from app.core.scheduler import start_scheduler, stop_scheduler
from app.db.session import dispose_engine
from app.queues.registry import QUEUE_DEFINITIONS, QueueRegistry
from app.workers import build_services, register_workers

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run background queue workers")
    parser.add_argument(
        "--queues",
        nargs="+",
        help=f"Queues to process, space or comma separated (default: all of {', '.join(QUEUE_DEFINITIONS)})",
    )
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="Skip the maintenance scheduler (run it in exactly one process)",
    )
    args = parser.parse_args(argv)

    if args.queues:
        args.queues = [key.strip() for item in args.queues for key in item.split(",") if key.strip()]
        unknown = sorted(set(args.queues) - set(QUEUE_DEFINITIONS))
        if unknown:
            parser.error(f"unknown queue(s): {', '.join(unknown)}")
    return args


async def main(args: argparse.Namespace) -> None:
    setup_logging()

    cache = CacheManager(settings)
    await cache.connect()
    registry = QueueRegistry.from_settings(settings)
    services = build_services(registry, cache, settings=settings)
    keys = register_workers(registry, services, args.queues)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    registry.start()
    if not args.no_scheduler:
        start_scheduler(registry)
    logger.info(f"🚀 Workers running for queues: {', '.join(keys)}")

    await stop_event.wait()

    logger.info("🛑 Shutdown requested, draining in-flight jobs...")
    if not args.no_scheduler:
        stop_scheduler()
    await registry.shutdown(settings.WORKER_SHUTDOWN_TIMEOUT_SECONDS)
    await cache.disconnect()
    await dispose_engine()
    logger.info("✅ Workers stopped")


if __name__ == "__main__":
    asyncio.run(main(parse_args()))
