"""Standalone runner for the quest sweep, for deployments without arq.

Runs one sweep at startup, then one per BB_SWEEP_INTERVAL_SECONDS. On
SIGINT/SIGTERM the in-flight sweep is allowed to finish before exiting.

Usage: python -m badgebound.workers.sweep_runner
"""

from __future__ import annotations

import asyncio
import logging
import signal

from badgebound.config import get_settings
from badgebound.database import close_db, get_session_factory, init_db
from badgebound.middleware.logging import setup_logging
from badgebound.mirror.client import MirrorClient
from badgebound.quests.evaluator import RequirementEvaluator
from badgebound.quests.sweep import QuestSweeper
from badgebound.redis_client import close_redis, get_redis, init_redis

logger = logging.getLogger(__name__)


async def run_forever(sweeper: QuestSweeper, interval: float, stop: asyncio.Event) -> None:
    """Sweep, then sleep until the next interval or a stop signal."""
    while not stop.is_set():
        try:
            await sweeper.run_once()
        except Exception:
            logger.exception("Quest sweep failed")

        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue


async def main() -> None:
    """Run the quest sweep loop."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    if settings.redis_url:
        await init_redis(settings.redis_url)

    mirror = MirrorClient.from_settings(settings)
    sweeper = QuestSweeper(
        get_session_factory(),
        RequirementEvaluator(mirror, settings),
        redis=get_redis(),
        concurrency=settings.sweep_concurrency,
        lock_timeout=settings.sweep_lock_timeout_seconds,
    )

    # Handle graceful shutdown
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info("Starting quest sweep runner (interval=%ss)", settings.sweep_interval_seconds)

    try:
        await run_forever(sweeper, settings.sweep_interval_seconds, stop)
    finally:
        await mirror.aclose()
        await close_redis()
        await close_db()
        logger.info("Quest sweep runner stopped")


if __name__ == "__main__":
    asyncio.run(main())
