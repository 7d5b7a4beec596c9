"""arq worker for the quest sweep.

Runs as a separate process and re-evaluates every (user, active quest) pair
every five minutes, plus once at startup.
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from badgebound.config import get_settings
from badgebound.database import close_db, get_session_factory, init_db
from badgebound.middleware.logging import setup_logging
from badgebound.mirror.client import MirrorClient
from badgebound.quests.evaluator import RequirementEvaluator
from badgebound.quests.sweep import QuestSweeper, SweepStats
from badgebound.redis_client import close_redis, get_redis, init_redis

logger = logging.getLogger(__name__)

SWEEP_MINUTES = set(range(0, 60, 5))


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Open DB, Redis and mirror connections and build the sweeper."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    mirror = MirrorClient.from_settings(settings)
    ctx["mirror"] = mirror
    ctx["sweeper"] = QuestSweeper(
        get_session_factory(),
        RequirementEvaluator(mirror, settings),
        redis=get_redis(),
        concurrency=settings.sweep_concurrency,
        lock_timeout=settings.sweep_lock_timeout_seconds,
    )
    logger.info("Quest sweep worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    mirror: MirrorClient | None = ctx.get("mirror")
    if mirror:
        await mirror.aclose()
    await close_redis()
    await close_db()
    logger.info("Quest sweep worker shut down")


async def sweep_quests(ctx: dict) -> dict[str, int] | None:  # type: ignore[type-arg]
    """Periodic task: one full quest sweep. None when skipped."""
    sweeper: QuestSweeper = ctx["sweeper"]
    stats: SweepStats | None = await sweeper.run_once()
    if stats is None:
        return None
    return {
        "evaluated": stats.evaluated,
        "completed": stats.completed,
        "failed": stats.failed,
    }


class WorkerSettings:
    """arq worker settings for the quest sweep."""

    functions = [sweep_quests]
    cron_jobs = [
        cron(sweep_quests, minute=SWEEP_MINUTES, run_at_startup=True, unique=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    max_jobs = 1
    job_timeout = 900
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
