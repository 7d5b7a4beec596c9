"""Periodic re-evaluation of every (user, active quest) pair.

A sweep is non-reentrant. Within a process an asyncio.Lock guards it; across
processes a Redis lock does, when Redis is configured. A run that finds
either lock held is skipped rather than queued.

Pairs are evaluated concurrently under a semaphore, each in its own session
and transaction. A failing pair is logged and counted; it never aborts the
rest of the sweep.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from badgebound.db.models import Quest, User
from badgebound.quests.evaluator import RequirementEvaluator
from badgebound.quests.period import evaluation_window, quest_period_key
from badgebound.quests.progress_store import apply_evaluation
from badgebound.quests.requirements import parse_requirement
from badgebound.quests.service import get_active_quests
from badgebound.redis_client import try_lock

logger = logging.getLogger(__name__)

SWEEP_LOCK_NAME = "lock:quest_sweep"


@dataclass
class SweepStats:
    quests: int = 0
    users: int = 0
    evaluated: int = 0
    completed: int = 0
    failed: int = 0
    status_changes: int = 0
    duration_seconds: float = 0.0
    failures: list[tuple[str, int]] = field(default_factory=list)


@dataclass(frozen=True)
class _UserSnapshot:
    wallet: str
    season_level: int


class QuestSweeper:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        evaluator: RequirementEvaluator,
        redis: Any = None,
        concurrency: int = 8,
        lock_timeout: float = 900,
    ) -> None:
        self.session_factory = session_factory
        self.evaluator = evaluator
        self.redis = redis
        self.concurrency = max(1, concurrency)
        self.lock_timeout = lock_timeout
        self._running = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running.locked()

    async def run_once(self, now: datetime | None = None) -> SweepStats | None:
        """Run one full sweep. Returns None if another sweep was already running."""
        if self._running.locked():
            logger.info("Quest sweep already running in this process, skipping")
            return None

        async with self._running:
            async with try_lock(self.redis, SWEEP_LOCK_NAME, self.lock_timeout) as acquired:
                if not acquired:
                    logger.info("Quest sweep lock held by another worker, skipping")
                    return None
                return await self._sweep(now or datetime.now(timezone.utc))

    async def _sweep(self, now: datetime) -> SweepStats:
        started = time.monotonic()
        stats = SweepStats()

        async with self.session_factory() as db:
            quests = await get_active_quests(db, now)
            rows = await db.execute(select(User.wallet, User.season_level).order_by(User.id))
            users = [_UserSnapshot(wallet, season_level or 1) for wallet, season_level in rows]

        stats.quests = len(quests)
        stats.users = len(users)
        logger.info("Starting quest sweep: %d quests x %d users", len(quests), len(users))

        if quests and users:
            semaphore = asyncio.Semaphore(self.concurrency)

            async def run_pair(user: _UserSnapshot, quest: Quest) -> None:
                async with semaphore:
                    await self._evaluate_pair(user, quest, now, stats)

            await asyncio.gather(*(run_pair(u, q) for u in users for q in quests))

        stats.duration_seconds = time.monotonic() - started
        logger.info(
            "Quest sweep finished in %.2fs: evaluated=%d completed=%d changed=%d failed=%d",
            stats.duration_seconds, stats.evaluated, stats.completed,
            stats.status_changes, stats.failed,
        )
        return stats

    async def _evaluate_pair(
        self, user: _UserSnapshot, quest: Quest, now: datetime, stats: SweepStats
    ) -> None:
        try:
            requirement = parse_requirement(quest.requirement)
            result = await self.evaluator.evaluate(
                user.wallet,
                requirement,
                evaluation_window(quest, now),
                season_level=user.season_level,
                now=now,
                quest_id=quest.id,
            )
            async with self.session_factory() as db:
                update = await apply_evaluation(
                    db, user.wallet, quest, result, quest_period_key(quest, now), now
                )
                await db.commit()
        except Exception:
            stats.failed += 1
            stats.failures.append((user.wallet, quest.id))
            logger.exception("Failed to evaluate quest %s for %s", quest.id, user.wallet)
            return

        stats.evaluated += 1
        if result.met:
            stats.completed += 1
        if update.status_changed:
            stats.status_changes += 1
