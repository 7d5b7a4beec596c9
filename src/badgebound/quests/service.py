"""Read-side quest queries."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from badgebound.db.models import Quest, UserQuest
from badgebound.quests.progress_store import ensure_user_quests, list_user_quests
from badgebound.rewards.xp_service import get_or_create_season_stats, get_or_create_user
from badgebound.seasons.service import get_active_season


async def get_active_quests(db: AsyncSession, now: datetime | None = None) -> list[Quest]:
    """Active quests whose [start_at, end_at] validity contains now."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(Quest)
        .where(
            Quest.is_active.is_(True),
            or_(Quest.start_at.is_(None), Quest.start_at <= now),
            or_(Quest.end_at.is_(None), Quest.end_at >= now),
        )
        .order_by(Quest.id.asc())
    )
    return list(result.scalars())


async def get_user_quests(
    db: AsyncSession, wallet: str, now: datetime | None = None
) -> list[UserQuest]:
    """User-specific quest view. Commits.

    Side effects, all idempotent: upserts the user (refreshing last_seen_at),
    ensures a stats row in the active season, and lazily creates progress
    rows for active quests the user has never been evaluated on.
    """
    now = now or datetime.now(timezone.utc)
    wallet = wallet.lower()

    await get_or_create_user(db, wallet, now, touch=True)

    season = await get_active_season(db)
    if season is not None:
        await get_or_create_season_stats(db, season.id, wallet)

    await ensure_user_quests(db, wallet, await get_active_quests(db, now), now)
    await db.commit()

    return await list_user_quests(db, wallet)
