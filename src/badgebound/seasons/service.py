"""Season activation and the season leaderboard."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from badgebound.db.models import Season, User, UserSeasonStats
from badgebound.db.upsert import insert_ignore

logger = logging.getLogger(__name__)

MAX_LEADERBOARD_LIMIT = 200


class SeasonNotFoundError(LookupError):
    pass


async def get_active_season(db: AsyncSession) -> Season | None:
    result = await db.execute(select(Season).where(Season.is_active.is_(True)).order_by(Season.id))
    return result.scalars().first()


async def activate_season(
    db: AsyncSession, season_id: int, now: datetime | None = None
) -> Season:
    """Make `season_id` the only active season and zero everyone's season stats.

    1. Deactivate every other season
    2. Activate this one (start_at defaults to now)
    3. Reset users' season_xp / season_level
    4. Upsert a zeroed UserSeasonStats row per user

    Runs in one transaction and commits.
    """
    now = now or datetime.now(timezone.utc)
    season = await db.get(Season, season_id)
    if season is None:
        raise SeasonNotFoundError(f"Season {season_id} not found")

    await db.execute(update(Season).where(Season.id != season_id).values(is_active=False))
    season.is_active = True
    if season.start_at is None:
        season.start_at = now

    await db.execute(update(User).values(season_xp=0, season_level=1))

    wallets = (await db.execute(select(User.wallet))).scalars().all()
    for wallet in wallets:
        await insert_ignore(
            db,
            UserSeasonStats,
            {"season_id": season_id, "user_wallet": wallet.lower(), "xp": 0, "level": 1, "badges": 0},
            ["season_id", "user_wallet"],
        )
    await db.execute(
        update(UserSeasonStats)
        .where(UserSeasonStats.season_id == season_id)
        .values(xp=0, level=1, badges=0, updated_at=now)
    )

    await db.commit()
    logger.info("Season %s activated, %d user stats reset", season_id, len(wallets))
    return season


async def season_leaderboard(db: AsyncSession, limit: int = 50) -> tuple[Season | None, list[dict]]:
    """Active season and its top entries by XP (ties broken by wallet)."""
    limit = max(1, min(limit, MAX_LEADERBOARD_LIMIT))
    season = await get_active_season(db)
    if season is None:
        return None, []

    result = await db.execute(
        select(UserSeasonStats)
        .where(UserSeasonStats.season_id == season.id)
        .order_by(UserSeasonStats.xp.desc(), UserSeasonStats.user_wallet.asc())
        .limit(limit)
    )
    entries = [
        {
            "rank": rank,
            "wallet": stats.user_wallet,
            "xp": stats.xp,
            "level": stats.level,
            "badges": stats.badges,
        }
        for rank, stats in enumerate(result.scalars(), start=1)
    ]
    return season, entries
