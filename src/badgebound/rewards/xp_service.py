"""User aggregate upserts and XP credit with level recomputation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from badgebound.db.models import Season, User, UserSeasonStats
from badgebound.db.upsert import insert_ignore
from badgebound.rewards.levels import DEFAULT_XP_PER_LEVEL, compute_level

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class XPCredit:
    wallet: str
    amount: int
    new_xp: int
    new_level: int
    leveled_up: bool


async def get_or_create_user(
    db: AsyncSession,
    wallet: str,
    now: datetime | None = None,
    touch: bool = False,
) -> User:
    """Get or lazily create the user row for a wallet (lower-cased).

    With touch=True an existing user's last_seen_at is refreshed.
    """
    wallet = wallet.lower()
    now = now or datetime.now(timezone.utc)

    result = await db.execute(select(User).where(User.wallet == wallet))
    user = result.scalar_one_or_none()
    if user is not None:
        if touch:
            user.last_seen_at = now
        return user

    # Concurrent first sightings of the same wallet both land here; the
    # unique key makes exactly one insert win.
    await insert_ignore(
        db,
        User,
        {"wallet": wallet, "xp": 0, "level": 1, "season_xp": 0, "season_level": 1,
         "created_at": now, "last_seen_at": now},
        ["wallet"],
    )
    result = await db.execute(select(User).where(User.wallet == wallet))
    return result.scalar_one()


async def get_or_create_season_stats(
    db: AsyncSession, season_id: int, wallet: str
) -> UserSeasonStats:
    wallet = wallet.lower()
    query = select(UserSeasonStats).where(
        UserSeasonStats.season_id == season_id,
        UserSeasonStats.user_wallet == wallet,
    )
    stats = (await db.execute(query)).scalar_one_or_none()
    if stats is None:
        await insert_ignore(
            db,
            UserSeasonStats,
            {"season_id": season_id, "user_wallet": wallet, "xp": 0, "level": 1, "badges": 0},
            ["season_id", "user_wallet"],
        )
        stats = (await db.execute(query)).scalar_one()
    return stats


async def credit_xp(
    db: AsyncSession,
    wallet: str,
    amount: int,
    now: datetime | None = None,
    xp_per_level: int = DEFAULT_XP_PER_LEVEL,
    badge_earned: bool = True,
) -> XPCredit:
    """Add XP to the user aggregate and the active season. Does not commit.

    1. Upsert the user
    2. Add to cumulative and season XP, recompute both levels
    3. Credit the active season's stats row (xp, level, badge count)
    """
    now = now or datetime.now(timezone.utc)
    amount = max(int(amount), 0)

    user = await get_or_create_user(db, wallet, now)
    old_level = user.level

    # Increment in SQL so concurrent credits for one wallet cannot lose updates;
    # the row stays locked until the caller commits.
    await db.execute(
        update(User)
        .where(User.id == user.id)
        .values(xp=User.xp + amount, season_xp=User.season_xp + amount, last_seen_at=now)
    )
    xp, season_xp = (
        await db.execute(select(User.xp, User.season_xp).where(User.id == user.id))
    ).one()
    await db.execute(
        update(User)
        .where(User.id == user.id)
        .values(
            level=compute_level(xp, xp_per_level),
            season_level=compute_level(season_xp, xp_per_level),
        )
    )

    result = await db.execute(select(Season).where(Season.is_active.is_(True)))
    season = result.scalars().first()
    if season is not None:
        stats = await get_or_create_season_stats(db, season.id, user.wallet)
        await db.execute(
            update(UserSeasonStats)
            .where(UserSeasonStats.id == stats.id)
            .values(
                xp=UserSeasonStats.xp + amount,
                badges=UserSeasonStats.badges + (1 if badge_earned else 0),
                updated_at=now,
            )
        )
        stats_xp = (
            await db.execute(select(UserSeasonStats.xp).where(UserSeasonStats.id == stats.id))
        ).scalar_one()
        await db.execute(
            update(UserSeasonStats)
            .where(UserSeasonStats.id == stats.id)
            .values(level=compute_level(stats_xp, xp_per_level))
        )

    await db.refresh(user)

    if user.level > old_level:
        logger.info("Level up for %s: %d -> %d", user.wallet, old_level, user.level)

    return XPCredit(
        wallet=user.wallet,
        amount=amount,
        new_xp=user.xp,
        new_level=user.level,
        leveled_up=user.level > old_level,
    )
