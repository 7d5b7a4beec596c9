"""Quest creation with on-chain registration.

The quest row's primary key is the on-chain quest id, so the row is flushed
first to get its id, registered on chain under that id, and only committed
once the registration transaction has been mined.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from badgebound.db.models import Quest, QuestType

logger = structlog.get_logger()


class QuestRegistrar(Protocol):
    async def register_quest(
        self, quest_id: int, name: str, description: str, uri: str, repeatable: bool
    ) -> str: ...


async def create_quest_with_registration(
    db: AsyncSession,
    chain: QuestRegistrar,
    *,
    type: QuestType | str,  # noqa: A002
    title: str,
    description: str = "",
    requirement: dict[str, Any],
    reward: dict[str, Any],
    badge_uri: str | None = None,
    repeatable: bool = False,
    is_active: bool = True,
    start_at: datetime | None = None,
    end_at: datetime | None = None,
    season_id: int | None = None,
) -> Quest:
    """Insert a quest and register it on chain. Commits, or rolls back on any failure."""
    quest = Quest(
        type=type.value if isinstance(type, QuestType) else str(type),
        title=title,
        description=description,
        requirement=requirement,
        reward=reward,
        badge_uri=badge_uri,
        repeatable=repeatable,
        is_active=is_active,
        start_at=start_at,
        end_at=end_at,
        season_id=season_id,
        created_at=datetime.now(timezone.utc),
    )
    db.add(quest)

    try:
        await db.flush()
        tx_hash = await chain.register_quest(
            quest.id, title, description, badge_uri or "", repeatable
        )
        quest.registration_tx_hash = tx_hash
        await db.commit()
    except Exception:
        await db.rollback()
        logger.error("quest_registration_failed", title=title)
        raise

    logger.info("quest_created", quest_id=quest.id, tx_hash=tx_hash)
    return quest
