"""Claim settlement: mint the badge on chain, then mark CLAIMED and credit XP.

Ordering is the whole point here. The mint is irreversible, so it runs
strictly before any database write; if it fails (revert, timeout, missing
configuration) the database is untouched and the claim can be retried end to
end. After a successful mint the progress row and the user aggregate are
written in one database transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from badgebound.chain.client import MintReceipt, to_checksum_address
from badgebound.db.models import QuestStatus, UserQuest
from badgebound.errors import (
    AlreadyClaimedError,
    ClaimConflictError,
    ClaimInProgressError,
    InvalidWalletError,
    QuestNotCompletedError,
    QuestNotFoundError,
)
from badgebound.quests.period import quest_period_key
from badgebound.redis_client import try_lock
from badgebound.rewards.levels import DEFAULT_XP_PER_LEVEL
from badgebound.rewards.xp_service import credit_xp

logger = structlog.get_logger()

CLAIM_LOCK_TIMEOUT_SECONDS = 300


class BadgeMinter(Protocol):
    async def mint_badge(self, to: str, quest_id: int) -> MintReceipt: ...


@dataclass(frozen=True)
class ClaimResult:
    quest_id: int
    wallet: str
    tx_hash: str
    token_id: str | None
    xp_reward: int
    new_xp: int
    new_level: int


class SettlementService:
    """Executes claims. The only writer of CLAIMED and of claim-driven XP."""

    def __init__(
        self,
        chain: BadgeMinter,
        redis: Any = None,
        xp_per_level: int = DEFAULT_XP_PER_LEVEL,
    ) -> None:
        self.chain = chain
        self.redis = redis
        self.xp_per_level = xp_per_level

    async def claim(
        self,
        db: AsyncSession,
        wallet: str,
        quest_id: int,
        now: datetime | None = None,
    ) -> ClaimResult:
        """Settle a claim. Manages the session's transaction itself.

        Raises a ClaimError subclass for failed preconditions; chain errors
        propagate unmodified.
        """
        try:
            recipient = to_checksum_address(wallet)
        except ValueError as exc:
            raise InvalidWalletError() from exc

        async with try_lock(
            self.redis, f"lock:claim:{recipient.lower()}:{quest_id}", CLAIM_LOCK_TIMEOUT_SECONDS
        ) as acquired:
            if not acquired:
                raise ClaimInProgressError()
            return await self._settle(db, recipient, quest_id, now or datetime.now(timezone.utc))

    async def _settle(
        self, db: AsyncSession, recipient: str, quest_id: int, now: datetime
    ) -> ClaimResult:
        wallet = recipient.lower()
        result = await db.execute(
            select(UserQuest)
            .where(UserQuest.user_wallet == wallet, UserQuest.quest_id == quest_id)
            .execution_options(populate_existing=True)
        )
        user_quest = result.scalar_one_or_none()

        # Preconditions, in this order.
        if user_quest is None or user_quest.quest is None:
            raise QuestNotFoundError()
        if user_quest.status != QuestStatus.COMPLETED.value:
            raise QuestNotCompletedError()

        quest = user_quest.quest
        period_key = quest_period_key(quest, now)
        claimed_key = (user_quest.progress_data or {}).get("lastClaimedPeriodKey")
        if period_key and claimed_key == period_key:
            raise AlreadyClaimedError()

        xp_reward = quest.xp_reward
        row_id = user_quest.id
        # Release the read transaction; nothing is written until the mint lands.
        await db.rollback()

        # Irreversible. Any exception propagates with the database untouched.
        receipt = await self.chain.mint_badge(recipient, quest_id)
        token_id = str(receipt.token_id) if receipt.token_id is not None else None

        # Re-read so progress a sweep committed during the mint is kept; only
        # the receipt and period keys are ours to write.
        current = await db.execute(
            select(UserQuest.progress_data).where(UserQuest.id == row_id)
        )
        progress_data = dict(current.scalar_one_or_none() or {})
        if period_key:
            progress_data["lastClaimedPeriodKey"] = period_key
        progress_data["badgeTxHash"] = receipt.tx_hash
        if token_id is not None:
            progress_data["badgeTokenId"] = token_id
        else:
            progress_data.pop("badgeTokenId", None)

        # A sweep may have regressed the row to IN_PROGRESS while the mint was
        # in flight; the badge exists either way. Only an existing CLAIMED
        # (a concurrent claim won) or EXPIRED row refuses the write.
        outcome = await db.execute(
            update(UserQuest)
            .where(
                UserQuest.id == row_id,
                UserQuest.status.in_([QuestStatus.COMPLETED.value, QuestStatus.IN_PROGRESS.value]),
            )
            .values(
                status=QuestStatus.CLAIMED.value,
                claimed_at=now,
                last_updated=now,
                progress_data=progress_data,
            )
        )
        if outcome.rowcount != 1:
            await db.rollback()
            logger.error(
                "claim_conflict_after_mint",
                wallet=wallet,
                quest_id=quest_id,
                tx_hash=receipt.tx_hash,
                token_id=token_id,
            )
            raise ClaimConflictError()

        credit = await credit_xp(db, wallet, xp_reward, now, self.xp_per_level)
        await db.commit()

        logger.info(
            "quest_claimed",
            wallet=wallet,
            quest_id=quest_id,
            tx_hash=receipt.tx_hash,
            token_id=token_id,
            xp_reward=xp_reward,
            new_level=credit.new_level,
        )
        return ClaimResult(
            quest_id=quest_id,
            wallet=wallet,
            tx_hash=receipt.tx_hash,
            token_id=token_id,
            xp_reward=xp_reward,
            new_xp=credit.new_xp,
            new_level=credit.new_level,
        )
