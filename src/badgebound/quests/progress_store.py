"""Per (wallet, quest) progress rows and their status state machine.

    NOT_STARTED (no row) -> IN_PROGRESS <-> COMPLETED -> CLAIMED
    EXPIRED: terminal, set externally

The sweep owns IN_PROGRESS/COMPLETED. Completion is not sticky: a later
sweep can move COMPLETED back to IN_PROGRESS. EXPIRED is never changed by the
sweep, and neither is CLAIMED within the period it was claimed for; their
progress fields keep being refreshed. Once a DAILY or WEEKLY quest enters a
new period, its CLAIMED row reopens as IN_PROGRESS or COMPLETED so the next
period can be settled. Quests without a period key stay CLAIMED for good.

Every write is a single conditional UPDATE guarded by the status the writer
last read, so a sweep can never overwrite a CLAIMED status a concurrent
claim just wrote (and vice versa). A writer that loses re-reads and retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from badgebound.db.models import TERMINAL_STATUSES, Quest, QuestStatus, UserQuest
from badgebound.db.upsert import insert_ignore
from badgebound.errors import ProgressConflictError
from badgebound.quests.evaluator import EvaluationResult

logger = logging.getLogger(__name__)

MAX_CAS_ATTEMPTS = 3


@dataclass(frozen=True)
class ProgressUpdate:
    wallet: str
    quest_id: int
    previous_status: str | None
    status: str
    created: bool = False

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.status


async def get_user_quest(
    db: AsyncSession, wallet: str, quest_id: int, fresh: bool = False
) -> UserQuest | None:
    """Fetch the progress row. fresh=True bypasses the session's identity map."""
    stmt = select(UserQuest).where(
        UserQuest.user_wallet == wallet.lower(),
        UserQuest.quest_id == quest_id,
    )
    if fresh:
        stmt = stmt.execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def list_user_quests(db: AsyncSession, wallet: str) -> list[UserQuest]:
    result = await db.execute(
        select(UserQuest)
        .where(UserQuest.user_wallet == wallet.lower())
        .order_by(UserQuest.quest_id.asc())
    )
    return list(result.scalars().unique())


def _progress_fields(result: EvaluationResult) -> dict[str, Any]:
    return {
        "progress": result.progress,
        "target": result.target,
        "completion": result.completion,
        "completionPercent": result.completion_percent,
    }


def _reopens(row: UserQuest, period_key: str | None) -> bool:
    """A CLAIMED row from an earlier period is eligible again in the current one."""
    if row.status != QuestStatus.CLAIMED.value or not period_key:
        return False
    claimed_key = (row.progress_data or {}).get("lastClaimedPeriodKey")
    return claimed_key is not None and claimed_key != period_key


def merge_progress_data(
    existing: dict[str, Any] | None,
    result: EvaluationResult,
    period_key: str | None,
    record_completion: bool,
) -> dict[str, Any]:
    """New progress_data: refreshed progress, everything else (receipts, keys) kept."""
    data = dict(existing or {})
    data.update(_progress_fields(result))
    if record_completion and result.met and period_key:
        data["lastCompletedPeriodKey"] = period_key
    return data


async def apply_evaluation(
    db: AsyncSession,
    wallet: str,
    quest: Quest,
    result: EvaluationResult,
    period_key: str | None,
    now: datetime | None = None,
) -> ProgressUpdate:
    """Apply one sweep evaluation to the (wallet, quest) row. Does not commit."""
    wallet = wallet.lower()
    now = now or datetime.now(timezone.utc)
    met_status = QuestStatus.COMPLETED.value if result.met else QuestStatus.IN_PROGRESS.value

    for _attempt in range(MAX_CAS_ATTEMPTS):
        row = await get_user_quest(db, wallet, quest.id, fresh=True)

        if row is None:
            inserted = await insert_ignore(
                db,
                UserQuest,
                {
                    "user_wallet": wallet,
                    "quest_id": quest.id,
                    "status": met_status,
                    "progress_data": merge_progress_data({}, result, period_key, True),
                    "completed_at": now if result.met else None,
                    "last_updated": now,
                },
                ["user_wallet", "quest_id"],
            )
            if inserted:
                return ProgressUpdate(wallet, quest.id, None, met_status, created=True)
            continue  # created concurrently, re-read

        expected = row.status
        if expected in TERMINAL_STATUSES and not _reopens(row, period_key):
            new_status = expected
            values: dict[str, Any] = {
                "progress_data": merge_progress_data(row.progress_data, result, period_key, False),
            }
        else:
            new_status = met_status
            values = {
                "status": new_status,
                "progress_data": merge_progress_data(row.progress_data, result, period_key, True),
            }
            if new_status == QuestStatus.COMPLETED.value and expected != new_status:
                values["completed_at"] = now
        values["last_updated"] = now

        outcome = await db.execute(
            update(UserQuest)
            .where(UserQuest.id == row.id, UserQuest.status == expected)
            .values(**values)
        )
        if outcome.rowcount == 1:
            return ProgressUpdate(wallet, quest.id, expected, new_status)

        logger.info(
            "Quest %s row for %s changed from %s during update, retrying",
            quest.id, wallet, expected,
        )

    msg = f"user_quest ({wallet}, {quest.id}) kept changing; gave up after {MAX_CAS_ATTEMPTS} attempts"
    raise ProgressConflictError(msg)


async def ensure_user_quests(
    db: AsyncSession, wallet: str, quests: list[Quest], now: datetime | None = None
) -> int:
    """Lazily create IN_PROGRESS rows for quests the wallet has never been evaluated on."""
    wallet = wallet.lower()
    now = now or datetime.now(timezone.utc)
    created = 0
    for quest in quests:
        if await insert_ignore(
            db,
            UserQuest,
            {
                "user_wallet": wallet,
                "quest_id": quest.id,
                "status": QuestStatus.IN_PROGRESS.value,
                "progress_data": {},
                "last_updated": now,
            },
            ["user_wallet", "quest_id"],
        ):
            created += 1
    return created
