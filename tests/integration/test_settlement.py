"""Claim settlement: ordering, preconditions and XP credit."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select, update
from web3.exceptions import TimeExhausted

from badgebound.chain.client import to_checksum_address
from badgebound.db.models import Quest, QuestStatus, QuestType, Season, User, UserQuest, UserSeasonStats
from badgebound.errors import (
    AlreadyClaimedError,
    ChainTransactionError,
    ClaimConflictError,
    InvalidWalletError,
    QuestNotCompletedError,
    QuestNotFoundError,
)
from badgebound.quests.evaluator import EvaluationResult
from badgebound.quests.progress_store import apply_evaluation, get_user_quest
from badgebound.quests.settlement import SettlementService

WALLET = "0x" + "ab" * 20


@pytest.fixture
def service(fake_chain) -> SettlementService:
    return SettlementService(fake_chain)


async def _completed(db, quest, now, period_key=None):
    await apply_evaluation(db, WALLET, quest, EvaluationResult(True, 1, 1), period_key, now)
    await db.commit()


class TestPreconditions:
    @pytest.mark.asyncio
    async def test_invalid_wallet(self, service, db_session, fake_chain):
        with pytest.raises(InvalidWalletError):
            await service.claim(db_session, "not-a-wallet", 1)
        assert fake_chain.minted == []

    @pytest.mark.asyncio
    async def test_no_progress_row(self, service, db_session, make_quest, fake_chain):
        quest = await make_quest()
        with pytest.raises(QuestNotFoundError) as exc_info:
            await service.claim(db_session, WALLET, quest.id)
        assert exc_info.value.status_code == 404
        assert exc_info.value.message == "User quest not found"
        assert fake_chain.minted == []

    @pytest.mark.asyncio
    async def test_not_completed(self, service, db_session, make_quest, fake_chain, now):
        quest = await make_quest()
        await apply_evaluation(db_session, WALLET, quest, EvaluationResult(False, 0, 1), None, now)
        await db_session.commit()

        with pytest.raises(QuestNotCompletedError) as exc_info:
            await service.claim(db_session, WALLET, quest.id, now)
        assert exc_info.value.status_code == 400
        assert fake_chain.minted == []

    @pytest.mark.asyncio
    async def test_already_claimed_this_period(self, service, db_session, make_quest, fake_chain, now):
        quest = await make_quest(type=QuestType.DAILY.value, repeatable=True)
        await _completed(db_session, quest, now, "daily:2024-03-06")
        quest_id = quest.id
        await db_session.execute(
            update(UserQuest).values(
                progress_data={"progress": 1, "lastClaimedPeriodKey": "daily:2024-03-06"},
            )
        )
        await db_session.commit()

        with pytest.raises(AlreadyClaimedError):
            await service.claim(db_session, WALLET, quest_id, now)
        assert fake_chain.minted == []


class TestSuccessfulClaim:
    @pytest.mark.asyncio
    async def test_mints_then_marks_claimed_and_credits_xp(self, service, db_session, make_quest, fake_chain, now):
        quest = await make_quest(reward={"xp": 2500})
        await _completed(db_session, quest, now)
        quest_id = quest.id

        result = await service.claim(db_session, WALLET.upper().replace("0X", "0x"), quest_id, now)

        assert fake_chain.minted == [(to_checksum_address(WALLET), quest_id)]
        assert result.token_id == "7"
        assert result.xp_reward == 2500
        assert result.new_xp == 2500
        assert result.new_level == 3

        row = await get_user_quest(db_session, WALLET, quest_id, fresh=True)
        assert row.status == QuestStatus.CLAIMED.value
        assert row.claimed_at is not None
        assert row.progress_data["badgeTxHash"] == result.tx_hash
        assert row.progress_data["badgeTokenId"] == "7"

        user = (await db_session.execute(select(User).where(User.wallet == WALLET))).scalar_one()
        assert user.xp == 2500
        assert user.level == 3
        assert user.season_xp == 2500

    @pytest.mark.asyncio
    async def test_missing_mint_event_still_claims(self, service, db_session, make_quest, fake_chain, now):
        fake_chain.token_id = None
        quest = await make_quest()
        await _completed(db_session, quest, now)
        quest_id = quest.id

        result = await service.claim(db_session, WALLET, quest_id, now)

        assert result.token_id is None
        row = await get_user_quest(db_session, WALLET, quest_id, fresh=True)
        assert row.status == QuestStatus.CLAIMED.value
        assert row.progress_data.get("badgeTokenId") is None

    @pytest.mark.asyncio
    async def test_records_period_key_for_recurring_quests(self, service, db_session, make_quest, now):
        quest = await make_quest(type=QuestType.WEEKLY.value, repeatable=True)
        await _completed(db_session, quest, now, "weekly:2024-W10")
        quest_id = quest.id

        await service.claim(db_session, WALLET, quest_id, now)

        row = await get_user_quest(db_session, WALLET, quest_id, fresh=True)
        assert row.progress_data["lastClaimedPeriodKey"] == "weekly:2024-W10"

    @pytest.mark.asyncio
    async def test_second_claim_is_rejected(self, service, db_session, make_quest, fake_chain, now):
        quest = await make_quest()
        await _completed(db_session, quest, now)
        quest_id = quest.id
        await service.claim(db_session, WALLET, quest_id, now)

        with pytest.raises(QuestNotCompletedError):
            await service.claim(db_session, WALLET, quest_id, now + timedelta(minutes=1))
        assert len(fake_chain.minted) == 1

    @pytest.mark.asyncio
    async def test_credits_active_season(self, service, db_session, make_quest, now):
        season = Season(name="Season 1", slug="s1", is_active=True)
        db_session.add(season)
        quest = await make_quest(reward={"xp": 300})
        await _completed(db_session, quest, now)
        quest_id = quest.id
        season_id = season.id

        await service.claim(db_session, WALLET, quest_id, now)

        stats = (
            await db_session.execute(
                select(UserSeasonStats)
                .where(UserSeasonStats.user_wallet == WALLET)
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        assert stats.season_id == season_id
        assert stats.xp == 300
        assert stats.badges == 1


class TestRecurringClaims:
    @pytest.mark.asyncio
    async def test_daily_quest_claims_again_next_day(self, service, db_session, make_quest, fake_chain, now):
        quest = await make_quest(type=QuestType.DAILY.value, repeatable=True, reward={"xp": 100})
        await _completed(db_session, quest, now, "daily:2024-03-06")
        quest_id = quest.id
        await service.claim(db_session, WALLET, quest_id, now)

        tomorrow = now + timedelta(days=1)
        fresh_quest = await db_session.get(Quest, quest_id)
        await _completed(db_session, fresh_quest, tomorrow, "daily:2024-03-07")
        row = await get_user_quest(db_session, WALLET, quest_id, fresh=True)
        assert row.status == QuestStatus.COMPLETED.value

        result = await service.claim(db_session, WALLET, quest_id, tomorrow)

        assert len(fake_chain.minted) == 2
        assert result.new_xp == 200
        row = await get_user_quest(db_session, WALLET, quest_id, fresh=True)
        assert row.status == QuestStatus.CLAIMED.value
        assert row.progress_data["lastClaimedPeriodKey"] == "daily:2024-03-07"

    @pytest.mark.asyncio
    async def test_same_day_sweep_keeps_claim_closed(self, service, db_session, make_quest, fake_chain, now):
        quest = await make_quest(type=QuestType.DAILY.value, repeatable=True)
        await _completed(db_session, quest, now, "daily:2024-03-06")
        quest_id = quest.id
        await service.claim(db_session, WALLET, quest_id, now)

        later = now + timedelta(hours=3)
        fresh_quest = await db_session.get(Quest, quest_id)
        await _completed(db_session, fresh_quest, later, "daily:2024-03-06")

        with pytest.raises(QuestNotCompletedError):
            await service.claim(db_session, WALLET, quest_id, later)
        assert len(fake_chain.minted) == 1


class TestChainFailures:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error",
        [
            ChainTransactionError("Transaction reverted", tx_hash="0xdead"),
            TimeExhausted("not mined"),
        ],
    )
    async def test_failed_mint_leaves_database_untouched(
        self, service, db_session, make_quest, fake_chain, now, error
    ):
        fake_chain.error = error
        quest = await make_quest(reward={"xp": 100})
        await _completed(db_session, quest, now)
        quest_id = quest.id

        with pytest.raises(type(error)):
            await service.claim(db_session, WALLET, quest_id, now)

        row = await get_user_quest(db_session, WALLET, quest_id, fresh=True)
        assert row.status == QuestStatus.COMPLETED.value
        assert "badgeTxHash" not in row.progress_data
        users = (await db_session.execute(select(User))).scalars().all()
        assert users == []

    @pytest.mark.asyncio
    async def test_concurrent_claim_during_mint_is_a_conflict(
        self, service, db_session, session_factory, make_quest, fake_chain, now
    ):
        quest = await make_quest(reward={"xp": 100})
        await _completed(db_session, quest, now)
        quest_id = quest.id

        async def someone_else_claims():
            async with session_factory() as other:
                await other.execute(
                    update(UserQuest).values(status=QuestStatus.CLAIMED.value)
                )
                await other.commit()

        fake_chain.on_mint = someone_else_claims

        with pytest.raises(ClaimConflictError):
            await service.claim(db_session, WALLET, quest_id, now)

        users = (await db_session.execute(select(User))).scalars().all()
        assert users == []

    @pytest.mark.asyncio
    async def test_sweep_regression_during_mint_still_claims(
        self, service, db_session, session_factory, make_quest, fake_chain, now
    ):
        quest = await make_quest(reward={"xp": 100})
        await _completed(db_session, quest, now)
        quest_id = quest.id

        async def sweep_regresses():
            async with session_factory() as other:
                fresh_quest = await other.get(Quest, quest_id)
                await apply_evaluation(other, WALLET, fresh_quest, EvaluationResult(False, 0, 1), None, now)
                await other.commit()

        fake_chain.on_mint = sweep_regresses

        result = await service.claim(db_session, WALLET, quest_id, now)

        assert result.new_xp == 100
        row = await get_user_quest(db_session, WALLET, quest_id, fresh=True)
        assert row.status == QuestStatus.CLAIMED.value

    @pytest.mark.asyncio
    async def test_progress_refreshed_during_mint_is_kept(
        self, service, db_session, session_factory, make_quest, fake_chain, now
    ):
        quest = await make_quest(reward={"xp": 100})
        await _completed(db_session, quest, now)
        quest_id = quest.id

        async def sweep_refreshes():
            async with session_factory() as other:
                fresh_quest = await other.get(Quest, quest_id)
                await apply_evaluation(other, WALLET, fresh_quest, EvaluationResult(True, 4, 1), None, now)
                await other.commit()

        fake_chain.on_mint = sweep_refreshes

        result = await service.claim(db_session, WALLET, quest_id, now)

        row = await get_user_quest(db_session, WALLET, quest_id, fresh=True)
        assert row.status == QuestStatus.CLAIMED.value
        assert row.progress_data["progress"] == 4
        assert row.progress_data["badgeTxHash"] == result.tx_hash
