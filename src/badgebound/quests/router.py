"""Quest and leaderboard endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from badgebound.database import get_session
from badgebound.quests.schemas import (
    ClaimRequest,
    ClaimResponse,
    LeaderboardEntry,
    QuestResponse,
    SeasonLeaderboardResponse,
    SeasonSummary,
    UserQuestResponse,
)
from badgebound.quests.service import get_active_quests, get_user_quests
from badgebound.quests.settlement import SettlementService
from badgebound.seasons.service import MAX_LEADERBOARD_LIMIT, season_leaderboard

router = APIRouter(prefix="/api", tags=["Quests"])


def get_settlement(request: Request) -> SettlementService:
    """The process-wide settlement service built at startup."""
    service: SettlementService | None = getattr(request.app.state, "settlement", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Claims are not available")
    return service


@router.get("/quests", response_model=list[QuestResponse])
async def list_quests(db: AsyncSession = Depends(get_session)):
    """Active quests."""
    return await get_active_quests(db)


@router.get("/quests/{wallet}", response_model=list[UserQuestResponse])
async def list_user_quests(
    wallet: str = Path(min_length=5),
    db: AsyncSession = Depends(get_session),
):
    """Quests with the wallet's status and progress."""
    return await get_user_quests(db, wallet)


@router.post("/quests/{quest_id}/claim", response_model=ClaimResponse)
async def claim_quest(
    body: ClaimRequest,
    quest_id: int = Path(gt=0),
    db: AsyncSession = Depends(get_session),
    settlement: SettlementService = Depends(get_settlement),
):
    """Mint the badge for a completed quest and credit its XP."""
    result = await settlement.claim(db, body.wallet, quest_id)
    return ClaimResponse(
        quest_id=result.quest_id,
        wallet=result.wallet,
        tx_hash=result.tx_hash,
        token_id=result.token_id,
        xp_reward=result.xp_reward,
        new_xp=result.new_xp,
        new_level=result.new_level,
    )


@router.get("/leaderboard/season", response_model=SeasonLeaderboardResponse)
async def get_season_leaderboard(
    limit: int = Query(50, ge=1),
    db: AsyncSession = Depends(get_session),
):
    """Active season ranking. limit is capped, not rejected."""
    season, entries = await season_leaderboard(db, min(limit, MAX_LEADERBOARD_LIMIT))
    if season is None:
        return SeasonLeaderboardResponse()
    return SeasonLeaderboardResponse(
        season=SeasonSummary.model_validate(season),
        entries=[LeaderboardEntry(**entry) for entry in entries],
    )
