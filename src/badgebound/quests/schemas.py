"""Pydantic request/response models for the quest endpoints.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# --- Quests ---


class QuestResponse(_Schema):
    id: int
    type: str
    title: str
    description: str
    requirement: dict[str, Any]
    reward: dict[str, Any]
    badge_uri: str | None = None
    repeatable: bool
    is_active: bool
    start_at: datetime | None = None
    end_at: datetime | None = None
    season_id: int | None = None


class UserQuestResponse(_Schema):
    id: int
    user_wallet: str
    quest_id: int
    status: str
    progress_data: dict[str, Any] = {}
    completed_at: datetime | None = None
    claimed_at: datetime | None = None
    last_updated: datetime | None = None
    quest: QuestResponse


# --- Claim ---


class ClaimRequest(_Schema):
    wallet: str = Field(min_length=5)


class ClaimResponse(_Schema):
    success: bool = True
    quest_id: int
    wallet: str
    tx_hash: str
    token_id: str | None = None
    xp_reward: int
    new_xp: int
    new_level: int


# --- Leaderboard ---


class SeasonSummary(_Schema):
    id: int
    name: str
    slug: str
    start_at: datetime | None = None
    end_at: datetime | None = None


class LeaderboardEntry(_Schema):
    rank: int
    wallet: str
    xp: int
    level: int
    badges: int


class SeasonLeaderboardResponse(_Schema):
    season: SeasonSummary | None = None
    entries: list[LeaderboardEntry] = []
