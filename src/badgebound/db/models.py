"""ORM models for quests, per-user progress, users and seasons.

JSON payloads map to JSONB on PostgreSQL and plain JSON elsewhere so the same
models run against the in-memory SQLite database used by the test suite.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from badgebound.db.base import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


class QuestType(str, enum.Enum):
    ONBOARDING = "ONBOARDING"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    SEASONAL = "SEASONAL"
    ACHIEVEMENT = "ACHIEVEMENT"


class QuestStatus(str, enum.Enum):
    """Progress states. NOT_STARTED is virtual: it means no row exists."""

    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CLAIMED = "CLAIMED"
    EXPIRED = "EXPIRED"


TERMINAL_STATUSES = frozenset({QuestStatus.CLAIMED.value, QuestStatus.EXPIRED.value})


# ---------------------------------------------------------------------------
# Seasons
# ---------------------------------------------------------------------------


class Season(Base):
    """At most one season is active; enforced by activate_season()."""

    __tablename__ = "seasons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------


class Quest(Base):
    """Quest definition. The primary key doubles as the on-chain quest id."""

    __tablename__ = "quests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    requirement: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    reward: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    badge_uri: Mapped[str | None] = mapped_column(String(512), nullable=True)
    repeatable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    season_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("seasons.id", ondelete="SET NULL"), nullable=True
    )
    registration_tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def xp_reward(self) -> int:
        return int((self.reward or {}).get("xp", 0) or 0)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """User aggregate keyed by the lower-cased wallet.

    level and season_level are derived from xp/season_xp and rewritten on
    every XP change.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    season_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    season_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class UserQuest(Base):
    """Per (wallet, quest) progress record. Never deleted."""

    __tablename__ = "user_quests"
    __table_args__ = (
        UniqueConstraint("user_wallet", "quest_id", name="user_quests_wallet_quest_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_wallet: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    quest_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("quests.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    progress_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_updated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    quest: Mapped[Quest] = relationship("Quest", lazy="joined")


class UserSeasonStats(Base):
    """Per (season, wallet) snapshot, zeroed when the season is activated."""

    __tablename__ = "user_season_stats"
    __table_args__ = (
        UniqueConstraint("season_id", "user_wallet", name="user_season_stats_season_wallet_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    season_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("seasons.id", ondelete="CASCADE"), nullable=False
    )
    user_wallet: Mapped[str] = mapped_column(String(64), nullable=False)
    xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    badges: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
