"""Quest engine tables.

Creates seasons, quests, users, user_quests and user_season_stats.

Revision ID: 001_quest_engine
Revises: None
Create Date: 2026-10-17
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_quest_engine"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Seasons ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS seasons (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            slug VARCHAR(64) UNIQUE NOT NULL,
            start_at TIMESTAMPTZ,
            end_at TIMESTAMPTZ,
            is_active BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_seasons_active
        ON seasons(is_active) WHERE is_active
    """)

    # --- Quests ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS quests (
            id SERIAL PRIMARY KEY,
            type VARCHAR(16) NOT NULL,
            title VARCHAR(256) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            requirement JSONB NOT NULL DEFAULT '{}',
            reward JSONB NOT NULL DEFAULT '{}',
            badge_uri VARCHAR(512),
            repeatable BOOLEAN NOT NULL DEFAULT false,
            is_active BOOLEAN NOT NULL DEFAULT true,
            start_at TIMESTAMPTZ,
            end_at TIMESTAMPTZ,
            season_id INTEGER REFERENCES seasons(id) ON DELETE SET NULL,
            registration_tx_hash VARCHAR(66),
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_quests_active
        ON quests(is_active, start_at, end_at)
    """)

    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id SERIAL PRIMARY KEY,
            wallet VARCHAR(64) UNIQUE NOT NULL,
            xp BIGINT NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            season_xp BIGINT NOT NULL DEFAULT 0,
            season_level INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            last_seen_at TIMESTAMPTZ
        )
    """)

    # --- User Quests ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_quests (
            id SERIAL PRIMARY KEY,
            user_wallet VARCHAR(64) NOT NULL,
            quest_id INTEGER NOT NULL REFERENCES quests(id) ON DELETE CASCADE,
            status VARCHAR(16) NOT NULL,
            progress_data JSONB NOT NULL DEFAULT '{}',
            completed_at TIMESTAMPTZ,
            claimed_at TIMESTAMPTZ,
            last_updated TIMESTAMPTZ,
            CONSTRAINT user_quests_wallet_quest_key UNIQUE (user_wallet, quest_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_user_quests_user_wallet
        ON user_quests(user_wallet)
    """)

    # --- User Season Stats ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_season_stats (
            id SERIAL PRIMARY KEY,
            season_id INTEGER NOT NULL REFERENCES seasons(id) ON DELETE CASCADE,
            user_wallet VARCHAR(64) NOT NULL,
            xp BIGINT NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            badges INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ,
            CONSTRAINT user_season_stats_season_wallet_key UNIQUE (season_id, user_wallet)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_season_stats_rank
        ON user_season_stats(season_id, xp DESC, user_wallet)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS user_season_stats")
    op.execute("DROP TABLE IF EXISTS user_quests")
    op.execute("DROP TABLE IF EXISTS users")
    op.execute("DROP TABLE IF EXISTS quests")
    op.execute("DROP TABLE IF EXISTS seasons")
