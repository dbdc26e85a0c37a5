"""Rewards engine tables.

Creates accounts and the reward_grants idempotency ledger, login streaks,
achievements with badge tiers and per-account progress, guilds with
memberships and challenges, loot boxes, quests, achievement notifications,
seasonal events and skill trees.

Revision ID: 001_rewards_tables
Revises: None
Create Date: 2026-10-17
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_rewards_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Accounts (ids issued by the auth service) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS accounts (
            id BIGINT PRIMARY KEY,
            username VARCHAR(64),
            xp BIGINT NOT NULL DEFAULT 0,
            gold BIGINT NOT NULL DEFAULT 0,
            referrals INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT accounts_xp_non_negative CHECK (xp >= 0),
            CONSTRAINT accounts_gold_non_negative CHECK (gold >= 0)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_accounts_xp
        ON accounts(xp DESC)
    """)

    # --- Reward grants (exactly-once ledger) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS reward_grants (
            id BIGSERIAL PRIMARY KEY,
            idempotency_key VARCHAR(256) UNIQUE NOT NULL,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            xp_delta INTEGER NOT NULL,
            gold_delta INTEGER NOT NULL,
            source VARCHAR(32) NOT NULL,
            source_id VARCHAR(128),
            description VARCHAR(256),
            result_xp BIGINT,
            result_gold BIGINT,
            old_level INTEGER,
            new_level INTEGER,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_reward_grants_account_id
        ON reward_grants(account_id)
    """)

    # --- Login streaks ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS login_streaks (
            id SERIAL PRIMARY KEY,
            account_id BIGINT UNIQUE NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            current_streak INTEGER NOT NULL DEFAULT 0,
            longest_streak INTEGER NOT NULL DEFAULT 0,
            last_login_date DATE,
            total_login_days INTEGER NOT NULL DEFAULT 0,
            streak_rewards_earned INTEGER NOT NULL DEFAULT 0,
            seven_day_milestone_count INTEGER NOT NULL DEFAULT 0,
            thirty_day_milestone_count INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ
        )
    """)

    # --- Achievements & badge tiers ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievements (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            icon VARCHAR(16) NOT NULL,
            requirement_value INTEGER NOT NULL,
            sort_order INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_tiers (
            id SERIAL PRIMARY KEY,
            achievement_id INTEGER NOT NULL REFERENCES achievements(id) ON DELETE CASCADE,
            tier_rank INTEGER NOT NULL,
            tier_name VARCHAR(32) NOT NULL,
            requirement_value INTEGER NOT NULL,
            CONSTRAINT badge_tiers_achievement_rank_key UNIQUE (achievement_id, tier_rank)
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_progress (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            tier_id INTEGER NOT NULL REFERENCES badge_tiers(id) ON DELETE CASCADE,
            current_progress INTEGER NOT NULL DEFAULT 0,
            unlocked BOOLEAN NOT NULL DEFAULT false,
            unlocked_at TIMESTAMPTZ,
            CONSTRAINT badge_progress_account_tier_key UNIQUE (account_id, tier_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_badge_progress_account_id
        ON badge_progress(account_id)
    """)

    # --- Guilds ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS guilds (
            id SERIAL PRIMARY KEY,
            name VARCHAR(64) NOT NULL,
            description VARCHAR(256),
            leader_account_id BIGINT NOT NULL REFERENCES accounts(id),
            total_members INTEGER NOT NULL DEFAULT 1,
            total_xp BIGINT NOT NULL DEFAULT 0,
            level INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ,
            updated_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS guilds_name_lower_key
        ON guilds(lower(name))
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS guild_members (
            id SERIAL PRIMARY KEY,
            guild_id INTEGER NOT NULL REFERENCES guilds(id) ON DELETE CASCADE,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            role VARCHAR(16) NOT NULL DEFAULT 'member',
            contribution_xp BIGINT NOT NULL DEFAULT 0,
            joined_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT guild_members_account_unique UNIQUE (account_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_guild_members_guild_id
        ON guild_members(guild_id)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS guild_challenges (
            id SERIAL PRIMARY KEY,
            guild_id INTEGER NOT NULL REFERENCES guilds(id) ON DELETE CASCADE,
            name VARCHAR(128) NOT NULL,
            description TEXT,
            target_xp INTEGER NOT NULL,
            current_xp INTEGER NOT NULL DEFAULT 0,
            reward_xp INTEGER NOT NULL DEFAULT 0,
            reward_gold INTEGER NOT NULL DEFAULT 0,
            start_date TIMESTAMPTZ NOT NULL,
            end_date TIMESTAMPTZ NOT NULL,
            completed BOOLEAN NOT NULL DEFAULT false,
            completed_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_guild_challenges_guild_id
        ON guild_challenges(guild_id)
    """)

    # --- Loot boxes ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS loot_boxes (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            rarity VARCHAR(16) NOT NULL,
            cost INTEGER NOT NULL,
            reward_count INTEGER NOT NULL DEFAULT 1,
            possible_rewards JSONB NOT NULL DEFAULT '[]',
            available_until TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_loot_boxes (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            loot_box_id INTEGER NOT NULL REFERENCES loot_boxes(id),
            opened BOOLEAN NOT NULL DEFAULT false,
            opened_rewards JSONB,
            acquired_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            opened_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_user_loot_boxes_account_id
        ON user_loot_boxes(account_id)
    """)

    # --- Quests ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS quest_templates (
            id SERIAL PRIMARY KEY,
            slug VARCHAR(64) UNIQUE NOT NULL,
            quest_type VARCHAR(32) NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            target_value INTEGER NOT NULL,
            xp_reward INTEGER NOT NULL DEFAULT 0,
            gold_reward INTEGER NOT NULL DEFAULT 0,
            difficulty VARCHAR(16) NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS quest_completions (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            quest_template_id INTEGER NOT NULL REFERENCES quest_templates(id),
            progress INTEGER NOT NULL DEFAULT 0,
            completed_at TIMESTAMPTZ,
            updated_at TIMESTAMPTZ,
            CONSTRAINT quest_completions_account_template_key UNIQUE (account_id, quest_template_id)
        )
    """)

    # --- Notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievement_notifications (
            id BIGSERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            kind VARCHAR(32) NOT NULL,
            title VARCHAR(256) NOT NULL,
            message TEXT,
            payload JSONB NOT NULL DEFAULT '{}',
            shown BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            shown_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_achievement_notifications_unshown
        ON achievement_notifications(account_id, shown, created_at)
    """)

    # --- Seasonal events ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS seasonal_events (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            event_type VARCHAR(32) NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            start_date TIMESTAMPTZ NOT NULL,
            end_date TIMESTAMPTZ NOT NULL,
            reward_xp INTEGER NOT NULL DEFAULT 0,
            reward_gold INTEGER NOT NULL DEFAULT 0,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS event_participants (
            id SERIAL PRIMARY KEY,
            event_id INTEGER NOT NULL REFERENCES seasonal_events(id) ON DELETE CASCADE,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            progress INTEGER NOT NULL DEFAULT 0,
            completed BOOLEAN NOT NULL DEFAULT false,
            reward_claimed BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT event_participants_event_account_key UNIQUE (event_id, account_id)
        )
    """)

    # --- Skill trees ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS skill_trees (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            nodes JSONB NOT NULL DEFAULT '[]'
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_skill_progress (
            id SERIAL PRIMARY KEY,
            account_id BIGINT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            skill_tree_id INTEGER NOT NULL REFERENCES skill_trees(id) ON DELETE CASCADE,
            unlocked_nodes JSONB NOT NULL DEFAULT '[]',
            last_updated TIMESTAMPTZ,
            CONSTRAINT user_skill_progress_account_tree_key UNIQUE (account_id, skill_tree_id)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS user_skill_progress CASCADE")
    op.execute("DROP TABLE IF EXISTS skill_trees CASCADE")
    op.execute("DROP TABLE IF EXISTS event_participants CASCADE")
    op.execute("DROP TABLE IF EXISTS seasonal_events CASCADE")
    op.execute("DROP TABLE IF EXISTS achievement_notifications CASCADE")
    op.execute("DROP TABLE IF EXISTS quest_completions CASCADE")
    op.execute("DROP TABLE IF EXISTS quest_templates CASCADE")
    op.execute("DROP TABLE IF EXISTS user_loot_boxes CASCADE")
    op.execute("DROP TABLE IF EXISTS loot_boxes CASCADE")
    op.execute("DROP TABLE IF EXISTS guild_challenges CASCADE")
    op.execute("DROP TABLE IF EXISTS guild_members CASCADE")
    op.execute("DROP TABLE IF EXISTS guilds CASCADE")
    op.execute("DROP TABLE IF EXISTS badge_progress CASCADE")
    op.execute("DROP TABLE IF EXISTS badge_tiers CASCADE")
    op.execute("DROP TABLE IF EXISTS achievements CASCADE")
    op.execute("DROP TABLE IF EXISTS login_streaks CASCADE")
    op.execute("DROP TABLE IF EXISTS reward_grants CASCADE")
    op.execute("DROP TABLE IF EXISTS accounts CASCADE")
