"""ORM models for the rewards schema.

Tables are created by the Alembic migrations in ``alembic/versions``; the test
suite builds the same schema on SQLite with ``Base.metadata.create_all``.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from liqrewards.db.base import Base, JSONType

# BIGSERIAL on Postgres; SQLite only autoincrements INTEGER PRIMARY KEY
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")


# ---------------------------------------------------------------------------
# Accounts & Ledger
# ---------------------------------------------------------------------------


class Account(Base):
    """XP/Gold balances for an account issued by the auth service."""

    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("xp >= 0", name="accounts_xp_non_negative"),
        CheckConstraint("gold >= 0", name="accounts_gold_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    gold: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    referrals: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class RewardGrant(Base):
    """Immutable grant log. ``idempotency_key`` is the exactly-once boundary."""

    __tablename__ = "reward_grants"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    idempotency_key: Mapped[str] = mapped_column(String(256), unique=True, nullable=False)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    xp_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    gold_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    result_xp: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    result_gold: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    old_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    new_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


# ---------------------------------------------------------------------------
# Streaks
# ---------------------------------------------------------------------------


class LoginStreak(Base):
    """Daily login streak, one row per account."""

    __tablename__ = "login_streaks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_login_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    total_login_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    streak_rewards_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    seven_day_milestone_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    thirty_day_milestone_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Achievements & Badges
# ---------------------------------------------------------------------------


class Achievement(Base):
    """Achievement definition. Each achievement has one or more badge tiers."""

    __tablename__ = "achievements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    icon: Mapped[str] = mapped_column(String(16), nullable=False, default="\U0001f3c6")
    requirement_value: Mapped[int] = mapped_column(Integer, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    tiers: Mapped[list[BadgeTier]] = relationship(
        "BadgeTier", back_populates="achievement", order_by="BadgeTier.tier_rank", cascade="all, delete-orphan"
    )


class BadgeTier(Base):
    """Ordered rank within an achievement."""

    __tablename__ = "badge_tiers"
    __table_args__ = (UniqueConstraint("achievement_id", "tier_rank", name="badge_tiers_achievement_rank_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    achievement_id: Mapped[int] = mapped_column(Integer, ForeignKey("achievements.id", ondelete="CASCADE"), nullable=False)
    tier_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    tier_name: Mapped[str] = mapped_column(String(32), nullable=False)
    requirement_value: Mapped[int] = mapped_column(Integer, nullable=False)

    achievement: Mapped[Achievement] = relationship("Achievement", back_populates="tiers", lazy="joined")


class BadgeProgress(Base):
    """Per-account progress on one tier. ``unlocked`` flips false -> true once."""

    __tablename__ = "badge_progress"
    __table_args__ = (UniqueConstraint("account_id", "tier_id", name="badge_progress_account_tier_key"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tier_id: Mapped[int] = mapped_column(Integer, ForeignKey("badge_tiers.id", ondelete="CASCADE"), nullable=False)
    current_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    unlocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    unlocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    tier: Mapped[BadgeTier] = relationship("BadgeTier", lazy="joined")


# ---------------------------------------------------------------------------
# Guilds
# ---------------------------------------------------------------------------


class Guild(Base):
    """Learning guild. ``total_xp``/``total_members`` aggregate the memberships."""

    __tablename__ = "guilds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    leader_account_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id"), nullable=False)
    total_members: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    total_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    members: Mapped[list[GuildMember]] = relationship(
        "GuildMember", back_populates="guild", cascade="all, delete-orphan"
    )


# Guild names are unique case-insensitively
Index("guilds_name_lower_key", func.lower(Guild.name), unique=True)


class GuildMember(Base):
    """Guild membership. An account belongs to at most one guild."""

    __tablename__ = "guild_members"
    __table_args__ = (UniqueConstraint("account_id", name="guild_members_account_unique"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(Integer, ForeignKey("guilds.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="member", server_default="member")
    contribution_xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    guild: Mapped[Guild] = relationship("Guild", back_populates="members")


class GuildChallenge(Base):
    """Time-boxed guild goal. ``completed`` flips once when current_xp reaches target_xp."""

    __tablename__ = "guild_challenges"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(Integer, ForeignKey("guilds.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    target_xp: Mapped[int] = mapped_column(Integer, nullable=False)
    current_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    reward_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    reward_gold: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Loot boxes
# ---------------------------------------------------------------------------


class LootBox(Base):
    """Loot box definition. ``possible_rewards`` is a list of weighted reward specs."""

    __tablename__ = "loot_boxes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False)
    cost: Mapped[int] = mapped_column(Integer, nullable=False)
    reward_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    possible_rewards: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    available_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class UserLootBox(Base):
    """A purchased loot box instance. ``opened`` flips false -> true once."""

    __tablename__ = "user_loot_boxes"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    loot_box_id: Mapped[int] = mapped_column(Integer, ForeignKey("loot_boxes.id"), nullable=False)
    opened: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    opened_rewards: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONType, nullable=True)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    opened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    loot_box: Mapped[LootBox] = relationship("LootBox", lazy="joined")


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------


class QuestTemplate(Base):
    """Quest definition. Inactive templates are hidden but keep their completions."""

    __tablename__ = "quest_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    quest_type: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    target_value: Mapped[int] = mapped_column(Integer, nullable=False)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    gold_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    difficulty: Mapped[str] = mapped_column(String(16), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())


class QuestCompletion(Base):
    """Per-account quest progress; ``completed_at`` is stamped once."""

    __tablename__ = "quest_completions"
    __table_args__ = (
        UniqueConstraint("account_id", "quest_template_id", name="quest_completions_account_template_key"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    quest_template_id: Mapped[int] = mapped_column(Integer, ForeignKey("quest_templates.id"), nullable=False)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    template: Mapped[QuestTemplate] = relationship("QuestTemplate", lazy="joined")


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class AchievementNotification(Base):
    """Durable notification. ``shown`` is the source of truth for 'seen'."""

    __tablename__ = "achievement_notifications"
    __table_args__ = (Index("idx_achievement_notifications_unshown", "account_id", "shown", "created_at"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    shown: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    shown_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Seasonal events
# ---------------------------------------------------------------------------


class SeasonalEvent(Base):
    """Time-limited event with a claimable reward."""

    __tablename__ = "seasonal_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    event_type: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reward_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    reward_gold: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())


class EventParticipation(Base):
    """Account progress (0-100) in a seasonal event."""

    __tablename__ = "event_participants"
    __table_args__ = (UniqueConstraint("event_id", "account_id", name="event_participants_event_account_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(Integer, ForeignKey("seasonal_events.id", ondelete="CASCADE"), nullable=False)
    account_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    reward_claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    event: Mapped[SeasonalEvent] = relationship("SeasonalEvent", lazy="joined")


# ---------------------------------------------------------------------------
# Skill trees
# ---------------------------------------------------------------------------


class SkillTree(Base):
    """Skill tree definition. ``nodes`` is a list of {id, name, requires}."""

    __tablename__ = "skill_trees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    nodes: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)


class SkillProgress(Base):
    """Nodes unlocked by an account in one skill tree."""

    __tablename__ = "user_skill_progress"
    __table_args__ = (UniqueConstraint("account_id", "skill_tree_id", name="user_skill_progress_account_tree_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False)
    skill_tree_id: Mapped[int] = mapped_column(Integer, ForeignKey("skill_trees.id", ondelete="CASCADE"), nullable=False)
    unlocked_nodes: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    last_updated: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
