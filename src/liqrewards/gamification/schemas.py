"""Pydantic request/response models for gamification endpoints."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field


# --- Ledger / levels ---


class UserStatsResponse(BaseModel):
    currentXP: int
    currentLevel: int
    totalGold: int
    targetXP: int


class LevelResponse(BaseModel):
    account_id: str
    xp: int
    level: int
    xp_into_level: int
    xp_for_level: int
    target_xp: int
    is_max_level: bool


class LevelEntry(BaseModel):
    level: int
    xp_required: int


class AllLevelsResponse(BaseModel):
    levels: list[LevelEntry]


class GrantEntry(BaseModel):
    id: str
    source: str
    source_id: str | None = None
    description: str | None = None
    xp: int
    gold: int
    created_at: datetime


class GrantHistoryResponse(BaseModel):
    grants: list[GrantEntry]


class LeaderboardEntryResponse(BaseModel):
    rank: int
    username: str
    referrals: int
    xp: int


class CreditResponse(BaseModel):
    new_xp: int
    new_gold: int
    leveled_up: bool
    new_level: int
    applied: bool = True


# --- Streaks ---


class MilestoneResponse(BaseModel):
    days: int
    streak: int
    xp: int
    gold: int
    applied: bool


class StreakResponse(BaseModel):
    current_streak: int
    longest_streak: int
    last_login_date: date | None = None
    total_login_days: int
    seven_day_milestone_count: int
    thirty_day_milestone_count: int


class LoginResponse(BaseModel):
    streak: StreakResponse
    changed: bool
    milestones: list[MilestoneResponse] = []


class TopStreakEntry(BaseModel):
    rank: int
    username: str
    current_streak: int
    longest_streak: int


# --- Badges ---


class BadgeResponse(BaseModel):
    id: str
    name: str
    description: str
    icon: str
    unlocked: bool
    unlockedAt: datetime | None = None
    progress: int
    requirement: int


class ProgressRequest(BaseModel):
    delta: int = Field(..., ge=0)


class UnlockedTierResponse(BaseModel):
    tier_id: int
    tier_rank: int
    tier_name: str


class BadgeProgressResponse(BaseModel):
    unlocked: list[UnlockedTierResponse]


class TierUnlockResponse(BaseModel):
    tier_id: int
    unlocked: bool
    unlocked_at: datetime | None = None


# --- Quests ---


class QuestTemplateResponse(BaseModel):
    id: int
    quest_type: str
    name: str
    description: str
    target_value: int
    xp_reward: int
    gold_reward: int
    difficulty: str


class QuestProgressResponse(BaseModel):
    quest_template_id: int
    name: str
    progress: int
    target_value: int
    completed: bool
    completed_at: datetime | None = None


class QuestAdvanceResponse(BaseModel):
    quest: QuestProgressResponse
    completed_now: bool
    reward: CreditResponse | None = None


# --- Loot boxes ---


class LootBoxResponse(BaseModel):
    id: int
    name: str
    rarity: str
    cost: int
    reward_count: int
    possible_rewards: list[dict[str, Any]]
    available_until: datetime | None = None


class UserLootBoxResponse(BaseModel):
    id: str
    loot_box_id: int
    name: str
    rarity: str
    opened: bool
    opened_rewards: list[dict[str, Any]] | None = None
    acquired_at: datetime
    opened_at: datetime | None = None


# --- Seasonal events ---


class SeasonalEventResponse(BaseModel):
    id: int
    name: str
    event_type: str
    description: str
    start_date: datetime
    end_date: datetime
    reward_xp: int
    reward_gold: int


class EventProgressRequest(BaseModel):
    progress: int


class EventParticipationResponse(BaseModel):
    event_id: int
    progress: int
    completed: bool
    reward_claimed: bool


# --- Skill trees ---


class SkillNode(BaseModel):
    id: str
    name: str
    requires: list[str] = []


class SkillTreeResponse(BaseModel):
    id: int
    name: str
    nodes: list[SkillNode]


class SkillProgressResponse(BaseModel):
    skill_tree_id: int
    unlocked_nodes: list[str]
    last_updated: datetime | None = None
