"""Pydantic schemas for social endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# --- Guilds ---


class CreateGuildRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=64)
    description: str | None = Field(None, max_length=256)


class ContributeRequest(BaseModel):
    amount: int = Field(..., ge=0)


class GuildResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    leader_account_id: str
    total_members: int
    total_xp: int
    level: int
    created_at: datetime | None = None


class GuildMemberResponse(BaseModel):
    account_id: str
    username: str
    role: str
    contribution_xp: int
    joined_at: datetime


class CreateChallengeRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=128)
    description: str | None = None
    target_xp: int = Field(..., gt=0)
    reward_xp: int = Field(0, ge=0)
    reward_gold: int = Field(0, ge=0)
    start_date: datetime
    end_date: datetime


class ChallengeResponse(BaseModel):
    id: int
    guild_id: int
    name: str
    description: str | None = None
    target_xp: int
    current_xp: int
    reward_xp: int
    reward_gold: int
    start_date: datetime
    end_date: datetime
    completed: bool
    completed_at: datetime | None = None


class ChallengeProgressResponse(BaseModel):
    challenge: ChallengeResponse
    completed_now: bool
    rewarded_account_ids: list[str] = []


# --- Notifications ---


class NotificationResponse(BaseModel):
    id: str
    kind: str
    title: str
    message: str | None = None
    payload: dict[str, Any] = {}
    shown: bool
    createdAt: datetime | None = None


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    total: int
    page: int
    per_page: int


class UnshownCountResponse(BaseModel):
    count: int
