"""Guild API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from liqrewards.auth.dependencies import get_current_account_id
from liqrewards.database import get_session
from liqrewards.db.models import Guild, GuildChallenge
from liqrewards.dependencies import get_redis_dep
from liqrewards.errors import NotFoundError
from liqrewards.social import guild_service
from liqrewards.social.schemas import (
    ChallengeProgressResponse,
    ChallengeResponse,
    ContributeRequest,
    CreateChallengeRequest,
    CreateGuildRequest,
    GuildMemberResponse,
    GuildResponse,
)

router = APIRouter(prefix="/api/v1/guilds", tags=["Guilds"])


def _guild_response(guild: Guild) -> GuildResponse:
    return GuildResponse(
        id=guild.id,
        name=guild.name,
        description=guild.description,
        leader_account_id=str(guild.leader_account_id),
        total_members=guild.total_members,
        total_xp=guild.total_xp,
        level=guild.level,
        created_at=guild.created_at,
    )


def _challenge_response(challenge: GuildChallenge) -> ChallengeResponse:
    return ChallengeResponse(
        id=challenge.id,
        guild_id=challenge.guild_id,
        name=challenge.name,
        description=challenge.description,
        target_xp=challenge.target_xp,
        current_xp=challenge.current_xp,
        reward_xp=challenge.reward_xp,
        reward_gold=challenge.reward_gold,
        start_date=challenge.start_date,
        end_date=challenge.end_date,
        completed=challenge.completed,
        completed_at=challenge.completed_at,
    )


@router.post("", response_model=GuildResponse, status_code=201)
async def create_guild(
    body: CreateGuildRequest,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    """Create a guild led by the caller."""
    guild = await guild_service.create_guild(db, account_id, body.name, body.description)
    await db.commit()
    return _guild_response(guild)


@router.get("/top", response_model=list[GuildResponse])
async def top_guilds(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    return [_guild_response(g) for g in await guild_service.get_top_guilds(db, limit)]


@router.get("/me", response_model=GuildResponse)
async def my_guild(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    guild = await guild_service.get_user_guild(db, account_id)
    if guild is None:
        raise NotFoundError("Guild membership")
    return _guild_response(guild)


@router.post("/leave", status_code=200)
async def leave_guild(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    await guild_service.leave_guild(db, account_id)
    await db.commit()
    return {"detail": "Left guild"}


@router.post("/contribute", response_model=GuildResponse)
async def contribute(
    body: ContributeRequest,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    """Add XP to the caller's guild."""
    guild = await guild_service.contribute_xp(db, redis, account_id, body.amount)
    await db.commit()
    return _guild_response(guild)


@router.post("/challenges", response_model=ChallengeResponse, status_code=201)
async def create_challenge(
    body: CreateChallengeRequest,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    """Leader schedules a challenge for the guild."""
    challenge = await guild_service.create_challenge(
        db,
        account_id,
        name=body.name,
        target_xp=body.target_xp,
        start_date=body.start_date,
        end_date=body.end_date,
        reward_xp=body.reward_xp,
        reward_gold=body.reward_gold,
        description=body.description,
    )
    await db.commit()
    return _challenge_response(challenge)


@router.post("/challenges/{challenge_id}/progress", response_model=ChallengeProgressResponse)
async def challenge_progress(
    challenge_id: int,
    body: ContributeRequest,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    membership = await guild_service.get_user_membership(db, account_id)
    challenge = await db.get(GuildChallenge, challenge_id)
    if challenge is None or membership is None or membership.guild_id != challenge.guild_id:
        raise NotFoundError("Guild challenge", challenge_id)

    result = await guild_service.advance_challenge(db, redis, challenge_id, body.amount)
    await db.commit()
    return ChallengeProgressResponse(
        challenge=_challenge_response(result.challenge),
        completed_now=result.completed_now,
        rewarded_account_ids=[str(a) for a in result.rewarded_account_ids],
    )


@router.get("/{guild_id}", response_model=GuildResponse)
async def get_guild(guild_id: int, db: AsyncSession = Depends(get_session)):
    guild = await guild_service.get_guild(db, guild_id)
    if guild is None:
        raise NotFoundError("Guild", guild_id)
    return _guild_response(guild)


@router.get("/{guild_id}/members", response_model=list[GuildMemberResponse])
async def guild_members(guild_id: int, db: AsyncSession = Depends(get_session)):
    if await guild_service.get_guild(db, guild_id) is None:
        raise NotFoundError("Guild", guild_id)
    rows = await guild_service.get_guild_members(db, guild_id)
    return [
        GuildMemberResponse(
            account_id=str(member.account_id),
            username=account.username or f"learner-{account.id}",
            role=member.role,
            contribution_xp=member.contribution_xp,
            joined_at=member.joined_at,
        )
        for member, account in rows
    ]


@router.post("/{guild_id}/join", response_model=GuildResponse)
async def join_guild(
    guild_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    await guild_service.join_guild(db, account_id, guild_id)
    await db.commit()
    guild = await guild_service.get_guild(db, guild_id)
    if guild is None:
        raise NotFoundError("Guild", guild_id)
    return _guild_response(guild)


@router.get("/{guild_id}/challenges", response_model=list[ChallengeResponse])
async def guild_challenges(guild_id: int, db: AsyncSession = Depends(get_session)):
    return [_challenge_response(c) for c in await guild_service.get_guild_challenges(db, guild_id)]
