"""Guild business logic.

Rules:
- One guild per account
- Guild names are unique, case-insensitive
- Leadership passes to the longest-serving member when the leader leaves
- Last member leaving deletes the guild
- guild.total_xp == sum(member.contribution_xp) and
  guild.total_members == count(members); both are kept by atomic column
  updates inside the caller's transaction
- A challenge pays out once, when current_xp first reaches target_xp
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from liqrewards.db.base import dialect_name
from liqrewards.db.models import Account, Guild, GuildChallenge, GuildMember
from liqrewards.errors import (
    AlreadyInGuild,
    ChallengeClosed,
    NameTaken,
    NotFoundError,
    NotGuildLeader,
    NotInGuild,
)
from liqrewards.gamification.ledger_service import credit, ensure_account
from liqrewards.gamification.level_thresholds import guild_level
from liqrewards.social.notification_service import emit
from liqrewards.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ChallengeProgress:
    challenge: GuildChallenge
    completed_now: bool
    rewarded_account_ids: list[int] = field(default_factory=list)


async def get_guild(db: AsyncSession, guild_id: int) -> Guild | None:
    """Get a guild by ID, always reloading its counters."""
    result = await db.execute(
        select(Guild).where(Guild.id == guild_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_user_membership(db: AsyncSession, account_id: int) -> GuildMember | None:
    """Get an account's guild membership (if any)."""
    result = await db.execute(
        select(GuildMember)
        .where(GuildMember.account_id == account_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_user_guild(db: AsyncSession, account_id: int) -> Guild | None:
    membership = await get_user_membership(db, account_id)
    if membership is None:
        return None
    return await get_guild(db, membership.guild_id)


async def _name_taken(db: AsyncSession, name: str) -> bool:
    result = await db.execute(select(Guild.id).where(func.lower(Guild.name) == name.strip().lower()))
    return result.first() is not None


def _is_membership_conflict(exc: IntegrityError) -> bool:
    # Postgres names the constraint, SQLite names the table and column
    message = str(exc.orig)
    return "guild_members_account_unique" in message or "guild_members.account_id" in message


async def create_guild(
    db: AsyncSession,
    leader_id: int,
    name: str,
    description: str | None = None,
) -> Guild:
    """Create a guild. The creator becomes its leader with zero contribution."""
    name = name.strip()
    if not name:
        raise ValueError("Guild name must not be empty")

    await ensure_account(db, leader_id)

    if await get_user_membership(db, leader_id):
        raise AlreadyInGuild()

    if await _name_taken(db, name):
        raise NameTaken(name=name)

    now = utcnow()
    guild = Guild(
        name=name,
        description=description,
        leader_account_id=leader_id,
        total_members=1,
        total_xp=0,
        level=1,
        created_at=now,
        updated_at=now,
    )
    try:
        # Unique indexes settle races that slip past the checks above
        async with db.begin_nested():
            db.add(guild)
            await db.flush()
            db.add(
                GuildMember(
                    guild_id=guild.id,
                    account_id=leader_id,
                    role="leader",
                    contribution_xp=0,
                    joined_at=now,
                )
            )
            await db.flush()
    except IntegrityError as exc:
        if _is_membership_conflict(exc):
            raise AlreadyInGuild() from exc
        raise NameTaken(name=name) from exc

    logger.info("Guild created: %s (id=%d, leader=%d)", name, guild.id, leader_id)
    return guild


async def join_guild(db: AsyncSession, account_id: int, guild_id: int) -> GuildMember:
    """Join a guild. An account can only be in one guild at a time."""
    guild = await get_guild(db, guild_id)
    if guild is None:
        raise NotFoundError("Guild", guild_id)

    await ensure_account(db, account_id)

    if await get_user_membership(db, account_id):
        raise AlreadyInGuild()

    member = GuildMember(
        guild_id=guild_id,
        account_id=account_id,
        role="member",
        contribution_xp=0,
        joined_at=utcnow(),
    )
    try:
        async with db.begin_nested():
            db.add(member)
            await db.flush()
    except IntegrityError as exc:
        if _is_membership_conflict(exc):
            raise AlreadyInGuild() from exc
        # Foreign key: the guild was dissolved after the lookup above
        raise NotFoundError("Guild", guild_id) from exc

    await db.execute(
        update(Guild)
        .where(Guild.id == guild_id)
        .values(total_members=Guild.total_members + 1, updated_at=utcnow())
    )
    logger.info("Account %d joined guild %d", account_id, guild_id)
    return member


async def leave_guild(db: AsyncSession, account_id: int) -> None:
    """Leave the account's current guild, taking its contribution with it."""
    membership = await get_user_membership(db, account_id)
    if membership is None:
        raise NotInGuild()

    # The deleted row, not the earlier read, says how much XP leaves with the member
    deleted = await db.execute(
        delete(GuildMember)
        .where(GuildMember.id == membership.id)
        .returning(GuildMember.guild_id, GuildMember.contribution_xp, GuildMember.role)
    )
    row = deleted.one_or_none()
    if row is None:
        raise NotInGuild()
    guild_id, contribution, role = row
    was_leader = role == "leader"

    result = await db.execute(
        update(Guild)
        .where(Guild.id == guild_id)
        .values(
            total_members=Guild.total_members - 1,
            total_xp=Guild.total_xp - contribution,
            updated_at=utcnow(),
        )
        .returning(Guild.total_members, Guild.total_xp)
    )
    remaining, total_xp = result.one()

    if remaining <= 0:
        # Last member out, dissolve the guild
        await db.execute(delete(GuildChallenge).where(GuildChallenge.guild_id == guild_id))
        await db.execute(delete(Guild).where(Guild.id == guild_id))
        logger.info("Guild %d dissolved after last member %d left", guild_id, account_id)
        return

    new_leader_id: int | None = None
    if was_leader:
        # Transfer leadership to the longest-serving member
        next_leader_result = await db.execute(
            select(GuildMember)
            .where(GuildMember.guild_id == guild_id)
            .order_by(GuildMember.joined_at.asc(), GuildMember.id.asc())
            .limit(1)
        )
        next_leader = next_leader_result.scalar_one()
        next_leader.role = "leader"
        new_leader_id = next_leader.account_id

    values: dict = {"level": guild_level(total_xp)}
    if new_leader_id is not None:
        values["leader_account_id"] = new_leader_id
    await db.execute(update(Guild).where(Guild.id == guild_id).values(**values))
    await db.flush()
    logger.info("Account %d left guild %d", account_id, guild_id)


async def contribute_xp(
    db: AsyncSession,
    redis: object | None,
    account_id: int,
    amount: int,
    now: datetime | None = None,
) -> Guild:
    """Add XP to the member's contribution and the guild total together.

    Running challenges of the guild advance by the same amount.
    """
    if amount < 0:
        raise ValueError("Contribution must be non-negative")

    membership = await get_user_membership(db, account_id)
    if membership is None:
        raise NotInGuild()

    updated = await db.execute(
        update(GuildMember)
        .where(GuildMember.id == membership.id)
        .values(contribution_xp=GuildMember.contribution_xp + amount)
        .returning(GuildMember.guild_id)
    )
    guild_id = updated.scalar_one_or_none()
    if guild_id is None:
        # Left the guild after the lookup
        raise NotInGuild()

    result = await db.execute(
        update(Guild)
        .where(Guild.id == guild_id)
        .values(total_xp=Guild.total_xp + amount, updated_at=utcnow())
        .returning(Guild.total_xp, Guild.level)
    )
    total_xp, old_level = result.one()

    new_level = guild_level(total_xp)
    if new_level != old_level:
        await db.execute(update(Guild).where(Guild.id == guild_id).values(level=new_level))
        logger.info("Guild %d reached level %d", guild_id, new_level)

    for challenge in await _running_challenges(db, guild_id, now):
        await advance_challenge(db, redis, challenge.id, amount, now=now)

    result = await db.execute(
        select(Guild).where(Guild.id == guild_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def get_guild_members(db: AsyncSession, guild_id: int) -> list[tuple[GuildMember, Account]]:
    """Members with account info, top contributors first."""
    result = await db.execute(
        select(GuildMember, Account)
        .join(Account, GuildMember.account_id == Account.id)
        .where(GuildMember.guild_id == guild_id)
        .order_by(GuildMember.contribution_xp.desc(), GuildMember.joined_at.asc())
        .execution_options(populate_existing=True)
    )
    return [(row.GuildMember, row.Account) for row in result]


async def get_top_guilds(db: AsyncSession, limit: int = 10) -> list[Guild]:
    result = await db.execute(
        select(Guild).order_by(Guild.total_xp.desc(), Guild.created_at.asc(), Guild.id.asc()).limit(limit)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Challenges
# ---------------------------------------------------------------------------


async def create_challenge(
    db: AsyncSession,
    leader_id: int,
    name: str,
    target_xp: int,
    start_date: datetime,
    end_date: datetime,
    reward_xp: int = 0,
    reward_gold: int = 0,
    description: str | None = None,
) -> GuildChallenge:
    """Leader schedules a challenge for their guild."""
    membership = await get_user_membership(db, leader_id)
    if membership is None:
        raise NotInGuild()
    if membership.role != "leader":
        raise NotGuildLeader()
    if target_xp <= 0:
        raise ValueError("Challenge target must be positive")
    if reward_xp < 0 or reward_gold < 0:
        raise ValueError("Challenge rewards must be non-negative")
    if as_utc(end_date) <= as_utc(start_date):
        raise ValueError("Challenge must end after it starts")

    challenge = GuildChallenge(
        guild_id=membership.guild_id,
        name=name,
        description=description,
        target_xp=target_xp,
        current_xp=0,
        reward_xp=reward_xp,
        reward_gold=reward_gold,
        start_date=start_date,
        end_date=end_date,
        completed=False,
    )
    db.add(challenge)
    await db.flush()
    logger.info("Challenge %d created for guild %d", challenge.id, membership.guild_id)
    return challenge


async def _running_challenges(db: AsyncSession, guild_id: int, now: datetime | None) -> list[GuildChallenge]:
    now = as_utc(now) if now is not None else utcnow()
    result = await db.execute(
        select(GuildChallenge).where(
            GuildChallenge.guild_id == guild_id,
            GuildChallenge.completed.is_(False),
        )
    )
    return [c for c in result.scalars().all() if as_utc(c.start_date) <= now < as_utc(c.end_date)]


async def _lock_challenge(db: AsyncSession, challenge_id: int) -> GuildChallenge:
    stmt = (
        select(GuildChallenge)
        .where(GuildChallenge.id == challenge_id)
        .execution_options(populate_existing=True)
    )
    if dialect_name(db) == "postgresql":
        stmt = stmt.with_for_update()
    challenge = (await db.execute(stmt)).scalar_one_or_none()
    if challenge is None:
        raise NotFoundError("Guild challenge", challenge_id)
    return challenge


async def advance_challenge(
    db: AsyncSession,
    redis: object | None,
    challenge_id: int,
    amount: int,
    now: datetime | None = None,
) -> ChallengeProgress:
    """Move a challenge toward its target; pay every member once on completion.

    Progress is only accepted inside ``[start_date, end_date)``.
    """
    if amount < 0:
        raise ValueError("Challenge progress must be non-negative")
    now = as_utc(now) if now is not None else utcnow()

    challenge = await _lock_challenge(db, challenge_id)
    if not (as_utc(challenge.start_date) <= now < as_utc(challenge.end_date)):
        raise ChallengeClosed(challenge_id=challenge_id)
    if challenge.completed:
        return ChallengeProgress(challenge=challenge, completed_now=False)

    advanced = GuildChallenge.current_xp + amount
    await db.execute(
        update(GuildChallenge)
        .where(GuildChallenge.id == challenge_id, GuildChallenge.completed.is_(False))
        .values(current_xp=case((advanced >= GuildChallenge.target_xp, GuildChallenge.target_xp), else_=advanced))
    )
    flipped = await db.execute(
        update(GuildChallenge)
        .where(
            GuildChallenge.id == challenge_id,
            GuildChallenge.completed.is_(False),
            GuildChallenge.current_xp >= GuildChallenge.target_xp,
        )
        .values(completed=True, completed_at=now)
        .returning(GuildChallenge.id)
    )
    completed_now = flipped.scalar_one_or_none() is not None

    rewarded: list[int] = []
    if completed_now:
        rewarded = await _pay_out_challenge(db, redis, challenge)

    challenge = await _lock_challenge(db, challenge_id)
    return ChallengeProgress(challenge=challenge, completed_now=completed_now, rewarded_account_ids=rewarded)


async def _pay_out_challenge(db: AsyncSession, redis: object | None, challenge: GuildChallenge) -> list[int]:
    """Credit every current member once per challenge."""
    result = await db.execute(
        select(GuildMember.account_id).where(GuildMember.guild_id == challenge.guild_id).order_by(GuildMember.id)
    )
    member_ids = list(result.scalars().all())

    for member_id in member_ids:
        grant = await credit(
            db,
            redis,
            member_id,
            xp_delta=challenge.reward_xp,
            gold_delta=challenge.reward_gold,
            idempotency_key=f"guild_challenge:{challenge.id}:{member_id}",
            source="guild_challenge",
            source_id=str(challenge.id),
            description=f'Guild challenge "{challenge.name}" completed',
        )
        if grant.applied:
            await emit(
                db,
                redis,
                member_id,
                kind="guild",
                title=f'Challenge Complete: "{challenge.name}"',
                message=f"Your guild earned +{challenge.reward_xp} XP and +{challenge.reward_gold} Gold each",
                payload={
                    "challengeId": challenge.id,
                    "xp": challenge.reward_xp,
                    "gold": challenge.reward_gold,
                },
            )

    logger.info("Challenge %d completed, paid %d member(s)", challenge.id, len(member_ids))
    return member_ids


async def get_guild_challenges(db: AsyncSession, guild_id: int) -> list[GuildChallenge]:
    result = await db.execute(
        select(GuildChallenge)
        .where(GuildChallenge.guild_id == guild_id)
        .order_by(GuildChallenge.end_date.asc(), GuildChallenge.id.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())
