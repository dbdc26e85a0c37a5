"""Achievement tier progress and badge unlocking.

Each achievement has ordered badge tiers. Progress is tracked per tier in
``badge_progress``: it only grows, is clamped at the tier's requirement, and
``unlocked`` flips exactly once. All three steps are single conditional
statements so concurrent progress events cannot double-unlock.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from liqrewards.db.base import insert_for
from liqrewards.db.models import Achievement, BadgeProgress, BadgeTier
from liqrewards.errors import AlreadyUnlocked, NotFoundError, RequirementNotMet
from liqrewards.gamification.ledger_service import ensure_account
from liqrewards.social.notification_service import emit
from liqrewards.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass
class Badge:
    id: str
    name: str
    description: str
    icon: str
    unlocked: bool
    unlocked_at: datetime | None
    progress: int
    requirement: int

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": self.icon,
            "unlocked": self.unlocked,
            "unlockedAt": self.unlocked_at.isoformat() if self.unlocked_at else None,
            "progress": self.progress,
            "requirement": self.requirement,
        }


def tier_badge_id(achievement: Achievement, tier: BadgeTier) -> str:
    return f"{achievement.slug}:{tier.tier_rank}"


async def get_achievement(db: AsyncSession, achievement_id: int) -> Achievement:
    result = await db.execute(
        select(Achievement).options(selectinload(Achievement.tiers)).where(Achievement.id == achievement_id)
    )
    achievement = result.scalar_one_or_none()
    if achievement is None or not achievement.is_active:
        raise NotFoundError("Achievement", achievement_id)
    return achievement


async def get_achievement_by_slug(db: AsyncSession, slug: str) -> Achievement | None:
    result = await db.execute(
        select(Achievement).options(selectinload(Achievement.tiers)).where(Achievement.slug == slug)
    )
    return result.scalar_one_or_none()


async def record_progress(
    db: AsyncSession,
    redis: object | None,
    account_id: int,
    achievement_id: int,
    delta: int,
) -> list[BadgeTier]:
    """Add ``delta`` to every still-locked tier of the achievement.

    Returns the tiers unlocked by this call (usually zero or one).
    """
    if delta < 0:
        raise ValueError("progress delta must be non-negative")

    achievement = await get_achievement(db, achievement_id)
    await ensure_account(db, account_id)
    unlocked: list[BadgeTier] = []

    for tier in achievement.tiers:
        await db.execute(
            insert_for(db, BadgeProgress)
            .values(account_id=account_id, tier_id=tier.id, current_progress=0, unlocked=False)
            .on_conflict_do_nothing(index_elements=["account_id", "tier_id"])
        )

        if delta > 0:
            advanced = BadgeProgress.current_progress + delta
            await db.execute(
                update(BadgeProgress)
                .where(
                    BadgeProgress.account_id == account_id,
                    BadgeProgress.tier_id == tier.id,
                    BadgeProgress.unlocked.is_(False),
                )
                .values(
                    current_progress=case(
                        (advanced >= tier.requirement_value, tier.requirement_value),
                        else_=advanced,
                    )
                )
            )

        if await _flip_unlocked(db, account_id, tier):
            unlocked.append(tier)
            await _emit_badge_unlocked(db, redis, account_id, achievement, tier)

    if unlocked:
        logger.info(
            "Account %s unlocked %d tier(s) of %s", account_id, len(unlocked), achievement.slug
        )
    return unlocked


async def _flip_unlocked(db: AsyncSession, account_id: int, tier: BadgeTier) -> bool:
    """Set unlocked once the requirement is met. True only for the call that flips it."""
    result = await db.execute(
        update(BadgeProgress)
        .where(
            BadgeProgress.account_id == account_id,
            BadgeProgress.tier_id == tier.id,
            BadgeProgress.unlocked.is_(False),
            BadgeProgress.current_progress >= tier.requirement_value,
        )
        .values(unlocked=True, unlocked_at=utcnow())
        .returning(BadgeProgress.id)
    )
    return result.scalar_one_or_none() is not None


async def unlock_tier(
    db: AsyncSession,
    redis: object | None,
    account_id: int,
    tier_id: int,
) -> BadgeProgress:
    """Unlock a tier whose requirement is already met."""
    result = await db.execute(select(BadgeTier).where(BadgeTier.id == tier_id))
    tier = result.scalar_one_or_none()
    if tier is None:
        raise NotFoundError("Badge tier", tier_id)

    await ensure_account(db, account_id)
    await db.execute(
        insert_for(db, BadgeProgress)
        .values(account_id=account_id, tier_id=tier_id, current_progress=0, unlocked=False)
        .on_conflict_do_nothing(index_elements=["account_id", "tier_id"])
    )
    result = await db.execute(
        select(BadgeProgress).where(
            BadgeProgress.account_id == account_id,
            BadgeProgress.tier_id == tier_id,
        )
    )
    progress = result.scalar_one()
    if progress.unlocked:
        raise AlreadyUnlocked()
    if progress.current_progress < tier.requirement_value:
        raise RequirementNotMet(current=progress.current_progress, required=tier.requirement_value)

    if not await _flip_unlocked(db, account_id, tier):
        # Another request flipped it between the read and the update
        raise AlreadyUnlocked()

    await _emit_badge_unlocked(db, redis, account_id, tier.achievement, tier)
    await db.refresh(progress)
    return progress


async def _emit_badge_unlocked(
    db: AsyncSession,
    redis: object | None,
    account_id: int,
    achievement: Achievement,
    tier: BadgeTier,
) -> None:
    await emit(
        db,
        redis,
        account_id,
        kind="badge",
        title=f'Badge Unlocked: "{achievement.name}" ({tier.tier_name})',
        message=achievement.description,
        payload={
            "badgeId": tier_badge_id(achievement, tier),
            "achievement": achievement.slug,
            "tier": tier.tier_name,
            "tierRank": tier.tier_rank,
            "icon": achievement.icon,
        },
    )


async def get_user_badges(db: AsyncSession, account_id: int) -> list[Badge]:
    """Unlocked tiers plus one locked entry per achievement with nothing unlocked.

    Every active achievement is represented, whether or not tracking started.
    """
    achievements_result = await db.execute(
        select(Achievement)
        .options(selectinload(Achievement.tiers))
        .where(Achievement.is_active.is_(True))
        .order_by(Achievement.sort_order, Achievement.id)
    )
    achievements = achievements_result.scalars().all()

    progress_result = await db.execute(select(BadgeProgress).where(BadgeProgress.account_id == account_id))
    progress_by_tier = {p.tier_id: p for p in progress_result.scalars().all()}

    badges: list[Badge] = []
    for achievement in achievements:
        earned = [
            (tier, progress_by_tier[tier.id])
            for tier in achievement.tiers
            if tier.id in progress_by_tier and progress_by_tier[tier.id].unlocked
        ]
        for tier, progress in earned:
            badges.append(
                Badge(
                    id=tier_badge_id(achievement, tier),
                    name=f"{achievement.name} ({tier.tier_name})",
                    description=achievement.description,
                    icon=achievement.icon,
                    unlocked=True,
                    unlocked_at=progress.unlocked_at,
                    progress=progress.current_progress,
                    requirement=tier.requirement_value,
                )
            )
        if earned:
            continue

        first_tier = achievement.tiers[0] if achievement.tiers else None
        first_progress = progress_by_tier.get(first_tier.id) if first_tier else None
        badges.append(
            Badge(
                id=achievement.slug,
                name=achievement.name,
                description=achievement.description,
                icon=achievement.icon,
                unlocked=False,
                unlocked_at=None,
                progress=first_progress.current_progress if first_progress else 0,
                requirement=first_tier.requirement_value if first_tier else achievement.requirement_value,
            )
        )
    return badges
