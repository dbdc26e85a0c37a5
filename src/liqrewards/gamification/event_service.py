"""Seasonal events: join, progress (0-100) and a one-time reward claim."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from liqrewards.db.base import insert_for
from liqrewards.db.models import EventParticipation, SeasonalEvent
from liqrewards.errors import AlreadyClaimed, NotFoundError, RequirementNotMet
from liqrewards.gamification.ledger_service import CreditResult, credit, ensure_account
from liqrewards.social.notification_service import emit
from liqrewards.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

MAX_PROGRESS = 100


def _is_running(event: SeasonalEvent, now: datetime) -> bool:
    return event.is_active and as_utc(event.start_date) <= now < as_utc(event.end_date)


async def get_active_events(db: AsyncSession, now: datetime | None = None) -> list[SeasonalEvent]:
    now = as_utc(now) if now is not None else utcnow()
    result = await db.execute(
        select(SeasonalEvent).where(SeasonalEvent.is_active.is_(True)).order_by(SeasonalEvent.end_date.asc())
    )
    return [event for event in result.scalars().all() if _is_running(event, now)]


def _participation_query(account_id: int, event_id: int):
    return (
        select(EventParticipation)
        .where(EventParticipation.event_id == event_id, EventParticipation.account_id == account_id)
        .execution_options(populate_existing=True)
    )


async def _get_participation(db: AsyncSession, account_id: int, event_id: int) -> EventParticipation | None:
    result = await db.execute(_participation_query(account_id, event_id))
    return result.scalar_one_or_none()


async def join_event(
    db: AsyncSession,
    account_id: int,
    event_id: int,
    now: datetime | None = None,
) -> EventParticipation:
    """Join a running event. Joining twice returns the existing participation."""
    now = as_utc(now) if now is not None else utcnow()
    event = await db.get(SeasonalEvent, event_id)
    if event is None or not _is_running(event, now):
        raise NotFoundError("Event", event_id)

    await ensure_account(db, account_id)
    await db.execute(
        insert_for(db, EventParticipation)
        .values(event_id=event_id, account_id=account_id, progress=0, created_at=now)
        .on_conflict_do_nothing(index_elements=["event_id", "account_id"])
    )
    result = await db.execute(_participation_query(account_id, event_id))
    return result.scalar_one()


async def update_event_progress(
    db: AsyncSession,
    account_id: int,
    event_id: int,
    progress: int,
) -> EventParticipation:
    """Set progress, clamped to 0..100. Progress never moves backwards."""
    participation = await _get_participation(db, account_id, event_id)
    if participation is None:
        raise NotFoundError("Event participation", event_id)

    clamped = max(0, min(MAX_PROGRESS, progress))
    if clamped > participation.progress:
        await db.execute(
            update(EventParticipation)
            .where(EventParticipation.id == participation.id, EventParticipation.progress < clamped)
            .values(progress=clamped, completed=clamped >= MAX_PROGRESS)
        )
        result = await db.execute(_participation_query(account_id, event_id))
        participation = result.scalar_one()
    return participation


async def claim_event_reward(
    db: AsyncSession,
    redis: object | None,
    account_id: int,
    event_id: int,
) -> CreditResult:
    """Claim the reward of a completed event, once."""
    participation = await _get_participation(db, account_id, event_id)
    if participation is None:
        raise NotFoundError("Event participation", event_id)
    if not participation.completed:
        raise RequirementNotMet(current=participation.progress, required=MAX_PROGRESS)

    claimed = await db.execute(
        update(EventParticipation)
        .where(EventParticipation.id == participation.id, EventParticipation.reward_claimed.is_(False))
        .values(reward_claimed=True)
        .returning(EventParticipation.id)
    )
    if claimed.scalar_one_or_none() is None:
        raise AlreadyClaimed(event_id=event_id)

    event = participation.event
    grant = await credit(
        db,
        redis,
        account_id,
        xp_delta=event.reward_xp,
        gold_delta=event.reward_gold,
        idempotency_key=f"event:{event_id}:{account_id}",
        source="event",
        source_id=str(event_id),
        description=f'Event reward: "{event.name}"',
    )
    await emit(
        db,
        redis,
        account_id,
        kind="event",
        title=f"{event.name} Reward Claimed",
        message=f"+{event.reward_xp} XP and +{event.reward_gold} Gold",
        payload={"eventId": event_id, "xp": event.reward_xp, "gold": event.reward_gold},
    )
    logger.info("Account %s claimed reward for event %d", account_id, event_id)
    return grant
