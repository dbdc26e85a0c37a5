"""Achievement notification creation and delivery.

Notifications are:
1. Persisted in the database with ``shown = false``
2. Pushed to the account via WebSocket (Redis pub/sub -> WS bridge)
3. Marked shown by the consuming client, which is the dedup boundary for
   at-least-once push delivery

Kinds: badge, level, streak, quest, guild, lootbox, event
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from liqrewards.db.models import AchievementNotification
from liqrewards.social.notification_push import push_notification_to_user
from liqrewards.timeutils import utcnow

logger = logging.getLogger(__name__)

VALID_KINDS = {"badge", "level", "streak", "quest", "guild", "lootbox", "event"}


async def emit(
    db: AsyncSession,
    redis: Any | None,
    account_id: int,
    kind: str,
    title: str,
    message: str | None = None,
    payload: dict[str, Any] | None = None,
) -> AchievementNotification:
    """Create an unshown notification and push it to the account's channel."""
    if kind not in VALID_KINDS:
        raise ValueError(f"Invalid notification kind: {kind}. Must be one of {sorted(VALID_KINDS)}")

    notification = AchievementNotification(
        account_id=account_id,
        kind=kind,
        title=title,
        message=message,
        payload=payload or {},
        shown=False,
        created_at=utcnow(),
    )
    db.add(notification)
    await db.flush()  # Assign notification.id for WS push

    await push_notification_to_user(redis, notification)
    return notification


async def fetch_unshown(db: AsyncSession, account_id: int) -> list[AchievementNotification]:
    """Unshown notifications for an account, oldest first."""
    result = await db.execute(
        select(AchievementNotification)
        .where(
            AchievementNotification.account_id == account_id,
            AchievementNotification.shown.is_(False),
        )
        .order_by(AchievementNotification.created_at.asc(), AchievementNotification.id.asc())
    )
    return list(result.scalars().all())


async def mark_shown(db: AsyncSession, account_id: int, notification_id: int) -> bool:
    """Mark a notification shown. Idempotent; returns False only if it doesn't exist."""
    result = await db.execute(
        update(AchievementNotification)
        .where(
            AchievementNotification.id == notification_id,
            AchievementNotification.account_id == account_id,
            AchievementNotification.shown.is_(False),
        )
        .values(shown=True, shown_at=utcnow())
    )
    if result.rowcount > 0:
        await db.flush()
        return True

    existing = await db.execute(
        select(AchievementNotification.id).where(
            AchievementNotification.id == notification_id,
            AchievementNotification.account_id == account_id,
        )
    )
    return existing.scalar_one_or_none() is not None


async def get_notifications(
    db: AsyncSession,
    account_id: int,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[AchievementNotification], int]:
    """Get an account's notifications (paginated, most recent first)."""
    offset = (page - 1) * per_page

    total_result = await db.execute(
        select(func.count())
        .select_from(AchievementNotification)
        .where(AchievementNotification.account_id == account_id)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(AchievementNotification)
        .where(AchievementNotification.account_id == account_id)
        .order_by(AchievementNotification.created_at.desc(), AchievementNotification.id.desc())
        .offset(offset)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def get_unshown_count(db: AsyncSession, account_id: int) -> int:
    """Count of notifications the account has not seen."""
    result = await db.execute(
        select(func.count())
        .select_from(AchievementNotification)
        .where(
            AchievementNotification.account_id == account_id,
            AchievementNotification.shown.is_(False),
        )
    )
    return result.scalar_one()
