"""Notification feed endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from liqrewards.auth.dependencies import get_current_account_id
from liqrewards.database import get_session
from liqrewards.errors import NotFoundError
from liqrewards.social.notification_push import format_notification
from liqrewards.social.notification_service import (
    fetch_unshown,
    get_notifications,
    get_unshown_count,
    mark_shown,
)
from liqrewards.social.schemas import (
    NotificationListResponse,
    NotificationResponse,
    UnshownCountResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Notifications"])


@router.get("/notifications", response_model=NotificationListResponse)
async def list_notifications(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    """List the account's notifications (paginated, newest first)."""
    notifications, total = await get_notifications(db, account_id, page, per_page)
    return NotificationListResponse(
        notifications=[NotificationResponse(**format_notification(n)) for n in notifications],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/notifications/unshown", response_model=list[NotificationResponse])
async def list_unshown(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    """Notifications the account has not seen yet, oldest first."""
    return [NotificationResponse(**format_notification(n)) for n in await fetch_unshown(db, account_id)]


@router.get("/notifications/unshown/count", response_model=UnshownCountResponse)
async def unshown_count(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    return UnshownCountResponse(count=await get_unshown_count(db, account_id))


@router.post("/notifications/{notification_id}/shown", status_code=200)
async def mark_notification_shown(
    notification_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    """Mark a notification as shown. Repeating the call is harmless."""
    found = await mark_shown(db, account_id, notification_id)
    if not found:
        raise NotFoundError("Notification", notification_id)
    await db.commit()
    return {"detail": "Notification marked as shown"}
