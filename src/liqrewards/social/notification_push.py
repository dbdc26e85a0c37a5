"""Push formatted notification over Redis pub/sub for per-account WebSocket delivery."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from liqrewards.db.models import AchievementNotification

logger = logging.getLogger(__name__)


def user_channel(account_id: int) -> str:
    """Redis channel carrying one account's notifications."""
    return f"ws:user:{account_id}"


def format_notification(notification: "AchievementNotification") -> dict:
    """Wire shape shared by the REST feed and the WebSocket push."""
    return {
        "id": str(notification.id),
        "kind": notification.kind,
        "title": notification.title,
        "message": notification.message,
        "payload": notification.payload or {},
        "shown": notification.shown,
        "createdAt": notification.created_at.isoformat() if notification.created_at else None,
    }


async def push_notification_to_user(redis: object | None, notification: "AchievementNotification") -> bool:
    """Publish a formatted notification dict to ws:user:{account_id}.

    The notification must already be flushed (have an ``id``). Delivery is
    best effort: the durable ``shown`` flag decides what the user has seen,
    so a failed publish is logged and the caller carries on.
    """
    if redis is None:
        return False

    ws_payload = {"event": "notification", "data": format_notification(notification)}
    try:
        await redis.publish(  # type: ignore[union-attr]
            user_channel(notification.account_id),
            json.dumps(ws_payload),
        )
    except Exception:
        logger.warning(
            "Failed to push notification via ws:user:%s",
            notification.account_id,
            exc_info=True,
        )
        return False
    return True
