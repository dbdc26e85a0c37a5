"""WebSocket endpoint for live notification push."""

import json
import uuid

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
import structlog

from liqrewards.auth.jwt import account_id_from_token
from liqrewards.database import get_session_factory
from liqrewards.social.notification_push import format_notification
from liqrewards.social.notification_service import fetch_unshown, mark_shown
from liqrewards.ws.manager import manager

logger = structlog.get_logger()

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: str = Query(...),
) -> None:
    """Per-account push channel with JWT authentication.

    On connect the server sends every unshown notification, then pushes new
    ones as they are emitted. The same notification may arrive twice; the
    client acknowledges each id once it has been displayed.

    Protocol:
        Client -> Server:
            {"action": "ack", "id": "42"}
            {"action": "ping"}

        Server -> Client:
            {"type": "backlog", "payload": [{...}, ...]}
            {"type": "notification", "payload": {...}}
            {"type": "acked", "id": "42"}
            {"type": "pong"}
            {"type": "heartbeat", "ts": 1760000000}
            {"type": "error", "message": "..."}
    """
    try:
        account_id = account_id_from_token(token)
    except Exception as e:
        await websocket.close(code=4001, reason=f"Authentication failed: {e}")
        return

    conn_id = str(uuid.uuid4())
    if not await manager.connect(websocket, conn_id, account_id):
        return

    try:
        async with get_session_factory()() as db:
            backlog = await fetch_unshown(db, account_id)
        await websocket.send_json({"type": "backlog", "payload": [format_notification(n) for n in backlog]})

        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "message": "Invalid JSON"})
                continue

            action = msg.get("action")

            if action == "ack":
                try:
                    notification_id = int(msg.get("id"))
                except (TypeError, ValueError):
                    await websocket.send_json({"type": "error", "message": "Invalid notification id"})
                    continue
                async with get_session_factory()() as db:
                    found = await mark_shown(db, account_id, notification_id)
                    await db.commit()
                if found:
                    await websocket.send_json({"type": "acked", "id": str(notification_id)})
                else:
                    await websocket.send_json({"type": "error", "message": "Notification not found"})

            elif action == "ping":
                await websocket.send_json({"type": "pong"})

            else:
                await websocket.send_json({
                    "type": "error",
                    "message": f"Unknown action: {action}",
                })

    except WebSocketDisconnect:
        await manager.disconnect(conn_id)
    except Exception:
        logger.exception("ws_error", conn_id=conn_id)
        await manager.disconnect(conn_id)
