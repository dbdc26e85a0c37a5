"""Bridges Redis pub/sub to WebSocket clients.

Pattern-subscribes to the per-account notification channels (``ws:user:*``)
and forwards each message to that account's WebSocket connections.
"""

import json
from typing import Any

import redis.asyncio as aioredis
import structlog

from liqrewards.ws.manager import ConnectionManager, manager as default_manager
from liqrewards.ws.subscription import ReconnectingSubscription

logger = structlog.get_logger()

USER_CHANNEL_PREFIX = "ws:user:"


class PubSubBridge:
    """Subscribes to Redis pub/sub and pushes messages to WebSocket clients."""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        retry_seconds: float = 5.0,
        connections: ConnectionManager | None = None,
    ) -> None:
        self.redis = redis_client
        self.connections = connections or default_manager
        self.subscription = ReconnectingSubscription(
            redis_client,
            patterns=[f"{USER_CHANNEL_PREFIX}*"],
            handler=self.dispatch,
            retry_seconds=retry_seconds,
        )

    async def start(self) -> None:
        """Run until stopped; reconnects on connection loss."""
        logger.info("pubsub_bridge_started", patterns=self.subscription.patterns)
        try:
            await self.subscription.run()
        finally:
            logger.info("pubsub_bridge_stopped")

    async def dispatch(self, message: dict[str, Any]) -> int:
        """Forward one pub/sub message. Returns the number of sockets reached."""
        if message.get("type") != "pmessage":
            return 0

        redis_channel = message.get("channel", "")
        if isinstance(redis_channel, bytes):
            redis_channel = redis_channel.decode()
        if not redis_channel.startswith(USER_CHANNEL_PREFIX):
            return 0

        try:
            account_id = int(redis_channel[len(USER_CHANNEL_PREFIX):])
        except ValueError:
            logger.warning("pubsub_invalid_account_id", channel=redis_channel)
            return 0

        try:
            data = message.get("data", b"")
            if isinstance(data, bytes):
                data = data.decode()
            payload = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.warning("pubsub_invalid_message", channel=redis_channel)
            return 0

        event_type = payload.get("event", "notification")
        event_data = payload.get("data", payload)

        sent = await self.connections.send_to_user_direct(account_id, {
            "type": event_type,
            "payload": event_data,
        })
        if sent > 0:
            logger.debug(
                "user_notification_sent",
                account_id=account_id,
                event=event_type,
                recipients=sent,
            )
        return sent

    async def stop(self) -> None:
        """Signal the bridge to stop."""
        self.subscription.stop()
