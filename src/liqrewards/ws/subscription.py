"""Long-lived Redis pattern subscription that reconnects after failures.

States::

    DISCONNECTED -> CONNECTING -> SUBSCRIBED
                        ^             |
                        |          (error)
                        |             v
                        +--------- BACKOFF

A failure while connecting or listening moves to BACKOFF, waits a fixed
delay, then reconnects. Messages published while disconnected are lost;
listeners rely on the durable ``shown`` flag rather than on delivery.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger()

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]
Sleep = Callable[[float], Awaitable[Any]]


class SubscriptionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    BACKOFF = "backoff"


class ReconnectingSubscription:
    """Pattern-subscribes on a Redis client and feeds messages to ``handler``."""

    def __init__(
        self,
        redis_client: Any,
        patterns: list[str],
        handler: MessageHandler,
        retry_seconds: float = 5.0,
        poll_timeout: float = 1.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.redis = redis_client
        self.patterns = patterns
        self.handler = handler
        self.retry_seconds = retry_seconds
        self.poll_timeout = poll_timeout
        self._sleep = sleep
        self._running = False
        self.state = SubscriptionState.DISCONNECTED
        self.history: list[SubscriptionState] = [SubscriptionState.DISCONNECTED]
        self.reconnects = 0

    def _set_state(self, state: SubscriptionState) -> None:
        if state is self.state:
            return
        logger.debug("subscription_state", old=self.state.value, new=state.value)
        self.state = state
        self.history.append(state)

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """Subscribe and dispatch until ``stop()`` is called or the task is cancelled."""
        self._running = True
        try:
            while self._running:
                self._set_state(SubscriptionState.CONNECTING)
                try:
                    await self._listen()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    if not self._running:
                        break
                    self._set_state(SubscriptionState.BACKOFF)
                    self.reconnects += 1
                    logger.warning(
                        "subscription_lost",
                        patterns=self.patterns,
                        retry_in=self.retry_seconds,
                        exc_info=True,
                    )
                    await self._sleep(self.retry_seconds)
        finally:
            self._running = False
            self._set_state(SubscriptionState.DISCONNECTED)

    async def _listen(self) -> None:
        pubsub = self.redis.pubsub()
        try:
            await pubsub.psubscribe(*self.patterns)
            self._set_state(SubscriptionState.SUBSCRIBED)
            logger.info("subscription_active", patterns=self.patterns)

            while self._running:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=self.poll_timeout,
                )
                if message is None:
                    continue
                await self.handler(message)
        finally:
            try:
                await pubsub.punsubscribe()
                await pubsub.aclose()
            except Exception:
                logger.debug("subscription_close_failed", exc_info=True)

    def stop(self) -> None:
        """Ask the loop to exit after the current poll."""
        self._running = False
