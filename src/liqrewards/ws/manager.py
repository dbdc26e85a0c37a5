"""WebSocket connection manager.

Tracks active WebSocket connections per account and fans notification
pushes out to every connection of the target account.
"""

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from collections import defaultdict
from dataclasses import dataclass, field

from fastapi import WebSocket
import structlog

logger = structlog.get_logger()


@dataclass
class ClientConnection:
    """Represents a single WebSocket client."""

    websocket: WebSocket
    account_id: int
    connected_at: float = field(default_factory=time.time)
    messages_sent: int = 0


class ConnectionManager:
    """Manages all active WebSocket connections.

    Safe for asyncio via the single-threaded event loop.
    """

    def __init__(self, max_connections_per_account: int = 5) -> None:
        self.max_connections_per_account = max_connections_per_account
        self._connections: dict[str, ClientConnection] = {}  # conn_id -> client
        self._account_connections: dict[int, set[str]] = defaultdict(set)  # account_id -> {conn_ids}

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def connections_for(self, account_id: int) -> int:
        return len(self._account_connections.get(account_id, ()))

    async def connect(self, websocket: WebSocket, conn_id: str, account_id: int) -> bool:
        """Accept a new WebSocket connection. Returns False when the account is at its limit."""
        if self.connections_for(account_id) >= self.max_connections_per_account:
            await websocket.close(code=4008, reason="Too many connections")
            logger.warning("ws_connection_limit", account_id=account_id)
            return False

        await websocket.accept()
        self._connections[conn_id] = ClientConnection(websocket=websocket, account_id=account_id)
        self._account_connections[account_id].add(conn_id)
        logger.info("ws_connected", conn_id=conn_id, account_id=account_id)
        return True

    async def disconnect(self, conn_id: str) -> None:
        """Forget a WebSocket connection."""
        client = self._connections.pop(conn_id, None)
        if client is None:
            return

        self._account_connections[client.account_id].discard(conn_id)
        if not self._account_connections[client.account_id]:
            del self._account_connections[client.account_id]

        logger.info("ws_disconnected", conn_id=conn_id, account_id=client.account_id)

    async def send_to_user_direct(self, account_id: int, message: dict) -> int:
        """Send a message to every connection of an account.

        Returns the number of connections that received it. Connections that
        fail to send are dropped.
        """
        conn_ids = list(self._account_connections.get(account_id, set()))
        if not conn_ids:
            return 0

        payload = json.dumps(message)
        sent = 0
        failed: list[str] = []

        for conn_id in conn_ids:
            client = self._connections.get(conn_id)
            if client is None:
                failed.append(conn_id)
                continue
            try:
                await client.websocket.send_text(payload)
                client.messages_sent += 1
                sent += 1
            except Exception:
                failed.append(conn_id)

        # Clean up failed connections
        for conn_id in failed:
            await self.disconnect(conn_id)

        return sent

    async def send_heartbeat(self) -> int:
        """Send one heartbeat frame to every connection, dropping dead ones."""
        message = {"type": "heartbeat", "ts": int(time.time())}
        sent = 0
        for account_id in list(self._account_connections):
            sent += await self.send_to_user_direct(account_id, message)
        return sent

    async def run_heartbeat(
        self,
        interval_seconds: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Heartbeat loop; runs until cancelled."""
        while True:
            await sleep(interval_seconds)
            await self.send_heartbeat()

    def get_stats(self) -> dict:
        """Get connection statistics."""
        return {
            "total_connections": len(self._connections),
            "unique_accounts": len(self._account_connections),
        }


# Global singleton
manager = ConnectionManager()
