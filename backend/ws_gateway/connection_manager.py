"""
WebSocket Connection Registry.

Tracks live ConnectionContexts for stats and for shutdown. Handlers and
bridges never talk to each other through the registry; the broker is their
only shared channel.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from shared.config.logging import get_logger
from ws_gateway.components.core.constants import WSCloseCode
from ws_gateway.redis_subscriber import BridgeState

if TYPE_CHECKING:
    from ws_gateway.components.core.context import ConnectionContext

logger = get_logger(__name__)


class ConnectionManager:
    """
    Registry of live client connections.

    Usage:
        manager = ConnectionManager()
        manager.register(ctx)
        ...
        manager.unregister(ctx)

        await manager.close_all()  # on application shutdown
    """

    def __init__(self) -> None:
        self._connections: dict[str, "ConnectionContext"] = {}
        self.total_accepted = 0

    def __len__(self) -> int:
        return len(self._connections)

    def register(self, context: "ConnectionContext") -> None:
        self._connections[context.connection_id] = context
        self.total_accepted += 1
        logger.info("Connection registered", active=len(self._connections))

    def unregister(self, context: "ConnectionContext") -> None:
        if self._connections.pop(context.connection_id, None) is not None:
            logger.info("Connection unregistered", active=len(self._connections))

    def get_stats(self) -> dict[str, Any]:
        """Connection counts, including how many bridges are currently relaying."""
        relaying = sum(
            1
            for ctx in self._connections.values()
            if ctx.bridge is not None and ctx.bridge.state == BridgeState.RELAYING
        )
        return {
            "connections": len(self._connections),
            "relaying": relaying,
            "total_accepted": self.total_accepted,
        }

    async def close_all(self) -> int:
        """
        Stop every bridge and close every socket. Used at shutdown.

        Returns:
            Number of connections closed.
        """
        contexts = list(self._connections.values())
        if not contexts:
            return 0

        results = await asyncio.gather(
            *(self._close_one(ctx) for ctx in contexts),
            return_exceptions=True,
        )
        for ctx, result in zip(contexts, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Error closing connection at shutdown",
                    connection_id=ctx.connection_id,
                    error=str(result),
                )
        self._connections.clear()
        logger.info("Closed all connections", count=len(contexts))
        return len(contexts)

    async def _close_one(self, context: "ConnectionContext") -> None:
        await context.shutdown()
        await context.close(code=WSCloseCode.GOING_AWAY, reason="Server shutting down")
