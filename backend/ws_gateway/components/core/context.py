"""
Per-connection context.

A ConnectionContext owns everything tied to one client WebSocket:
- the socket itself, with a lock so the handler and the bridge never write
  concurrently
- the subscriber bridge task bound to the socket
- a closed flag that stops further writes once the handler has terminated

When the handler terminates it calls shutdown(), which cancels the bridge so
its broker connection goes back to the pool right away.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from fastapi import WebSocketDisconnect
from starlette.websockets import WebSocketState

from shared.config.logging import get_logger
from shared.infrastructure.correlation import new_connection_id
from shared.utils.exceptions import TransportError
from ws_gateway.components.core.constants import WSCloseCode, WSConstants

if TYPE_CHECKING:
    from fastapi import WebSocket

    from shared.infrastructure.events import Message
    from ws_gateway.redis_subscriber import SubscriberBridge

logger = get_logger(__name__)


# Control characters and Unicode direction overrides stripped from log data
_CONTROL_CHAR_PATTERN = re.compile(
    r'[\x00-\x1f\x7f-\x9f'  # ASCII control characters
    r'\u200b-\u200f'  # Zero-width and direction marks
    r'\u202a-\u202e'  # Bidirectional text formatting
    r'\u2066-\u2069'  # Isolate formatting characters
    r'\ufeff]'  # BOM
)


def sanitize_log_data(data: str | bytes, max_length: int = WSConstants.LOG_PREVIEW_LENGTH) -> str:
    """
    Sanitize client-provided data before logging.

    Truncates first, then strips control characters and escapes quotes,
    backslashes and whitespace escapes.
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    was_truncated = len(data) > max_length
    sanitized = _CONTROL_CHAR_PATTERN.sub("", data[:max_length])

    sanitized = sanitized.replace("\\", "\\\\")
    sanitized = sanitized.replace('"', '\\"')

    if was_truncated:
        return sanitized + "..."
    return sanitized


@dataclass(eq=False)
class ConnectionContext:
    """
    Context object for one client connection.

    Usage:
        ctx = ConnectionContext.from_websocket(websocket)
        ctx.attach_bridge(bridge, asyncio.create_task(bridge.run()))
        await ctx.send(message)
        ...
        await ctx.shutdown()
    """

    websocket: "WebSocket"
    endpoint: str = WSConstants.SOCKET_PATH
    origin: str | None = None
    connection_id: str = field(default_factory=new_connection_id)
    connected_at: float = field(default_factory=time.time)

    bridge: "SubscriberBridge | None" = field(default=None, repr=False)
    bridge_task: "asyncio.Task[None] | None" = field(default=None, repr=False)

    _send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    _closed: bool = field(default=False, repr=False)

    @classmethod
    def from_websocket(
        cls,
        websocket: "WebSocket",
        endpoint: str = WSConstants.SOCKET_PATH,
    ) -> "ConnectionContext":
        return cls(
            websocket=websocket,
            endpoint=endpoint,
            origin=websocket.headers.get("origin"),
        )

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def bridge_state(self) -> str | None:
        return self.bridge.state.value if self.bridge is not None else None

    def attach_bridge(self, bridge: "SubscriberBridge", task: "asyncio.Task[None]") -> None:
        self.bridge = bridge
        self.bridge_task = task

    async def send(self, message: "Message") -> None:
        """
        Write a message to the client.

        Raises:
            TransportError: If the connection is closed or the write failed.
        """
        if self._closed:
            raise TransportError("Connection already closed", connection_id=self.connection_id)

        payload = message.to_json()
        async with self._send_lock:
            try:
                await self.websocket.send_text(payload)
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                raise TransportError(
                    f"WebSocket write failed: {e!r}",
                    connection_id=self.connection_id,
                ) from e

    async def shutdown(self, timeout: float = WSConstants.BRIDGE_SHUTDOWN_TIMEOUT) -> None:
        """
        Stop further writes and cancel the bridge, waiting for it to exit.

        Safe to call more than once. Cancelling the caller while it waits
        propagates; only the bridge's own cancellation is absorbed.
        """
        self._closed = True
        task = self.bridge_task
        if task is None:
            return

        if not task.done():
            task.cancel()
            await asyncio.wait({task}, timeout=timeout)
            if not task.done():
                logger.warning("Bridge did not stop in time", timeout=timeout)
                return

        if not task.cancelled() and task.exception() is not None:
            logger.error("Bridge task failed", error=repr(task.exception()))

    async def close(self, code: int = WSCloseCode.NORMAL, reason: str = "") -> None:
        """Close the socket if the server side has not closed it yet."""
        self._closed = True
        if self.websocket.application_state != WebSocketState.CONNECTED:
            return
        if self.websocket.client_state != WebSocketState.CONNECTED:
            return
        async with self._send_lock:
            try:
                await self.websocket.close(code=code, reason=reason)
            except (RuntimeError, OSError) as e:
                logger.debug("Error closing WebSocket", error=str(e))

    def to_log_context(self) -> dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "origin": self.origin,
            "bridge_state": self.bridge_state,
        }
