"""
Chat WebSocket Endpoint.

Owns one client connection for its whole lifetime:
1. Accept the socket and create its ConnectionContext
2. Start the SubscriberBridge task bound to the same socket
3. Read loop: answer handshakes locally, publish everything else
4. On termination, cancel the bridge and unregister

Per-sender ordering holds because there is a single reader per socket and
each publish is awaited before the next frame is read.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import WebSocket, WebSocketDisconnect

from shared.config.logging import get_logger
from shared.infrastructure.correlation import bind_connection_id, reset_connection_id
from shared.infrastructure.events import BrokerPool, ChatPublisher, Message
from shared.utils.exceptions import BrokerError, CodecError, TransportError
from ws_gateway.components.core.constants import WSCloseCode, WSConstants
from ws_gateway.components.core.context import ConnectionContext, sanitize_log_data
from ws_gateway.redis_subscriber import SubscriberBridge

if TYPE_CHECKING:
    from ws_gateway.connection_manager import ConnectionManager

logger = get_logger(__name__)


class ChatEndpoint:
    """
    Connection handler for the chat socket.

    Usage:
        endpoint = ChatEndpoint(websocket, manager, pool, publisher)
        await endpoint.run()
    """

    def __init__(
        self,
        websocket: WebSocket,
        manager: "ConnectionManager",
        pool: BrokerPool,
        publisher: ChatPublisher,
        endpoint_name: str = WSConstants.SOCKET_PATH,
        bridge_poll_interval: float = WSConstants.BRIDGE_POLL_INTERVAL,
        bridge_shutdown_timeout: float = WSConstants.BRIDGE_SHUTDOWN_TIMEOUT,
    ):
        self.websocket = websocket
        self.manager = manager
        self.pool = pool
        self.publisher = publisher
        self.endpoint_name = endpoint_name
        self.bridge_poll_interval = bridge_poll_interval
        self.bridge_shutdown_timeout = bridge_shutdown_timeout

        self.context: ConnectionContext | None = None

    async def run(self) -> None:
        """
        Main entry point - run the connection until the client leaves or
        a transport, codec or broker error ends it.
        """
        try:
            await self.websocket.accept()
        except (RuntimeError, OSError) as e:
            logger.warning("WebSocket upgrade failed", endpoint=self.endpoint_name, error=str(e))
            return

        self.context = ConnectionContext.from_websocket(self.websocket, self.endpoint_name)
        # Bound before the bridge task is created so the bridge inherits it
        token = bind_connection_id(self.context.connection_id)
        close_code: int | None = None
        try:
            self.manager.register(self.context)
            self.start_bridge()
            logger.info("Client connected", **self.context.to_log_context())

            close_code = await self._message_loop()
        finally:
            await self.context.shutdown(timeout=self.bridge_shutdown_timeout)
            if close_code is not None:
                await self.context.close(code=close_code)
            self.manager.unregister(self.context)
            logger.info("Client disconnected", close_code=close_code)
            reset_connection_id(token)

    def start_bridge(self) -> SubscriberBridge:
        """Spawn the subscriber bridge for this connection as its own task."""
        assert self.context is not None
        bridge = SubscriberBridge(
            self.pool,
            self.context,
            channel=self.publisher.channel,
            poll_interval=self.bridge_poll_interval,
        )
        task = asyncio.create_task(
            bridge.run(),
            name=f"bridge:{self.context.connection_id[:8]}",
        )
        self.context.attach_bridge(bridge, task)
        return bridge

    async def handle_message(self, message: Message) -> None:
        """
        Reply to handshakes directly, publish everything else.

        Raises:
            TransportError: If the handshake reply could not be written.
            BrokerError: If publishing failed.
        """
        assert self.context is not None
        if message.is_handshake:
            await self.context.send(message.handshake_reply())
            logger.debug("Handshake answered", user=sanitize_log_data(message.user))
            return

        await self.publisher.publish(message)

    async def _message_loop(self) -> int | None:
        """
        Read frames until the connection ends.

        Returns:
            The close code to send, or None when the client is already gone.
        """
        while True:
            try:
                message = Message.from_json(await self._receive_payload())
            except WebSocketDisconnect as e:
                logger.info("Client closed connection", code=e.code)
                return None
            except TransportError as e:
                logger.warning("WebSocket read failed", **e.to_log_context())
                return None
            except CodecError as e:
                logger.warning("Malformed client payload", **e.to_log_context())
                return WSCloseCode.INVALID_PAYLOAD

            logger.debug(
                "Message received",
                kind=message.kind,
                user=sanitize_log_data(message.user),
                text=sanitize_log_data(message.text),
            )

            try:
                await self.handle_message(message)
            except TransportError as e:
                logger.warning("WebSocket write failed", **e.to_log_context())
                return None
            except BrokerError as e:
                logger.error("Publish failed, closing connection", **e.to_log_context())
                return WSCloseCode.SERVER_ERROR

    async def _receive_payload(self) -> str | bytes:
        """
        Receive the next text or binary frame.

        Raises:
            WebSocketDisconnect: If the client disconnected.
            TransportError: If reading from the socket failed.
            CodecError: If the frame carries no data.
        """
        try:
            frame = await self.websocket.receive()
        except (RuntimeError, OSError) as e:
            raise TransportError(f"WebSocket read failed: {e!r}") from e

        if frame["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(
                code=frame.get("code", WSCloseCode.NORMAL),
                reason=frame.get("reason"),
            )

        if frame.get("text") is not None:
            return frame["text"]
        if frame.get("bytes") is not None:
            return frame["bytes"]
        raise CodecError("Empty WebSocket frame")
