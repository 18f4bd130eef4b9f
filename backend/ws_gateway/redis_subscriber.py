"""
Redis pub/sub subscriber bridge for the WebSocket gateway.

One SubscriberBridge runs per client connection. It holds a dedicated Redis
client subscribed to the chat channel and relays every published message
to its client.

Broker events are parsed into a tagged union and handled exhaustively:
- DataEvent: a published payload -> decode and write to the client
- SubscriptionEvent: subscribe/unsubscribe acknowledgment -> log only
- ErrorEvent: Redis connection/protocol failure -> terminate

States: SUBSCRIBING -> RELAYING -> TERMINATED (never back).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, assert_never

import redis.exceptions

from shared.config.logging import get_logger
from shared.infrastructure.events import CHAT_CHANNEL, BrokerPool, Message
from shared.utils.exceptions import BrokerError, CodecError, TransportError
from ws_gateway.components.core.constants import WSConstants

if TYPE_CHECKING:
    from ws_gateway.components.core.context import ConnectionContext

logger = get_logger(__name__)

_SUBSCRIPTION_KINDS = frozenset({"subscribe", "unsubscribe", "psubscribe", "punsubscribe"})
_DATA_KINDS = frozenset({"message", "pmessage"})


class BridgeState(str, Enum):
    SUBSCRIBING = "subscribing"
    RELAYING = "relaying"
    TERMINATED = "terminated"


@dataclass(frozen=True, slots=True)
class DataEvent:
    """A payload published on a subscribed channel."""

    channel: str
    payload: str | bytes


@dataclass(frozen=True, slots=True)
class SubscriptionEvent:
    """Subscription state acknowledgment (kind is e.g. "subscribe")."""

    channel: str
    kind: str
    count: int


@dataclass(frozen=True, slots=True)
class ErrorEvent:
    """Broker-level failure; always terminal for the bridge."""

    error: Exception


BrokerEvent = DataEvent | SubscriptionEvent | ErrorEvent


def _as_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value) if value is not None else ""


def parse_broker_event(raw: dict[str, Any]) -> BrokerEvent:
    """
    Convert a redis-py pubsub message dict into a BrokerEvent.

    Unknown message types become an ErrorEvent: the bridge issues no
    commands that could produce them.
    """
    kind = _as_str(raw.get("type"))
    channel = _as_str(raw.get("channel"))

    if kind in _DATA_KINDS:
        data = raw.get("data")
        payload = data if isinstance(data, (str, bytes)) else _as_str(data)
        return DataEvent(channel=channel, payload=payload)

    if kind in _SUBSCRIPTION_KINDS:
        count = raw.get("data")
        return SubscriptionEvent(
            channel=channel,
            kind=kind,
            count=count if isinstance(count, int) else 0,
        )

    return ErrorEvent(BrokerError(f"Unexpected pubsub message type: {kind!r}", channel=channel))


class SubscriberBridge:
    """
    Relays chat channel messages to one client connection.

    Usage:
        bridge = SubscriberBridge(pool, context)
        task = asyncio.create_task(bridge.run())
        ...
        task.cancel()  # the broker connection is released on every exit path
    """

    def __init__(
        self,
        pool: BrokerPool,
        context: "ConnectionContext",
        channel: str = CHAT_CHANNEL,
        poll_interval: float = WSConstants.BRIDGE_POLL_INTERVAL,
    ):
        self._pool = pool
        self._context = context
        self.channel = channel
        self.poll_interval = poll_interval

        self.state = BridgeState.SUBSCRIBING
        self.relayed_count = 0
        self.dropped_count = 0

    async def run(self) -> None:
        """
        Subscribe and relay until the client write fails, the broker fails,
        or the task is cancelled. Never raises except CancelledError.
        """
        try:
            client = await self._pool.acquire()
        except BrokerError as e:
            self.state = BridgeState.TERMINATED
            logger.error("Bridge could not acquire a Redis connection", channel=self.channel, **e.to_log_context())
            return

        pubsub = client.pubsub()
        broker_failed = False
        try:
            await pubsub.subscribe(self.channel)
            broker_failed = await self._relay_loop(pubsub)
        except redis.exceptions.RedisError as e:
            broker_failed = True
            logger.error("Redis subscribe failed", channel=self.channel, error=str(e))
        except asyncio.CancelledError:
            logger.debug("Bridge cancelled", channel=self.channel, relayed=self.relayed_count)
            raise
        finally:
            self.state = BridgeState.TERMINATED
            try:
                await pubsub.aclose()
            except Exception as e:
                broker_failed = True
                logger.debug("Error closing pubsub", error=str(e))
            await self._pool.release(client, discard=broker_failed)
            logger.info(
                "Bridge terminated",
                channel=self.channel,
                relayed=self.relayed_count,
                dropped=self.dropped_count,
            )

    async def _relay_loop(self, pubsub: Any) -> bool:
        """
        Receive and dispatch broker events.

        Returns:
            True if the loop ended because of a broker error, False if the
            client connection failed.
        """
        while True:
            try:
                raw = await pubsub.get_message(timeout=self.poll_interval)
            except redis.exceptions.TimeoutError:
                # Normal for an idle subscription
                continue
            except UnicodeDecodeError as e:
                # Raised by clients that decode responses; the message is already consumed
                self.dropped_count += 1
                logger.warning(
                    "Skipping undecodable broker payload",
                    channel=self.channel,
                    error=str(e),
                )
                continue
            except redis.exceptions.RedisError as e:
                event: BrokerEvent = ErrorEvent(e)
            else:
                if raw is None or raw.get("type") == "pong":
                    continue
                event = parse_broker_event(raw)

            if isinstance(event, ErrorEvent):
                logger.error("Redis subscription error", channel=self.channel, error=str(event.error))
                return True
            if not await self.handle_event(event):
                return False

    async def handle_event(self, event: BrokerEvent) -> bool:
        """
        Handle one broker event.

        Returns:
            False when the bridge must terminate, True to keep relaying.
        """
        if isinstance(event, DataEvent):
            return await self._relay(event)
        elif isinstance(event, SubscriptionEvent):
            logger.info(
                "Subscription state changed",
                channel=event.channel,
                kind=event.kind,
                count=event.count,
            )
            if event.kind == "subscribe" and self.state == BridgeState.SUBSCRIBING:
                self.state = BridgeState.RELAYING
            return True
        elif isinstance(event, ErrorEvent):
            return False
        else:
            assert_never(event)

    async def _relay(self, event: DataEvent) -> bool:
        try:
            message = Message.from_json(event.payload)
        except CodecError as e:
            self.dropped_count += 1
            logger.warning("Skipping malformed broker payload", channel=event.channel, **e.to_log_context())
            return True

        try:
            await self._context.send(message)
        except CodecError as e:
            self.dropped_count += 1
            logger.warning("Skipping unencodable broker payload", channel=event.channel, **e.to_log_context())
            return True
        except TransportError as e:
            logger.info("Client write failed, stopping bridge", channel=event.channel, **e.to_log_context())
            return False

        self.relayed_count += 1
        return True
