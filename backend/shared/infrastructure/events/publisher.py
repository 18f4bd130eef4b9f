"""
Chat Message Publishing.

Publishing is fire-and-forget: the subscriber count Redis reports is
logged, never returned, and nothing is retried.
"""

from __future__ import annotations

import redis.exceptions

from shared.config.logging import get_logger
from shared.utils.exceptions import BrokerError, CodecError
from .broker_pool import BrokerPool
from .channels import CHAT_CHANNEL
from .message_schema import Message

logger = get_logger(__name__)


class ChatPublisher:
    """
    Serializes messages and publishes them on the chat channel.

    Usage:
        publisher = ChatPublisher(pool)
        await publisher.publish(Message(kind="chat", text="hi", user="alice"))
    """

    def __init__(self, pool: BrokerPool, channel: str = CHAT_CHANNEL):
        self._pool = pool
        self.channel = channel

    async def publish(self, message: Message) -> None:
        """
        Publish one message.

        A message that cannot be serialized is logged and dropped.

        Raises:
            BrokerError: If no connection could be acquired or PUBLISH failed.
        """
        try:
            payload = message.to_json()
        except CodecError as e:
            logger.warning("Dropping unserializable message", channel=self.channel, **e.to_log_context())
            return

        try:
            async with self._pool.connection() as client:
                subscribers = await client.publish(self.channel, payload)
        except redis.exceptions.RedisError as e:
            logger.error("Redis publish failed", channel=self.channel, error=str(e))
            raise BrokerError(f"Redis publish failed: {e}", channel=self.channel) from e

        logger.debug(
            "Message published",
            channel=self.channel,
            kind=message.kind,
            subscribers=subscribers,
        )
