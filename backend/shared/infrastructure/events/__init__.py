"""
Chat messaging over Redis pub/sub.

This package provides:
- message_schema.py: Message value object and JSON wire codec
- channels.py: The fixed chat channel name
- broker_pool.py: Bounded Redis client pool with idle eviction
- publisher.py: ChatPublisher (fire-and-forget PUBLISH)
- health_checks.py: Redis ping with timeout (BrokerHealth)
"""

from .message_schema import (
    HANDSHAKE_KINDS,
    HANDSHAKE_REPLY_TEXT,
    SERVER_USER,
    Message,
    MessageKind,
)
from .channels import CHAT_CHANNEL
from .broker_pool import BrokerPool, ClientFactory
from .publisher import ChatPublisher
from .health_checks import BrokerHealth, HealthStatus, check_broker_health

__all__ = [
    # Message schema
    "HANDSHAKE_KINDS",
    "HANDSHAKE_REPLY_TEXT",
    "SERVER_USER",
    "Message",
    "MessageKind",
    # Channels
    "CHAT_CHANNEL",
    # Pool
    "BrokerPool",
    "ClientFactory",
    # Publishing
    "ChatPublisher",
    # Health checks
    "BrokerHealth",
    "HealthStatus",
    "check_broker_health",
]
