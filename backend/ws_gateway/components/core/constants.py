"""
WebSocket Gateway Constants.

Defaults used when settings do not override them.
"""

from enum import IntEnum
from typing import Final

__all__ = [
    "WSCloseCode",
    "WSConstants",
]


class WSCloseCode(IntEnum):
    """
    WebSocket close codes used by the gateway.

    Standard codes (1000-1999) from RFC 6455.
    """

    NORMAL = 1000  # Normal closure
    GOING_AWAY = 1001  # Server shutting down
    INVALID_PAYLOAD = 1007  # Frame could not be decoded as a chat message
    SERVER_ERROR = 1011  # Broker failure while handling the connection


class WSConstants:
    """WebSocket Gateway operational constants."""

    # Endpoint paths
    SOCKET_PATH: Final[str] = "/socket"

    # Seconds each pubsub get_message call waits before looping.
    # Bounds how long a bridge takes to notice cancellation on a quiet channel.
    BRIDGE_POLL_INTERVAL: Final[float] = 1.0

    # Max seconds a handler waits for its cancelled bridge to release its connection
    BRIDGE_SHUTDOWN_TIMEOUT: Final[float] = 5.0

    # Max characters of client data included in a log line
    LOG_PREVIEW_LENGTH: Final[int] = 100
