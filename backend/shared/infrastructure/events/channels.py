"""
Redis Channel Naming.

The relay uses a single, process-wide channel: every connected client
publishes to and subscribes on it.
"""

from typing import Final

CHAT_CHANNEL: Final[str] = "main"
