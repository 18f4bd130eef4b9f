"""Core gateway building blocks: constants and connection context."""

from ws_gateway.components.core.constants import WSCloseCode, WSConstants
from ws_gateway.components.core.context import ConnectionContext, sanitize_log_data

__all__ = [
    "WSCloseCode",
    "WSConstants",
    "ConnectionContext",
    "sanitize_log_data",
]
