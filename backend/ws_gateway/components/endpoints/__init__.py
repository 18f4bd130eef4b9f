"""WebSocket endpoint handlers."""

from ws_gateway.components.endpoints.chat import ChatEndpoint

__all__ = ["ChatEndpoint"]
