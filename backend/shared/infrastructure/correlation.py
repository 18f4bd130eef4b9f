"""
Connection Correlation for logging.

Each WebSocket connection gets an id that is stored in a context variable.
Tasks copy the current context when they are created, so the bridge task
started by a handler logs under the same id as the handler itself.
"""

import uuid
from contextvars import ContextVar, Token

# Context variable for the connection id (task-local)
connection_id_var: ContextVar[str] = ContextVar("connection_id", default="")


def new_connection_id() -> str:
    """Generate a fresh connection id."""
    return uuid.uuid4().hex


def get_connection_id() -> str:
    """Get the current connection id."""
    return connection_id_var.get()


def bind_connection_id(connection_id: str) -> Token[str]:
    """Set the connection id for the current context. Returns a reset token."""
    return connection_id_var.set(connection_id)


def reset_connection_id(token: Token[str]) -> None:
    connection_id_var.reset(token)


class ConnectionIdFilter:
    """
    Logging filter that adds connection_id to log records.

    Usage:
        import logging
        handler = logging.StreamHandler()
        handler.addFilter(ConnectionIdFilter())
    """

    def filter(self, record) -> bool:
        record.connection_id = connection_id_var.get() or "-"
        return True
