"""
Relay error hierarchy.

Three families of failure exist in the relay:
- TransportError: read/write failure on a client WebSocket
- BrokerError: Redis connection, publish or subscribe failure
- CodecError: malformed wire payload in either direction

Usage:
    from shared.utils.exceptions import BrokerError, CodecError

    raise CodecError("date must be an integer", payload=raw)
    raise BrokerConnectionError("Redis connection failed", url=url)

Context keyword arguments are kept on ``error.context`` for logging.
"""

from typing import Any


class RelayError(Exception):
    """Base class for all relay errors."""

    def __init__(self, detail: str, **context: Any):
        super().__init__(detail)
        self.detail = detail
        self.context = context

    def to_log_context(self) -> dict[str, Any]:
        """Flatten the error into keyword arguments for structured logging."""
        return {"error": self.detail, "error_type": type(self).__name__, **self.context}


class TransportError(RelayError):
    """Client WebSocket read or write failed."""


class BrokerError(RelayError):
    """A broker (Redis) operation failed."""


class BrokerConnectionError(BrokerError):
    """Establishing a broker connection failed."""


class PoolExhaustedError(BrokerError):
    """No broker connection became available within the acquire timeout."""


class CodecError(RelayError):
    """
    A wire payload could not be decoded or encoded.

    The offending payload is truncated into ``payload_preview`` so the error
    is safe to log.
    """

    PREVIEW_LENGTH = 100

    def __init__(self, detail: str, payload: str | bytes | None = None, **context: Any):
        if payload is not None:
            if isinstance(payload, bytes):
                payload = payload.decode("utf-8", errors="replace")
            preview = payload[: self.PREVIEW_LENGTH]
            # Lone surrogates would break log handlers writing UTF-8
            context["payload_preview"] = preview.encode("utf-8", "backslashreplace").decode("utf-8")
        super().__init__(detail, **context)
