"""
Chat Message Schema.

Defines the Message value object and its JSON wire form. The wire form is
the same whether the message travels client -> broker or broker -> client:

    {"type": "chat", "text": "hello", "user": "alice", "date": 1000}

Unknown fields are ignored; missing or null fields take zero values.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from shared.utils.exceptions import CodecError


class MessageKind(str, Enum):
    """Known message kinds. Any other string is relayed as chat."""

    CHAT = "chat"
    HANDSHAKE = "handshake"


# "test" is the handshake tag older browser clients send
HANDSHAKE_KINDS: frozenset[str] = frozenset({MessageKind.HANDSHAKE.value, "test"})

HANDSHAKE_REPLY_TEXT = "Connection Successful..."
SERVER_USER = "server"

_STRING_FIELDS = ("type", "text", "user")


@dataclass(frozen=True, slots=True)
class Message:
    """
    Immutable chat message.

    Attributes:
        kind: Discriminator, serialized as "type".
        text: Message body. Not validated.
        user: Sender name. Not authenticated.
        timestamp: Sender-supplied integer, serialized as "date". Not trusted.
    """

    kind: str = MessageKind.CHAT.value
    text: str = ""
    user: str = ""
    timestamp: int = 0

    @property
    def is_handshake(self) -> bool:
        return self.kind in HANDSHAKE_KINDS

    def handshake_reply(self) -> "Message":
        """Build the server's reply to this handshake, echoing its kind."""
        return Message(kind=self.kind, text=HANDSHAKE_REPLY_TEXT, user=SERVER_USER)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.kind,
            "text": self.text,
            "user": self.user,
            "date": self.timestamp,
        }

    def to_json(self) -> str:
        """
        Serialize to the compact wire form.

        Raises:
            CodecError: If the text cannot be encoded as UTF-8
                (e.g. a lone surrogate in a Message built in code).
        """
        payload = json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))
        try:
            payload.encode("utf-8")
        except UnicodeEncodeError as e:
            raise CodecError(f"Message is not valid UTF-8: {e.reason}", user=self.user) from e
        return payload

    @classmethod
    def from_dict(cls, data: Any) -> "Message":
        """
        Build a Message from a decoded wire record.

        Raises:
            CodecError: If the record is not an object, a field has the wrong
                type, or a string field is not valid UTF-8.
        """
        if not isinstance(data, dict):
            raise CodecError(f"Expected a JSON object, got {type(data).__name__}")

        for name in _STRING_FIELDS:
            value = data.get(name)
            if value is None:
                continue
            if not isinstance(value, str):
                raise CodecError(f"Field '{name}' must be a string")
            # JSON escapes can carry lone surrogates that UTF-8 cannot
            try:
                value.encode("utf-8")
            except UnicodeEncodeError as e:
                raise CodecError(f"Field '{name}' is not valid UTF-8: {e.reason}") from e

        date = data.get("date")
        # bool is an int subclass but never a valid timestamp
        if date is not None and (isinstance(date, bool) or not isinstance(date, int)):
            raise CodecError("Field 'date' must be an integer")

        return cls(
            kind=data.get("type") or "",
            text=data.get("text") or "",
            user=data.get("user") or "",
            timestamp=date or 0,
        )

    @classmethod
    def from_json(cls, payload: str | bytes) -> "Message":
        """
        Deserialize a wire payload.

        Raises:
            CodecError: If the payload is not valid JSON or not a valid record.
        """
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CodecError(f"Invalid JSON: {e}", payload=payload) from e

        try:
            return cls.from_dict(data)
        except CodecError as e:
            raise CodecError(e.detail, payload=payload) from e
