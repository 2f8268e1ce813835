"""
Typed structures stored in JSON columns.

Decoded once at the storage boundary so callers never parse JSON themselves.
Malformed stored data raises instead of being silently dropped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.types import JSON, TypeDecorator

from ..time_utils import parse_timestamp, to_utc_z
from ..validation import ValidationError
from .enums import MessageChannel, MessageDirection


@dataclass(frozen=True)
class ConversationMessage:
    direction: MessageDirection
    channel: MessageChannel
    timestamp: datetime
    body: str
    subject: Optional[str] = None
    attachments: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "direction": self.direction.value,
            "channel": self.channel.value,
            "timestamp": to_utc_z(self.timestamp),
            "subject": self.subject,
            "body": self.body,
            "attachments": list(self.attachments),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationMessage":
        timestamp = parse_timestamp(data["timestamp"])
        if timestamp is None:
            raise ValueError("conversation message is missing its timestamp")
        return cls(
            direction=MessageDirection(data["direction"]),
            channel=MessageChannel(data["channel"]),
            timestamp=timestamp,
            body=data.get("body") or "",
            subject=data.get("subject"),
            attachments=tuple(data.get("attachments") or ()),
        )


class ConversationLog(TypeDecorator):
    """Ordered list[ConversationMessage] <-> JSON array."""
    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return []
        return [message.to_dict() for message in value]

    def process_result_value(self, value, dialect):
        if not value:
            return []
        return [ConversationMessage.from_dict(item) for item in value]


class AmountMap(TypeDecorator):
    """dict[str, int] of named whole-dollar amounts (fee tables)."""
    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return {str(name): int(amount) for name, amount in value.items()}

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return {str(name): int(amount) for name, amount in value.items()}


class StringList(TypeDecorator):
    """list[str] (red flags, attachment names)."""
    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return [str(item) for item in value]

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return [str(item) for item in value]


def json_object(value: Any, field_name: str) -> Optional[dict]:
    """Opaque structured context/payload: must be a JSON object when present."""
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError(f"{field_name} must be a JSON object")
    return value
