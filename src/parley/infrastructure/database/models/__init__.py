"""SQLAlchemy ORM models."""

from parley.infrastructure.database.models.base import Base, TimestampMixin
from parley.infrastructure.database.models.chat import (
    DEFAULT_SESSION_TITLE,
    ChatMessageRecord,
    ChatSession,
    ChatStreamRecord,
    StreamStatus,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "ChatSession",
    "ChatMessageRecord",
    "ChatStreamRecord",
    "StreamStatus",
    "DEFAULT_SESSION_TITLE",
]
