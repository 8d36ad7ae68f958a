"""Conversation models: sessions, messages and stream records."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from parley.infrastructure.database.models.base import (
    Base,
    JSONType,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
    utcnow,
)

DEFAULT_SESSION_TITLE = "New Chat"


class StreamStatus(str, Enum):
    """Lifecycle of one generation stream. Terminal states never change."""

    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class ChatSession(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A conversation owned by one user."""

    __tablename__ = "chat_sessions"

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default=DEFAULT_SESSION_TITLE)

    messages: Mapped[list["ChatMessageRecord"]] = relationship(
        "ChatMessageRecord",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ChatMessageRecord.created_at",
    )

    def __repr__(self) -> str:
        return f"<ChatSession {self.title}>"


class ChatMessageRecord(Base):
    """A persisted message.

    ``parts`` holds the part union as JSON; ``id`` is the client-visible
    message id so repeated saves of the same message merge into one row.
    """

    __tablename__ = "chat_messages"
    __table_args__ = (Index("ix_chat_messages_session_created", "session_id", "created_at"),)

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    session_id: Mapped[UUID] = mapped_column(
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    parts: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    model_used: Mapped[str | None] = mapped_column(String(100), nullable=True)
    model_provider: Mapped[str | None] = mapped_column(String(50), nullable=True)
    model_config: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    # "metadata" is reserved on declarative models
    message_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    session: Mapped[ChatSession] = relationship("ChatSession", back_populates="messages")

    def __repr__(self) -> str:
        return f"<ChatMessageRecord {self.role} {self.id}>"


class ChatStreamRecord(Base, UUIDPrimaryKeyMixin):
    """Durable record of one generation stream; the newest per chat wins."""

    __tablename__ = "chat_streams"
    __table_args__ = (Index("ix_chat_streams_chat_created", "chat_id", "created_at"),)

    stream_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    chat_id: Mapped[UUID] = mapped_column(
        ForeignKey("chat_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=StreamStatus.PENDING.value)
    message_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def cancelled(self) -> bool:
        return self.status == StreamStatus.CANCELLED.value

    @property
    def complete(self) -> bool:
        return self.status == StreamStatus.COMPLETE.value

    def __repr__(self) -> str:
        return f"<ChatStreamRecord {self.stream_id} {self.status}>"
