"""Sessions and messages."""

from collections.abc import Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import select, update

from parley.domain.messages.persisted import merge_parts, parts_from_row, parts_to_rows
from parley.domain.messages.types import CanonicalMessage
from parley.infrastructure.database.models.chat import (
    DEFAULT_SESSION_TITLE,
    ChatMessageRecord,
    ChatSession,
)
from parley.infrastructure.database.models.base import utcnow
from parley.infrastructure.database.repositories.base import BaseRepository
from parley.shared.exceptions import BadRequestError


class ChatRepository(BaseRepository[ChatSession]):
    model_class = ChatSession

    async def create_session(
        self,
        user_id: str,
        title: str = DEFAULT_SESSION_TITLE,
        session_id: UUID | None = None,
    ) -> ChatSession:
        """Create a session; clients may choose the id of a new conversation."""
        chat = ChatSession(user_id=user_id, title=title)
        if session_id is not None:
            chat.id = session_id
        async with self.transaction() as session:
            session.add(chat)
            await session.flush()
        return chat

    async def get_session(self, session_id: UUID, user_id: str) -> ChatSession | None:
        """A session, only if it belongs to ``user_id``."""
        async with self.transaction() as session:
            result = await session.execute(
                select(ChatSession).where(ChatSession.id == session_id, ChatSession.user_id == user_id)
            )
            return result.scalar_one_or_none()

    async def update_title(self, session_id: UUID, title: str) -> None:
        async with self.transaction() as session:
            await session.execute(
                update(ChatSession)
                .where(ChatSession.id == session_id)
                .values(title=title, updated_at=utcnow())
            )

    async def save_message(
        self,
        message: CanonicalMessage,
        *,
        session_id: UUID,
        user_id: str,
        model_used: str | None = None,
        model_provider: str | None = None,
        model_config: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ChatMessageRecord:
        """Insert a message, or merge its parts into the existing row.

        Parts already stored (by dedup key) are not added again, so saving
        the same message repeatedly is harmless.

        Raises:
            BadRequestError: The id already belongs to a message of another
                conversation or user
        """
        async with self.transaction() as session:
            existing = await session.get(ChatMessageRecord, message.id)
            if existing is not None and (
                existing.session_id != session_id or existing.user_id != user_id
            ):
                raise BadRequestError(
                    "Message id is already used in another conversation",
                    details={"messageId": message.id},
                )
            if existing is None:
                record = ChatMessageRecord(
                    id=message.id,
                    session_id=session_id,
                    user_id=user_id,
                    role=message.role,
                    parts=parts_to_rows(message.parts),
                    model_used=model_used,
                    model_provider=model_provider,
                    model_config=model_config or {},
                    message_metadata=metadata or {},
                )
                session.add(record)
                await session.flush()
                return record

            merged = merge_parts(parts_from_row(existing.parts), message.parts)
            existing.parts = parts_to_rows(merged)
            if metadata:
                existing.message_metadata = {**(existing.message_metadata or {}), **metadata}
            if model_used:
                existing.model_used = model_used
            if model_provider:
                existing.model_provider = model_provider
            if model_config:
                existing.model_config = model_config
            await session.flush()
            return existing

    async def get_message(self, message_id: str) -> ChatMessageRecord | None:
        async with self.transaction() as session:
            return await session.get(ChatMessageRecord, message_id)

    async def list_messages(self, session_id: UUID) -> Sequence[ChatMessageRecord]:
        async with self.transaction() as session:
            result = await session.execute(
                select(ChatMessageRecord)
                .where(ChatMessageRecord.session_id == session_id)
                .order_by(ChatMessageRecord.created_at)
            )
            return result.scalars().all()
