"""Stream registry.

Every state change is one conditional UPDATE guarded by the allowed source
states, so concurrent writers cannot move a stream out of a terminal state.
"""

from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select, update

from parley.infrastructure.database.models.base import utcnow
from parley.infrastructure.database.models.chat import ChatStreamRecord, StreamStatus
from parley.infrastructure.database.repositories.base import BaseRepository

_OPEN = (StreamStatus.PENDING, StreamStatus.STREAMING)


class StreamRepository(BaseRepository[ChatStreamRecord]):
    model_class = ChatStreamRecord

    async def create(self, chat_id: UUID, stream_id: str) -> ChatStreamRecord:
        record = ChatStreamRecord(chat_id=chat_id, stream_id=stream_id, status=StreamStatus.PENDING.value)
        async with self.transaction() as session:
            session.add(record)
            await session.flush()
        return record

    async def get(self, stream_id: str) -> ChatStreamRecord | None:
        async with self.transaction() as session:
            result = await session.execute(
                select(ChatStreamRecord).where(ChatStreamRecord.stream_id == stream_id)
            )
            return result.scalar_one_or_none()

    async def latest_for_chat(self, chat_id: UUID) -> ChatStreamRecord | None:
        async with self.transaction() as session:
            result = await session.execute(
                select(ChatStreamRecord)
                .where(ChatStreamRecord.chat_id == chat_id)
                .order_by(ChatStreamRecord.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def transition(
        self,
        stream_id: str,
        to_status: StreamStatus,
        from_statuses: Iterable[StreamStatus],
        **values: Any,
    ) -> bool:
        """Move a stream between states. Returns False if it was not in ``from_statuses``."""
        async with self.transaction() as session:
            result = await session.execute(
                update(ChatStreamRecord)
                .where(
                    ChatStreamRecord.stream_id == stream_id,
                    ChatStreamRecord.status.in_([s.value for s in from_statuses]),
                )
                .values(status=to_status.value, **values)
            )
            return result.rowcount == 1

    async def mark_streaming(self, stream_id: str) -> bool:
        return await self.transition(stream_id, StreamStatus.STREAMING, [StreamStatus.PENDING])

    async def mark_cancelled(self, stream_id: str) -> bool:
        return await self.transition(
            stream_id, StreamStatus.CANCELLED, _OPEN, completed_at=utcnow()
        )

    async def mark_complete(self, stream_id: str, message_id: str | None) -> bool:
        return await self.transition(
            stream_id, StreamStatus.COMPLETE, _OPEN, completed_at=utcnow(), message_id=message_id
        )

    async def prune(self, chat_id: UUID, keep: int) -> int:
        """Delete all but the newest ``keep`` records of a chat."""
        async with self.transaction() as session:
            newest = (
                select(ChatStreamRecord.id)
                .where(ChatStreamRecord.chat_id == chat_id)
                .order_by(ChatStreamRecord.created_at.desc())
                .limit(keep)
            )
            result = await session.execute(
                delete(ChatStreamRecord).where(
                    ChatStreamRecord.chat_id == chat_id,
                    ChatStreamRecord.id.not_in(newest.scalar_subquery()),
                )
            )
            return result.rowcount or 0
