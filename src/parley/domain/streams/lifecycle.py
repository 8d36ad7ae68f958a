"""Stream lifecycle: create, cancel, complete and resume.

Two independent signals describe a cancelled stream: the durable record in
the registry and a pub/sub broadcast to the generating task. The broadcast
stops token generation early; the record is what the finalizer trusts at its
commit point, because the broadcast can arrive after generation finished.
"""

from collections.abc import AsyncIterator
from uuid import UUID, uuid4

from parley.domain.chat.protocol import annotation_frame
from parley.domain.messages.persisted import to_ui_message
from parley.domain.streams.buffer import StreamBuffer
from parley.domain.streams.channel import CancellationChannel
from parley.infrastructure.database.models.chat import ChatStreamRecord
from parley.infrastructure.database.repositories.chat import ChatRepository
from parley.infrastructure.database.repositories.streams import StreamRepository
from parley.observability.metrics import CHAT_STREAM_RESUMES
from parley.shared.logging import get_logger

logger = get_logger(__name__)


async def _single_frame(frame: str) -> AsyncIterator[str]:
    yield frame


class StreamLifecycleManager:
    def __init__(
        self,
        streams: StreamRepository,
        chats: ChatRepository,
        channel: CancellationChannel,
        buffer: StreamBuffer,
        records_kept_per_chat: int = 5,
    ):
        self.streams = streams
        self.chats = chats
        self.channel = channel
        self.buffer = buffer
        self.records_kept_per_chat = records_kept_per_chat

    async def begin(self, chat_id: UUID) -> str:
        """Register a fresh stream for a turn. Ids are never reused."""
        stream_id = uuid4().hex
        await self.streams.create(chat_id, stream_id)
        pruned = await self.streams.prune(chat_id, self.records_kept_per_chat)
        logger.info("stream_registered", chat_id=str(chat_id), stream_id=stream_id, pruned=pruned)
        return stream_id

    async def get(self, stream_id: str) -> ChatStreamRecord | None:
        return await self.streams.get(stream_id)

    async def mark_streaming(self, stream_id: str) -> bool:
        return await self.streams.mark_streaming(stream_id)

    async def cancel(self, stream_id: str) -> bool:
        """Mark cancelled and broadcast. Safe to call repeatedly.

        Returns True only for the call that actually changed the record.
        """
        changed = await self.streams.mark_cancelled(stream_id)
        listeners = await self.channel.publish(stream_id)
        logger.info("stream_cancel_requested", stream_id=stream_id, changed=changed, listeners=listeners)
        return changed

    async def complete(self, stream_id: str, message_id: str | None) -> bool:
        return await self.streams.mark_complete(stream_id, message_id)

    async def is_cancelled(self, chat_id: UUID, stream_id: str) -> bool:
        """Re-read the registry right before committing a turn's result."""
        record = await self.streams.latest_for_chat(chat_id)
        if record is None or record.stream_id != stream_id:
            record = await self.streams.get(stream_id)
        return record is not None and record.cancelled

    async def resume(self, chat_id: UUID) -> AsyncIterator[str] | None:
        """Reconnect to the newest stream of a chat.

        - absent or cancelled: nothing to resume
        - output still being produced: replay the buffer from the start
        - finished with a saved message: one synthetic ``message_saved`` frame
          carrying that message, since the live output is gone
        """
        latest = await self.streams.latest_for_chat(chat_id)
        if latest is None or latest.cancelled:
            CHAT_STREAM_RESUMES.labels(outcome="none").inc()
            return None

        if await self.buffer.is_live(latest.stream_id):
            CHAT_STREAM_RESUMES.labels(outcome="live").inc()
            logger.info("stream_resumed_live", stream_id=latest.stream_id)
            return self.buffer.read(latest.stream_id)

        if latest.complete and latest.message_id:
            record = await self.chats.get_message(latest.message_id)
            if record is not None:
                CHAT_STREAM_RESUMES.labels(outcome="synthetic").inc()
                logger.info("stream_resumed_synthetic", stream_id=latest.stream_id, message_id=record.id)
                frame = annotation_frame(
                    [
                        {
                            "type": "message_saved",
                            "data": {
                                "databaseId": record.id,
                                "sessionId": str(record.session_id),
                                "message": to_ui_message(record),
                            },
                        }
                    ]
                )
                return _single_frame(frame)

        CHAT_STREAM_RESUMES.labels(outcome="none").inc()
        return None
