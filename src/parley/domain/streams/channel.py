"""Out-of-band cancellation over Redis pub/sub."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from redis.asyncio import Redis
from redis.asyncio.client import PubSub
from redis.exceptions import RedisError

from parley.shared.logging import get_logger

logger = get_logger(__name__)

CANCEL_MESSAGE = "cancel"


def cancel_channel_name(stream_id: str) -> str:
    return f"chat-cancel-{stream_id}"


class CancellationWatch:
    """A live subscription to one stream's cancel channel."""

    def __init__(self, pubsub: PubSub, stream_id: str):
        self._pubsub = pubsub
        self.stream_id = stream_id

    async def wait(self) -> bool:
        """Block until a cancel message arrives.

        Returns True on a cancel and False if the subscription ended without
        one. Connection errors propagate.
        """
        async for message in self._pubsub.listen():
            if message.get("type") == "message":
                logger.info("cancel_signal_received", stream_id=self.stream_id)
                return True
        return False


class CancellationChannel:
    def __init__(self, redis: Redis):
        self.redis = redis

    async def publish(self, stream_id: str) -> int:
        """Broadcast a cancel; returns the number of live subscribers."""
        return await self.redis.publish(cancel_channel_name(stream_id), CANCEL_MESSAGE)

    @asynccontextmanager
    async def subscribe(self, stream_id: str) -> AsyncIterator[CancellationWatch]:
        channel = cancel_channel_name(stream_id)
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(channel)
        try:
            yield CancellationWatch(pubsub, stream_id)
        finally:
            try:
                await pubsub.unsubscribe(channel)
            except RedisError as e:
                # The connection is already gone; closing below releases it
                logger.warning("cancel_unsubscribe_failed", stream_id=stream_id, error=str(e))
            await pubsub.aclose()
