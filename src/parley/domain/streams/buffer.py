"""Resumable output buffer backed by Redis streams.

The generating task appends encoded frames; any number of readers (the
original POST response, later reconnects from any process) replay from the
first entry and then tail. A ``done`` entry marks the end of output.
"""

from collections.abc import AsyncIterator

from redis.asyncio import Redis

from parley.shared.logging import get_logger

logger = get_logger(__name__)

KEY_PREFIX = "parley:stream:"
DONE_FIELD = "done"
FRAME_FIELD = "frame"


class StreamBuffer:
    def __init__(
        self,
        redis: Redis,
        ttl_seconds: int = 600,
        block_ms: int = 5000,
        idle_timeout_seconds: float = 120.0,
    ):
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.block_ms = block_ms
        self.idle_timeout_seconds = idle_timeout_seconds

    @staticmethod
    def key(stream_id: str) -> str:
        return f"{KEY_PREFIX}{stream_id}"

    async def append(self, stream_id: str, frame: str) -> None:
        key = self.key(stream_id)
        await self.redis.xadd(key, {FRAME_FIELD: frame})
        await self.redis.expire(key, self.ttl_seconds)

    async def close(self, stream_id: str) -> None:
        key = self.key(stream_id)
        await self.redis.xadd(key, {DONE_FIELD: "1"})
        await self.redis.expire(key, self.ttl_seconds)

    async def is_live(self, stream_id: str) -> bool:
        """True while output exists and has not been closed."""
        last = await self.redis.xrevrange(self.key(stream_id), count=1)
        return bool(last) and DONE_FIELD not in last[0][1]

    async def read(self, stream_id: str) -> AsyncIterator[str]:
        """Replay every frame from the start, then follow until closed.

        Stops early if no new frame arrives within the idle timeout, which
        covers a generator process that died before closing its buffer.
        """
        key = self.key(stream_id)
        last_id = "0-0"
        idle_seconds = 0.0
        while True:
            response = await self.redis.xread({key: last_id}, count=100, block=self.block_ms)
            if not response:
                idle_seconds += self.block_ms / 1000
                if idle_seconds >= self.idle_timeout_seconds:
                    logger.warning("stream_buffer_idle_timeout", stream_id=stream_id)
                    return
                continue
            idle_seconds = 0.0
            for _key, entries in response:
                for entry_id, fields in entries:
                    last_id = entry_id
                    if DONE_FIELD in fields:
                        return
                    yield fields[FRAME_FIELD]
