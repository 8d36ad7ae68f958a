"""Stream lifecycle management."""

from parley.domain.streams.buffer import StreamBuffer
from parley.domain.streams.channel import CancellationChannel, cancel_channel_name
from parley.domain.streams.lifecycle import StreamLifecycleManager

__all__ = [
    "CancellationChannel",
    "StreamBuffer",
    "StreamLifecycleManager",
    "cancel_channel_name",
]
