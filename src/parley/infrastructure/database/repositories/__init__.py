"""Repository pattern implementations for database access."""

from parley.infrastructure.database.repositories.base import BaseRepository
from parley.infrastructure.database.repositories.chat import ChatRepository
from parley.infrastructure.database.repositories.streams import StreamRepository

__all__ = [
    "BaseRepository",
    "ChatRepository",
    "StreamRepository",
]
