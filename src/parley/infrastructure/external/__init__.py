"""External HTTP services: attachment downloads, web search and user memory."""

from parley.infrastructure.external.attachments import AttachmentFetcher
from parley.infrastructure.external.memory import Mem0Client
from parley.infrastructure.external.web_search import TavilySearchClient

__all__ = ["AttachmentFetcher", "Mem0Client", "TavilySearchClient"]
