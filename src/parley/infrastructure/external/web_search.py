"""Tavily web search client.

Backs the ``webSearch`` tool for models without native search grounding.
A user question is split into at most three focused queries which are sent
concurrently; a failed query is reported inside its own result instead of
failing the whole search.

API: https://docs.tavily.com/
"""

import asyncio
import re
from typing import Any

import httpx

from parley.shared.exceptions import ToolError
from parley.shared.logging import get_logger

logger = get_logger(__name__)

TAVILY_SEARCH_URL = "https://api.tavily.com/search"
MAX_QUERIES = 3

DEFAULT_SEARCH_OPTIONS: dict[str, Any] = {
    "topic": "general",
    "search_depth": "advanced",
    "max_results": 5,
    "include_answer": True,
    "include_images": False,
    "include_raw_content": False,
}

_LEADING_FILLER = re.compile(
    r"^(what|how|why|when|where|who|can you|could you|please|tell me|explain)", re.IGNORECASE
)
_CONNECTIVES = re.compile(r"\s+(?:and|or|but|however|also)\s+", re.IGNORECASE)


def generate_search_queries(question: str) -> list[str]:
    """Turn a question into up to three search queries.

    Short statements are used as-is. Longer or compound questions lose their
    leading filler words and are split on connectives into focused queries.
    """
    stripped = question.strip()
    lowered = stripped.lower()
    if len(lowered) <= 100 and "?" not in lowered:
        return [stripped]

    queries: list[str] = []
    main = _LEADING_FILLER.sub("", stripped).rstrip("?").strip()
    if main:
        queries.append(main)

    if " and " in lowered or " or " in lowered or len(lowered) > 150:
        for phrase in _CONNECTIVES.split(main):
            phrase = phrase.strip()
            if 10 < len(phrase) < 100:
                queries.append(phrase)

    return queries[:MAX_QUERIES] or [stripped]


class TavilySearchClient:
    """Web search provider using the Tavily search API."""

    def __init__(
        self,
        api_key: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def search(self, query: str, options: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run one query.

        Raises:
            ToolError: Transport failure or non-2xx response
        """
        payload = {**DEFAULT_SEARCH_OPTIONS, **(options or {}), "query": query}
        try:
            response = await self._get_client().post(
                TAVILY_SEARCH_URL,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ToolError(
                f"Search failed: HTTP {e.response.status_code}",
                details={"query": query},
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ToolError(f"Search failed: {e}", details={"query": query}) from e

        return {
            "query": data.get("query") or query,
            "answer": data.get("answer"),
            "results": [
                {
                    "title": item.get("title", ""),
                    "url": item.get("url", ""),
                    "content": item.get("content", ""),
                    "score": item.get("score", 0),
                    "publishedDate": item.get("published_date"),
                }
                for item in data.get("results") or []
            ],
            "images": data.get("images") or [],
            "responseTime": data.get("response_time", 0),
        }

    async def _search_or_error(self, query: str, options: dict[str, Any] | None) -> dict[str, Any]:
        try:
            return await self.search(query, options)
        except ToolError as e:
            logger.warning("web_search_query_failed", query=query, error=e.message)
            return {"query": query, "results": [], "error": e.message}

    async def search_question(self, question: str, options: dict[str, Any] | None = None) -> dict[str, Any]:
        """Search every query derived from ``question`` concurrently.

        The result lists sources in citation order across all queries.
        """
        queries = generate_search_queries(question)
        results = await asyncio.gather(*(self._search_or_error(q, options) for q in queries))
        total = sum(len(result["results"]) for result in results)
        logger.info("web_search_completed", queries=len(queries), sources=total)
        return {
            "query": question,
            "queries": queries,
            "searchResults": list(results),
            "totalResults": total,
        }
