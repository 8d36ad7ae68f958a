"""Mem0 client for long-term user memories.

Memories are scoped to a user and optionally to one conversation (Mem0's
``run_id``). Saving goes through the v1 endpoint; retrieval uses the v2
semantic search with explicit filters.

API: https://docs.mem0.ai/api-reference
"""

from datetime import UTC, datetime
from typing import Any

import httpx

from parley.shared.exceptions import ToolError
from parley.shared.logging import get_logger

logger = get_logger(__name__)

MEM0_BASE_URL = "https://api.mem0.ai"


class Mem0Client:
    """Saves and searches user memories."""

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

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        try:
            response = await self._get_client().post(
                f"{MEM0_BASE_URL}{path}",
                json=payload,
                headers={"Authorization": f"Token {self.api_key}", "Accept": "application/json"},
            )
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise ToolError(
                f"Memory service error: HTTP {e.response.status_code}",
                details={"path": path},
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ToolError(f"Memory service unavailable: {e}", details={"path": path}) from e

    async def save(
        self,
        content: str,
        user_id: str,
        session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Store one memory.

        Raises:
            ToolError: The memory service rejected or never answered the request
        """
        payload: dict[str, Any] = {
            "messages": [{"role": "user", "content": content}],
            "user_id": user_id,
            "metadata": {
                **(metadata or {}),
                "timestamp": datetime.now(UTC).isoformat(),
                "importance": "high",
            },
        }
        if session_id:
            payload["run_id"] = session_id

        result = await self._post("/v1/memories/", payload)
        first = result[0] if isinstance(result, list) and result else {}
        logger.info("memory_saved", user_id=user_id, operations=len(result) if isinstance(result, list) else 0)
        return {
            "memoryId": first.get("id", ""),
            "content": (first.get("data") or {}).get("memory") or content,
            "metadata": payload["metadata"],
        }

    async def search(
        self,
        query: str,
        user_id: str,
        session_id: str | None = None,
        limit: int = 5,
        threshold: float = 0.1,
    ) -> list[dict[str, Any]]:
        """Semantic search over a user's memories, most relevant first.

        Raises:
            ToolError: The memory service rejected or never answered the request
        """
        filters: list[dict[str, str]] = [{"user_id": user_id}]
        if session_id:
            filters.append({"run_id": session_id})
        payload = {"query": query, "filters": {"AND": filters}, "limit": limit, "threshold": threshold}

        result = await self._post("/v2/memories/search/", payload)
        items = result if isinstance(result, list) else []
        return [
            {
                "id": item.get("id", ""),
                "content": item.get("memory", ""),
                "category": (item.get("metadata") or {}).get("category", "general"),
                "relevanceScore": item.get("score") or 0,
                "createdAt": item.get("created_at"),
            }
            for item in items
        ]
