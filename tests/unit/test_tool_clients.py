"""Unit tests for the Tavily and Mem0 HTTP clients behind the chat tools."""

import json

import httpx
import pytest

from parley.infrastructure.external.memory import Mem0Client
from parley.infrastructure.external.web_search import TavilySearchClient, generate_search_queries
from parley.shared.exceptions import ToolError


def _recording_client(respond) -> tuple[httpx.AsyncClient, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return respond(request)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), requests


TAVILY_RESPONSE = {
    "query": "lisbon weather",
    "answer": "Sunny, 24C.",
    "results": [
        {
            "title": "Lisbon forecast",
            "url": "https://weather.example/lisbon",
            "content": "Clear skies all week.",
            "score": 0.92,
            "published_date": "2025-06-01",
        }
    ],
    "response_time": 0.41,
}


class TestGenerateSearchQueries:
    def test_short_statement_is_used_as_is(self):
        assert generate_search_queries("  Lisbon weather  ") == ["Lisbon weather"]

    def test_compound_question_is_split(self):
        queries = generate_search_queries("What is the population of Lisbon and how big is Porto?")

        assert queries == [
            "is the population of Lisbon and how big is Porto",
            "is the population of Lisbon",
            "how big is Porto",
        ]

    def test_never_more_than_three_queries(self):
        question = (
            "How do trams work in Lisbon and what do tickets cost for tourists "
            "and which lines reach Belem and are there night services?"
        )

        assert len(generate_search_queries(question)) == 3


class TestTavilySearchClient:
    async def test_search_request_and_result_shape(self):
        http, requests = _recording_client(lambda request: httpx.Response(200, json=TAVILY_RESPONSE))
        client = TavilySearchClient("tvly-key", client=http)

        result = await client.search("lisbon weather", {"topic": "news"})

        sent = json.loads(requests[0].content)
        assert str(requests[0].url) == "https://api.tavily.com/search"
        assert requests[0].headers["Authorization"] == "Bearer tvly-key"
        assert sent["query"] == "lisbon weather"
        assert sent["topic"] == "news"
        assert sent["search_depth"] == "advanced"
        assert sent["include_answer"] is True
        assert result["answer"] == "Sunny, 24C."
        assert result["results"][0] == {
            "title": "Lisbon forecast",
            "url": "https://weather.example/lisbon",
            "content": "Clear skies all week.",
            "score": 0.92,
            "publishedDate": "2025-06-01",
        }
        await client.close()

    @pytest.mark.parametrize(
        "respond",
        [
            lambda request: httpx.Response(401, json={"detail": "bad key"}),
            lambda request: httpx.Response(200, content=b"<html>"),
        ],
    )
    async def test_failures_raise_tool_error(self, respond):
        http, _ = _recording_client(respond)
        client = TavilySearchClient("tvly-key", client=http)

        with pytest.raises(ToolError):
            await client.search("lisbon weather")

    async def test_one_failed_query_does_not_fail_the_search(self):
        def respond(request: httpx.Request) -> httpx.Response:
            if "Porto" in json.loads(request.content)["query"]:
                return httpx.Response(503)
            return httpx.Response(200, json=TAVILY_RESPONSE)

        http, requests = _recording_client(respond)
        client = TavilySearchClient("tvly-key", client=http)

        result = await client.search_question("What is the population of Lisbon and how big is Porto?")

        assert len(requests) == 3
        assert result["totalResults"] == 1
        failed = [entry for entry in result["searchResults"] if "error" in entry]
        assert [entry["query"] for entry in failed] == [
            "is the population of Lisbon and how big is Porto",
            "how big is Porto",
        ]


class TestMem0Client:
    async def test_save(self):
        http, requests = _recording_client(
            lambda request: httpx.Response(
                200, json=[{"id": "mem-1", "data": {"memory": "User is vegan"}, "event": "ADD"}]
            )
        )
        client = Mem0Client("m0-key", client=http)

        saved = await client.save("I'm vegan", "user-1", "chat-1", metadata={"category": "preference"})

        sent = json.loads(requests[0].content)
        assert str(requests[0].url) == "https://api.mem0.ai/v1/memories/"
        assert requests[0].headers["Authorization"] == "Token m0-key"
        assert sent["messages"] == [{"role": "user", "content": "I'm vegan"}]
        assert sent["user_id"] == "user-1"
        assert sent["run_id"] == "chat-1"
        assert sent["metadata"]["category"] == "preference"
        assert sent["metadata"]["importance"] == "high"
        assert saved["memoryId"] == "mem-1"
        assert saved["content"] == "User is vegan"

    async def test_search_filters_by_user(self):
        http, requests = _recording_client(
            lambda request: httpx.Response(
                200,
                json=[
                    {
                        "id": "mem-1",
                        "memory": "User is vegan",
                        "score": 0.83,
                        "metadata": {"category": "preference"},
                        "created_at": "2025-06-01T10:00:00Z",
                    }
                ],
            )
        )
        client = Mem0Client("m0-key", client=http)

        memories = await client.search("diet", "user-1", limit=3)

        sent = json.loads(requests[0].content)
        assert requests[0].url.path == "/v2/memories/search/"
        assert sent == {"query": "diet", "filters": {"AND": [{"user_id": "user-1"}]}, "limit": 3, "threshold": 0.1}
        assert memories == [
            {
                "id": "mem-1",
                "content": "User is vegan",
                "category": "preference",
                "relevanceScore": 0.83,
                "createdAt": "2025-06-01T10:00:00Z",
            }
        ]

    async def test_search_can_be_scoped_to_one_chat(self):
        http, requests = _recording_client(lambda request: httpx.Response(200, json=[]))
        client = Mem0Client("m0-key", client=http)

        assert await client.search("diet", "user-1", session_id="chat-1") == []

        filters = json.loads(requests[0].content)["filters"]
        assert filters == {"AND": [{"user_id": "user-1"}, {"run_id": "chat-1"}]}

    async def test_http_error_raises_tool_error(self):
        http, _ = _recording_client(lambda request: httpx.Response(401))
        client = Mem0Client("m0-key", client=http)

        with pytest.raises(ToolError, match="HTTP 401"):
            await client.save("I'm vegan", "user-1")
