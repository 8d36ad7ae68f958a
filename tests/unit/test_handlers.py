"""Unit tests for the backend stream handlers with mocked SDK clients."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import openai
import pytest
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from parley.domain.chat import anthropic_handler, google_handler, openai_handler
from parley.domain.chat.anthropic_handler import AnthropicStrategy
from parley.domain.chat.google_handler import GoogleStrategy
from parley.domain.chat.openai_handler import OpenAICompatibleStrategy
from parley.domain.chat.tools import MEMORY_RETRIEVE_TOOL, WEB_SEARCH_TOOL, ToolExecutor
from parley.domain.chat.types import (
    GenerationFinished,
    ReasoningDelta,
    TextDelta,
    ToolCallCompleted,
    ToolCallRequested,
    Usage,
)
from parley.domain.messages.types import CanonicalMessage, TextPart
from parley.domain.models.catalog import get_model
from parley.shared.exceptions import ContextTooLargeError, ProviderError, ProviderRateLimitError

MESSAGES = [CanonicalMessage(id="u1", role="user", parts=(TextPart("Hi"),))]


def _executor(definition, result):
    executor = ToolExecutor(max_steps=5)
    seen = []

    async def handler(params):
        seen.append(params)
        return result

    executor.register(definition, handler)
    return executor, seen


async def _aiter(items):
    for item in items:
        yield item


async def _collect(stream) -> list:
    return [event async for event in stream]


def _openai_chunk(content=None, reasoning=None, finish_reason=None, usage=None, tool_calls=None):
    choices = []
    if content is not None or reasoning is not None or finish_reason is not None or tool_calls:
        delta = SimpleNamespace(content=content, reasoning_content=reasoning, tool_calls=tool_calls)
        choices = [SimpleNamespace(delta=delta, finish_reason=finish_reason)]
    return SimpleNamespace(choices=choices, usage=usage)


class TestOpenAICompatible:
    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(
            return_value=_aiter(
                [
                    _openai_chunk(reasoning="thinking"),
                    _openai_chunk(content="Hel"),
                    _openai_chunk(content="lo", finish_reason="stop"),
                    _openai_chunk(usage=SimpleNamespace(prompt_tokens=7, completion_tokens=2)),
                ]
            )
        )
        return client

    @pytest.fixture
    def strategy(self, client):
        strategy = OpenAICompatibleStrategy("openai", api_key="sk-test")
        strategy._client = client
        return strategy

    async def test_stream_yields_reasoning_text_and_usage(self, strategy):
        generation = strategy.instantiate(get_model("gpt-4o"), search_enabled=False)

        events = await _collect(generation.stream(MESSAGES, "Be brief", {}))

        assert events == [
            ReasoningDelta("thinking"),
            TextDelta("Hel"),
            TextDelta("lo"),
            GenerationFinished(finish_reason="stop", usage=Usage(7, 2)),
        ]

    async def test_request_shape(self, strategy, client):
        generation = strategy.instantiate(get_model("o4-mini"), search_enabled=False)

        await _collect(generation.stream(MESSAGES, "Be brief", {"openai": {"reasoning_effort": "high"}}))

        sent = client.chat.completions.create.call_args.kwargs
        assert sent["model"] == "o4-mini-2025-04-16"
        assert sent["max_completion_tokens"] == 4096
        assert sent["reasoning_effort"] == "high"
        assert sent["stream"] is True
        assert sent["messages"][0] == {"role": "system", "content": "Be brief"}

    async def test_compatible_backend_uses_max_tokens(self, client):
        strategy = OpenAICompatibleStrategy("groq", api_key="gsk-test", base_url="https://api.groq.com/openai/v1")
        strategy._client = client
        generation = strategy.instantiate(get_model("gpt-4o"), search_enabled=False)

        await _collect(generation.stream(MESSAGES, "", {}))

        sent = client.chat.completions.create.call_args.kwargs
        assert "max_tokens" in sent
        assert "max_completion_tokens" not in sent

    async def test_unconfigured_backend_without_credential(self):
        strategy = OpenAICompatibleStrategy("deepseek")

        assert strategy.is_available() is False
        assert strategy.is_available("sk-caller") is True
        with pytest.raises(ProviderError):
            strategy.client_for(None)

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (
                openai.RateLimitError(
                    "slow down",
                    response=httpx.Response(429, request=httpx.Request("POST", "https://api.test")),
                    body=None,
                ),
                ProviderRateLimitError,
            ),
            (
                openai.BadRequestError(
                    "This model's maximum context length is 128000 tokens",
                    response=httpx.Response(400, request=httpx.Request("POST", "https://api.test")),
                    body=None,
                ),
                ContextTooLargeError,
            ),
            (openai.APIConnectionError(request=httpx.Request("POST", "https://api.test")), ProviderError),
        ],
    )
    async def test_errors_are_classified(self, strategy, client, error, expected):
        client.chat.completions.create.side_effect = error
        generation = strategy.instantiate(get_model("gpt-4o"), search_enabled=False)

        with pytest.raises(expected):
            await _collect(generation.stream(MESSAGES, "", {}))

    def test_reasoning_options_only_for_effort_backends(self):
        assert OpenAICompatibleStrategy("xai").reasoning_options("low") == {"reasoning_effort": "low"}
        assert OpenAICompatibleStrategy("groq").reasoning_options("low") == {}

    async def test_tool_call_round_trip(self, strategy, client):
        fragments = [
            SimpleNamespace(index=0, id="call_1", function=SimpleNamespace(name="webSearch", arguments='{"query"')),
            SimpleNamespace(index=0, id=None, function=SimpleNamespace(name=None, arguments=': "lisbon"}')),
        ]
        client.chat.completions.create = AsyncMock(
            side_effect=[
                _aiter(
                    [
                        _openai_chunk(tool_calls=fragments[:1]),
                        _openai_chunk(tool_calls=fragments[1:], finish_reason="tool_calls"),
                        _openai_chunk(usage=SimpleNamespace(prompt_tokens=7, completion_tokens=2)),
                    ]
                ),
                _aiter(
                    [
                        _openai_chunk(content="Sunny", finish_reason="stop"),
                        _openai_chunk(usage=SimpleNamespace(prompt_tokens=20, completion_tokens=3)),
                    ]
                ),
            ]
        )
        tools, seen = _executor(WEB_SEARCH_TOOL, {"totalResults": 1})
        generation = strategy.instantiate(get_model("gpt-4o"), search_enabled=False)

        events = await _collect(generation.stream(MESSAGES, "", {}, tools=tools))

        assert events == [
            ToolCallRequested(call_id="call_1", tool_name="webSearch", args={"query": "lisbon"}),
            ToolCallCompleted(call_id="call_1", tool_name="webSearch", result={"totalResults": 1}),
            TextDelta("Sunny"),
            GenerationFinished(finish_reason="stop", usage=Usage(27, 5)),
        ]
        assert seen[0].query == "lisbon"
        first, second = (call.kwargs for call in client.chat.completions.create.call_args_list)
        assert first["tools"][0]["function"]["name"] == "webSearch"
        assert second["messages"][-2] == {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "webSearch", "arguments": '{"query": "lisbon"}'},
                }
            ],
        }
        assert second["messages"][-1] == {
            "role": "tool",
            "tool_call_id": "call_1",
            "content": '{"totalResults": 1}',
        }

    async def test_no_tools_declared_without_executor(self, strategy, client):
        generation = strategy.instantiate(get_model("gpt-4o"), search_enabled=False)

        await _collect(generation.stream(MESSAGES, "", {}))

        assert "tools" not in client.chat.completions.create.call_args.kwargs


class TestOpenAIClientLifetime:
    @pytest.fixture
    def caller_client(self):
        client = MagicMock()
        client.chat.completions.create = AsyncMock(return_value=_aiter([_openai_chunk(content="ok")]))
        client.close = AsyncMock()
        return client

    async def test_client_built_for_caller_key_is_closed(self, monkeypatch, caller_client):
        monkeypatch.setattr(openai_handler, "AsyncOpenAI", MagicMock(return_value=caller_client))
        strategy = OpenAICompatibleStrategy("deepseek")
        generation = strategy.instantiate(get_model("gpt-4o"), search_enabled=False)

        await _collect(generation.stream(MESSAGES, "", {"deepseek": {"api_key": "sk-caller"}}))

        caller_client.close.assert_awaited_once()

    async def test_client_is_closed_when_the_stream_fails(self, monkeypatch, caller_client):
        caller_client.chat.completions.create.side_effect = openai.APIConnectionError(
            request=httpx.Request("POST", "https://api.test")
        )
        monkeypatch.setattr(openai_handler, "AsyncOpenAI", MagicMock(return_value=caller_client))
        strategy = OpenAICompatibleStrategy("deepseek")
        generation = strategy.instantiate(get_model("gpt-4o"), search_enabled=False)

        with pytest.raises(ProviderError):
            await _collect(generation.stream(MESSAGES, "", {"deepseek": {"api_key": "sk-caller"}}))

        caller_client.close.assert_awaited_once()

    async def test_shared_client_stays_open(self, caller_client):
        shared = MagicMock()
        shared.close = AsyncMock()
        shared.with_options.return_value = caller_client
        strategy = OpenAICompatibleStrategy("openai")
        strategy._client = shared
        generation = strategy.instantiate(get_model("gpt-4o"), search_enabled=False)

        await _collect(generation.stream(MESSAGES, "", {"openai": {"api_key": "sk-caller"}}))

        shared.with_options.assert_called_once_with(api_key="sk-caller")
        caller_client.close.assert_not_awaited()
        shared.close.assert_not_awaited()


class _AnthropicStream:
    def __init__(self, events, final):
        self.events = events
        self.final = final

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return _aiter(self.events)

    async def get_final_message(self):
        return self.final


def _anthropic_delta(kind: str, value: str) -> SimpleNamespace:
    field = "text" if kind == "text_delta" else "thinking"
    return SimpleNamespace(type="content_block_delta", delta=SimpleNamespace(type=kind, **{field: value}))


class TestAnthropic:
    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.messages.stream.return_value = _AnthropicStream(
            [
                SimpleNamespace(type="message_start"),
                _anthropic_delta("thinking_delta", "hmm"),
                _anthropic_delta("text_delta", "Hi"),
            ],
            SimpleNamespace(stop_reason="end_turn", usage=SimpleNamespace(input_tokens=9, output_tokens=4)),
        )
        return client

    @pytest.fixture
    def strategy(self, client):
        strategy = AnthropicStrategy(api_key="sk-ant-test")
        strategy._client = client
        return strategy

    async def test_stream(self, strategy):
        generation = strategy.instantiate(get_model("claude-4-sonnet"), search_enabled=False)

        events = await _collect(generation.stream(MESSAGES, "Be brief", {}))

        assert events == [
            ReasoningDelta("hmm"),
            TextDelta("Hi"),
            GenerationFinished(finish_reason="end_turn", usage=Usage(9, 4)),
        ]

    async def test_thinking_budget_raises_max_tokens(self, strategy, client):
        generation = strategy.instantiate(get_model("claude-4-sonnet"), search_enabled=False)
        options = {"anthropic": strategy.reasoning_options("high")}

        await _collect(generation.stream(MESSAGES, "Be brief", options))

        sent = client.messages.stream.call_args.kwargs
        assert sent["thinking"] == {"type": "enabled", "budget_tokens": 8192}
        assert sent["max_tokens"] == 8192 + 1024
        assert sent["system"] == "Be brief"

    async def test_empty_system_prompt_is_omitted(self, strategy, client):
        generation = strategy.instantiate(get_model("claude-4-sonnet"), search_enabled=False)

        await _collect(generation.stream(MESSAGES, "", {}))

        assert "system" not in client.messages.stream.call_args.kwargs

    async def test_rate_limit(self, strategy, client):
        client.messages.stream.side_effect = anthropic.RateLimitError(
            "slow down",
            response=httpx.Response(429, request=httpx.Request("POST", "https://api.anthropic.test")),
            body=None,
        )
        generation = strategy.instantiate(get_model("claude-4-sonnet"), search_enabled=False)

        with pytest.raises(ProviderRateLimitError):
            await _collect(generation.stream(MESSAGES, "", {}))

    async def test_tool_use_replays_signed_thinking(self, strategy, client):
        client.messages.stream.side_effect = [
            _AnthropicStream(
                [_anthropic_delta("thinking_delta", "check memory")],
                SimpleNamespace(
                    stop_reason="tool_use",
                    usage=SimpleNamespace(input_tokens=9, output_tokens=4),
                    content=[
                        SimpleNamespace(type="thinking", thinking="check memory", signature="sig-1"),
                        SimpleNamespace(type="tool_use", id="toolu_1", name="memoryRetrieve", input={"query": "diet"}),
                    ],
                ),
            ),
            _AnthropicStream(
                [_anthropic_delta("text_delta", "You are vegan.")],
                SimpleNamespace(
                    stop_reason="end_turn",
                    usage=SimpleNamespace(input_tokens=30, output_tokens=6),
                    content=[SimpleNamespace(type="text", text="You are vegan.")],
                ),
            ),
        ]
        tools, _ = _executor(MEMORY_RETRIEVE_TOOL, {"success": True, "memories": [], "totalFound": 0})
        generation = strategy.instantiate(get_model("claude-4-sonnet"), search_enabled=False)

        events = await _collect(generation.stream(MESSAGES, "", {}, tools=tools))

        assert [type(event) for event in events] == [
            ReasoningDelta,
            ToolCallRequested,
            ToolCallCompleted,
            TextDelta,
            GenerationFinished,
        ]
        assert events[-1] == GenerationFinished(finish_reason="end_turn", usage=Usage(39, 10))
        first, second = (call.kwargs for call in client.messages.stream.call_args_list)
        assert first["tools"][0]["name"] == "memoryRetrieve"
        assert "input_schema" in first["tools"][0]
        assert second["messages"][1:] == [
            {
                "role": "assistant",
                "content": [
                    {"type": "thinking", "thinking": "check memory", "signature": "sig-1"},
                    {"type": "tool_use", "id": "toolu_1", "name": "memoryRetrieve", "input": {"query": "diet"}},
                ],
            },
            {
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": "toolu_1",
                        "content": '{"success": true, "memories": [], "totalFound": 0}',
                    }
                ],
            },
        ]

    async def test_client_built_for_caller_key_is_closed(self, monkeypatch, client):
        client.close = AsyncMock()
        monkeypatch.setattr(anthropic_handler.anthropic, "AsyncAnthropic", MagicMock(return_value=client))
        strategy = AnthropicStrategy()
        generation = strategy.instantiate(get_model("claude-4-sonnet"), search_enabled=False)

        await _collect(generation.stream(MESSAGES, "", {"anthropic": {"api_key": "sk-ant-caller"}}))

        client.close.assert_awaited_once()

    async def test_server_client_stays_open(self, strategy, client):
        client.close = AsyncMock()
        generation = strategy.instantiate(get_model("claude-4-sonnet"), search_enabled=False)

        await _collect(generation.stream(MESSAGES, "", {}))

        client.close.assert_not_awaited()


def _gemini_chunk(*parts, finish_reason=None, grounding=None, usage=None):
    return genai_types.GenerateContentResponse(
        candidates=[
            genai_types.Candidate(
                content=genai_types.Content(role="model", parts=list(parts)),
                finish_reason=finish_reason,
                grounding_metadata=grounding,
            )
        ],
        usage_metadata=usage,
    )


class TestGoogle:
    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.aio.models.generate_content_stream = AsyncMock(
            return_value=_aiter(
                [
                    _gemini_chunk(genai_types.Part(text="pondering", thought=True)),
                    _gemini_chunk(
                        genai_types.Part(text="Sunny"),
                        finish_reason=genai_types.FinishReason.STOP,
                        grounding=genai_types.GroundingMetadata(web_search_queries=["lisbon weather"]),
                        usage=genai_types.GenerateContentResponseUsageMetadata(
                            prompt_token_count=11, candidates_token_count=3
                        ),
                    ),
                ]
            )
        )
        return client

    @pytest.fixture
    def strategy(self, client):
        strategy = GoogleStrategy(api_key="g-test")
        strategy._client = client
        return strategy

    async def test_stream(self, strategy):
        generation = strategy.instantiate(get_model("gemini-2.5-flash"), search_enabled=True)

        events = await _collect(generation.stream(MESSAGES, "Be brief", {}))

        assert events[:2] == [ReasoningDelta("pondering"), TextDelta("Sunny")]
        finished = events[2]
        assert finished.finish_reason == "stop"
        assert finished.usage == Usage(11, 3)
        assert finished.grounding["web_search_queries"] == ["lisbon weather"]

    async def test_config_carries_search_and_thinking(self, strategy, client):
        generation = strategy.instantiate(get_model("gemini-2.5-flash"), search_enabled=True)
        options = {"google": strategy.reasoning_options("medium")}

        await _collect(generation.stream(MESSAGES, "Be brief", options))

        config = client.aio.models.generate_content_stream.call_args.kwargs["config"]
        assert config.system_instruction == "Be brief"
        assert config.thinking_config.thinking_budget == 4096
        assert config.tools[0].google_search is not None

    async def test_search_off_sends_no_tools(self, strategy, client):
        generation = strategy.instantiate(get_model("gemini-2.5-flash"), search_enabled=False)

        await _collect(generation.stream(MESSAGES, "", {}))

        config = client.aio.models.generate_content_stream.call_args.kwargs["config"]
        assert config.tools is None

    async def test_quota_error_is_rate_limit(self, strategy, client):
        client.aio.models.generate_content_stream.side_effect = genai_errors.ClientError(
            429, {"error": {"code": 429, "message": "quota", "status": "RESOURCE_EXHAUSTED"}}
        )
        generation = strategy.instantiate(get_model("gemini-2.5-flash"), search_enabled=False)

        with pytest.raises(ProviderRateLimitError):
            await _collect(generation.stream(MESSAGES, "", {}))

    async def test_function_call_round_trip(self, strategy, client):
        client.aio.models.generate_content_stream = AsyncMock(
            side_effect=[
                _aiter(
                    [
                        _gemini_chunk(
                            genai_types.Part(
                                function_call=genai_types.FunctionCall(
                                    id="fc_1", name="webSearch", args={"query": "lisbon"}
                                )
                            ),
                            finish_reason=genai_types.FinishReason.STOP,
                        )
                    ]
                ),
                _aiter([_gemini_chunk(genai_types.Part(text="Sunny"), finish_reason=genai_types.FinishReason.STOP)]),
            ]
        )
        tools, _ = _executor(WEB_SEARCH_TOOL, {"totalResults": 2})
        generation = strategy.instantiate(get_model("gemini-2.5-flash"), search_enabled=False)

        events = await _collect(generation.stream(MESSAGES, "", {}, tools=tools))

        assert events[:3] == [
            ToolCallRequested(call_id="fc_1", tool_name="webSearch", args={"query": "lisbon"}),
            ToolCallCompleted(call_id="fc_1", tool_name="webSearch", result={"totalResults": 2}),
            TextDelta("Sunny"),
        ]
        first, second = (call.kwargs for call in client.aio.models.generate_content_stream.call_args_list)
        assert first["config"].tools[0].function_declarations[0].name == "webSearch"
        assert first["config"].automatic_function_calling.disable is True
        model_turn, tool_turn = second["contents"][-2:]
        assert model_turn.role == "model"
        assert model_turn.parts[0].function_call.name == "webSearch"
        assert tool_turn.role == "user"
        assert tool_turn.parts[0].function_response.response == {"result": {"totalResults": 2}}

    async def test_native_search_turn_declares_no_functions(self, strategy, client):
        tools, _ = _executor(WEB_SEARCH_TOOL, {})
        generation = strategy.instantiate(get_model("gemini-2.5-flash"), search_enabled=True)

        await _collect(generation.stream(MESSAGES, "", {}, tools=tools))

        config = client.aio.models.generate_content_stream.call_args.kwargs["config"]
        assert len(config.tools) == 1
        assert config.tools[0].google_search is not None
        assert config.tools[0].function_declarations is None

    async def test_client_built_for_caller_key_is_closed(self, monkeypatch, client):
        client.aio.aclose = AsyncMock()
        monkeypatch.setattr(google_handler.genai, "Client", MagicMock(return_value=client))
        strategy = GoogleStrategy()
        generation = strategy.instantiate(get_model("gemini-2.5-flash"), search_enabled=False)

        await _collect(generation.stream(MESSAGES, "", {"google": {"api_key": "g-caller"}}))

        client.aio.aclose.assert_awaited_once()

    async def test_server_client_stays_open(self, strategy, client):
        client.aio.aclose = AsyncMock()
        generation = strategy.instantiate(get_model("gemini-2.5-flash"), search_enabled=False)

        await _collect(generation.stream(MESSAGES, "", {}))

        client.aio.aclose.assert_not_awaited()
