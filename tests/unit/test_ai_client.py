"""Unit tests for cost tracking and the OpenAI utility client."""

import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest
from tenacity import wait_none

from parley.config import Settings
from parley.infrastructure.ai.client import OpenAIUtilityClient
from parley.infrastructure.ai.cost_tracker import DEFAULT_PRICING, CostTracker
from parley.infrastructure.ai.factory import build_utility_client
from parley.shared.exceptions import ImageGenerationError, ProviderError, ProviderRateLimitError

OPENAI_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _completion(content: str, prompt_tokens: int = 100, completion_tokens: int = 10) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
    )


@pytest.fixture
def mock_openai():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=_completion("Lisbon Weekend"))
    client.images.generate = AsyncMock(
        return_value=SimpleNamespace(data=[SimpleNamespace(b64_json=base64.b64encode(b"png-bytes").decode())])
    )
    client.close = AsyncMock()
    return client


@pytest.fixture
def tracker():
    return CostTracker()


@pytest.fixture
def utility(mock_openai, tracker):
    return OpenAIUtilityClient(api_key="sk-test", cost_tracker=tracker, client=mock_openai)


class TestCostTracker:
    def test_known_model_pricing(self, tracker):
        # 1M input tokens of gpt-4o-mini is $0.15
        assert tracker.calculate_cost("gpt-4o-mini", 1_000_000, 0) == pytest.approx(15.0)

    def test_unknown_model_uses_default_pricing(self, tracker):
        cost = tracker.calculate_cost("mystery-model", 1_000_000, 1_000_000)

        assert cost == pytest.approx((DEFAULT_PRICING["input"] + DEFAULT_PRICING["output"]) * 100)

    def test_record_keeps_recent_usage(self, tracker):
        record = tracker.record("gpt-4o-mini", 1000, 500, action="chat_title", resource_id="chat-1")

        assert record.total_tokens == 1500
        assert tracker.recent() == [record]


class TestComplete:
    async def test_returns_content_and_tracks_cost(self, utility, mock_openai, tracker):
        response = await utility.complete(
            system_prompt="Title this",
            user_prompt="Plan a weekend in Lisbon",
            model="gpt-4o-mini",
            action="chat_title",
        )

        assert response.content == "Lisbon Weekend"
        assert response.total_tokens == 110
        assert tracker.recent()[-1].action == "chat_title"
        sent = mock_openai.chat.completions.create.call_args.kwargs
        assert sent["messages"][0] == {"role": "system", "content": "Title this"}
        assert sent["model"] == "gpt-4o-mini"

    async def test_rate_limit_maps_to_provider_rate_limit(self, utility, mock_openai):
        mock_openai.chat.completions.create.side_effect = openai.RateLimitError(
            "slow down", response=httpx.Response(429, request=OPENAI_REQUEST), body=None
        )

        with pytest.raises(ProviderRateLimitError):
            await utility.complete("s", "u", model="gpt-4o-mini")

    async def test_api_error_maps_to_provider_error(self, utility, mock_openai):
        mock_openai.chat.completions.create.side_effect = openai.BadRequestError(
            "bad", response=httpx.Response(400, request=OPENAI_REQUEST), body=None
        )

        with pytest.raises(ProviderError):
            await utility.complete("s", "u", model="gpt-4o-mini")

    async def test_transient_errors_are_retried(self, utility, mock_openai):
        mock_openai.chat.completions.create.side_effect = [
            openai.APIConnectionError(request=OPENAI_REQUEST),
            _completion("Second try"),
        ]

        with patch.object(OpenAIUtilityClient._create_completion.retry, "wait", wait_none()):
            response = await utility.complete("s", "u", model="gpt-4o-mini")

        assert response.content == "Second try"
        assert mock_openai.chat.completions.create.await_count == 2


class TestGenerateImage:
    async def test_decodes_base64_image(self, utility, mock_openai):
        image = await utility.generate_image("a red fox")

        assert image == b"png-bytes"
        sent = mock_openai.images.generate.call_args.kwargs
        assert sent["model"] == "gpt-image-1"
        assert "response_format" not in sent

    async def test_dall_e_requests_base64(self, mock_openai):
        utility = OpenAIUtilityClient(api_key="sk-test", image_model="dall-e-3", client=mock_openai)

        await utility.generate_image("a red fox")

        assert mock_openai.images.generate.call_args.kwargs["response_format"] == "b64_json"

    async def test_empty_result_raises(self, utility, mock_openai):
        mock_openai.images.generate.return_value = SimpleNamespace(data=[])

        with pytest.raises(ImageGenerationError):
            await utility.generate_image("a red fox")

    async def test_api_error_raises_image_generation_error(self, utility, mock_openai):
        mock_openai.images.generate.side_effect = openai.BadRequestError(
            "content policy", response=httpx.Response(400, request=OPENAI_REQUEST), body=None
        )

        with pytest.raises(ImageGenerationError):
            await utility.generate_image("a red fox")


def test_no_openai_key_means_no_utility_client():
    assert build_utility_client(Settings(_env_file=None, openai_api_key="")) is None


async def test_close_closes_sdk_client(utility, mock_openai):
    await utility.close()

    mock_openai.close.assert_awaited_once()
