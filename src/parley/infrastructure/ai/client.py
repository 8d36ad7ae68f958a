"""OpenAI utility client for the non-streaming calls around a chat turn."""

import base64
import time
from dataclasses import dataclass

import openai
from openai import AsyncOpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from parley.infrastructure.ai.cost_tracker import CostTracker
from parley.shared.exceptions import ImageGenerationError, ProviderError, ProviderRateLimitError
from parley.shared.logging import get_logger

logger = get_logger(__name__)

_TRANSIENT_ERRORS = (openai.APITimeoutError, openai.APIConnectionError)


@dataclass
class AIResponse:
    """Response from AI completion."""

    content: str
    model: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    cost_cents: float
    latency_ms: float


class OpenAIUtilityClient:
    """Wrapper for short completions (titles) and image generation.

    Features:
    - Automatic cost tracking
    - Retry with exponential backoff on transient transport errors
    - Structured logging
    """

    def __init__(
        self,
        api_key: str,
        cost_tracker: CostTracker | None = None,
        image_model: str = "gpt-image-1",
        image_size: str = "1024x1024",
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.client = client or AsyncOpenAI(api_key=api_key)
        self.cost_tracker = cost_tracker or CostTracker()
        self.image_model = image_model
        self.image_size = image_size

    async def close(self) -> None:
        await self.client.close()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        reraise=True,
    )
    async def _create_completion(self, **params: object) -> openai.types.chat.ChatCompletion:
        return await self.client.chat.completions.create(**params)  # type: ignore[arg-type]

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_tokens: int = 50,
        temperature: float = 0.7,
        action: str = "ai_completion",
        resource_id: str | None = None,
    ) -> AIResponse:
        """Send a single-shot completion request.

        Raises:
            ProviderRateLimitError: If rate limited
            ProviderError: For other API errors
        """
        start_time = time.monotonic()
        try:
            response = await self._create_completion(
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
            )
        except openai.RateLimitError as e:
            logger.warning("ai_rate_limited", model=model, error=str(e))
            raise ProviderRateLimitError("OpenAI rate limit exceeded", details={"model": model}) from e
        except openai.APIError as e:
            logger.error("ai_api_error", model=model, error=str(e))
            raise ProviderError(f"OpenAI request failed: {e}", details={"model": model}) from e

        latency_ms = (time.monotonic() - start_time) * 1000
        input_tokens = response.usage.prompt_tokens if response.usage else 0
        output_tokens = response.usage.completion_tokens if response.usage else 0
        usage_record = self.cost_tracker.record(
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            action=action,
            resource_id=resource_id,
        )

        logger.debug(
            "ai_completion_success",
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=round(latency_ms, 2),
        )

        return AIResponse(
            content=response.choices[0].message.content or "",
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=usage_record.total_tokens,
            cost_cents=usage_record.cost_cents,
            latency_ms=latency_ms,
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        retry=retry_if_exception_type(_TRANSIENT_ERRORS),
        reraise=True,
    )
    async def _create_image(self, prompt: str) -> openai.types.ImagesResponse:
        params: dict[str, object] = {
            "model": self.image_model,
            "prompt": prompt,
            "size": self.image_size,
            "n": 1,
        }
        # gpt-image-* always returns base64; DALL-E defaults to URLs
        if self.image_model.startswith("dall-e"):
            params["response_format"] = "b64_json"
        return await self.client.images.generate(**params)  # type: ignore[arg-type]

    async def generate_image(self, prompt: str) -> bytes:
        """Generate one PNG image.

        Raises:
            ImageGenerationError: On API failure or an empty result
        """
        start_time = time.monotonic()
        try:
            response = await self._create_image(prompt)
        except openai.APIError as e:
            logger.error("image_generation_failed", model=self.image_model, error=str(e))
            raise ImageGenerationError(str(e), details={"model": self.image_model}) from e

        if not response.data or not response.data[0].b64_json:
            raise ImageGenerationError("No image data returned", details={"model": self.image_model})

        image = base64.b64decode(response.data[0].b64_json)
        logger.info(
            "image_generated",
            model=self.image_model,
            size=len(image),
            latency_ms=round((time.monotonic() - start_time) * 1000, 2),
        )
        return image
