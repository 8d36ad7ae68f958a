"""Conversation titles."""

from typing import Protocol

from parley.infrastructure.ai.client import AIResponse
from parley.infrastructure.ai.prompts import ChatTitlePromptV1
from parley.infrastructure.database.models.chat import DEFAULT_SESSION_TITLE
from parley.shared.exceptions import ParleyError
from parley.shared.logging import get_logger

logger = get_logger(__name__)


class CompletionClient(Protocol):
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_tokens: int = ...,
        temperature: float = ...,
        action: str = ...,
        resource_id: str | None = ...,
    ) -> AIResponse: ...


def fallback_title(user_text: str, max_length: int = 50) -> str:
    """Truncated user text, or the default title for an empty message."""
    return user_text.strip()[:max_length].rstrip() or DEFAULT_SESSION_TITLE


class TitleDeriver:
    """Summarizes the first user message of a conversation into a title.

    Never raises: any failure of the summarization call falls back to the
    truncated user text.
    """

    def __init__(self, client: CompletionClient | None, model: str, max_length: int = 50):
        self.client = client
        self.model = model
        self.prompt = ChatTitlePromptV1(max_length=max_length)

    async def derive(self, user_text: str, resource_id: str | None = None) -> str:
        fallback = fallback_title(user_text, self.prompt.max_length)
        if self.client is None or not user_text.strip():
            return fallback

        try:
            response = await self.client.complete(
                system_prompt=self.prompt.render_system(),
                user_prompt=self.prompt.render_user(user_text),
                model=self.model,
                max_tokens=30,
                action="chat_title",
                resource_id=resource_id,
            )
        except ParleyError as e:
            logger.warning("title_generation_failed", error=e.message, code=e.code)
            return fallback

        return self.prompt.parse_response(response.content) or fallback
