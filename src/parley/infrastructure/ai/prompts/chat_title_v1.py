"""Conversation title prompt v1."""

from parley.infrastructure.ai.prompts.chat_system_v1 import PromptVersion


class ChatTitlePromptV1:
    """Summarizes the first user message into a short title."""

    version = PromptVersion(
        version="1.0.0",
        name="chat_title",
        description="Concise chat title from the opening message",
    )

    def __init__(self, max_length: int = 50):
        self.max_length = max_length

    def render_system(self) -> str:
        return (
            f"Generate a concise title (max {self.max_length} chars) for this chat. "
            "No quotes or formatting."
        )

    def render_user(self, user_message: str) -> str:
        return user_message

    def parse_response(self, response: str) -> str:
        """Strip wrapping quotes/markdown and enforce the length cap."""
        title = response.strip().strip("\"'`*#").strip()
        return title[: self.max_length].rstrip()
