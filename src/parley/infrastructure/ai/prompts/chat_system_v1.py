"""Chat system prompt v1.

Clauses are rendered in a fixed order and inapplicable ones are dropped, so
the prompt only describes capabilities the selected model actually has.
The search and memory flags must reflect the tools a turn actually offers.
"""

from dataclasses import dataclass
from datetime import UTC, datetime

from parley.domain.models.catalog import ModelDescriptor


@dataclass
class PromptVersion:
    """Prompt version metadata."""

    version: str
    name: str
    description: str


IMAGE_DIRECTIVE_EXAMPLE = "[GENERATE_IMAGE: <detailed image description>]"


class ChatSystemPromptV1:
    """System prompt for general conversation."""

    version = PromptVersion(
        version="1.0.0",
        name="chat_system",
        description="Capability-aware assistant prompt",
    )

    def render_clauses(
        self,
        descriptor: ModelDescriptor,
        search_enabled: bool,
        memory_enabled: bool = True,
        user_traits: str | None = None,
        assistant_name: str | None = None,
        now: datetime | None = None,
    ) -> list[str]:
        current_time = (now or datetime.now(UTC)).astimezone(UTC).strftime("%A, %B %d, %Y at %I:%M %p UTC")
        native_search = descriptor.has("search")
        clauses: list[str | None] = [
            f"You are a helpful AI assistant. The current time is {current_time}. Respond naturally and clearly.",
            assistant_name
            and f"The assistant's name is {assistant_name}. Address yourself by name when appropriate.",
            user_traits and f'Here are the traits user wants you to follow: "{user_traits}"',
            # External tool only when the model cannot ground natively
            (search_enabled and not native_search)
            and (
                "You have access to a web search tool. Use it when you need current information, "
                "recent news, or facts not in your training data. Call the webSearch tool with relevant queries."
            ),
            (search_enabled and native_search)
            and (
                "You have native web search capabilities integrated into your responses. You can "
                "automatically search for and include current information when needed."
            ),
            memory_enabled
            and (
                "You have access to memory tools that allow you to save and retrieve important user "
                "information for personalized interactions. Use memorySave when users share personal "
                "preferences, information, or important details worth remembering. Use memoryRetrieve "
                "when you need context about the user to provide personalized responses."
            ),
            descriptor.has("image") and "You can analyze images.",
            descriptor.has("pdf") and "You can read PDFs.",
            descriptor.has("image_generation")
            and (
                "When the user asks for an image, reply with a short caption followed by "
                f"{IMAGE_DIRECTIVE_EXAMPLE} on its own line. Do not describe the directive."
            ),
            "When providing code examples, use markdown code blocks with appropriate language "
            "specifiers: ```python code ```",
        ]
        return [clause for clause in clauses if clause]

    def render_system(
        self,
        descriptor: ModelDescriptor,
        search_enabled: bool,
        memory_enabled: bool = True,
        user_traits: str | None = None,
        assistant_name: str | None = None,
        now: datetime | None = None,
    ) -> str:
        return " ".join(
            self.render_clauses(
                descriptor, search_enabled, memory_enabled, user_traits, assistant_name, now
            )
        )
