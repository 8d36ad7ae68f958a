"""Versioned AI prompts.

Prompts are versioned as code so the version used for a generation can be
audited and rolled back.
"""

from parley.infrastructure.ai.prompts.chat_system_v1 import ChatSystemPromptV1, PromptVersion
from parley.infrastructure.ai.prompts.chat_title_v1 import ChatTitlePromptV1

__all__ = ["ChatSystemPromptV1", "ChatTitlePromptV1", "PromptVersion"]
