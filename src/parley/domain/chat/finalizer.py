"""Response finalization.

Runs once per turn after generation ends: decides between the text and the
image branch, persists the assistant message, derives a title for new
conversations and queues the turn's annotations.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Protocol
from uuid import UUID

from parley.domain.chat.annotations import AnnotationEmitter
from parley.domain.chat.titles import TitleDeriver
from parley.domain.chat.types import Usage
from parley.domain.messages.types import CanonicalMessage, FilePart, Part, ReasoningPart, TextPart
from parley.domain.models.catalog import ModelDescriptor, ReasoningLevel
from parley.domain.streams.lifecycle import StreamLifecycleManager
from parley.infrastructure.database.repositories.chat import ChatRepository
from parley.infrastructure.storage.s3 import StoredObject
from parley.shared.exceptions import ImageGenerationError, PersistenceError, StorageError
from parley.shared.logging import get_logger

logger = get_logger(__name__)

IMAGE_DIRECTIVE = re.compile(r"\[GENERATE_IMAGE:\s*(.+?)\]", re.DOTALL)
DEFAULT_IMAGE_CAPTION = "Here is the generated image:"
IMAGE_FAILURE_MESSAGE = "Sorry, I couldn't generate that image. Please try again."


class ImageGenerator(Protocol):
    async def generate_image(self, prompt: str) -> bytes: ...


class ImageStore(Protocol):
    async def upload_generated_image(
        self,
        user_id: str,
        message_id: str,
        content: bytes,
        mime_type: str = "image/png",
    ) -> StoredObject: ...


@dataclass(frozen=True)
class ImageDirective:
    prompt: str
    caption: str


def extract_image_directive(text: str) -> ImageDirective | None:
    """Find ``[GENERATE_IMAGE: <prompt>]`` and split it from the caption text."""
    match = IMAGE_DIRECTIVE.search(text)
    if match is None:
        return None
    prompt = match.group(1).strip()
    if not prompt:
        return None
    caption = IMAGE_DIRECTIVE.sub("", text).strip() or DEFAULT_IMAGE_CAPTION
    return ImageDirective(prompt=prompt, caption=caption)


@dataclass(frozen=True)
class TurnContext:
    """Everything about a turn the finalizer needs besides the output."""

    user_id: str
    session_id: UUID
    stream_id: str
    assistant_message_id: str
    descriptor: ModelDescriptor
    reasoning_level: ReasoningLevel | None
    search_enabled: bool
    is_new_session: bool
    user_text: str

    @property
    def model_config(self) -> dict[str, Any]:
        return {"reasoningLevel": self.reasoning_level, "searchEnabled": self.search_enabled}


@dataclass
class GenerationResult:
    text: str = ""
    reasoning: str = ""
    finish_reason: str = "stop"
    usage: Usage = field(default_factory=Usage)
    grounding: dict[str, Any] | None = None
    cost_cents: float | None = None
    # Tool calls and their results in execution order
    tool_parts: list[Part] = field(default_factory=list)

    def usage_metadata(self) -> dict[str, Any]:
        usage: dict[str, Any] = self.usage.as_dict()
        if self.cost_cents is not None:
            usage["costCents"] = round(self.cost_cents, 4)
        return usage


@dataclass(frozen=True)
class FinalizeOutcome:
    message_id: str | None
    discarded: bool = False


class ResponseFinalizer:
    def __init__(
        self,
        chats: ChatRepository,
        lifecycle: StreamLifecycleManager,
        titles: TitleDeriver,
        images: ImageGenerator | None = None,
        storage: ImageStore | None = None,
    ):
        self.chats = chats
        self.lifecycle = lifecycle
        self.titles = titles
        self.images = images
        self.storage = storage

    async def finalize(
        self,
        turn: TurnContext,
        result: GenerationResult,
        emitter: AnnotationEmitter,
    ) -> FinalizeOutcome:
        """Commit a finished turn.

        The commit point is the conditional move of the stream record to
        complete. A cancel that lands at any time before it, including while
        an image is being generated, wins and nothing is persisted. Once the
        record is complete a later cancel is a no-op.
        """
        if await self.lifecycle.is_cancelled(turn.session_id, turn.stream_id):
            logger.info("turn_discarded_after_cancel")
            return FinalizeOutcome(message_id=None, discarded=True)

        directive = (
            extract_image_directive(result.text)
            if turn.descriptor.has("image_generation")
            else None
        )
        if directive is not None:
            parts, metadata = await self._image_parts(turn, directive, emitter)
            metadata["originalText"] = result.text
        else:
            parts = self._text_parts(result)
            metadata = {}

        metadata["usage"] = result.usage_metadata()
        if result.grounding:
            metadata["grounding"] = result.grounding

        if not await self.lifecycle.complete(turn.stream_id, turn.assistant_message_id):
            logger.info("turn_discarded_after_cancel", stage="commit")
            return FinalizeOutcome(message_id=None, discarded=True)

        message_id = await self._persist(turn, parts, metadata)
        if message_id is not None:
            emitter.message_saved(message_id, str(turn.session_id))
        if result.grounding:
            emitter.grounding(result.grounding)

        if turn.is_new_session:
            title = await self.titles.derive(turn.user_text, resource_id=str(turn.session_id))
            try:
                await self.chats.update_title(turn.session_id, title)
            except PersistenceError as e:
                logger.error("session_title_update_failed", error=e.message)
            emitter.new_session(str(turn.session_id), title)

        return FinalizeOutcome(message_id=message_id)

    @staticmethod
    def _text_parts(result: GenerationResult) -> list[Part]:
        parts: list[Part] = []
        if result.reasoning:
            parts.append(ReasoningPart(text=result.reasoning))
        parts.extend(result.tool_parts)
        if result.text:
            parts.append(TextPart(text=result.text))
        return parts

    async def _image_parts(
        self,
        turn: TurnContext,
        directive: ImageDirective,
        emitter: AnnotationEmitter,
    ) -> tuple[list[Part], dict[str, Any]]:
        try:
            if self.images is None or self.storage is None:
                raise ImageGenerationError("Image generation is not configured")
            image = await self.images.generate_image(directive.prompt)
            stored = await self.storage.upload_generated_image(
                turn.user_id, turn.assistant_message_id, image
            )
        except (ImageGenerationError, StorageError) as e:
            logger.error("image_branch_failed", error=e.message, code=e.code)
            emitter.error(IMAGE_FAILURE_MESSAGE, e.code)
            return [TextPart(text=IMAGE_FAILURE_MESSAGE)], {"isError": True}

        emitter.image_generation_complete(stored.url, directive.prompt)
        image_part = FilePart(
            name=f"generated-{turn.assistant_message_id}.png",
            mime_type=stored.mime_type,
            url=stored.url,
            size_bytes=stored.size,
            path=stored.key,
        )
        return [TextPart(text=directive.caption), image_part], {"imagePrompt": directive.prompt}

    async def _persist(
        self,
        turn: TurnContext,
        parts: list[Part],
        metadata: dict[str, Any],
    ) -> str | None:
        message = CanonicalMessage(id=turn.assistant_message_id, role="assistant", parts=tuple(parts))
        try:
            record = await self.chats.save_message(
                message,
                session_id=turn.session_id,
                user_id=turn.user_id,
                model_used=turn.descriptor.id,
                model_provider=turn.descriptor.provider_name,
                model_config=turn.model_config,
                metadata=metadata,
            )
        except PersistenceError as e:
            # The streamed text stays with the client; only message_saved is lost
            logger.error("assistant_message_persist_failed", error=e.message)
            return None
        logger.info("assistant_message_saved", message_id=record.id, parts=len(parts))
        return record.id
