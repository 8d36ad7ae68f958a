"""Client history -> canonical provider turn.

Attachments for the whole turn are downloaded concurrently up front; parts are
then built synchronously in the original message order.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from parley.domain.messages.types import (
    CanonicalMessage,
    ClientAttachment,
    ClientMessage,
    FilePart,
    ImagePart,
    Part,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)
from parley.domain.models.catalog import ModelDescriptor
from parley.shared.logging import get_logger

logger = get_logger(__name__)

# Backends that reject image and document content on assistant turns
PROVIDERS_NEEDING_IMAGE_CONVERSION = frozenset({"OpenAI", "Anthropic"})
REINJECTED_IMAGE_PREFIX = "Generated image by AI assistant:"
REINJECTED_FILE_PREFIX = "Files shared by AI assistant:"

TEXT_APPLICATION_TYPES = frozenset(
    {"application/json", "application/xml", "application/javascript", "application/x-yaml", "application/yaml"}
)


class AttachmentSource(Protocol):
    async def fetch_many(self, urls: Sequence[str]) -> dict[str, bytes | None]: ...


@dataclass(frozen=True)
class OutboundTurn:
    """Provider-bound history plus the persisted form of the newest user message."""

    messages: tuple[CanonicalMessage, ...]
    user_message: CanonicalMessage | None

    @property
    def user_text(self) -> str:
        return self.user_message.text if self.user_message else ""


def find_last_user_index(messages: Sequence[ClientMessage]) -> int | None:
    """Index of the newest user message, scanning from the end."""
    for index in range(len(messages) - 1, -1, -1):
        if messages[index].role == "user":
            return index
    return None


def message_text(message: ClientMessage) -> str:
    """Trimmed text of a client message (content first, then text parts)."""
    if message.content and message.content.strip():
        return message.content.strip()
    texts = [str(p.get("text", "")) for p in message.parts if p.get("type") == "text"]
    return "".join(texts).strip()


def client_files(message: ClientMessage) -> list[ClientAttachment]:
    """Attachments plus file parts of a client message, deduplicated by URL."""
    files: dict[str, ClientAttachment] = {a.url: a for a in message.attachments}
    for part in message.parts:
        if part.get("type") != "file":
            continue
        attachment = _attachment_from_file_part(part)
        if attachment is not None and attachment.url not in files:
            files[attachment.url] = attachment
    return list(files.values())


def _attachment_from_file_part(part: dict[str, Any]) -> ClientAttachment | None:
    # Either the flat UI shape or the stored {"file": {...}} shape
    ref = part.get("file") if isinstance(part.get("file"), dict) else part
    url = ref.get("url")
    mime_type = ref.get("mimeType") or ref.get("contentType")
    if not url or not mime_type:
        return None
    return ClientAttachment(
        name=ref.get("name") or ref.get("filename") or "file",
        content_type=mime_type,
        url=url,
        path=ref.get("path"),
        size=ref.get("size"),
    )


def _wanted_for_user(attachment: ClientAttachment, descriptor: ModelDescriptor) -> bool:
    if attachment.content_type.startswith("image/"):
        return True
    return attachment.content_type == "application/pdf" and descriptor.has("pdf")


def _reinjects_files(descriptor: ModelDescriptor) -> bool:
    return descriptor.provider_name in PROVIDERS_NEEDING_IMAGE_CONVERSION


def _wanted_for_assistant(attachment: ClientAttachment, descriptor: ModelDescriptor) -> bool:
    content_type = attachment.content_type
    if content_type == "application/pdf":
        # Reinjected on a user turn, which needs document support
        return descriptor.has("pdf") or not _reinjects_files(descriptor)
    return content_type.startswith(("image/", "text/")) or content_type in TEXT_APPLICATION_TYPES


def _urls_to_fetch(messages: Sequence[ClientMessage], descriptor: ModelDescriptor) -> list[str]:
    urls: list[str] = []
    for message in messages:
        for attachment in client_files(message):
            if message.role == "user" and _wanted_for_user(attachment, descriptor):
                urls.append(attachment.url)
            elif message.role == "assistant" and _wanted_for_assistant(attachment, descriptor):
                urls.append(attachment.url)
    return urls


def _file_part(attachment: ClientAttachment, data: bytes | None = None) -> FilePart:
    return FilePart(
        name=attachment.name,
        mime_type=attachment.content_type,
        url=attachment.url,
        size_bytes=attachment.size,
        path=attachment.path,
        data=data,
    )


def _user_message(
    message: ClientMessage,
    descriptor: ModelDescriptor,
    bodies: dict[str, bytes | None],
) -> CanonicalMessage:
    parts: list[Part] = []
    text = message_text(message)
    if text:
        parts.append(TextPart(text=text))
    for attachment in client_files(message):
        if not _wanted_for_user(attachment, descriptor):
            continue
        data = bodies.get(attachment.url)
        if data is None:
            continue
        if attachment.content_type.startswith("image/"):
            parts.append(ImagePart(data=data, mime_type=attachment.content_type, url=attachment.url))
        else:
            parts.append(_file_part(attachment, data))
    return CanonicalMessage(id=message.id, role="user", parts=tuple(parts))


def _assistant_messages(
    message: ClientMessage,
    descriptor: ModelDescriptor,
    bodies: dict[str, bytes | None],
) -> list[CanonicalMessage]:
    reinject = _reinjects_files(descriptor)
    parts: list[Part] = []
    results: list[Part] = []
    reinjected: list[Part] = []

    for raw in message.parts:
        kind = raw.get("type")
        if kind == "text" and raw.get("text"):
            parts.append(TextPart(text=str(raw["text"])))
        elif kind == "tool-invocation":
            invocation = raw.get("toolInvocation") or {}
            call_id = invocation.get("toolCallId")
            tool_name = invocation.get("toolName")
            if not call_id or not tool_name:
                continue
            parts.append(
                ToolCallPart(call_id=call_id, tool_name=tool_name, args=invocation.get("args") or {})
            )
            if invocation.get("result") is not None:
                results.append(
                    ToolResultPart(call_id=call_id, tool_name=tool_name, result=invocation["result"])
                )

    if not parts and message.content:
        parts.append(TextPart(text=message.content))

    for attachment in client_files(message):
        if not _wanted_for_assistant(attachment, descriptor):
            continue
        data = bodies.get(attachment.url)
        if data is None:
            continue
        if attachment.content_type.startswith("image/") and reinject:
            reinjected.append(ImagePart(data=data, mime_type=attachment.content_type, url=attachment.url))
        elif attachment.content_type == "application/pdf" and reinject:
            reinjected.append(_file_part(attachment, data))
        else:
            parts.append(_file_part(attachment, data))

    out = [CanonicalMessage(id=message.id, role="assistant", parts=tuple(parts))]
    if results:
        out.append(CanonicalMessage(id=f"{message.id}:tool", role="tool", parts=tuple(results)))
    if reinjected:
        only_images = all(isinstance(part, ImagePart) for part in reinjected)
        prefix = REINJECTED_IMAGE_PREFIX if only_images else REINJECTED_FILE_PREFIX
        # After the tool results so call/result stay adjacent
        out.append(
            CanonicalMessage(
                id=f"{message.id}:images",
                role="user",
                parts=(TextPart(text=prefix), *reinjected),
            )
        )
    return out


def _drop_orphan_tool_results(messages: list[CanonicalMessage]) -> list[CanonicalMessage]:
    seen_calls: set[str] = set()
    cleaned: list[CanonicalMessage] = []
    for message in messages:
        kept: list[Part] = []
        for part in message.parts:
            if isinstance(part, ToolCallPart):
                seen_calls.add(part.call_id)
            elif isinstance(part, ToolResultPart) and part.call_id not in seen_calls:
                logger.warning("orphan_tool_result_dropped", call_id=part.call_id)
                continue
            kept.append(part)
        if kept:
            cleaned.append(CanonicalMessage(id=message.id, role=message.role, parts=tuple(kept)))
        else:
            logger.debug("empty_message_dropped", message_id=message.id, role=message.role)
    return cleaned


def persisted_user_message(message: ClientMessage) -> CanonicalMessage:
    """The stored form of a user message: text plus every attachment as a file part."""
    parts: list[Part] = []
    text = message_text(message)
    if text:
        parts.append(TextPart(text=text))
    parts.extend(_file_part(attachment) for attachment in client_files(message))
    return CanonicalMessage(id=message.id, role="user", parts=tuple(parts))


async def build_outbound_turn(
    messages: Sequence[ClientMessage],
    descriptor: ModelDescriptor,
    attachments: AttachmentSource,
) -> OutboundTurn:
    """Normalize client history into a canonical provider turn.

    Failed attachment downloads are logged by the fetcher and omitted here.
    """
    urls = _urls_to_fetch(messages, descriptor)
    bodies = await attachments.fetch_many(urls) if urls else {}

    built: list[CanonicalMessage] = []
    for message in messages:
        if message.role == "user":
            built.append(_user_message(message, descriptor, bodies))
        elif message.role == "assistant":
            built.extend(_assistant_messages(message, descriptor, bodies))
        elif message.role == "system":
            text = message_text(message)
            if text:
                built.append(CanonicalMessage(id=message.id, role="system", parts=(TextPart(text=text),)))
        else:
            logger.debug("client_tool_message_skipped", message_id=message.id)

    last_user = find_last_user_index(messages)
    return OutboundTurn(
        messages=tuple(_drop_orphan_tool_results(built)),
        user_message=persisted_user_message(messages[last_user]) if last_user is not None else None,
    )
