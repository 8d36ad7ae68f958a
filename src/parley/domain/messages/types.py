"""Canonical conversation types.

Provider-agnostic and immutable: messages and parts are passed by value
between the normalizer, the provider handlers and the finalizer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["user", "assistant", "system", "tool"]

ATTACHMENT_PLACEHOLDER = "[Attachment]"


@dataclass(frozen=True)
class TextPart:
    text: str
    type: Literal["text"] = "text"


@dataclass(frozen=True)
class FilePart:
    """A file reference. ``data`` is only populated on provider-bound turns."""

    name: str
    mime_type: str
    url: str
    size_bytes: int | None = None
    path: str | None = None
    data: bytes | None = field(default=None, repr=False, compare=False)
    type: Literal["file"] = "file"

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_binary(self) -> bool:
        """Images and PDFs; everything else is sent to models as text."""
        return self.is_image or self.mime_type == "application/pdf"


@dataclass(frozen=True)
class ImagePart:
    """Inline image for a user turn. Never persisted."""

    data: bytes = field(repr=False)
    mime_type: str
    url: str
    type: Literal["image"] = "image"


@dataclass(frozen=True)
class ToolCallPart:
    call_id: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)
    type: Literal["tool-call"] = "tool-call"


@dataclass(frozen=True)
class ToolResultPart:
    call_id: str
    tool_name: str
    result: Any = None
    type: Literal["tool-result"] = "tool-result"


@dataclass(frozen=True)
class ReasoningPart:
    text: str
    signature: str | None = None
    type: Literal["reasoning"] = "reasoning"


Part = TextPart | FilePart | ImagePart | ToolCallPart | ToolResultPart | ReasoningPart


@dataclass(frozen=True)
class CanonicalMessage:
    """A single conversation message in the internal representation."""

    id: str
    role: Role
    parts: tuple[Part, ...] = ()

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    def collapsed(self) -> str | None:
        """The bare string content when the message holds exactly one text part."""
        if len(self.parts) == 1 and isinstance(self.parts[0], TextPart):
            return self.parts[0].text
        return None


@dataclass(frozen=True)
class ClientAttachment:
    """An attachment as declared by the client (not yet fetched)."""

    name: str
    content_type: str
    url: str
    path: str | None = None
    size: int | None = None


@dataclass(frozen=True)
class ClientMessage:
    """A message as submitted by the client, in its UI representation.

    ``parts`` are raw UI part dicts (``text``, ``file``, ``tool-invocation``,
    ``reasoning``); the normalizer interprets them.
    """

    id: str
    role: Role
    content: str = ""
    parts: tuple[dict[str, Any], ...] = ()
    attachments: tuple[ClientAttachment, ...] = ()
