"""Request and response schemas for the chat API."""

from typing import Any, Literal
from uuid import UUID, uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from parley.domain.messages.types import ClientAttachment, ClientMessage
from parley.domain.models.catalog import ReasoningLevel


class APIRequestModel(BaseModel):
    """Base model for request bodies.

    Forbids unknown fields to avoid silently accepting typos or outdated clients.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class ClientPayloadModel(BaseModel):
    """Base model for payloads produced by chat UI SDKs.

    Those carry SDK bookkeeping fields (``createdAt``, ``revisionId``, ...) we
    do not interpret, so unknown fields are ignored rather than rejected.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class AttachmentInput(ClientPayloadModel):
    name: str | None = None
    content_type: str = Field(alias="contentType")
    url: str
    path: str | None = None
    size: int | None = None

    def to_domain(self) -> ClientAttachment:
        return ClientAttachment(
            name=self.name or self.url.rsplit("/", 1)[-1] or "file",
            content_type=self.content_type,
            url=self.url,
            path=self.path,
            size=self.size,
        )


class MessageInput(ClientPayloadModel):
    """A single message in the conversation, in UI message shape."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    role: Literal["user", "assistant", "system", "tool"]
    content: str | None = ""
    parts: list[dict[str, Any]] = Field(default_factory=list)
    attachments: list[AttachmentInput] = Field(
        default_factory=list,
        validation_alias=AliasChoices("experimental_attachments", "attachments"),
    )

    def to_domain(self) -> ClientMessage:
        return ClientMessage(
            id=self.id,
            role=self.role,
            content=self.content or "",
            parts=tuple(self.parts),
            attachments=tuple(a.to_domain() for a in self.attachments),
        )


class ChatRequest(ClientPayloadModel):
    """Body of ``POST /api/chat``."""

    messages: list[MessageInput] = Field(..., min_length=1)
    model: str | None = Field(None, description="Catalog model id; server default when omitted")
    reasoning_level: ReasoningLevel | None = Field(None, alias="reasoningLevel")
    search_enabled: bool = Field(False, alias="searchEnabled")
    memory_enabled: bool = Field(True, alias="memoryEnabled")
    session_id: UUID | None = Field(None, validation_alias=AliasChoices("sessionId", "id", "session_id"))
    api_key: str | None = Field(None, alias="apiKey", repr=False)
    user_traits: str | None = Field(None, alias="userTraits", max_length=2000)
    assistant_name: str | None = Field(None, alias="assistantName", max_length=100)


class CancelRequest(APIRequestModel):
    """Body of ``POST /api/chat/cancel``."""

    chat_id: UUID = Field(alias="chatId")
    stream_id: str = Field(alias="streamId", min_length=1)


class CancelResponse(BaseModel):
    success: bool = True


class ChatHistoryResponse(BaseModel):
    """Body of ``GET /api/chat/messages``."""

    model_config = ConfigDict(populate_by_name=True)

    chat_id: UUID = Field(alias="chatId")
    messages: list[dict[str, Any]]
