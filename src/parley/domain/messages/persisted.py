"""Conversion between persisted message rows and canonical messages.

Stored ``parts`` JSON is validated against the part union on the way in, and
merged with stable dedup keys on the way out so repeated saves of the same
message never duplicate parts.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Annotated, Any, Literal, Protocol

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from parley.domain.messages.types import (
    ATTACHMENT_PLACEHOLDER,
    CanonicalMessage,
    FilePart,
    ImagePart,
    Part,
    ReasoningPart,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)
from parley.shared.exceptions import PersistenceError


class MessageRow(Protocol):
    """What the normalizer needs from a stored message row."""

    id: str
    role: str
    parts: list[dict[str, Any]]
    model_used: str | None
    model_provider: str | None
    message_metadata: dict[str, Any]
    created_at: datetime


class _RowModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class _TextRow(_RowModel):
    type: Literal["text"]
    text: str


class _FileRef(_RowModel):
    name: str = "file"
    mime_type: str
    url: str
    path: str | None = None
    size: int | None = None


class _FileRow(_RowModel):
    type: Literal["file"]
    file: _FileRef


class _ToolCallRow(_RowModel):
    type: Literal["tool-call"]
    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)


class _ToolResultRow(_RowModel):
    type: Literal["tool-result"]
    tool_call_id: str
    tool_name: str
    result: Any = None


class _ReasoningRow(_RowModel):
    type: Literal["reasoning"]
    text: str
    signature: str | None = None


_PartRow = Annotated[
    _TextRow | _FileRow | _ToolCallRow | _ToolResultRow | _ReasoningRow,
    Field(discriminator="type"),
]
_PARTS_ADAPTER: TypeAdapter[list[_PartRow]] = TypeAdapter(list[_PartRow])


def parts_from_row(raw_parts: Sequence[dict[str, Any]]) -> tuple[Part, ...]:
    """Validate stored part JSON and rebuild canonical parts."""
    try:
        rows = _PARTS_ADAPTER.validate_python(list(raw_parts))
    except PydanticValidationError as e:
        raise PersistenceError(
            "Stored message parts are invalid",
            details={"errors": e.errors(include_url=False)},
        ) from e

    parts: list[Part] = []
    for row in rows:
        if isinstance(row, _TextRow):
            parts.append(TextPart(text=row.text))
        elif isinstance(row, _FileRow):
            parts.append(
                FilePart(
                    name=row.file.name,
                    mime_type=row.file.mime_type,
                    url=row.file.url,
                    size_bytes=row.file.size,
                    path=row.file.path,
                )
            )
        elif isinstance(row, _ToolCallRow):
            parts.append(
                ToolCallPart(call_id=row.tool_call_id, tool_name=row.tool_name, args=row.args)
            )
        elif isinstance(row, _ToolResultRow):
            parts.append(
                ToolResultPart(call_id=row.tool_call_id, tool_name=row.tool_name, result=row.result)
            )
        else:
            parts.append(ReasoningPart(text=row.text, signature=row.signature))
    return tuple(parts)


def part_to_row(part: Part) -> dict[str, Any]:
    """Serialize one canonical part to its stored JSON shape."""
    row: _RowModel
    if isinstance(part, TextPart):
        row = _TextRow(type="text", text=part.text)
    elif isinstance(part, FilePart):
        row = _FileRow(
            type="file",
            file=_FileRef(
                name=part.name,
                mime_type=part.mime_type,
                url=part.url,
                path=part.path,
                size=part.size_bytes,
            ),
        )
    elif isinstance(part, ToolCallPart):
        row = _ToolCallRow(
            type="tool-call", tool_call_id=part.call_id, tool_name=part.tool_name, args=part.args
        )
    elif isinstance(part, ToolResultPart):
        row = _ToolResultRow(
            type="tool-result",
            tool_call_id=part.call_id,
            tool_name=part.tool_name,
            result=part.result,
        )
    elif isinstance(part, ReasoningPart):
        row = _ReasoningRow(type="reasoning", text=part.text, signature=part.signature)
    else:
        raise TypeError(f"{type(part).__name__} cannot be persisted")
    return row.model_dump(mode="json", by_alias=True, exclude_none=True)


def parts_to_rows(parts: Iterable[Part]) -> list[dict[str, Any]]:
    return [part_to_row(part) for part in parts]


def part_key(part: Part) -> tuple[str, str]:
    """Stable identity used to deduplicate parts of the same message."""
    if isinstance(part, TextPart):
        return ("text", part.text)
    if isinstance(part, FilePart | ImagePart):
        return ("file", part.url)
    if isinstance(part, ToolCallPart):
        return ("tool-call", part.call_id)
    if isinstance(part, ToolResultPart):
        return ("tool-result", part.call_id)
    return ("reasoning", part.text)


def merge_parts(existing: Sequence[Part], incoming: Sequence[Part]) -> tuple[Part, ...]:
    """Append incoming parts that are not already present.

    Existing order is preserved; duplicates inside ``incoming`` collapse too.
    """
    seen = {part_key(part) for part in existing}
    merged = list(existing)
    for part in incoming:
        key = part_key(part)
        if key in seen:
            continue
        seen.add(key)
        merged.append(part)
    return tuple(merged)


def message_from_row(row: MessageRow) -> CanonicalMessage:
    if row.role not in ("user", "assistant", "system", "tool"):
        raise PersistenceError(f"Unknown message role: {row.role}", details={"id": row.id})
    return CanonicalMessage(id=row.id, role=row.role, parts=parts_from_row(row.parts or []))  # type: ignore[arg-type]


def to_ui_message(row: MessageRow) -> dict[str, Any]:
    """UI representation of a stored row.

    Attachment-only messages get a placeholder ``content``; assistant rows carry
    a ``message_complete`` annotation describing the model that produced them.
    """
    message = message_from_row(row)
    files = [part for part in message.parts if isinstance(part, FilePart)]
    text = next((part.text for part in message.parts if isinstance(part, TextPart)), "")

    ui: dict[str, Any] = {
        "id": message.id,
        "role": message.role,
        "content": text or (ATTACHMENT_PLACEHOLDER if files else ""),
        "parts": parts_to_rows(message.parts),
        "createdAt": row.created_at.isoformat(),
    }
    if files:
        ui["experimental_attachments"] = [
            {"name": f.name, "contentType": f.mime_type, "url": f.url} for f in files
        ]
    if message.role == "assistant":
        completion: dict[str, Any] = {
            "modelUsed": row.model_used,
            "modelProvider": row.model_provider,
        }
        grounding = (row.message_metadata or {}).get("grounding")
        if grounding:
            completion["grounding"] = grounding
            completion["hasGrounding"] = True
        ui["annotations"] = [{"type": "message_complete", "data": completion}]
    return ui
