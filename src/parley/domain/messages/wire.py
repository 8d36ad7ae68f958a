"""Canonical messages -> provider wire formats."""

from __future__ import annotations

import base64
import json
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from google.genai import types as genai_types

from parley.domain.messages.types import (
    CanonicalMessage,
    FilePart,
    ImagePart,
    ReasoningPart,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)

if TYPE_CHECKING:
    from parley.domain.chat.tools import ToolDefinition


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _data_url(mime_type: str, data: bytes) -> str:
    return f"data:{mime_type};base64,{_b64(data)}"


def _result_text(result: Any) -> str:
    return result if isinstance(result, str) else json.dumps(result, default=str)


def _decode_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


# ----- Anthropic Messages API -----


def _anthropic_blocks(message: CanonicalMessage) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    # Assistant turns accept no image or document blocks
    assistant = message.role == "assistant"
    for part in message.parts:
        if isinstance(part, TextPart):
            blocks.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            blocks.append(
                {
                    "type": "image",
                    "source": {"type": "base64", "media_type": part.mime_type, "data": _b64(part.data)},
                }
            )
        elif isinstance(part, FilePart) and part.data is not None:
            if part.is_binary and assistant:
                continue
            if part.mime_type == "application/pdf":
                blocks.append(
                    {
                        "type": "document",
                        "source": {"type": "base64", "media_type": part.mime_type, "data": _b64(part.data)},
                    }
                )
            elif part.is_image:
                blocks.append(
                    {
                        "type": "image",
                        "source": {"type": "base64", "media_type": part.mime_type, "data": _b64(part.data)},
                    }
                )
            else:
                blocks.append({"type": "text", "text": f"[{part.name}]\n{_decode_text(part.data)}"})
        elif isinstance(part, ToolCallPart):
            blocks.append({"type": "tool_use", "id": part.call_id, "name": part.tool_name, "input": part.args})
        elif isinstance(part, ToolResultPart):
            blocks.append(
                {"type": "tool_result", "tool_use_id": part.call_id, "content": _result_text(part.result)}
            )
        elif isinstance(part, ReasoningPart) and part.signature and assistant:
            # Signed thinking must be replayed before tool_use blocks when thinking is on
            blocks.append({"type": "thinking", "thinking": part.text, "signature": part.signature})
    return blocks


def to_anthropic_messages(messages: Sequence[CanonicalMessage]) -> list[dict[str, Any]]:
    """Anthropic message params.

    System messages are dropped (the system prompt is passed separately), tool
    results ride on user turns, and adjacent same-role turns are merged since
    the API requires alternation.
    """
    converted: list[dict[str, Any]] = []
    for message in messages:
        if message.role == "system":
            continue
        role = "assistant" if message.role == "assistant" else "user"
        blocks = _anthropic_blocks(message)
        if not blocks:
            continue
        if converted and converted[-1]["role"] == role:
            previous = converted[-1]["content"]
            if isinstance(previous, str):
                previous = [{"type": "text", "text": previous}]
            converted[-1]["content"] = previous + blocks
            continue
        collapsed = message.collapsed()
        converted.append({"role": role, "content": collapsed if collapsed is not None else blocks})
    return converted


# ----- OpenAI Chat Completions (also xAI, Groq, DeepSeek, OpenRouter) -----


def _openai_user_content(message: CanonicalMessage) -> str | list[dict[str, Any]]:
    collapsed = message.collapsed()
    if collapsed is not None:
        return collapsed
    content: list[dict[str, Any]] = []
    for part in message.parts:
        if isinstance(part, TextPart):
            content.append({"type": "text", "text": part.text})
        elif isinstance(part, ImagePart):
            content.append({"type": "image_url", "image_url": {"url": _data_url(part.mime_type, part.data)}})
        elif isinstance(part, FilePart) and part.data is not None:
            if part.mime_type == "application/pdf":
                content.append(
                    {
                        "type": "file",
                        "file": {"filename": part.name, "file_data": _data_url(part.mime_type, part.data)},
                    }
                )
            elif part.is_image:
                content.append({"type": "image_url", "image_url": {"url": _data_url(part.mime_type, part.data)}})
            else:
                content.append({"type": "text", "text": f"[{part.name}]\n{_decode_text(part.data)}"})
    return content


def to_openai_messages(
    messages: Sequence[CanonicalMessage], system_prompt: str | None = None
) -> list[dict[str, Any]]:
    converted: list[dict[str, Any]] = []
    if system_prompt:
        converted.append({"role": "system", "content": system_prompt})

    for message in messages:
        if message.role == "system":
            converted.append({"role": "system", "content": message.text})
        elif message.role == "user":
            converted.append({"role": "user", "content": _openai_user_content(message)})
        elif message.role == "assistant":
            entry: dict[str, Any] = {"role": "assistant", "content": message.text or None}
            # Text-bearing files only; assistant turns cannot carry images or documents here
            for part in message.parts:
                if isinstance(part, FilePart) and part.data is not None and not part.is_binary:
                    entry["content"] = (entry["content"] or "") + f"\n[{part.name}]\n{_decode_text(part.data)}"
            tool_calls = [
                {
                    "id": part.call_id,
                    "type": "function",
                    "function": {"name": part.tool_name, "arguments": json.dumps(part.args)},
                }
                for part in message.parts
                if isinstance(part, ToolCallPart)
            ]
            if tool_calls:
                entry["tool_calls"] = tool_calls
            converted.append(entry)
        else:
            for part in message.parts:
                if isinstance(part, ToolResultPart):
                    converted.append(
                        {"role": "tool", "tool_call_id": part.call_id, "content": _result_text(part.result)}
                    )
    return converted


# ----- Google GenAI -----


def _google_parts(message: CanonicalMessage) -> list[genai_types.Part]:
    parts: list[genai_types.Part] = []
    for part in message.parts:
        if isinstance(part, TextPart):
            parts.append(genai_types.Part.from_text(text=part.text))
        elif isinstance(part, ImagePart):
            parts.append(genai_types.Part.from_bytes(data=part.data, mime_type=part.mime_type))
        elif isinstance(part, FilePart) and part.data is not None:
            parts.append(genai_types.Part.from_bytes(data=part.data, mime_type=part.mime_type))
        elif isinstance(part, ToolCallPart):
            parts.append(genai_types.Part.from_function_call(name=part.tool_name, args=part.args))
        elif isinstance(part, ToolResultPart):
            parts.append(
                genai_types.Part.from_function_response(
                    name=part.tool_name, response={"result": part.result}
                )
            )
    return parts


def to_google_contents(messages: Sequence[CanonicalMessage]) -> list[genai_types.Content]:
    """Google contents; system text goes to ``system_instruction`` instead."""
    contents: list[genai_types.Content] = []
    for message in messages:
        if message.role == "system":
            continue
        parts = _google_parts(message)
        if not parts:
            continue
        role = "model" if message.role == "assistant" else "user"
        contents.append(genai_types.Content(role=role, parts=parts))
    return contents


# ----- Tool declarations -----


def to_anthropic_tools(definitions: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
    return [
        {"name": d.name, "description": d.description, "input_schema": d.parameters} for d in definitions
    ]


def to_openai_tools(definitions: Sequence[ToolDefinition]) -> list[dict[str, Any]]:
    return [
        {
            "type": "function",
            "function": {"name": d.name, "description": d.description, "parameters": d.parameters},
        }
        for d in definitions
    ]


def to_google_tools(definitions: Sequence[ToolDefinition]) -> list[genai_types.Tool]:
    return [
        genai_types.Tool(
            function_declarations=[
                genai_types.FunctionDeclaration(
                    name=d.name, description=d.description, parameters_json_schema=d.parameters
                )
                for d in definitions
            ]
        )
    ]
