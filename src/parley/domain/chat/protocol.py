"""Data stream framing.

One frame per line, ``<code>:<json>\\n``, compatible with AI SDK data stream
protocol v1 clients.
"""

import json
from typing import Any

DATA_STREAM_HEADERS = {"x-vercel-ai-data-stream": "v1"}
MEDIA_TYPE = "text/plain; charset=utf-8"

TEXT = "0"
DATA = "2"
ERROR = "3"
ANNOTATION = "8"
TOOL_CALL = "9"
TOOL_RESULT = "a"
FINISH = "d"
REASONING = "g"


def _frame(code: str, payload: Any) -> str:
    return f"{code}:{json.dumps(payload, separators=(',', ':'), default=str)}\n"


def text_frame(text: str) -> str:
    return _frame(TEXT, text)


def reasoning_frame(text: str) -> str:
    return _frame(REASONING, text)


def data_frame(items: list[Any]) -> str:
    return _frame(DATA, items)


def tool_call_frame(call_id: str, tool_name: str, args: dict[str, Any]) -> str:
    return _frame(TOOL_CALL, {"toolCallId": call_id, "toolName": tool_name, "args": args})


def tool_result_frame(call_id: str, result: Any) -> str:
    return _frame(TOOL_RESULT, {"toolCallId": call_id, "result": result})


def error_frame(message: str) -> str:
    return _frame(ERROR, message)


def annotation_frame(annotations: list[dict[str, Any]]) -> str:
    return _frame(ANNOTATION, annotations)


def finish_frame(finish_reason: str, input_tokens: int = 0, output_tokens: int = 0) -> str:
    return _frame(
        FINISH,
        {
            "finishReason": finish_reason,
            "usage": {"promptTokens": input_tokens, "completionTokens": output_tokens},
        },
    )


def parse_frame(line: str) -> tuple[str, Any]:
    """Split one frame into (code, payload)."""
    code, sep, payload = line.rstrip("\n").partition(":")
    if not sep:
        raise ValueError(f"Not a data stream frame: {line!r}")
    return code, json.loads(payload)


def parse_frames(body: str) -> list[tuple[str, Any]]:
    return [parse_frame(line) for line in body.splitlines() if line]
