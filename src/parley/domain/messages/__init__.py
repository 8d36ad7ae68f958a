"""Message normalization.

Three representations meet here:
- persisted rows (``persisted``)
- client-submitted UI messages (``outbound``)
- provider wire formats (``wire``)

all converted through the canonical types in ``types``.
"""

from parley.domain.messages.outbound import OutboundTurn, build_outbound_turn
from parley.domain.messages.persisted import (
    merge_parts,
    parts_from_row,
    parts_to_rows,
    to_ui_message,
)
from parley.domain.messages.types import (
    CanonicalMessage,
    ClientAttachment,
    ClientMessage,
    FilePart,
    ImagePart,
    Part,
    ReasoningPart,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)

__all__ = [
    "CanonicalMessage",
    "ClientAttachment",
    "ClientMessage",
    "FilePart",
    "ImagePart",
    "OutboundTurn",
    "Part",
    "ReasoningPart",
    "TextPart",
    "ToolCallPart",
    "ToolResultPart",
    "build_outbound_turn",
    "merge_parts",
    "parts_from_row",
    "parts_to_rows",
    "to_ui_message",
]
