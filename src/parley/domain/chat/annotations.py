"""Annotation side channel.

Annotations are typed events appended to the response stream after the text.
Within a turn they are emitted in a fixed order, and ``error`` replaces all
others. Consumers keep only the last value per type.
"""

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Literal

from parley.domain.chat.protocol import annotation_frame
from parley.observability.metrics import CHAT_ANNOTATIONS_EMITTED
from parley.shared.logging import get_logger

logger = get_logger(__name__)

AnnotationType = Literal[
    "message_saved",
    "grounding",
    "image_generation_complete",
    "new_session",
    "error",
    "message_complete",
]

TURN_ORDER: tuple[AnnotationType, ...] = (
    "image_generation_complete",
    "message_saved",
    "grounding",
    "new_session",
)

FrameSink = Callable[[str], Awaitable[None]]


@dataclass(frozen=True)
class Annotation:
    type: AnnotationType
    data: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"type": self.type, "data": self.data}


class AnnotationEmitter:
    """Collects a turn's annotations and writes them in order on flush."""

    def __init__(self, sink: FrameSink):
        self._sink = sink
        self._pending: dict[AnnotationType, Annotation] = {}
        self._error: Annotation | None = None
        self.emitted: list[Annotation] = []

    def message_saved(self, database_id: str, session_id: str, **extra: Any) -> None:
        self._pending["message_saved"] = Annotation(
            "message_saved", {"databaseId": database_id, "sessionId": session_id, **extra}
        )

    def grounding(self, evidence: dict[str, Any]) -> None:
        self._pending["grounding"] = Annotation("grounding", evidence)

    def new_session(self, session_id: str, title: str | None = None) -> None:
        data: dict[str, Any] = {"sessionId": session_id}
        if title:
            data["title"] = title
        self._pending["new_session"] = Annotation("new_session", data)

    def image_generation_complete(self, url: str, prompt: str) -> None:
        self._pending["image_generation_complete"] = Annotation(
            "image_generation_complete", {"url": url, "prompt": prompt}
        )

    def error(self, message: str, code: str | None = None) -> None:
        data: dict[str, Any] = {"message": message}
        if code:
            data["code"] = code
        self._error = Annotation("error", data)

    def ordered(self) -> list[Annotation]:
        if self._error is not None:
            return [self._error]
        return [self._pending[kind] for kind in TURN_ORDER if kind in self._pending]

    async def flush(self) -> list[Annotation]:
        """Write pending annotations to the stream, one frame each."""
        annotations = self.ordered()
        for annotation in annotations:
            await self._sink(annotation_frame([annotation.as_dict()]))
            CHAT_ANNOTATIONS_EMITTED.labels(type=annotation.type).inc()
        self.emitted.extend(annotations)
        self._pending.clear()
        self._error = None
        logger.debug("annotations_flushed", types=[a.type for a in annotations])
        return annotations


def latest_by_type(annotations: Iterable[dict[str, Any]]) -> dict[str, Any]:
    """Reduce a stream of annotations to ``type -> last data``."""
    latest: dict[str, Any] = {}
    for annotation in annotations:
        kind = annotation.get("type")
        if kind:
            latest[kind] = annotation.get("data")
    return latest
