"""Unit tests for stream framing and the annotation side channel."""

import pytest

from parley.domain.chat.annotations import AnnotationEmitter, latest_by_type
from parley.domain.chat.protocol import (
    data_frame,
    error_frame,
    finish_frame,
    parse_frame,
    parse_frames,
    reasoning_frame,
    text_frame,
)


class FrameCollector:
    def __init__(self):
        self.frames: list[str] = []

    async def __call__(self, frame: str) -> None:
        self.frames.append(frame)


class TestFrames:
    def test_frame_shapes(self):
        assert text_frame('say "hi"\n') == '0:"say \\"hi\\"\\n"\n'
        assert reasoning_frame("hmm") == 'g:"hmm"\n'
        assert data_frame([{"streamId": "s1"}]) == '2:[{"streamId":"s1"}]\n'
        assert error_frame("boom") == '3:"boom"\n'
        assert finish_frame("stop", 3, 4) == (
            'd:{"finishReason":"stop","usage":{"promptTokens":3,"completionTokens":4}}\n'
        )

    def test_parse_round_trip(self):
        body = text_frame("a") + reasoning_frame("b") + finish_frame("stop")

        assert parse_frames(body) == [
            ("0", "a"),
            ("g", "b"),
            ("d", {"finishReason": "stop", "usage": {"promptTokens": 0, "completionTokens": 0}}),
        ]

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_frame("no separator")


class TestAnnotationEmitter:
    async def test_flush_writes_in_turn_order(self):
        sink = FrameCollector()
        emitter = AnnotationEmitter(sink)

        emitter.new_session("chat-1", title="Trip")
        emitter.grounding({"webSearchQueries": ["q"]})
        emitter.message_saved("msg-1", "chat-1")
        emitter.image_generation_complete("https://cdn/x.png", "a cat")

        flushed = await emitter.flush()

        assert [a.type for a in flushed] == [
            "image_generation_complete",
            "message_saved",
            "grounding",
            "new_session",
        ]
        assert [parse_frame(f)[0] for f in sink.frames] == ["8"] * 4
        assert parse_frame(sink.frames[1])[1] == [
            {"type": "message_saved", "data": {"databaseId": "msg-1", "sessionId": "chat-1"}}
        ]

    async def test_error_replaces_every_other_annotation(self):
        sink = FrameCollector()
        emitter = AnnotationEmitter(sink)
        emitter.message_saved("msg-1", "chat-1")
        emitter.new_session("chat-1")
        emitter.error("Provider exploded", code="PROVIDER_ERROR")

        flushed = await emitter.flush()

        assert emitter.emitted == flushed
        assert [a.as_dict() for a in flushed] == [
            {"type": "error", "data": {"message": "Provider exploded", "code": "PROVIDER_ERROR"}}
        ]
        assert len(sink.frames) == 1

    async def test_repeated_annotation_keeps_latest(self):
        emitter = AnnotationEmitter(FrameCollector())
        emitter.new_session("chat-1")
        emitter.new_session("chat-1", title="Better title")

        flushed = await emitter.flush()

        assert [a.data for a in flushed] == [{"sessionId": "chat-1", "title": "Better title"}]

    async def test_flush_clears_pending(self):
        emitter = AnnotationEmitter(FrameCollector())
        emitter.message_saved("msg-1", "chat-1")
        await emitter.flush()

        assert await emitter.flush() == []


def test_latest_by_type_keeps_last_value():
    reduced = latest_by_type(
        [
            {"type": "new_session", "data": {"sessionId": "c"}},
            {"type": "message_saved", "data": {"databaseId": "1"}},
            {"type": "new_session", "data": {"sessionId": "c", "title": "T"}},
            {"data": {"ignored": True}},
        ]
    )

    assert reduced == {"new_session": {"sessionId": "c", "title": "T"}, "message_saved": {"databaseId": "1"}}
