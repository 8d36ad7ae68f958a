"""Unit tests for provider wire-format conversion."""

import base64

from parley.domain.messages.types import (
    CanonicalMessage,
    FilePart,
    ImagePart,
    TextPart,
    ToolCallPart,
    ToolResultPart,
)
from parley.domain.messages.wire import to_anthropic_messages, to_google_contents, to_openai_messages

PNG = b"\x89PNG"
PDF = FilePart(name="lease.pdf", mime_type="application/pdf", url="https://f/lease.pdf", data=b"%PDF")


def _history() -> list[CanonicalMessage]:
    return [
        CanonicalMessage(id="s", role="system", parts=(TextPart("be brief"),)),
        CanonicalMessage(id="u1", role="user", parts=(TextPart("weather?"),)),
        CanonicalMessage(
            id="a1",
            role="assistant",
            parts=(ToolCallPart(call_id="c1", tool_name="webSearch", args={"q": "rain"}),),
        ),
        CanonicalMessage(
            id="a1:tool",
            role="tool",
            parts=(ToolResultPart(call_id="c1", tool_name="webSearch", result={"rain": True}),),
        ),
        CanonicalMessage(id="u2", role="user", parts=(TextPart("thanks"),)),
    ]


class TestAnthropic:
    def test_single_text_part_collapses_to_string(self):
        converted = to_anthropic_messages([CanonicalMessage(id="u", role="user", parts=(TextPart("hi"),))])

        assert converted == [{"role": "user", "content": "hi"}]

    def test_tool_result_merges_into_following_user_turn(self):
        converted = to_anthropic_messages(_history())

        assert [m["role"] for m in converted] == ["user", "assistant", "user"]
        assert converted[1]["content"] == [
            {"type": "tool_use", "id": "c1", "name": "webSearch", "input": {"q": "rain"}}
        ]
        assert converted[2]["content"] == [
            {"type": "tool_result", "tool_use_id": "c1", "content": '{"rain": true}'},
            {"type": "text", "text": "thanks"},
        ]

    def test_images_and_pdfs_are_base64_blocks(self):
        message = CanonicalMessage(
            id="u",
            role="user",
            parts=(TextPart("see"), ImagePart(data=PNG, mime_type="image/png", url="u"), PDF),
        )

        blocks = to_anthropic_messages([message])[0]["content"]

        assert blocks[1]["source"] == {
            "type": "base64",
            "media_type": "image/png",
            "data": base64.b64encode(PNG).decode(),
        }
        assert blocks[2]["type"] == "document"

    def test_assistant_turns_carry_no_binary_blocks(self):
        chart = FilePart(name="chart.png", mime_type="image/png", url="https://f/c.png", data=PNG)
        message = CanonicalMessage(id="a", role="assistant", parts=(TextPart("Attached."), PDF, chart))

        converted = to_anthropic_messages([message])

        assert converted == [{"role": "assistant", "content": [{"type": "text", "text": "Attached."}]}]


class TestOpenAI:
    def test_system_prompt_leads_and_tool_results_are_tool_messages(self):
        converted = to_openai_messages(_history(), system_prompt="You are Parley.")

        assert [m["role"] for m in converted] == ["system", "system", "user", "assistant", "tool", "user"]
        assert converted[0]["content"] == "You are Parley."
        assistant = converted[3]
        assert assistant["content"] is None
        assert assistant["tool_calls"][0]["function"] == {"name": "webSearch", "arguments": '{"q": "rain"}'}
        assert converted[4] == {"role": "tool", "tool_call_id": "c1", "content": '{"rain": true}'}

    def test_user_images_become_data_urls(self):
        message = CanonicalMessage(
            id="u",
            role="user",
            parts=(TextPart("see"), ImagePart(data=PNG, mime_type="image/png", url="u"), PDF),
        )

        content = to_openai_messages([message])[0]["content"]

        assert content[1] == {
            "type": "image_url",
            "image_url": {"url": "data:image/png;base64," + base64.b64encode(PNG).decode()},
        }
        assert content[2]["file"]["filename"] == "lease.pdf"

    def test_assistant_text_files_are_inlined(self):
        notes = FilePart(name="notes.txt", mime_type="text/plain", url="https://f/n.txt", data=b"remember")
        message = CanonicalMessage(id="a", role="assistant", parts=(TextPart("Done."), notes))

        converted = to_openai_messages([message])

        assert converted[0]["content"] == "Done.\n[notes.txt]\nremember"

    def test_assistant_pdf_is_not_inlined_as_text(self):
        message = CanonicalMessage(id="a", role="assistant", parts=(TextPart("Attached."), PDF))

        converted = to_openai_messages([message])

        assert converted[0]["content"] == "Attached."


class TestGoogle:
    def test_roles_map_to_user_and_model_without_system(self):
        contents = to_google_contents(_history())

        assert [c.role for c in contents] == ["user", "model", "user", "user"]
        assert contents[1].parts[0].function_call.name == "webSearch"
        assert contents[2].parts[0].function_response.response == {"result": {"rain": True}}

    def test_inline_bytes_for_images(self):
        message = CanonicalMessage(
            id="u", role="user", parts=(ImagePart(data=PNG, mime_type="image/png", url="u"),)
        )

        contents = to_google_contents([message])

        assert contents[0].parts[0].inline_data.data == PNG
        assert contents[0].parts[0].inline_data.mime_type == "image/png"
