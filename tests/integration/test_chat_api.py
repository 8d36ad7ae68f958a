"""End-to-end tests for the chat endpoints through the ASGI app."""

from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from parley.api.ratelimit import limiter
from parley.domain.chat.protocol import parse_frames
from parley.infrastructure.auth.dev import DEV_USER_ID, DevAuthProvider
from parley.main import create_app
from parley.runtime import build_runtime
from tests.fakes import FakeAttachments, FakeRedis, FakeStorage, FakeUtilityClient

pytestmark = pytest.mark.integration

AUTH = {"Authorization": "Bearer test"}


@pytest.fixture
async def runtime(test_settings, async_engine, provider_router):
    runtime = build_runtime(
        test_settings,
        engine=async_engine,
        redis=FakeRedis(),
        router=provider_router,
        storage=FakeStorage(),
        utility_client=FakeUtilityClient(),
        attachments=FakeAttachments(),
    )
    yield runtime
    await runtime.service.shutdown()


@pytest.fixture
def app(runtime):
    limiter.reset()
    app = create_app()
    app.state.runtime = runtime
    app.state.auth_provider = DevAuthProvider()
    return app


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


def _body(text: str = "Plan a weekend in Lisbon", **overrides) -> dict:
    body = {
        "messages": [{"id": "m1", "role": "user", "content": text, "parts": [{"type": "text", "text": text}]}],
        "model": "gemini-2.5-flash",
    }
    body.update(overrides)
    return body


async def test_chat_streams_a_complete_turn(client):
    response = await client.post("/api/chat", json=_body(), headers=AUTH)

    assert response.status_code == 200
    assert response.headers["x-vercel-ai-data-stream"] == "v1"
    stream_id = response.headers["x-stream-id"]
    session_id = response.headers["x-session-id"]

    frames = parse_frames(response.text)
    assert frames[0] == ("2", [{"streamId": stream_id, "sessionId": session_id}])
    assert "".join(payload for code, payload in frames if code == "0") == "Hello there"
    annotations = [payload[0] for code, payload in frames if code == "8"]
    assert [a["type"] for a in annotations] == ["message_saved", "new_session"]
    assert len(annotations[1]["data"]["title"]) <= 50
    assert frames[-1][0] == "d"


async def test_follow_up_in_the_same_session(client):
    first = await client.post("/api/chat", json=_body(), headers=AUTH)
    session_id = first.headers["x-session-id"]

    second = await client.post(
        "/api/chat",
        json=_body("And where should we eat?", sessionId=session_id),
        headers=AUTH,
    )

    assert second.headers["x-session-id"] == session_id
    types = [payload[0]["type"] for code, payload in parse_frames(second.text) if code == "8"]
    assert types == ["message_saved"]


async def test_unsupported_model_is_rejected_before_streaming(client, strategies):
    strategies["anthropic"].available = False

    response = await client.post("/api/chat", json=_body(model="claude-4-sonnet"), headers=AUTH)

    assert response.status_code == 400
    assert response.json()["code"] == "UNSUPPORTED_MODEL"


async def test_missing_token_is_unauthorized(client):
    response = await client.post("/api/chat", json=_body())

    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_ERROR"
    assert response.headers["www-authenticate"] == "Bearer"


async def test_empty_message_list_is_a_bad_request(client):
    response = await client.post("/api/chat", json=_body(messages=[]), headers=AUTH)

    assert response.status_code == 400
    assert response.json()["code"] == "BAD_REQUEST"


async def test_resume_chat_without_streams_has_no_content(client, runtime):
    session = await runtime.chats.create_session(DEV_USER_ID)

    response = await client.get("/api/chat", params={"chatId": str(session.id)}, headers=AUTH)

    assert response.status_code == 204


async def test_resume_unknown_chat_is_not_found(client):
    response = await client.get("/api/chat", params={"chatId": str(uuid4())}, headers=AUTH)

    assert response.status_code == 404


async def test_resume_after_completion_returns_saved_message(client):
    started = await client.post("/api/chat", json=_body(), headers=AUTH)

    response = await client.get("/api/chat", params={"chatId": started.headers["x-session-id"]}, headers=AUTH)

    assert response.status_code == 200
    frames = parse_frames(response.text)
    assert len(frames) == 1
    code, payload = frames[0]
    assert code == "8"
    assert payload[0]["type"] == "message_saved"
    assert payload[0]["data"]["message"]["content"] == "Hello there"


async def test_cancel_finished_stream_is_a_no_op(client):
    started = await client.post("/api/chat", json=_body(), headers=AUTH)

    response = await client.post(
        "/api/chat/cancel",
        json={"chatId": started.headers["x-session-id"], "streamId": started.headers["x-stream-id"]},
        headers=AUTH,
    )

    assert response.status_code == 200
    assert response.json() == {"success": True}


async def test_cancel_in_unknown_chat_is_not_found(client):
    response = await client.post(
        "/api/chat/cancel",
        json={"chatId": str(uuid4()), "streamId": "stream-1"},
        headers=AUTH,
    )

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


async def test_history_lists_the_stored_turn(client):
    started = await client.post("/api/chat", json=_body(), headers=AUTH)
    session_id = started.headers["x-session-id"]

    response = await client.get("/api/chat/messages", params={"chatId": session_id}, headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["chatId"] == session_id
    assert [m["role"] for m in body["messages"]] == ["user", "assistant"]
    assert body["messages"][1]["content"] == "Hello there"


async def test_history_of_unknown_chat_is_not_found(client):
    response = await client.get("/api/chat/messages", params={"chatId": str(uuid4())}, headers=AUTH)

    assert response.status_code == 404
