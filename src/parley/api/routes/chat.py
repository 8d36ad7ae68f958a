"""Chat streaming endpoints.

- ``POST /chat`` starts a turn and streams its frames
- ``GET /chat?chatId=`` reconnects to the newest stream of a chat
- ``POST /chat/cancel`` stops a running turn
- ``GET /chat/messages?chatId=`` lists the stored messages of a chat
"""

from uuid import UUID

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import StreamingResponse

from parley.api.deps import ChatServiceDep, CurrentUser, RuntimeDep
from parley.api.ratelimit import (
    RATE_LIMIT_CANCEL,
    RATE_LIMIT_CHAT,
    RATE_LIMIT_HISTORY,
    RATE_LIMIT_RESUME,
    limiter,
)
from parley.api.schemas import CancelRequest, CancelResponse, ChatHistoryResponse, ChatRequest
from parley.domain.chat.protocol import DATA_STREAM_HEADERS, MEDIA_TYPE
from parley.domain.chat.service import ChatTurnRequest
from parley.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("")
@limiter.limit(RATE_LIMIT_CHAT)
async def start_chat(
    request: Request,
    body: ChatRequest,
    user: CurrentUser,
    service: ChatServiceDep,
    runtime: RuntimeDep,
) -> StreamingResponse:
    """Start a turn; the response streams data frames until the turn ends.

    Errors found before generation starts are returned as JSON; errors during
    generation arrive as an ``error`` annotation in the stream.
    """
    started = await service.start_turn(
        ChatTurnRequest(
            user_id=user.id,
            messages=[m.to_domain() for m in body.messages],
            model_id=body.model or runtime.settings.default_model,
            reasoning_level=body.reasoning_level or runtime.settings.default_reasoning_level,
            search_enabled=body.search_enabled,
            memory_enabled=body.memory_enabled,
            session_id=body.session_id,
            api_key=body.api_key,
            user_traits=body.user_traits,
            assistant_name=body.assistant_name,
        )
    )
    return StreamingResponse(
        started.frames,
        media_type=MEDIA_TYPE,
        headers={
            **DATA_STREAM_HEADERS,
            "X-Stream-Id": started.stream_id,
            "X-Session-Id": str(started.session_id),
        },
    )


@router.get("", response_model=None)
@limiter.limit(RATE_LIMIT_RESUME)
async def resume_chat(
    request: Request,
    user: CurrentUser,
    service: ChatServiceDep,
    chat_id: UUID = Query(..., alias="chatId"),
) -> Response:
    """Resume the newest stream of a chat, or 204 when there is nothing to resume."""
    frames = await service.resume(user.id, chat_id)
    if frames is None:
        return Response(status_code=204)
    return StreamingResponse(frames, media_type=MEDIA_TYPE, headers=DATA_STREAM_HEADERS)


@router.post("/cancel", response_model=CancelResponse)
@limiter.limit(RATE_LIMIT_CANCEL)
async def cancel_chat(
    request: Request,
    body: CancelRequest,
    user: CurrentUser,
    service: ChatServiceDep,
) -> CancelResponse:
    """Cancel a running turn. Cancelling an already finished stream is a no-op."""
    changed = await service.cancel(user.id, body.chat_id, body.stream_id)
    logger.info("chat_cancel_handled", stream_id=body.stream_id, changed=changed)
    return CancelResponse(success=True)


@router.get("/messages", response_model=ChatHistoryResponse)
@limiter.limit(RATE_LIMIT_HISTORY)
async def chat_history(
    request: Request,
    user: CurrentUser,
    service: ChatServiceDep,
    chat_id: UUID = Query(..., alias="chatId"),
) -> ChatHistoryResponse:
    """Stored messages of a chat, oldest first, in the shape the UI renders."""
    messages = await service.history(user.id, chat_id)
    return ChatHistoryResponse(chat_id=chat_id, messages=messages)
