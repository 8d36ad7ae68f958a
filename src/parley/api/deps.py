"""FastAPI dependencies for API routes."""

from typing import Annotated

from fastapi import Depends, Request

from parley.api.middleware.auth import CurrentUser, get_current_user
from parley.domain.chat.service import ChatService
from parley.runtime import ChatRuntime


def get_runtime(request: Request) -> ChatRuntime:
    """The runtime built in the application lifespan (or injected by tests)."""
    runtime: ChatRuntime = request.app.state.runtime
    return runtime


def get_chat_service(runtime: Annotated[ChatRuntime, Depends(get_runtime)]) -> ChatService:
    return runtime.service


RuntimeDep = Annotated[ChatRuntime, Depends(get_runtime)]
ChatServiceDep = Annotated[ChatService, Depends(get_chat_service)]

__all__ = [
    "ChatServiceDep",
    "CurrentUser",
    "RuntimeDep",
    "get_chat_service",
    "get_current_user",
    "get_runtime",
]
