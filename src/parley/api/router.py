"""Main API router aggregating all routes under /api."""

from fastapi import APIRouter

from parley.api.routes import chat

api_router = APIRouter()

api_router.include_router(chat.router)
