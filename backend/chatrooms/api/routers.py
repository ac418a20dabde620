# backend/chatrooms/api/routers.py
from fastapi import APIRouter

from chatrooms.api import auth, conversations, health, messages, users

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(messages.router, prefix="/messages", tags=["messages"])
api_router.include_router(conversations.router, prefix="/conversations", tags=["conversations"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(health.router, tags=["health"])
