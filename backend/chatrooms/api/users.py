# backend/chatrooms/api/users.py
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from chatrooms.core.security import get_current_user_id
from chatrooms.db.database import get_db
from chatrooms.schemas.user import UserRead
from chatrooms.services import user_service

router = APIRouter()


@router.get("")
async def get_users(
    query: Optional[str] = None,
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Discoverable users, optionally filtered by a username fragment."""
    users = await user_service.get_all_users(db, query)
    return {"users": [user_service.summary(u) for u in users]}


@router.patch("/last-seen")
async def update_last_seen(current_user_id: int = Depends(get_current_user_id), db: AsyncSession = Depends(get_db)):
    """Heartbeat sent by clients while the app is open."""
    last_seen = await user_service.touch_last_seen(db, current_user_id)
    return {"success": True, "lastSeen": last_seen.isoformat()}


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.get_user(db, user_id)
    return {"user": UserRead.model_validate(user).to_wire()}
