# backend/chatrooms/api/auth.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from chatrooms.core.security import get_current_user_id
from chatrooms.db.database import get_db
from chatrooms.schemas.user import UserCreate, UserLogin
from chatrooms.services import user_service

router = APIRouter()


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(user_in: UserCreate, db: AsyncSession = Depends(get_db)):
    """Create an account."""
    user = await user_service.register_user(db, user_in)
    return {"status": "User Created", "user": user_service.summary(user)}


@router.post("/login")
async def login(user_in: UserLogin, db: AsyncSession = Depends(get_db)):
    """Exchange credentials for a bearer token."""
    return await user_service.authenticate_user(db, user_in)


@router.get("/me")
async def me(current_user_id: int = Depends(get_current_user_id), db: AsyncSession = Depends(get_db)):
    user = await user_service.get_user(db, current_user_id)
    return {"success": True, "user": user_service.summary(user)}
