# backend/chatrooms/services/user_service.py
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chatrooms.core.config import settings
from chatrooms.core.errors import Conflict, NotFound, Unauthorized
from chatrooms.core.security import create_access_token, get_password_hash, verify_password
from chatrooms.db.models.user import User, get_utc_now
from chatrooms.schemas.user import UserCreate, UserLogin, UserSummary

logger = logging.getLogger(__name__)


def summary(user: User) -> dict:
    return UserSummary.model_validate(user).to_wire()


async def register_user(db: AsyncSession, user_in: UserCreate) -> User:
    """Sign-up: reject duplicate usernames, hash the password, pick a default avatar."""
    result = await db.execute(select(User).where(User.username == user_in.username))
    if result.scalars().first():
        raise Conflict("Username already taken")

    new_user = User(
        username=user_in.username,
        password_hash=get_password_hash(user_in.password),
        profile_picture=user_in.profilePicture or settings.default_avatar_url.format(username=user_in.username),
    )
    db.add(new_user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("Username already taken")
    await db.refresh(new_user)
    logger.info("Registered user %s (%s)", new_user.id, new_user.username)
    return new_user


async def authenticate_user(db: AsyncSession, user_in: UserLogin) -> dict:
    """Check credentials and issue a bearer token."""
    result = await db.execute(select(User).where(User.username == user_in.username))
    user = result.scalars().first()

    if not user or not verify_password(user_in.password, user.password_hash):
        raise Unauthorized("Invalid credentials")

    access_token = create_access_token(
        data={"sub": str(user.id), "username": user.username},
        expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
    )
    return {"success": True, "token": access_token, "user": summary(user)}


async def get_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def get_all_users(db: AsyncSession, query: Optional[str] = None) -> List[User]:
    stmt = select(User).where(User.is_discoverable.is_(True)).order_by(User.username.asc())
    if query:
        stmt = stmt.where(User.username.ilike(f"%{query}%"))
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def touch_last_seen(db: AsyncSession, user_id: int) -> datetime:
    """Heartbeat: record that the user was active just now."""
    user = await get_user(db, user_id)
    user.last_seen = get_utc_now()
    await db.commit()
    return user.last_seen
