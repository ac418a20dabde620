from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from chatrooms.schemas.base import CamelModel


class UserCreate(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1, max_length=72)
    profilePicture: Optional[str] = None


class UserLogin(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserSummary(CamelModel):
    """Sender/member display fields."""

    id: int
    username: str
    profile_picture: Optional[str] = None


class UserRead(UserSummary):
    bio: Optional[str] = None
    last_seen: Optional[datetime] = None
    created_at: Optional[datetime] = None
