from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from chatrooms.db.models.conversation import MemberRole
from chatrooms.schemas.base import CamelModel
from chatrooms.schemas.user import UserSummary


class ConversationCreate(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    userIds: List[int] = Field(default_factory=list)


class MemberChange(BaseModel):
    conversationId: int
    userId: int


class RenameRequest(BaseModel):
    conversationId: int
    name: str = Field(..., min_length=1, max_length=100)


class RoleChange(BaseModel):
    conversationId: int
    userId: int
    role: MemberRole


class LeaveRequest(BaseModel):
    conversationId: int


class MemberRead(UserSummary):
    role: MemberRole


class ConversationRead(CamelModel):
    id: int
    name: Optional[str] = None
    is_global: bool = False
    created_at: datetime
    updated_at: datetime


class ConversationSummary(ConversationRead):
    users: List[UserSummary] = Field(default_factory=list)
    message_count: int = 0
    unread_count: int = 0
