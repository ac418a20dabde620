from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, StrictBool

from chatrooms.db.models.message import MessageType
from chatrooms.schemas.base import CamelModel
from chatrooms.schemas.user import UserSummary


class MessageCreate(BaseModel):
    text: str = Field(..., min_length=1)
    conversationId: Optional[int] = None
    clientToken: Optional[str] = Field(default=None, max_length=64)
    messageType: MessageType = MessageType.TEXT


class MarkReadRequest(BaseModel):
    # only a literal JSON true confirms
    confirm: Optional[StrictBool] = None


class MessageRead(CamelModel):
    id: int
    text: str
    type: MessageType
    sender_id: Optional[int] = None
    sender: Optional[UserSummary] = None
    conversation_id: int
    created_at: datetime
    client_token: Optional[str] = None


class ReceiptRead(CamelModel):
    id: int
    message_id: int
    user_id: int
    is_read: bool
    read_at: Optional[datetime] = None


class MarkReadResult(CamelModel):
    updated_count: int
    unread_count: int
