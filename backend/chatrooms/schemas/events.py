"""Live-connection event schema.

Every payload on the socket is a JSON object tagged by ``type``. Each kind is
its own model, and the two directions are closed unions discriminated on that
tag, so an unknown ``type`` fails validation instead of falling through.
"""
from typing import Annotated, List, Literal, Optional, Union, get_args

from pydantic import Field, TypeAdapter

from chatrooms.db.models.message import MessageType
from chatrooms.schemas.base import CamelModel
from chatrooms.schemas.message import MessageRead


# --- client -> server ---

class JoinEvent(CamelModel):
    type: Literal["join"] = "join"
    user_id: int
    conversation_id: Optional[int] = None


class SendMessageEvent(CamelModel):
    type: Literal["message"] = "message"
    user_id: int
    conversation_id: int
    text: str = Field(..., min_length=1)
    message_type: MessageType = MessageType.TEXT
    client_token: Optional[str] = Field(default=None, max_length=64)


class TypingEvent(CamelModel):
    type: Literal["typing"] = "typing"
    user_id: int
    username: str
    conversation_id: int


InboundEvent = Annotated[
    Union[JoinEvent, SendMessageEvent, TypingEvent],
    Field(discriminator="type"),
]


# --- server -> client ---

class SystemNotice(CamelModel):
    type: Literal["system"] = "system"
    message: str


class PresenceInit(CamelModel):
    type: Literal["presence_init"] = "presence_init"
    users: List[int]


class PresenceChange(CamelModel):
    type: Literal["presence"] = "presence"
    user_id: int
    online: bool


class ChatNotice(CamelModel):
    type: Literal["chat"] = "chat"
    message: MessageRead


class TypingNotice(CamelModel):
    type: Literal["typing"] = "typing"
    user_id: int
    username: str
    conversation_id: int


class ErrorNotice(CamelModel):
    type: Literal["error"] = "error"
    message: str
    # set when a send failed, so the client can flag its local echo
    client_token: Optional[str] = None


OutboundEvent = Annotated[
    Union[SystemNotice, PresenceInit, PresenceChange, ChatNotice, TypingNotice, ErrorNotice],
    Field(discriminator="type"),
]

# members of the inbound union, used to check dispatch tables for coverage
INBOUND_EVENT_TYPES = get_args(get_args(InboundEvent)[0])

inbound_adapter = TypeAdapter(InboundEvent)
outbound_adapter = TypeAdapter(OutboundEvent)


def parse_inbound(raw: Union[str, bytes]):
    """Parse one client frame; raises ``pydantic.ValidationError`` on bad input."""
    return inbound_adapter.validate_json(raw)


def parse_outbound(data: dict):
    return outbound_adapter.validate_python(data)
