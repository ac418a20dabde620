import logging
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from chatrooms.core.config import settings
from chatrooms.db.models.conversation import Conversation
from chatrooms.db.models.message import Message
from chatrooms.realtime.connection import LiveConnection
from chatrooms.realtime.registry import ConnectionRegistry, Predicate
from chatrooms.schemas.base import CamelModel
from chatrooms.schemas.events import ChatNotice, TypingNotice
from chatrooms.schemas.message import MessageRead
from chatrooms.services import membership_service

logger = logging.getLogger(__name__)

FANOUT_EVERYONE = "everyone"


def everyone() -> Predicate:
    return lambda _uid, _conn: True


def members(user_ids: Iterable[int]) -> Predicate:
    audience = frozenset(user_ids)
    return lambda uid, _conn: uid in audience


def excluding(predicate: Predicate, connection: LiveConnection) -> Predicate:
    return lambda uid, conn: conn is not connection and predicate(uid, conn)


class LiveEventBroadcaster:
    """Pushes typed events to the audience of a conversation.

    With ``fanout="members"`` chat and typing events only reach users who can
    access the conversation (everyone, for the global conversation). With
    ``fanout="everyone"`` they reach every connection and clients filter by
    conversation id.
    """

    def __init__(self, registry: ConnectionRegistry, fanout: Optional[str] = None):
        self.registry = registry
        self.fanout = fanout or settings.live_fanout

    def publish(self, event: CamelModel, audience: Predicate) -> int:
        return self.registry.broadcast(audience, event.to_wire())

    def send_to(self, connection: LiveConnection, event: CamelModel) -> bool:
        return connection.push(event.to_wire())

    async def conversation_audience(self, db: AsyncSession, conversation_id: int) -> Predicate:
        if self.fanout == FANOUT_EVERYONE:
            return everyone()
        conversation = await db.get(Conversation, conversation_id)
        if conversation is None:
            return members(())
        if conversation.is_global:
            return everyone()
        return members(await membership_service.members_of(db, conversation_id))

    async def publish_chat(self, db: AsyncSession, message: Message) -> int:
        """Fan a persisted message out as a ``chat`` event."""
        event = ChatNotice(message=MessageRead.model_validate(message))
        audience = await self.conversation_audience(db, message.conversation_id)
        delivered = self.publish(event, audience)
        logger.debug("Message %s delivered to %d connections", message.id, delivered)
        return delivered

    async def publish_typing(
        self, db: AsyncSession, notice: TypingNotice, origin: Optional[LiveConnection] = None
    ) -> int:
        audience = await self.conversation_audience(db, notice.conversation_id)
        if origin is not None:
            audience = excluding(audience, origin)
        return self.publish(notice, audience)
