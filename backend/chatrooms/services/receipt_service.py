# backend/chatrooms/services/receipt_service.py
import logging
from typing import Dict, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatrooms.core.errors import InternalFailure, ValidationFailed
from chatrooms.db.models.conversation import Conversation, Membership
from chatrooms.db.models.message import Message, MessageReceipt
from chatrooms.db.models.user import get_utc_now
from chatrooms.services import membership_service

logger = logging.getLogger(__name__)


async def mark_read(db: AsyncSession, user_id: int, conversation_id: int, confirm: Optional[bool]) -> int:
    """Mark every unread receipt of ``user_id`` in the conversation as read.

    Returns how many receipts changed, so a second call returns 0. The caller
    must pass ``confirm=True`` explicitly.
    """
    if confirm is not True:
        raise ValidationFailed("Confirmation flag required to mark messages as read")

    await membership_service.require_access(db, user_id, conversation_id)

    conversation_messages = select(Message.id).where(Message.conversation_id == conversation_id)
    stmt = (
        update(MessageReceipt)
        .where(
            MessageReceipt.user_id == user_id,
            MessageReceipt.is_read.is_(False),
            MessageReceipt.message_id.in_(conversation_messages),
        )
        .values(is_read=True, read_at=get_utc_now())
        .execution_options(synchronize_session=False)
    )
    try:
        result = await db.execute(stmt)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Failed to mark messages read (user %s, conversation %s)", user_id, conversation_id)
        raise InternalFailure("Error marking messages as read")

    return result.rowcount or 0


def _accessible_conversations(user_id: int):
    # receipts in conversations the user has since left no longer count
    member_of = select(Membership.conversation_id).where(Membership.user_id == user_id)
    return select(Conversation.id).where(or_(Conversation.is_global.is_(True), Conversation.id.in_(member_of)))


async def unread_count(db: AsyncSession, user_id: int) -> int:
    stmt = (
        select(func.count(MessageReceipt.id))
        .join(Message, Message.id == MessageReceipt.message_id)
        .where(
            MessageReceipt.user_id == user_id,
            MessageReceipt.is_read.is_(False),
            Message.conversation_id.in_(_accessible_conversations(user_id)),
        )
    )
    return int(await db.scalar(stmt) or 0)


async def unread_by_conversation(db: AsyncSession, user_id: int) -> Dict[int, int]:
    stmt = (
        select(Message.conversation_id, func.count(MessageReceipt.id))
        .join(Message, Message.id == MessageReceipt.message_id)
        .where(
            MessageReceipt.user_id == user_id,
            MessageReceipt.is_read.is_(False),
            Message.conversation_id.in_(_accessible_conversations(user_id)),
        )
        .group_by(Message.conversation_id)
    )
    result = await db.execute(stmt)
    return {conversation_id: count for conversation_id, count in result.all()}
