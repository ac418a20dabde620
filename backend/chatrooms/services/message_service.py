# backend/chatrooms/services/message_service.py
import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatrooms.core.errors import InternalFailure, ValidationFailed
from chatrooms.db.models.conversation import Conversation
from chatrooms.db.models.message import Message, MessageReceipt, MessageType
from chatrooms.db.models.user import get_utc_now
from chatrooms.services import membership_service

logger = logging.getLogger(__name__)


async def get_message(db: AsyncSession, message_id: int) -> Optional[Message]:
    """Load a message together with its sender's display fields."""
    stmt = (
        select(Message)
        .where(Message.id == message_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _find_by_client_token(db: AsyncSession, sender_id: int, client_token: str) -> Optional[Message]:
    stmt = select(Message).where(Message.sender_id == sender_id, Message.client_token == client_token)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def _next_timestamp(db: AsyncSession, conversation_id: int) -> datetime:
    # never go behind the newest message so createdAt order matches append order
    latest = await db.scalar(
        select(func.max(Message.created_at)).where(Message.conversation_id == conversation_id)
    )
    now = get_utc_now()
    if latest is not None and latest > now:
        return latest
    return now


async def _append(
    db: AsyncSession,
    conversation: Conversation,
    sender_id: Optional[int],
    text: str,
    message_type: MessageType,
    client_token: Optional[str] = None,
) -> Message:
    """Insert the message and one receipt per current member in one transaction."""
    conversation_id = conversation.id
    try:
        created_at = await _next_timestamp(db, conversation_id)
        message = Message(
            text=text,
            sender_id=sender_id,
            conversation_id=conversation_id,
            type=message_type,
            client_token=client_token,
            created_at=created_at,
        )
        db.add(message)
        await db.flush()

        members = await membership_service.members_of(db, conversation_id)
        db.add_all(
            [
                MessageReceipt(
                    message_id=message.id,
                    user_id=member_id,
                    is_read=member_id == sender_id,
                    read_at=created_at if member_id == sender_id else None,
                )
                for member_id in members
            ]
        )
        conversation.updated_at = created_at
        await db.commit()
        message_id = message.id
    except IntegrityError:
        await db.rollback()
        if sender_id is not None and client_token:
            # a concurrent send with the same idempotency token won the race
            existing = await _find_by_client_token(db, sender_id, client_token)
            if existing is not None:
                return await get_message(db, existing.id)
        logger.exception("Integrity error storing message (user %s, conversation %s)", sender_id, conversation_id)
        raise InternalFailure("Error sending message")
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Failed to store message (user %s, conversation %s)", sender_id, conversation_id)
        raise InternalFailure("Error sending message")

    logger.debug("Stored message %s in conversation %s (%d receipts)", message_id, conversation_id, len(members))
    return await get_message(db, message_id)


async def send(
    db: AsyncSession,
    sender_id: int,
    conversation_id: int,
    text: str,
    message_type: MessageType = MessageType.TEXT,
    client_token: Optional[str] = None,
) -> Message:
    """Validate and durably append a user message.

    Raises NotFound for an unknown conversation and Forbidden when the sender
    may not write to it. A repeated ``client_token`` from the same sender
    returns the message stored the first time instead of a duplicate.
    """
    if text is None or not text.strip():
        raise ValidationFailed("Message text is required")
    if message_type == MessageType.SYSTEM:
        raise ValidationFailed("System messages cannot be sent by users")

    conversation = await membership_service.require_access(db, sender_id, conversation_id)

    if client_token:
        existing = await _find_by_client_token(db, sender_id, client_token)
        if existing is not None:
            if existing.conversation_id != conversation_id:
                raise ValidationFailed("Client token already used in another conversation")
            return await get_message(db, existing.id)

    return await _append(db, conversation, sender_id, text, message_type, client_token)


async def system_message(db: AsyncSession, conversation_id: int, text: str) -> Message:
    """Record a server-authored message (membership changes, renames)."""
    conversation = await membership_service.get_conversation(db, conversation_id)
    return await _append(db, conversation, None, text, MessageType.SYSTEM)


async def list_messages(db: AsyncSession, user_id: int, conversation_id: int) -> List[Message]:
    await membership_service.require_access(db, user_id, conversation_id)
    stmt = (
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.asc(), Message.id.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def receipts_for(db: AsyncSession, user_id: int, conversation_id: int) -> List[MessageReceipt]:
    """Every receipt of the conversation, for "seen by" indicators."""
    await membership_service.require_access(db, user_id, conversation_id)
    stmt = (
        select(MessageReceipt)
        .join(Message, Message.id == MessageReceipt.message_id)
        .where(Message.conversation_id == conversation_id)
        .order_by(MessageReceipt.message_id.asc(), MessageReceipt.user_id.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
