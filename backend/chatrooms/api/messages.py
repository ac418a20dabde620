# backend/chatrooms/api/messages.py
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from chatrooms.api.dependencies import get_broadcaster
from chatrooms.core.security import get_current_user_id
from chatrooms.db.database import GLOBAL_CONVERSATION_ID, get_db
from chatrooms.realtime.broadcaster import LiveEventBroadcaster
from chatrooms.schemas.message import MarkReadRequest, MarkReadResult, MessageCreate, MessageRead, ReceiptRead
from chatrooms.services import message_service, receipt_service

router = APIRouter()


def _wire(messages):
    return [MessageRead.model_validate(m).to_wire() for m in messages]


@router.get("")
async def get_global_messages(
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """History of the global conversation."""
    messages = await message_service.list_messages(db, current_user_id, GLOBAL_CONVERSATION_ID)
    return {"messages": _wire(messages)}


@router.get("/{conversation_id}")
async def get_messages_by_conversation(
    conversation_id: int,
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    messages = await message_service.list_messages(db, current_user_id, conversation_id)
    return {"messages": _wire(messages)}


@router.post("")
async def send_message(
    message_in: MessageCreate,
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    broadcaster: LiveEventBroadcaster = Depends(get_broadcaster),
):
    """Send over HTTP; used when the live socket is unavailable.

    The stored message is also fanned out to live connections.
    """
    message = await message_service.send(
        db,
        current_user_id,
        message_in.conversationId or GLOBAL_CONVERSATION_ID,
        message_in.text,
        message_type=message_in.messageType,
        client_token=message_in.clientToken,
    )
    await broadcaster.publish_chat(db, message)
    return {"message": MessageRead.model_validate(message).to_wire()}


@router.post("/{conversation_id}/read")
async def mark_messages_as_read(
    conversation_id: int,
    payload: Optional[MarkReadRequest] = None,
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    confirm = payload.confirm if payload is not None else None
    updated = await receipt_service.mark_read(db, current_user_id, conversation_id, confirm)
    unread = await receipt_service.unread_count(db, current_user_id)
    return MarkReadResult(updated_count=updated, unread_count=unread).to_wire()


@router.get("/{conversation_id}/receipts")
async def get_conversation_receipts(
    conversation_id: int,
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    receipts = await message_service.receipts_for(db, current_user_id, conversation_id)
    return {"receipts": [ReceiptRead.model_validate(r).to_wire() for r in receipts]}
