# backend/chatrooms/api/conversations.py
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from chatrooms.api.dependencies import get_broadcaster
from chatrooms.core.security import get_current_user_id
from chatrooms.db.database import get_db
from chatrooms.realtime.broadcaster import LiveEventBroadcaster
from chatrooms.schemas.conversation import (
    ConversationCreate,
    ConversationRead,
    LeaveRequest,
    MemberChange,
    RenameRequest,
    RoleChange,
)
from chatrooms.schemas.message import MessageRead
from chatrooms.services import conversation_service, message_service
from chatrooms.services.conversation_service import MembershipChange

router = APIRouter()


async def _announce(db: AsyncSession, broadcaster: LiveEventBroadcaster, change: MembershipChange) -> dict:
    """Fan out the change's system message unless the conversation is gone."""
    body = {"conversationId": change.conversation_id, "conversationDeleted": change.conversation_deleted}
    if change.system_message is not None:
        body["message"] = MessageRead.model_validate(change.system_message).to_wire()
        if not change.conversation_deleted:
            await broadcaster.publish_chat(db, change.system_message)
    return body


@router.get("")
async def get_conversations(current_user_id: int = Depends(get_current_user_id), db: AsyncSession = Depends(get_db)):
    """Conversations of the caller, each annotated with its unread count."""
    conversations = await conversation_service.list_for_user(db, current_user_id)
    return {"conversations": [c.to_wire() for c in conversations]}


@router.post("")
async def create_conversation(
    body: ConversationCreate,
    response: Response,
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    conversation, created = await conversation_service.create_conversation(
        db, current_user_id, body.name, body.userIds
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return {"conversation": ConversationRead.model_validate(conversation).to_wire(), "created": created}


@router.get("/{conversation_id}/users")
async def get_conversation_users(
    conversation_id: int,
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    members = await conversation_service.members_with_roles(db, current_user_id, conversation_id)
    return {"users": [m.to_wire() for m in members]}


@router.get("/{conversation_id}/messages")
async def get_conversation_messages(
    conversation_id: int,
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    messages = await message_service.list_messages(db, current_user_id, conversation_id)
    return {"messages": [MessageRead.model_validate(m).to_wire() for m in messages]}


@router.post("/add-member")
async def add_member(
    body: MemberChange,
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    broadcaster: LiveEventBroadcaster = Depends(get_broadcaster),
):
    change = await conversation_service.add_member(db, current_user_id, body.conversationId, body.userId)
    return await _announce(db, broadcaster, change)


@router.put("/update-name")
async def update_conversation_name(
    body: RenameRequest,
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    broadcaster: LiveEventBroadcaster = Depends(get_broadcaster),
):
    change = await conversation_service.rename(db, current_user_id, body.conversationId, body.name)
    return await _announce(db, broadcaster, change)


@router.put("/update-role")
async def update_member_role(
    body: RoleChange,
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    broadcaster: LiveEventBroadcaster = Depends(get_broadcaster),
):
    change = await conversation_service.update_role(
        db, current_user_id, body.conversationId, body.userId, body.role
    )
    return await _announce(db, broadcaster, change)


@router.post("/remove-member")
async def remove_member(
    body: MemberChange,
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    broadcaster: LiveEventBroadcaster = Depends(get_broadcaster),
):
    change = await conversation_service.remove_member(db, current_user_id, body.conversationId, body.userId)
    return await _announce(db, broadcaster, change)


@router.post("/leave")
async def leave_conversation(
    body: LeaveRequest,
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    broadcaster: LiveEventBroadcaster = Depends(get_broadcaster),
):
    change = await conversation_service.leave(db, current_user_id, body.conversationId)
    return await _announce(db, broadcaster, change)


@router.delete("/{conversation_id}")
async def delete_conversation(
    conversation_id: int,
    current_user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await conversation_service.delete_conversation(db, current_user_id, conversation_id)
    return {"success": True, "conversationId": conversation_id}
