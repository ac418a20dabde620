# backend/chatrooms/services/membership_service.py
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from chatrooms.core.errors import Forbidden, NotFound
from chatrooms.db.models.conversation import Conversation, MemberRole, Membership
from chatrooms.db.models.user import User

ADMIN_ROLES = (MemberRole.OWNER, MemberRole.ADMIN)


async def get_conversation(db: AsyncSession, conversation_id: int) -> Conversation:
    conversation = await db.get(Conversation, conversation_id)
    if conversation is None:
        raise NotFound("Conversation not found")
    return conversation


async def get_membership(db: AsyncSession, user_id: int, conversation_id: int) -> Optional[Membership]:
    stmt = select(Membership).where(
        Membership.user_id == user_id,
        Membership.conversation_id == conversation_id,
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def members_of(db: AsyncSession, conversation_id: int) -> Dict[int, MemberRole]:
    """Current members of a conversation mapped to their role.

    Every existing user is an implicit MEMBER of the global conversation;
    explicit rows there only override the role. An unknown (or deleted)
    conversation has no members.
    """
    conversation = await db.get(Conversation, conversation_id)
    if conversation is None:
        return {}

    members: Dict[int, MemberRole] = {}
    if conversation.is_global:
        user_ids = await db.execute(select(User.id))
        members = {uid: MemberRole.MEMBER for uid in user_ids.scalars().all()}

    rows = await db.execute(
        select(Membership.user_id, Membership.role).where(Membership.conversation_id == conversation_id)
    )
    for user_id, role in rows.all():
        members[user_id] = role
    return members


async def can_access(db: AsyncSession, user_id: int, conversation: Conversation) -> bool:
    """The single read/write authorization check for a conversation."""
    if conversation.is_global:
        return True
    return await get_membership(db, user_id, conversation.id) is not None


async def require_access(db: AsyncSession, user_id: int, conversation_id: int) -> Conversation:
    conversation = await get_conversation(db, conversation_id)
    if not await can_access(db, user_id, conversation):
        raise Forbidden("Access denied: not a member of this conversation")
    return conversation


async def role_of(db: AsyncSession, user_id: int, conversation_id: int) -> Optional[MemberRole]:
    membership = await get_membership(db, user_id, conversation_id)
    return membership.role if membership else None


async def require_role(db: AsyncSession, user_id: int, conversation_id: int, *allowed: MemberRole) -> MemberRole:
    role = await role_of(db, user_id, conversation_id)
    if role is None:
        raise Forbidden("You are not part of this conversation")
    if role not in allowed:
        raise Forbidden("Insufficient role for this action")
    return role
