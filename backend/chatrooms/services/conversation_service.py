# backend/chatrooms/services/conversation_service.py
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from chatrooms.core.errors import Conflict, Forbidden, InternalFailure, NotFound, ValidationFailed
from chatrooms.db.models.conversation import Conversation, MemberRole, Membership
from chatrooms.db.models.message import Message, MessageReceipt
from chatrooms.db.models.user import User
from chatrooms.schemas.conversation import ConversationSummary, MemberRead
from chatrooms.schemas.user import UserSummary
from chatrooms.services import membership_service, message_service, receipt_service
from chatrooms.services.membership_service import ADMIN_ROLES

logger = logging.getLogger(__name__)

# a non-global conversation with fewer members than this is removed
MIN_MEMBERS = 2


@dataclass
class MembershipChange:
    """Outcome of a membership mutation, used by the API to fan out the system message."""

    conversation_id: int
    system_message: Optional[Message] = None
    conversation_deleted: bool = False


def _reject_global(conversation: Conversation, action: str) -> None:
    if conversation.is_global:
        raise ValidationFailed(f"Cannot {action} the global conversation")


async def list_for_user(db: AsyncSession, user_id: int) -> List[ConversationSummary]:
    """Conversations the user belongs to plus the global one, newest first."""
    member_of = select(Membership.conversation_id).where(Membership.user_id == user_id)
    stmt = (
        select(Conversation)
        .where(or_(Conversation.id.in_(member_of), Conversation.is_global.is_(True)))
        .order_by(Conversation.created_at.desc(), Conversation.id.desc())
    )
    conversations = list((await db.execute(stmt)).scalars().all())
    if not conversations:
        return []
    ids = [c.id for c in conversations]

    users_by_conversation: Dict[int, List[UserSummary]] = {cid: [] for cid in ids}
    rows = await db.execute(
        select(Membership.conversation_id, User)
        .join(User, User.id == Membership.user_id)
        .where(Membership.conversation_id.in_(ids))
        .order_by(Membership.joined_at.asc(), Membership.id.asc())
    )
    for conversation_id, user in rows.all():
        users_by_conversation[conversation_id].append(UserSummary.model_validate(user))

    counts = await db.execute(
        select(Message.conversation_id, func.count(Message.id))
        .where(Message.conversation_id.in_(ids))
        .group_by(Message.conversation_id)
    )
    message_counts = {cid: count for cid, count in counts.all()}
    unread = await receipt_service.unread_by_conversation(db, user_id)

    return [
        ConversationSummary(
            id=c.id,
            name=c.name,
            is_global=c.is_global,
            created_at=c.created_at,
            updated_at=c.updated_at,
            users=users_by_conversation[c.id],
            message_count=message_counts.get(c.id, 0),
            unread_count=unread.get(c.id, 0),
        )
        for c in conversations
    ]


async def _find_direct_conversation(db: AsyncSession, user_a: int, user_b: int) -> Optional[Conversation]:
    with_a = select(Membership.conversation_id).where(Membership.user_id == user_a)
    with_b = select(Membership.conversation_id).where(Membership.user_id == user_b)
    stmt = (
        select(Membership.conversation_id)
        .where(Membership.conversation_id.in_(with_a), Membership.conversation_id.in_(with_b))
        .group_by(Membership.conversation_id)
        .having(func.count(Membership.id) == 2)
        .order_by(Membership.conversation_id.asc())
    )
    conversation_id = (await db.execute(stmt)).scalars().first()
    if conversation_id is None:
        return None
    return await db.get(Conversation, conversation_id)


async def create_conversation(
    db: AsyncSession, creator_id: int, name: Optional[str], user_ids: Sequence[int]
) -> Tuple[Conversation, bool]:
    """Create a 1:1 or group conversation; returns ``(conversation, created)``.

    Asking for a 1:1 conversation that already exists returns the existing one.
    """
    invitees = [uid for uid in dict.fromkeys(user_ids) if uid != creator_id]
    if not invitees:
        raise ValidationFailed("No users specified")

    found = await db.execute(select(User.id).where(User.id.in_(invitees)))
    missing = set(invitees) - set(found.scalars().all())
    if missing:
        raise NotFound(f"User not found: {sorted(missing)[0]}")

    if len(invitees) == 1:
        existing = await _find_direct_conversation(db, creator_id, invitees[0])
        if existing is not None:
            return existing, False

    conversation = Conversation(name=(name or "").strip() or None)
    db.add(conversation)
    try:
        await db.flush()
        db.add(Membership(user_id=creator_id, conversation_id=conversation.id, role=MemberRole.OWNER))
        db.add_all(
            [Membership(user_id=uid, conversation_id=conversation.id, role=MemberRole.MEMBER) for uid in invitees]
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Failed to create conversation for user %s", creator_id)
        raise InternalFailure("Error creating conversation")

    logger.info("User %s created conversation %s with %d invitees", creator_id, conversation.id, len(invitees))
    return conversation, True


async def members_with_roles(db: AsyncSession, user_id: int, conversation_id: int) -> List[MemberRead]:
    await membership_service.require_access(db, user_id, conversation_id)
    members = await membership_service.members_of(db, conversation_id)
    if not members:
        return []
    users = (await db.execute(select(User).where(User.id.in_(list(members))))).scalars().all()
    order = {MemberRole.OWNER: 0, MemberRole.ADMIN: 1, MemberRole.MEMBER: 2}
    result = [
        MemberRead(id=u.id, username=u.username, profile_picture=u.profile_picture, role=members[u.id])
        for u in users
    ]
    result.sort(key=lambda m: (order[m.role], m.username))
    return result


async def add_member(db: AsyncSession, actor_id: int, conversation_id: int, user_id: int) -> MembershipChange:
    conversation = await membership_service.get_conversation(db, conversation_id)
    _reject_global(conversation, "add members to")
    await membership_service.require_role(db, actor_id, conversation_id, *ADMIN_ROLES)

    user = await db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    if await membership_service.get_membership(db, user_id, conversation_id) is not None:
        raise Conflict("User is already a member of this conversation")

    db.add(Membership(user_id=user_id, conversation_id=conversation_id, role=MemberRole.MEMBER))
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise Conflict("User is already a member of this conversation")

    message = await message_service.system_message(db, conversation_id, f"{user.username} joined the conversation")
    return MembershipChange(conversation_id, message)


async def rename(db: AsyncSession, actor_id: int, conversation_id: int, name: str) -> MembershipChange:
    conversation = await membership_service.get_conversation(db, conversation_id)
    _reject_global(conversation, "rename")
    await membership_service.require_role(db, actor_id, conversation_id, *ADMIN_ROLES)

    name = (name or "").strip()
    if not name:
        raise ValidationFailed("Conversation name is required")
    actor = await db.get(User, actor_id)

    conversation.name = name
    await db.commit()

    message = await message_service.system_message(
        db, conversation_id, f'{actor.username} renamed the conversation to "{name}"'
    )
    return MembershipChange(conversation_id, message)


async def update_role(
    db: AsyncSession, actor_id: int, conversation_id: int, user_id: int, role: MemberRole
) -> MembershipChange:
    conversation = await membership_service.get_conversation(db, conversation_id)
    _reject_global(conversation, "change roles in")
    await membership_service.require_role(db, actor_id, conversation_id, MemberRole.OWNER)

    if role == MemberRole.OWNER:
        raise ValidationFailed("Ownership cannot be assigned")
    if user_id == actor_id:
        raise ValidationFailed("The owner's role cannot be changed")
    membership = await membership_service.get_membership(db, user_id, conversation_id)
    if membership is None:
        raise NotFound("User is not a member of this conversation")
    if membership.role == role:
        return MembershipChange(conversation_id)

    membership.role = role
    await db.commit()

    user = await db.get(User, user_id)
    label = "an admin" if role == MemberRole.ADMIN else "a member"
    message = await message_service.system_message(db, conversation_id, f"{user.username} is now {label}")
    return MembershipChange(conversation_id, message)


async def remove_member(db: AsyncSession, actor_id: int, conversation_id: int, user_id: int) -> MembershipChange:
    conversation = await membership_service.get_conversation(db, conversation_id)
    _reject_global(conversation, "remove members from")
    await membership_service.require_role(db, actor_id, conversation_id, *ADMIN_ROLES)

    if user_id == actor_id:
        raise ValidationFailed("Use leave to exit a conversation")
    membership = await membership_service.get_membership(db, user_id, conversation_id)
    if membership is None:
        raise NotFound("User is not a member of this conversation")
    if membership.role == MemberRole.OWNER:
        raise Forbidden("The owner cannot be removed")

    user = await db.get(User, user_id)
    await db.delete(membership)
    await db.commit()

    message = await message_service.system_message(
        db, conversation_id, f"{user.username} was removed from the conversation"
    )
    deleted = await _delete_if_abandoned(db, conversation_id)
    return MembershipChange(conversation_id, message, deleted)


async def _promote_successor(db: AsyncSession, conversation_id: int) -> Optional[Membership]:
    stmt = (
        select(Membership)
        .where(Membership.conversation_id == conversation_id)
        .order_by(
            (Membership.role == MemberRole.ADMIN).desc(),
            Membership.joined_at.asc(),
            Membership.id.asc(),
        )
    )
    successor = (await db.execute(stmt)).scalars().first()
    if successor is not None:
        successor.role = MemberRole.OWNER
    return successor


async def leave(db: AsyncSession, user_id: int, conversation_id: int) -> MembershipChange:
    conversation = await membership_service.get_conversation(db, conversation_id)
    _reject_global(conversation, "leave")

    membership = await membership_service.get_membership(db, user_id, conversation_id)
    if membership is None:
        raise Forbidden("You are not part of this conversation")

    was_owner = membership.role == MemberRole.OWNER
    user = await db.get(User, user_id)
    await db.delete(membership)
    await db.flush()
    if was_owner:
        successor = await _promote_successor(db, conversation_id)
        if successor is not None:
            logger.info("Conversation %s ownership passed to user %s", conversation_id, successor.user_id)
    await db.commit()

    message = await message_service.system_message(db, conversation_id, f"{user.username} left the conversation")
    deleted = await _delete_if_abandoned(db, conversation_id)
    return MembershipChange(conversation_id, message, deleted)


async def delete_conversation(db: AsyncSession, actor_id: int, conversation_id: int) -> None:
    conversation = await membership_service.get_conversation(db, conversation_id)
    _reject_global(conversation, "delete")
    await membership_service.require_role(db, actor_id, conversation_id, MemberRole.OWNER)
    await _delete(db, conversation_id)


async def _delete_if_abandoned(db: AsyncSession, conversation_id: int) -> bool:
    remaining = await db.scalar(
        select(func.count(Membership.id)).where(Membership.conversation_id == conversation_id)
    )
    if remaining >= MIN_MEMBERS:
        return False
    await _delete(db, conversation_id)
    return True


async def _delete(db: AsyncSession, conversation_id: int) -> None:
    conversation_messages = select(Message.id).where(Message.conversation_id == conversation_id)
    try:
        await db.execute(
            delete(MessageReceipt)
            .where(MessageReceipt.message_id.in_(conversation_messages))
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            delete(Message).where(Message.conversation_id == conversation_id).execution_options(synchronize_session=False)
        )
        await db.execute(
            delete(Membership)
            .where(Membership.conversation_id == conversation_id)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            delete(Conversation).where(Conversation.id == conversation_id).execution_options(synchronize_session=False)
        )
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Failed to delete conversation %s", conversation_id)
        raise InternalFailure("Error deleting conversation")
    db.expunge_all()
    logger.info("Deleted conversation %s", conversation_id)
