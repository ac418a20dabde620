import enum
import logging
from typing import Optional, Union

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatrooms.core.errors import ChatError, Forbidden, NotFound, ValidationFailed
from chatrooms.db.models.user import User
from chatrooms.realtime.broadcaster import LiveEventBroadcaster
from chatrooms.realtime.connection import LiveConnection
from chatrooms.realtime.registry import ConnectionRegistry
from chatrooms.schemas.events import (
    INBOUND_EVENT_TYPES,
    ErrorNotice,
    JoinEvent,
    PresenceInit,
    SendMessageEvent,
    SystemNotice,
    TypingEvent,
    TypingNotice,
    parse_inbound,
)
from chatrooms.services import membership_service, message_service

logger = logging.getLogger(__name__)

WELCOME_TEXT = "Connected to chat server"


class SessionState(str, enum.Enum):
    CONNECTED = "CONNECTED"
    JOINED = "JOINED"
    CLOSED = "CLOSED"


class SessionGateway:
    """Per-connection state machine: CONNECTED -> JOINED -> CLOSED.

    Every inbound frame is handled inside its own error boundary. Domain
    errors go back to this connection as an ``error`` event; malformed
    frames are logged and dropped. Nothing raised here closes the socket.
    """

    def __init__(
        self,
        connection: LiveConnection,
        registry: ConnectionRegistry,
        broadcaster: LiveEventBroadcaster,
        session_factory: async_sessionmaker[AsyncSession],
        authenticated_user_id: Optional[int] = None,
    ):
        self.connection = connection
        self.registry = registry
        self.broadcaster = broadcaster
        self.session_factory = session_factory
        self.authenticated_user_id = authenticated_user_id
        self.state = SessionState.CONNECTED
        self.user_id: Optional[int] = None
        self.conversation_id: Optional[int] = None

    # --- lifecycle ---

    def open(self) -> None:
        self._reply(SystemNotice(message=WELCOME_TEXT))

    def close(self) -> None:
        """Leave the registry. Does not await, so it completes even when the handler is cancelled."""
        if self.state == SessionState.CLOSED:
            return
        was_joined = self.state == SessionState.JOINED
        self.state = SessionState.CLOSED
        if was_joined:
            self.registry.unregister(self.connection)

    async def handle_raw(self, raw: Union[str, bytes]) -> None:
        if self.state == SessionState.CLOSED:
            return
        try:
            event = parse_inbound(raw)
        except ValidationError as e:
            logger.warning(
                "Dropping malformed frame on %r: %s", self.connection, e.errors(include_url=False)[:3]
            )
            return
        await self.dispatch(event)

    async def dispatch(self, event) -> None:
        handler = self._handlers[type(event)]
        client_token = getattr(event, "client_token", None)
        try:
            await handler(self, event)
        except ChatError as e:
            self._reply(ErrorNotice(message=e.message, client_token=client_token))
        except Exception:
            logger.exception("Unhandled error for %s event on %r", event.type, self.connection)
            self._reply(ErrorNotice(message="Internal server error", client_token=client_token))

    # --- handlers ---

    def _check_identity(self, claimed_user_id: int) -> None:
        if self.authenticated_user_id is not None and claimed_user_id != self.authenticated_user_id:
            raise Forbidden("User id does not match the authenticated user")
        if self.user_id is not None and claimed_user_id != self.user_id:
            raise Forbidden("User id does not match the joined user")

    def _require_joined(self) -> None:
        if self.state != SessionState.JOINED:
            raise ValidationFailed("Join before sending events")

    async def _on_join(self, event: JoinEvent) -> None:
        self._check_identity(event.user_id)

        if self.state == SessionState.CONNECTED:
            async with self.session_factory() as db:
                if await db.get(User, event.user_id) is None:
                    raise NotFound("User not found")
            self.user_id = event.user_id
            self.registry.register(event.user_id, self.connection)
            self.state = SessionState.JOINED

        self.conversation_id = event.conversation_id
        self._reply(PresenceInit(users=sorted(self.registry.list_online())))

    async def _on_message(self, event: SendMessageEvent) -> None:
        self._require_joined()
        self._check_identity(event.user_id)

        async with self.session_factory() as db:
            message = await message_service.send(
                db,
                self.user_id,
                event.conversation_id,
                event.text,
                message_type=event.message_type,
                client_token=event.client_token,
            )
            # only a stored message is fanned out
            await self.broadcaster.publish_chat(db, message)

    async def _on_typing(self, event: TypingEvent) -> None:
        self._require_joined()
        self._check_identity(event.user_id)

        async with self.session_factory() as db:
            await membership_service.require_access(db, self.user_id, event.conversation_id)
            notice = TypingNotice(
                user_id=self.user_id,
                username=event.username,
                conversation_id=event.conversation_id,
            )
            await self.broadcaster.publish_typing(db, notice, origin=self.connection)

    _handlers = {
        JoinEvent: _on_join,
        SendMessageEvent: _on_message,
        TypingEvent: _on_typing,
    }

    # --- helpers ---

    def _reply(self, event) -> None:
        self.broadcaster.send_to(self.connection, event)


_unhandled = set(INBOUND_EVENT_TYPES) - set(SessionGateway._handlers)
if _unhandled:
    raise TypeError(f"SessionGateway has no handler for {sorted(t.__name__ for t in _unhandled)}")
