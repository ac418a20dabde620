import json
import logging
from typing import Dict, Optional

import httpx
import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed

from chatrooms.client.rest import RestClient
from chatrooms.client.state import ConversationView, LocalMessage, PresenceTracker, TypingTracker, UnreadTracker
from chatrooms.schemas.events import (
    ChatNotice,
    ErrorNotice,
    PresenceChange,
    PresenceInit,
    SystemNotice,
    TypingNotice,
    parse_outbound,
)

logger = logging.getLogger(__name__)


def _ws_url(base_url: str, token: str) -> str:
    base = base_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://"):]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://"):]
    return f"{base}/ws?token={token}"


class LiveSession:
    """A user's live connection plus the local state it keeps current.

    Sends go over the socket while it is up and fall back to REST otherwise;
    either way the optimistic echo is reconciled by its client token.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        user_id: int,
        username: str,
        rest: Optional[RestClient] = None,
        typing_timeout: float = 2.0,
    ):
        self.base_url = base_url
        self.token = token
        self.user_id = user_id
        self.username = username
        self.rest = rest or RestClient(base_url, token)
        self.views: Dict[int, ConversationView] = {}
        self.typing = TypingTracker(timeout=typing_timeout)
        self.presence = PresenceTracker()
        self.unread = UnreadTracker()
        self.active_conversation_id: Optional[int] = None
        self.last_error: Optional[str] = None
        self._ws = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def view(self, conversation_id: int) -> ConversationView:
        if conversation_id not in self.views:
            self.views[conversation_id] = ConversationView(conversation_id, self.user_id)
        return self.views[conversation_id]

    # --- connection ---

    async def connect(self) -> None:
        self._ws = await websockets.connect(_ws_url(self.base_url, self.token))

    async def close(self) -> None:
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()

    async def _send_frame(self, frame: dict) -> bool:
        if self._ws is None:
            return False
        try:
            await self._ws.send(json.dumps(frame))
        except ConnectionClosed:
            logger.info("Live connection closed while sending; falling back to REST")
            self._ws = None
            return False
        return True

    async def open_conversation(self, conversation_id: int) -> ConversationView:
        """Join, load history over REST and clear the unread badge."""
        self.active_conversation_id = conversation_id
        await self._send_frame({"type": "join", "userId": self.user_id, "conversationId": conversation_id})
        view = self.view(conversation_id)
        view.load_history(await self.rest.fetch_messages(conversation_id))
        await self.rest.mark_read(conversation_id)
        self.unread.mark_read(conversation_id)
        return view

    async def refresh_conversations(self) -> None:
        self.unread.initialize(await self.rest.fetch_conversations())

    # --- outbound ---

    async def send_message(self, conversation_id: int, text: str) -> LocalMessage:
        view = self.view(conversation_id)
        local = view.add_optimistic(text)
        frame = {
            "type": "message",
            "userId": self.user_id,
            "conversationId": conversation_id,
            "text": text,
            "clientToken": local.client_token,
        }
        if await self._send_frame(frame):
            return local

        try:
            confirmed = await self.rest.send_message(conversation_id, text, client_token=local.client_token)
        except httpx.HTTPError:
            view.mark_failed(local.client_token)
            raise
        view.apply_confirmed(confirmed)
        return local

    async def send_typing(self, conversation_id: int) -> None:
        await self._send_frame(
            {"type": "typing", "userId": self.user_id, "username": self.username, "conversationId": conversation_id}
        )

    # --- inbound ---

    def handle_frame(self, data: dict) -> None:
        try:
            event = parse_outbound(data)
        except ValidationError:
            logger.warning("Ignoring unrecognised frame: %r", data)
            return
        self._handlers[type(event)](self, event)

    def _on_chat(self, event: ChatNotice) -> None:
        payload = event.message.to_wire()
        conversation_id = payload["conversationId"]
        sender_id = payload.get("senderId")
        if sender_id is not None:
            self.typing.stopped(conversation_id, sender_id)

        changed = self.view(conversation_id).apply_confirmed(payload)
        if changed and sender_id != self.user_id and conversation_id != self.active_conversation_id:
            self.unread.increment(conversation_id)

    def _on_typing(self, event: TypingNotice) -> None:
        if event.user_id != self.user_id:
            self.typing.saw_typing(event.conversation_id, event.user_id, event.username)

    def _on_presence_init(self, event: PresenceInit) -> None:
        self.presence.reset(event.users)

    def _on_presence(self, event: PresenceChange) -> None:
        self.presence.update(event.user_id, event.online)

    def _on_system(self, event: SystemNotice) -> None:
        logger.info("Server: %s", event.message)

    def _on_error(self, event: ErrorNotice) -> None:
        logger.warning("Server error: %s", event.message)
        self.last_error = event.message
        if event.client_token:
            for view in self.views.values():
                view.mark_failed(event.client_token)

    _handlers = {
        ChatNotice: _on_chat,
        TypingNotice: _on_typing,
        PresenceInit: _on_presence_init,
        PresenceChange: _on_presence,
        SystemNotice: _on_system,
        ErrorNotice: _on_error,
    }

    async def listen(self) -> None:
        """Consume frames until the socket closes; reconnecting is up to the caller."""
        if self._ws is None:
            return
        try:
            async for raw in self._ws:
                try:
                    data = json.loads(raw)
                except ValueError:
                    logger.warning("Ignoring non-JSON frame")
                    continue
                self.handle_frame(data)
        except ConnectionClosed:
            logger.info("Live connection closed")
        finally:
            self._ws = None
