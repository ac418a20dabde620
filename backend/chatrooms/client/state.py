"""Client-side view state kept in sync with the live channel.

Outgoing messages are shown immediately with a client token; the server
echoes that token in the confirmed ``chat`` event, and the local echo is
replaced by exact key match. Message ids guard against duplicate deliveries
(for example the same message arriving over REST and the socket).
"""
import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


def new_client_token() -> str:
    return uuid.uuid4().hex


@dataclass
class LocalMessage:
    conversation_id: int
    text: str
    sender_id: Optional[int]
    status: DeliveryStatus
    client_token: Optional[str] = None
    id: Optional[int] = None
    type: str = "TEXT"
    created_at: Optional[str] = None
    sender: Optional[dict] = None

    @classmethod
    def from_wire(cls, payload: dict) -> "LocalMessage":
        return cls(
            conversation_id=payload["conversationId"],
            text=payload["text"],
            sender_id=payload.get("senderId"),
            status=DeliveryStatus.CONFIRMED,
            client_token=payload.get("clientToken"),
            id=payload.get("id"),
            type=payload.get("type", "TEXT"),
            created_at=payload.get("createdAt"),
            sender=payload.get("sender"),
        )


class ConversationView:
    """Ordered messages of one conversation as the user sees them."""

    def __init__(self, conversation_id: int, user_id: int):
        self.conversation_id = conversation_id
        self.user_id = user_id
        self.messages: List[LocalMessage] = []

    def _by_token(self, client_token: str) -> Optional[LocalMessage]:
        for message in self.messages:
            if message.client_token == client_token and message.sender_id == self.user_id:
                return message
        return None

    def _has_id(self, message_id: int) -> bool:
        return any(m.id == message_id for m in self.messages)

    @property
    def pending(self) -> List[LocalMessage]:
        return [m for m in self.messages if m.status == DeliveryStatus.PENDING]

    def add_optimistic(self, text: str, client_token: Optional[str] = None) -> LocalMessage:
        message = LocalMessage(
            conversation_id=self.conversation_id,
            text=text,
            sender_id=self.user_id,
            status=DeliveryStatus.PENDING,
            client_token=client_token or new_client_token(),
        )
        self.messages.append(message)
        return message

    def apply_confirmed(self, payload: dict) -> bool:
        """Merge a server-confirmed message; returns False if nothing changed."""
        if payload.get("conversationId") != self.conversation_id:
            return False
        if self._has_id(payload["id"]):
            return False

        token = payload.get("clientToken")
        if token and payload.get("senderId") == self.user_id:
            local = self._by_token(token)
            if local is not None:
                confirmed = LocalMessage.from_wire(payload)
                self.messages[self.messages.index(local)] = confirmed
                return True

        self.messages.append(LocalMessage.from_wire(payload))
        return True

    def mark_failed(self, client_token: str) -> None:
        local = self._by_token(client_token)
        if local is not None and local.status == DeliveryStatus.PENDING:
            local.status = DeliveryStatus.FAILED

    def load_history(self, payloads: Iterable[dict]) -> None:
        """Replace the view with fetched history, keeping unconfirmed local echoes."""
        confirmed = [LocalMessage.from_wire(p) for p in payloads]
        known_tokens = {m.client_token for m in confirmed if m.client_token}
        unsent = [m for m in self.messages if m.status != DeliveryStatus.CONFIRMED and m.client_token not in known_tokens]
        self.messages = confirmed + unsent


class TypingTracker:
    """Who is typing, per conversation.

    Each notice (re)starts a timer for that user; the user stops counting as
    typing once the timer runs out or a message from them arrives.
    """

    def __init__(self, timeout: float = 2.0, clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout
        self._clock = clock
        # (conversation_id, user_id) -> (username, expires_at)
        self._typing: Dict[tuple, tuple] = {}

    def saw_typing(self, conversation_id: int, user_id: int, username: str) -> None:
        self._typing[(conversation_id, user_id)] = (username, self._clock() + self.timeout)

    def stopped(self, conversation_id: int, user_id: int) -> None:
        self._typing.pop((conversation_id, user_id), None)

    def active(self, conversation_id: int) -> List[str]:
        now = self._clock()
        for key, (_name, expires_at) in list(self._typing.items()):
            if expires_at <= now:
                del self._typing[key]
        return sorted(name for (cid, _uid), (name, _exp) in self._typing.items() if cid == conversation_id)


@dataclass
class PresenceTracker:
    online: Set[int] = field(default_factory=set)

    def reset(self, user_ids: Iterable[int]) -> None:
        self.online = set(user_ids)

    def update(self, user_id: int, online: bool) -> None:
        if online:
            self.online.add(user_id)
        else:
            self.online.discard(user_id)

    def is_online(self, user_id: int) -> bool:
        return user_id in self.online


class UnreadTracker:
    """Badge counts per conversation, seeded from ``GET /conversations``."""

    def __init__(self):
        self.counts: Dict[int, int] = {}

    def initialize(self, conversations: Iterable[dict]) -> None:
        self.counts = {c["id"]: c["unreadCount"] for c in conversations if c.get("unreadCount")}

    def increment(self, conversation_id: int) -> None:
        self.counts[conversation_id] = self.counts.get(conversation_id, 0) + 1

    def mark_read(self, conversation_id: int) -> None:
        self.counts.pop(conversation_id, None)

    @property
    def total(self) -> int:
        return sum(self.counts.values())
