import logging
from typing import Callable, Dict, List, Optional, Set

from chatrooms.realtime.connection import LiveConnection
from chatrooms.schemas.events import PresenceChange

logger = logging.getLogger(__name__)

# (user_id, connection) -> deliver?
Predicate = Callable[[int, LiveConnection], bool]


class ConnectionRegistry:
    """In-memory map of user id to that user's live connections.

    Owned by the application and handed to the gateway and the broadcaster;
    only the gateway's register/unregister calls mutate it. State is lost on
    restart together with the sockets themselves.
    """

    def __init__(self):
        self._by_user: Dict[int, List[LiveConnection]] = {}
        self._owner: Dict[LiveConnection, int] = {}

    def __len__(self) -> int:
        return len(self._owner)

    def __contains__(self, connection: LiveConnection) -> bool:
        return connection in self._owner

    def register(self, user_id: int, connection: LiveConnection) -> bool:
        """Attach a connection to a user.

        Returns True when this is the user's first live connection, in which
        case everybody else is told the user came online.
        """
        current = self._owner.get(connection)
        if current == user_id:
            return False
        if current is not None:
            self.unregister(connection)

        connections = self._by_user.setdefault(user_id, [])
        first = not connections
        connections.append(connection)
        self._owner[connection] = user_id
        connection.user_id = user_id
        logger.info("User %s connected (%d connections, %d online)", user_id, len(connections), len(self._by_user))

        if first:
            self._announce(user_id, online=True)
        return first

    def unregister(self, connection: LiveConnection) -> Optional[int]:
        """Detach a connection; returns its user id, or None if it was unknown.

        When it was the user's last connection, everybody else is told the
        user went offline.
        """
        user_id = self._owner.pop(connection, None)
        if user_id is None:
            return None

        connections = self._by_user.get(user_id, [])
        if connection in connections:
            connections.remove(connection)
        if not connections:
            self._by_user.pop(user_id, None)
            self._announce(user_id, online=False)
        logger.info("User %s disconnected (%d connections left)", user_id, len(connections))
        return user_id

    def broadcast(self, predicate: Predicate, event: dict) -> int:
        """Push ``event`` to every registered connection matching ``predicate``.

        Closed connections are skipped. Returns the number of connections the
        event was queued for.
        """
        delivered = 0
        for connection, user_id in list(self._owner.items()):
            if not predicate(user_id, connection):
                continue
            if not connection.is_open:
                logger.debug("Skipping closed connection %r", connection)
                continue
            if connection.push(event):
                delivered += 1
        return delivered

    def list_online(self) -> Set[int]:
        return set(self._by_user)

    def connections_for(self, user_id: int) -> List[LiveConnection]:
        return list(self._by_user.get(user_id, []))

    def _announce(self, user_id: int, online: bool) -> None:
        event = PresenceChange(user_id=user_id, online=online).to_wire()
        self.broadcast(lambda uid, _conn: uid != user_id, event)
