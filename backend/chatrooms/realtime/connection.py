import asyncio
import itertools
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

# frames waiting for a slow client before it is dropped
DEFAULT_QUEUE_SIZE = 256

_CLOSE = object()
_ids = itertools.count(1)


class LiveConnection:
    """One client socket plus its outbound queue.

    ``push`` never suspends: it enqueues the frame and returns, so fan-out over
    the registry stays a plain loop. A writer task drains the queue into the
    socket in order. A connection whose socket failed or whose queue
    overflowed reports ``is_open == False`` and is skipped by broadcasts.
    """

    def __init__(self, websocket: Any, max_queue: int = DEFAULT_QUEUE_SIZE):
        self.id = next(_ids)
        self.websocket = websocket
        self.user_id: Optional[int] = None
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue + 1)
        self._max_queue = max_queue
        self._closed = False
        self._overflowed = False

    def __repr__(self) -> str:
        return f"<LiveConnection #{self.id} user={self.user_id}>"

    @property
    def is_open(self) -> bool:
        return not self._closed

    def push(self, frame: dict) -> bool:
        """Queue a frame for delivery; returns False if the connection is gone."""
        if self._closed:
            return False
        if self._queue.qsize() >= self._max_queue:
            logger.warning("Outbound queue full for %r, dropping connection", self)
            self._overflowed = True
            self.close()
            return False
        self._queue.put_nowait(frame)
        return True

    def close(self) -> None:
        """Stop accepting frames and let the writer finish."""
        if self._closed:
            return
        self._closed = True
        if self._overflowed:
            # pending frames are useless to a client we are about to drop
            while not self._queue.empty():
                self._queue.get_nowait()
        self._queue.put_nowait(_CLOSE)

    async def run_writer(self) -> None:
        try:
            while True:
                frame = await self._queue.get()
                if frame is _CLOSE:
                    break
                await self.websocket.send_json(frame)
        except Exception as e:
            logger.debug("Writer for %r stopped: %s", self, e)
        finally:
            self._closed = True

        if self._overflowed:
            try:
                await self.websocket.close(code=1013)
            except Exception as e:
                logger.debug("Closing %r after overflow failed: %s", self, e)
