import asyncio
import json
import logging
from typing import Optional

from privtalk.configs.settings import PUSH_TIMEOUT_SECONDS
from .presence import PresenceRegistry

logger = logging.getLogger(__name__)

NEW_MESSAGE = "newMessage"
MESSAGE_DELETED = "messageDeleted"
TYPING_START = "typingStart"
TYPING_STOP = "typingStop"
ONLINE_USERS = "getOnlineUsers"


def encode_event(event: str, data) -> str:
    return json.dumps({"type": event, "data": data})


class PushDispatcher:
    """
    Best-effort delivery of events to a user's registered connection.
    At most once: nothing is queued or retried for offline users.
    """

    def __init__(self, presence: PresenceRegistry, timeout: float = PUSH_TIMEOUT_SECONDS):
        self.presence = presence
        self.timeout = timeout
        # strong references; the loop only keeps weak ones to running tasks
        self._pending = set()

    async def notify(self, user_id: str, event: str, data) -> bool:
        connection = self.presence.lookup(str(user_id))
        if connection is None:
            logger.debug(f"{event} for {user_id} dropped: not connected")
            return False
        return await self._send(str(user_id), connection, encode_event(event, data))

    def notify_later(self, user_id: str, event: str, data) -> Optional[asyncio.Task]:
        """Schedule notify() on the running loop and return without waiting for delivery"""
        if self.presence.lookup(str(user_id)) is None:
            logger.debug(f"{event} for {user_id} dropped: not connected")
            return None
        task = asyncio.get_running_loop().create_task(self.notify(user_id, event, data))
        self._pending.add(task)
        task.add_done_callback(self._push_finished)
        return task

    def _push_finished(self, task: asyncio.Task):
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Push task failed: {error!r}", exc_info=error)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self):
        """Wait for every scheduled push to finish"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def broadcast(self, event: str, data, exclude: Optional[str] = None) -> int:
        text = encode_event(event, data)
        delivered = 0
        for user_id, connection in self.presence.connections():
            if user_id == exclude:
                continue
            if await self._send(user_id, connection, text):
                delivered += 1
        return delivered

    async def _send(self, user_id: str, connection, text: str) -> bool:
        try:
            await asyncio.wait_for(connection.send_text(text), timeout=self.timeout)
            return True
        except Exception as e:
            # a dead socket is cleaned up by its own disconnect handler
            logger.warning(f"Push to {user_id} failed: {e!r}")
            return False
