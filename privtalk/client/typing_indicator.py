import asyncio
from typing import Optional

from privtalk.configs.settings import TYPING_IDLE_SECONDS
from privtalk.realtime.dispatcher import TYPING_START, TYPING_STOP


class TypingNotifier:
    """
    Emits typingStart on every keystroke and typingStop once the user has been
    idle for idle_seconds. Each keystroke restarts the idle timer.
    """

    def __init__(self, socket, receiver_id: str, idle_seconds: float = TYPING_IDLE_SECONDS):
        self.socket = socket
        self.receiver_id = receiver_id
        self.idle_seconds = idle_seconds
        self._timer: Optional[asyncio.Task] = None

    async def keystroke(self):
        await self.socket.emit(TYPING_START, {"receiverId": self.receiver_id})
        self._cancel_timer()
        self._timer = asyncio.create_task(self._stop_after_idle())

    async def sent(self):
        self._cancel_timer()
        await self.socket.emit(TYPING_STOP, {"receiverId": self.receiver_id})

    def close(self):
        self._cancel_timer()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _stop_after_idle(self):
        await asyncio.sleep(self.idle_seconds)
        self._timer = None
        await self.socket.emit(TYPING_STOP, {"receiverId": self.receiver_id})
