import asyncio
import json
import logging
from collections import defaultdict
from typing import Callable, Dict, List, Optional

import websockets

logger = logging.getLogger(__name__)


class SocketClient:
    """
    Realtime channel for one user. Frames are {"type": event, "data": payload};
    handlers registered with on() are called from the reader task.
    """

    def __init__(self, base_url: str, user_id: str):
        self.url = f"{base_url.rstrip('/')}/ws/{user_id}"
        self.user_id = user_id
        self._handlers: Dict[str, List[Callable]] = defaultdict(list)
        self._ws = None
        self._reader: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self):
        self._ws = await websockets.connect(self.url)
        self._reader = asyncio.create_task(self._read_loop())
        logger.info(f"Connected to {self.url}")

    async def close(self):
        if self._reader:
            self._reader.cancel()
            self._reader = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    def on(self, event: str, handler: Callable):
        self._handlers[event].append(handler)

    def off(self, event: str, handler: Optional[Callable] = None):
        if handler is None:
            self._handlers.pop(event, None)
            return
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: str, data: dict):
        if self._ws is None:
            return
        try:
            await self._ws.send(json.dumps({"type": event, "data": data}))
        except websockets.exceptions.ConnectionClosed as e:
            logger.warning(f"Emit {event} on closed socket: {e}")

    def dispatch(self, event: str, data):
        for handler in list(self._handlers.get(event, [])):
            try:
                handler(data)
            except Exception:
                logger.exception(f"Handler for {event} failed")

    async def _read_loop(self):
        try:
            async for raw in self._ws:
                try:
                    frame = json.loads(raw)
                except ValueError:
                    continue
                if isinstance(frame, dict) and frame.get("type"):
                    self.dispatch(frame["type"], frame.get("data"))
        except websockets.exceptions.ConnectionClosed as e:
            logger.info(f"Socket closed: {e}")
