import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from privtalk.chat import convertors  # noqa: F401  registers the objectid path convertor
from .dispatcher import TYPING_START, TYPING_STOP, ONLINE_USERS

logger = logging.getLogger(__name__)

router = APIRouter()

RELAYED_EVENTS = (TYPING_START, TYPING_STOP)


@router.websocket("/ws/{user_id:objectid}")
async def chat_socket(websocket: WebSocket, user_id: str):
    """
    Per-user realtime channel.
    - server pushes {"type": "newMessage" | "messageDeleted" | "getOnlineUsers" | "typingStart" | "typingStop", "data": ...}
    - clients send {"type": "typingStart" | "typingStop", "data": {"receiverId": "..."}}
    """
    services = websocket.app.state.services
    presence = services.presence
    dispatcher = services.dispatcher

    await websocket.accept()
    if presence.register(user_id, websocket) is not None:
        logger.info(f"{user_id} reconnected, previous connection replaced")
    logger.info(f"WebSocket connection: {user_id} ({len(presence)} online)")
    await dispatcher.broadcast(ONLINE_USERS, presence.online_user_ids())

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                # binary frames carry nothing we relay
                continue
            try:
                frame = json.loads(raw)
            except ValueError:
                continue
            if not isinstance(frame, dict):
                continue

            event = frame.get("type")
            data = frame.get("data")
            if event not in RELAYED_EVENTS or not isinstance(data, dict):
                continue

            receiver_id = data.get("receiverId")
            if receiver_id:
                await dispatcher.notify(str(receiver_id), event, {"senderId": user_id})

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: {user_id}")
    finally:
        if presence.unregister(user_id, websocket):
            await dispatcher.broadcast(ONLINE_USERS, presence.online_user_ids())
