import logging
from datetime import datetime
from typing import Callable, List, Optional

from privtalk.realtime.dispatcher import NEW_MESSAGE, MESSAGE_DELETED, TYPING_START, TYPING_STOP
from .api_client import ApiError

logger = logging.getLogger(__name__)


def _log_notification(level: str, text: str):
    logger.log(logging.ERROR if level == "error" else logging.INFO, text)


def _parse_time(value) -> datetime:
    if not value:
        return datetime.min
    return datetime.fromisoformat(str(value).replace("Z", "+00:00")).replace(tzinfo=None)


def _sort_key(entry: dict):
    return _parse_time(entry.get("createdAt")), str(entry.get("id"))


class TimelineReconciler:
    """
    Client-side state for the open conversation.

    Merges the history fetch, the sender's own confirmed sends and pushed
    messages into one list ordered by (createdAt, id), without duplicates.
    Only messages between the authenticated user and the selected peer are kept.
    """

    def __init__(self, api, socket, auth_user: dict, notify: Optional[Callable[[str, str], None]] = None):
        self.api = api
        self.socket = socket
        self.auth_user = auth_user
        self.notify = notify or _log_notification

        self.users: List[dict] = []
        self.selected_peer: Optional[dict] = None
        self.messages: List[dict] = []
        self.chat_metadata: Optional[dict] = None
        self.is_users_loading = False
        self.is_messages_loading = False
        self.peer_typing = False

        self._ids = set()
        self._load_seq = 0
        self._subscribed = False

    @property
    def me(self) -> str:
        return self.auth_user["id"]

    async def load_users(self):
        self.is_users_loading = True
        try:
            self.users = await self.api.get_users()
        except ApiError as e:
            self.notify("error", e.message or "Failed to load users")
        finally:
            self.is_users_loading = False

    async def select_peer(self, peer: dict):
        self._unsubscribe()
        self.selected_peer = peer
        self.messages = []
        self._ids = set()
        self.chat_metadata = None
        self.peer_typing = False
        self._subscribe()

        self._load_seq += 1
        seq = self._load_seq
        self.is_messages_loading = True
        try:
            res = await self.api.get_messages(peer["id"])
        except ApiError as e:
            if seq == self._load_seq:
                if e.status_code == 403:
                    self.notify("error", "Unauthorized access to messages")
                else:
                    self.notify("error", e.message or "Failed to load messages")
            return
        finally:
            if seq == self._load_seq:
                self.is_messages_loading = False

        if seq != self._load_seq:
            # another peer was selected while this one loaded
            return

        pushed_while_loading = self.messages
        self.messages = []
        self._ids = set()
        for entry in res.get("messages", []):
            self._insert(entry)
        for entry in pushed_while_loading:
            self._insert(entry)
        self.chat_metadata = {
            "participants": res.get("participants"),
            "totalMessages": res.get("totalMessages", len(self.messages)),
        }

    def deselect(self):
        self._unsubscribe()
        self._load_seq += 1
        self.selected_peer = None
        self.messages = []
        self._ids = set()
        self.chat_metadata = None
        self.peer_typing = False
        self.is_messages_loading = False

    async def send(self, payload: dict) -> Optional[dict]:
        """Send to the selected peer; the message is appended once the server confirms it"""
        peer = self.selected_peer
        if not peer:
            self.notify("error", "No user selected")
            return None

        try:
            saved = await self.api.send_message(peer["id"], payload)
        except ApiError as e:
            self.notify("error", e.message or "Failed to send message")
            return None

        entry = self._enrich(saved, peer)
        if self.selected_peer is peer:
            self._insert(entry)
        return entry

    async def delete(self, message_id: str) -> bool:
        try:
            await self.api.delete_message(message_id)
        except ApiError as e:
            self.notify("error", e.message or "Failed to delete message")
            return False
        self._remove(message_id)
        self.notify("success", "Message deleted")
        return True

    def _subscribe(self):
        if self._subscribed or self.socket is None:
            return
        self.socket.on(NEW_MESSAGE, self._on_new_message)
        self.socket.on(MESSAGE_DELETED, self._on_message_deleted)
        self.socket.on(TYPING_START, self._on_typing_start)
        self.socket.on(TYPING_STOP, self._on_typing_stop)
        self._subscribed = True

    def _unsubscribe(self):
        if not self._subscribed:
            return
        self.socket.off(NEW_MESSAGE, self._on_new_message)
        self.socket.off(MESSAGE_DELETED, self._on_message_deleted)
        self.socket.off(TYPING_START, self._on_typing_start)
        self.socket.off(TYPING_STOP, self._on_typing_stop)
        self._subscribed = False

    def _is_relevant(self, sender_id, receiver_id) -> bool:
        peer = self.selected_peer
        if not peer:
            return False
        return {sender_id, receiver_id} == {peer["id"], self.me}

    def _on_new_message(self, message):
        if not isinstance(message, dict):
            return
        if not self._is_relevant(message.get("senderId"), message.get("receiverId")):
            return
        self._insert(self._enrich(message, self.selected_peer))

    def _on_message_deleted(self, data):
        if isinstance(data, dict) and data.get("messageId"):
            self._remove(data["messageId"])

    def _on_typing_start(self, data):
        if self.selected_peer and isinstance(data, dict) and data.get("senderId") == self.selected_peer["id"]:
            self.peer_typing = True

    def _on_typing_stop(self, data):
        if self.selected_peer and isinstance(data, dict) and data.get("senderId") == self.selected_peer["id"]:
            self.peer_typing = False

    def _party(self, user_id: str, peer: dict) -> dict:
        source = self.auth_user if user_id == self.me else peer
        return {
            "id": user_id,
            "fullName": source.get("fullName"),
            "profilePic": source.get("profilePic"),
            "isMe": user_id == self.me,
        }

    def _enrich(self, message: dict, peer: dict) -> dict:
        entry = dict(message)
        entry["sender"] = self._party(message.get("senderId"), peer)
        entry["receiver"] = self._party(message.get("receiverId"), peer)
        return entry

    def _insert(self, entry: dict):
        message_id = entry.get("id")
        if message_id in self._ids:
            return
        self._ids.add(message_id)

        key = _sort_key(entry)
        i = len(self.messages)
        while i > 0 and _sort_key(self.messages[i - 1]) > key:
            i -= 1
        self.messages.insert(i, entry)

    def _remove(self, message_id: str):
        if message_id not in self._ids:
            return
        self._ids.discard(message_id)
        self.messages = [m for m in self.messages if m.get("id") != message_id]
