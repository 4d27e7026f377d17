import asyncio
import logging
from datetime import datetime
from typing import List

from pymongo.errors import PyMongoError

from privtalk.configs.settings import SEARCH_RESULT_LIMIT
from privtalk.media.media_store import MediaStore, MediaUploadError, InvalidMediaError
from privtalk.realtime.dispatcher import PushDispatcher, NEW_MESSAGE, MESSAGE_DELETED
from .errors import InvalidRequestError, NotFoundError, ForbiddenError, UpstreamError
from .models import (
    FileType,
    SendMessageIn,
    MessageOut,
    SidebarUser,
    HistoryResponse,
    Participants,
    SearchResponse,
    DeleteResponse,
)
from .repositories import UserRepository, MessageRepository
from .serializers import message_from_doc, user_summary, history_message, conversation_key

logger = logging.getLogger(__name__)


class MessageService:
    """
    Direct-message operations between two users.

    Conversations are not stored: a conversation is every message whose
    sender/receiver pair matches the two users in either direction.
    """

    def __init__(self,
                 users: UserRepository,
                 messages: MessageRepository,
                 media: MediaStore,
                 dispatcher: PushDispatcher,
                 search_limit: int = SEARCH_RESULT_LIMIT,
                 clock=datetime.utcnow):
        self.users = users
        self.messages = messages
        self.media = media
        self.dispatcher = dispatcher
        self.search_limit = search_limit
        self.clock = clock

    def _upstream(self, operation: str, error: Exception, message: str = "Internal server error") -> UpstreamError:
        logger.error(f"Error in {operation}: {error}", exc_info=True)
        return UpstreamError(message, detail=str(error))

    async def list_conversations(self, requester_id: str) -> List[SidebarUser]:
        """Every other user with the last message exchanged and the unread count, latest first"""
        try:
            users = await self.users.find_all_except(requester_id)
            rows = await asyncio.gather(*[self._sidebar_row(requester_id, u) for u in users])
        except PyMongoError as e:
            raise self._upstream("list_conversations", e)

        with_history = [r for r in rows if r[1] is not None]
        without_history = [r for r in rows if r[1] is None]
        with_history.sort(key=lambda r: (r[1]["created_at"], str(r[1]["_id"])), reverse=True)

        result = []
        for user, last, unread in with_history + without_history:
            summary = user_summary(user)
            result.append(SidebarUser(
                **summary.model_dump(),
                email=user.get("email"),
                last_message=message_from_doc(last) if last else None,
                unread_count=unread,
            ))
        return result

    async def _sidebar_row(self, requester_id: str, user: dict):
        user_id = str(user["_id"])
        last, unread = await asyncio.gather(
            self.messages.find_last_between(requester_id, user_id),
            self.messages.count_unread(user_id, requester_id),
        )
        return user, last, unread

    async def get_history(self, requester_id: str, peer_id: str) -> HistoryResponse:
        """
        Full conversation in chronological order. Opening the thread marks the
        peer's unread messages to the requester as read; the returned messages
        show the state at fetch time.
        """
        try:
            current_user, other_user = await asyncio.gather(
                self.users.find_by_id(requester_id),
                self.users.find_by_id(peer_id),
            )
        except PyMongoError as e:
            raise self._upstream("get_history", e)

        if not current_user or not other_user:
            raise NotFoundError("User not found")

        try:
            docs = await self.messages.find_between(requester_id, peer_id)
            await self.messages.mark_read(peer_id, requester_id, self.clock())
        except PyMongoError as e:
            raise self._upstream("get_history", e)

        logger.info(f"Found {len(docs)} messages in conversation {conversation_key(requester_id, peer_id)}")

        users_by_id = {str(current_user["_id"]): current_user, str(other_user["_id"]): other_user}
        return HistoryResponse(
            chat_id=str(peer_id),
            participants=Participants(
                current_user=user_summary(current_user),
                other_user=user_summary(other_user),
            ),
            messages=[history_message(d, users_by_id, requester_id) for d in docs],
            total_messages=len(docs),
        )

    async def send(self, sender_id: str, receiver_id: str, payload: SendMessageIn) -> MessageOut:
        if str(sender_id) == str(receiver_id):
            raise InvalidRequestError("Cannot send message to yourself")

        try:
            receiver = await self.users.find_by_id(receiver_id)
        except PyMongoError as e:
            raise self._upstream("send", e)
        if not receiver:
            raise NotFoundError("Receiver not found")

        file_type = payload.file_type or FileType.TEXT

        # upload only when the declared type matches the payload
        image_url = None
        video_url = None
        if payload.image and file_type == FileType.IMAGE:
            image_url = await self._upload(payload.image, "image")
        if payload.video and file_type == FileType.VIDEO:
            video_url = await self._upload(payload.video, "video")

        now = self.clock()
        doc = {
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "text": payload.text,
            "image": image_url,
            "video": video_url,
            "file_type": file_type.value,
            "file_name": payload.file_name,
            "read": False,
            "created_at": now,
            "updated_at": now,
        }

        try:
            saved = await self.messages.insert(doc)
        except PyMongoError as e:
            raise self._upstream("send", e, "Failed to save message")

        message = message_from_doc(saved)
        logger.info(f"Message saved successfully: {message.id} ({file_type.value}) {sender_id} -> {receiver_id}")

        self.dispatcher.notify_later(receiver_id, NEW_MESSAGE, message.model_dump(by_alias=True, mode="json"))
        return message

    async def _upload(self, data: str, kind: str) -> str:
        try:
            return await self.media.upload(data, kind)
        except InvalidMediaError as e:
            raise InvalidRequestError(f"Invalid {kind}: {e}")
        except (MediaUploadError, PyMongoError) as e:
            raise self._upstream(f"upload {kind}", e, f"Failed to upload {kind}")

    async def mark_read(self, receiver_id: str, sender_id: str) -> int:
        """Flip every unread message from sender_id to receiver_id. Idempotent."""
        try:
            return await self.messages.mark_read(sender_id, receiver_id, self.clock())
        except PyMongoError as e:
            raise self._upstream("mark_read", e)

    async def delete_message(self, requester_id: str, message_id: str) -> DeleteResponse:
        try:
            message = await self.messages.find_by_id(message_id)
        except PyMongoError as e:
            raise self._upstream("delete_message", e)

        if not message:
            raise NotFoundError("Message not found")
        if str(message["sender_id"]) != str(requester_id):
            raise ForbiddenError("You can only delete your own messages")

        try:
            await self.messages.delete_by_id(message_id)
        except PyMongoError as e:
            raise self._upstream("delete_message", e)

        logger.info(f"Message {message_id} deleted by {requester_id}")
        self.dispatcher.notify_later(
            str(message["receiver_id"]),
            MESSAGE_DELETED,
            {"messageId": str(message_id), "senderId": str(requester_id)},
        )
        return DeleteResponse(message="Message deleted successfully", message_id=str(message_id))

    async def search(self, requester_id: str, peer_id: str, query: str) -> SearchResponse:
        q = (query or "").strip()
        if not q:
            raise InvalidRequestError("Search query is required")

        try:
            docs = await self.messages.find_between(
                requester_id, peer_id, ascending=False, text_query=q, limit=self.search_limit
            )
        except PyMongoError as e:
            raise self._upstream("search", e)

        results = [message_from_doc(d) for d in docs]
        return SearchResponse(results=results, total=len(results))
