import logging
from typing import Optional

from privtalk.chat.db import (
    create_client,
    get_database,
    get_media_bucket,
    USERS_COLLECTION,
    MESSAGES_COLLECTION,
)
from privtalk.chat.message_service import MessageService
from privtalk.chat.repositories import UserRepository, MessageRepository
from privtalk.configs.settings import MEDIA_BACKEND
from privtalk.media.media_store import MediaStore, build_media_store
from privtalk.realtime.dispatcher import PushDispatcher
from privtalk.realtime.presence import PresenceRegistry

logger = logging.getLogger(__name__)


class ChatServices:
    """Everything a running app instance owns: store access, presence and dispatch"""

    def __init__(self,
                 users: UserRepository,
                 messages: MessageRepository,
                 media: MediaStore,
                 presence: Optional[PresenceRegistry] = None,
                 media_bucket=None,
                 client=None):
        self.users = users
        self.messages = messages
        self.media = media
        self.presence = presence if presence is not None else PresenceRegistry()
        self.dispatcher = PushDispatcher(self.presence)
        self.message_service = MessageService(users, messages, media, self.dispatcher)
        self.media_bucket = media_bucket
        self.client = client

    async def startup(self):
        await self.messages.ensure_indexes()
        logger.info("✅ MongoDB connected and message indexes ensured")

    def close(self):
        if self.client is not None:
            self.client.close()


def build_services() -> ChatServices:
    client = create_client()
    db = get_database(client)
    bucket = get_media_bucket(db)
    logger.info(f"Using {MEDIA_BACKEND} media backend")
    return ChatServices(
        users=UserRepository(db[USERS_COLLECTION]),
        messages=MessageRepository(db[MESSAGES_COLLECTION]),
        media=build_media_store(bucket),
        media_bucket=bucket,
        client=client,
    )
