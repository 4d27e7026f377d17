from motor.motor_asyncio import AsyncIOMotorClient
from motor.motor_asyncio import AsyncIOMotorGridFSBucket

from privtalk.configs.settings import (
    MONGO_URI,
    DB_NAME,
    MONGO_SERVER_SELECTION_TIMEOUT_MS,
    MONGO_SOCKET_TIMEOUT_MS,
)

USERS_COLLECTION = "users"
MESSAGES_COLLECTION = "messages"
MEDIA_BUCKET = "media"


def create_client() -> AsyncIOMotorClient:
    return AsyncIOMotorClient(
        MONGO_URI,
        serverSelectionTimeoutMS=MONGO_SERVER_SELECTION_TIMEOUT_MS,
        socketTimeoutMS=MONGO_SOCKET_TIMEOUT_MS,
    )


def get_database(client: AsyncIOMotorClient):
    return client[DB_NAME]


def get_media_bucket(db) -> AsyncIOMotorGridFSBucket:
    return AsyncIOMotorGridFSBucket(db, bucket_name=MEDIA_BUCKET)
