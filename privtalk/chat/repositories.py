import re
from typing import List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING


def to_object_id(value) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def _pair_filter(user_a: ObjectId, user_b: ObjectId) -> dict:
    return {
        "$or": [
            {"sender_id": user_a, "receiver_id": user_b},
            {"sender_id": user_b, "receiver_id": user_a},
        ]
    }


class UserRepository:
    """Read-only access to the users collection"""

    def __init__(self, collection):
        self.collection = collection

    async def find_all_except(self, user_id: str) -> List[dict]:
        oid = to_object_id(user_id)
        cursor = self.collection.find({"_id": {"$ne": oid}}, {"password": 0})
        return await cursor.to_list(length=None)

    async def find_by_id(self, user_id: str) -> Optional[dict]:
        oid = to_object_id(user_id)
        if oid is None:
            return None
        return await self.collection.find_one({"_id": oid}, {"password": 0})


class MessageRepository:
    def __init__(self, collection):
        self.collection = collection

    async def ensure_indexes(self):
        await self.collection.create_index([("sender_id", ASCENDING), ("receiver_id", ASCENDING)])
        await self.collection.create_index([("receiver_id", ASCENDING), ("sender_id", ASCENDING)])
        await self.collection.create_index([("created_at", DESCENDING)])

    async def find_between(self, user_a: str, user_b: str, ascending: bool = True,
                           text_query: Optional[str] = None,
                           limit: Optional[int] = None) -> List[dict]:
        q = _pair_filter(to_object_id(user_a), to_object_id(user_b))
        if text_query:
            q["text"] = {"$regex": re.escape(text_query), "$options": "i"}

        direction = ASCENDING if ascending else DESCENDING
        cursor = self.collection.find(q, sort=[("created_at", direction), ("_id", direction)], limit=limit or 0)
        return await cursor.to_list(length=None)

    async def find_last_between(self, user_a: str, user_b: str) -> Optional[dict]:
        docs = await self.find_between(user_a, user_b, ascending=False, limit=1)
        return docs[0] if docs else None

    async def count_unread(self, sender_id: str, receiver_id: str) -> int:
        return await self.collection.count_documents({
            "sender_id": to_object_id(sender_id),
            "receiver_id": to_object_id(receiver_id),
            "read": False,
        })

    async def mark_read(self, sender_id: str, receiver_id: str, updated_at) -> int:
        res = await self.collection.update_many(
            {
                "sender_id": to_object_id(sender_id),
                "receiver_id": to_object_id(receiver_id),
                "read": False,
            },
            {"$set": {"read": True, "updated_at": updated_at}},
        )
        return res.modified_count

    async def insert(self, doc: dict) -> dict:
        doc = dict(doc)
        doc["sender_id"] = to_object_id(doc["sender_id"])
        doc["receiver_id"] = to_object_id(doc["receiver_id"])
        res = await self.collection.insert_one(doc)
        doc["_id"] = res.inserted_id
        return doc

    async def find_by_id(self, message_id: str) -> Optional[dict]:
        oid = to_object_id(message_id)
        if oid is None:
            return None
        return await self.collection.find_one({"_id": oid})

    async def delete_by_id(self, message_id: str) -> bool:
        res = await self.collection.delete_one({"_id": to_object_id(message_id)})
        return res.deleted_count == 1
