from __future__ import annotations

import asyncio
import json
from collections.abc import Generator
from datetime import datetime, timedelta

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from privtalk.main import create_app
from privtalk.media.media_store import MediaStore, MediaUploadError
from privtalk.services import ChatServices


class TickingClock:
    """Strictly increasing timestamps so ordering never depends on wall-clock resolution"""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


class InMemoryUserRepository:
    def __init__(self):
        self.docs: dict[str, dict] = {}
        self.fail = False

    def add(self, full_name: str, email: str) -> dict:
        doc = {
            "_id": str(ObjectId()),
            "full_name": full_name,
            "email": email,
            "profile_pic": f"https://avatars.example/{full_name.lower()}.png",
        }
        self.docs[doc["_id"]] = doc
        return doc

    def _check(self):
        if self.fail:
            raise PyMongoError("directory unavailable")

    async def find_all_except(self, user_id: str) -> list[dict]:
        self._check()
        return [dict(d) for uid, d in self.docs.items() if uid != str(user_id)]

    async def find_by_id(self, user_id: str):
        self._check()
        doc = self.docs.get(str(user_id))
        return dict(doc) if doc else None


class InMemoryMessageRepository:
    def __init__(self):
        self.docs: list[dict] = []
        self.fail = False

    def _check(self):
        if self.fail:
            raise PyMongoError("message store unavailable")

    def get(self, message_id: str):
        return next((d for d in self.docs if d["_id"] == str(message_id)), None)

    async def ensure_indexes(self):
        return None

    async def find_between(self, user_a, user_b, ascending=True, text_query=None, limit=None):
        self._check()
        pair = {str(user_a), str(user_b)}
        docs = [d for d in self.docs if {d["sender_id"], d["receiver_id"]} == pair]
        if text_query:
            docs = [d for d in docs if d.get("text") and text_query.lower() in d["text"].lower()]
        docs.sort(key=lambda d: (d["created_at"], d["_id"]), reverse=not ascending)
        if limit:
            docs = docs[:limit]
        return [dict(d) for d in docs]

    async def find_last_between(self, user_a, user_b):
        docs = await self.find_between(user_a, user_b, ascending=False, limit=1)
        return docs[0] if docs else None

    async def count_unread(self, sender_id, receiver_id) -> int:
        self._check()
        return sum(
            1 for d in self.docs
            if d["sender_id"] == str(sender_id) and d["receiver_id"] == str(receiver_id) and not d["read"]
        )

    async def mark_read(self, sender_id, receiver_id, updated_at) -> int:
        self._check()
        modified = 0
        for d in self.docs:
            if d["sender_id"] == str(sender_id) and d["receiver_id"] == str(receiver_id) and not d["read"]:
                d["read"] = True
                d["updated_at"] = updated_at
                modified += 1
        return modified

    async def insert(self, doc: dict) -> dict:
        self._check()
        doc = dict(doc)
        doc["_id"] = str(ObjectId())
        doc["sender_id"] = str(doc["sender_id"])
        doc["receiver_id"] = str(doc["receiver_id"])
        self.docs.append(doc)
        return dict(doc)

    async def find_by_id(self, message_id):
        self._check()
        doc = self.get(message_id)
        return dict(doc) if doc else None

    async def delete_by_id(self, message_id) -> bool:
        self._check()
        before = len(self.docs)
        self.docs = [d for d in self.docs if d["_id"] != str(message_id)]
        return len(self.docs) < before


class RecordingMediaStore(MediaStore):
    def __init__(self):
        self.calls: list[tuple[str, str, str]] = []
        self.fail = False

    async def _upload(self, data: str, kind: str, folder: str) -> str:
        self.calls.append((data, kind, folder))
        if self.fail:
            raise MediaUploadError("media provider unavailable")
        return f"https://media.example/{folder}/{len(self.calls)}"


class FakeConnection:
    """Stands in for a connected WebSocket; records every pushed frame"""

    def __init__(self, broken: bool = False, delay: float = 0.0):
        self.frames: list[dict] = []
        self.broken = broken
        self.delay = delay

    async def send_text(self, text: str):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.broken:
            raise RuntimeError("socket closed")
        self.frames.append(json.loads(text))

    def events(self, event_type: str) -> list[dict]:
        return [f["data"] for f in self.frames if f["type"] == event_type]


@pytest.fixture()
def users_repo() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture()
def messages_repo() -> InMemoryMessageRepository:
    return InMemoryMessageRepository()


@pytest.fixture()
def media_store() -> RecordingMediaStore:
    return RecordingMediaStore()


@pytest.fixture()
def services(users_repo, messages_repo, media_store) -> ChatServices:
    svc = ChatServices(users=users_repo, messages=messages_repo, media=media_store)
    svc.message_service.clock = TickingClock()
    return svc


@pytest.fixture()
def message_service(services):
    return services.message_service


@pytest.fixture()
def alice(users_repo) -> dict:
    return users_repo.add("Alice", "alice@example.com")


@pytest.fixture()
def bob(users_repo) -> dict:
    return users_repo.add("Bob", "bob@example.com")


@pytest.fixture()
def carol(users_repo) -> dict:
    return users_repo.add("Carol", "carol@example.com")


@pytest.fixture()
def client(services) -> Generator[TestClient, None, None]:
    app = create_app(services)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def authorize(client: TestClient):
    def _apply(user: dict):
        client.headers["X-User-Id"] = user["_id"]

    yield _apply
    client.headers.pop("X-User-Id", None)


@pytest.fixture()
def settle_pushes(client: TestClient, services):
    """Block until pushes scheduled by the last request have been delivered"""
    def _settle():
        client.portal.call(services.dispatcher.drain)

    return _settle
