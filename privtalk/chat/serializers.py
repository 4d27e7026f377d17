from datetime import datetime, timezone
from typing import Optional, Tuple

from .models import MessageOut, UserSummary, MessageParty, HistoryMessage, FileType


def iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.isoformat() + "Z"


def conversation_key(user_a: str, user_b: str) -> Tuple[str, str]:
    """Order-independent key for the two-party conversation"""
    return tuple(sorted((str(user_a), str(user_b))))


def message_from_doc(doc) -> MessageOut:
    return MessageOut(
        id=str(doc["_id"]),
        sender_id=str(doc["sender_id"]),
        receiver_id=str(doc["receiver_id"]),
        text=doc.get("text"),
        image=doc.get("image"),
        video=doc.get("video"),
        file_type=FileType(doc.get("file_type") or FileType.TEXT.value),
        file_name=doc.get("file_name"),
        read=bool(doc.get("read", False)),
        created_at=iso(doc["created_at"]),
        updated_at=iso(doc.get("updated_at")),
    )


def user_summary(doc) -> UserSummary:
    return UserSummary(
        id=str(doc["_id"]),
        full_name=doc.get("full_name"),
        profile_pic=doc.get("profile_pic"),
    )


def party(doc, requester_id: str) -> MessageParty:
    summary = user_summary(doc)
    return MessageParty(**summary.model_dump(), is_me=summary.id == str(requester_id))


def history_message(doc, users_by_id, requester_id: str) -> HistoryMessage:
    base = message_from_doc(doc)
    return HistoryMessage(
        **base.model_dump(),
        sender=party(users_by_id[base.sender_id], requester_id),
        receiver=party(users_by_id[base.receiver_id], requester_id),
    )
