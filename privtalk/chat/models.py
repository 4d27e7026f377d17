from enum import Enum
from pydantic import BaseModel, Field
from typing import Optional, List


class FileType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"


class SendMessageIn(BaseModel):
    """Body of POST /messages/send/{peerId}; image/video carry a data URI or URL"""
    text: Optional[str] = None
    image: Optional[str] = None
    video: Optional[str] = None
    file_type: Optional[FileType] = Field(None, alias="fileType")
    file_name: Optional[str] = Field(None, alias="fileName")

    class Config:
        populate_by_name = True


class MessageOut(BaseModel):
    id: str
    sender_id: str = Field(alias="senderId")
    receiver_id: str = Field(alias="receiverId")
    text: Optional[str] = None
    image: Optional[str] = None
    video: Optional[str] = None
    file_type: FileType = Field(FileType.TEXT, alias="fileType")
    file_name: Optional[str] = Field(None, alias="fileName")
    read: bool = False
    created_at: str = Field(alias="createdAt")  # ISO8601 + Z
    updated_at: Optional[str] = Field(None, alias="updatedAt")

    class Config:
        populate_by_name = True


class UserSummary(BaseModel):
    id: str
    full_name: Optional[str] = Field(None, alias="fullName")
    profile_pic: Optional[str] = Field(None, alias="profilePic")

    class Config:
        populate_by_name = True


class MessageParty(UserSummary):
    """Sender/receiver display object, isMe is relative to the requester"""
    is_me: bool = Field(False, alias="isMe")


class HistoryMessage(MessageOut):
    sender: MessageParty
    receiver: MessageParty


class Participants(BaseModel):
    current_user: UserSummary = Field(alias="currentUser")
    other_user: UserSummary = Field(alias="otherUser")

    class Config:
        populate_by_name = True


class HistoryResponse(BaseModel):
    chat_id: str = Field(alias="chatId")
    participants: Participants
    messages: List[HistoryMessage]
    total_messages: int = Field(alias="totalMessages")

    class Config:
        populate_by_name = True


class SidebarUser(UserSummary):
    email: Optional[str] = None
    last_message: Optional[MessageOut] = Field(None, alias="lastMessage")
    unread_count: int = Field(0, alias="unreadCount")


class SearchResponse(BaseModel):
    results: List[MessageOut]
    total: int


class DeleteResponse(BaseModel):
    message: str
    message_id: str = Field(alias="messageId")

    class Config:
        populate_by_name = True


class MarkReadResponse(BaseModel):
    message: str
    updated: int
