from fastapi import APIRouter, Depends
from typing import List, Optional

from . import convertors  # noqa: F401  registers the objectid path convertor
from .deps import get_current_user, get_message_service
from .message_service import MessageService
from .models import (
    SendMessageIn,
    MessageOut,
    SidebarUser,
    HistoryResponse,
    SearchResponse,
    DeleteResponse,
    MarkReadResponse,
)

router = APIRouter(prefix="/messages", tags=["messages"])


@router.get("/users", response_model=List[SidebarUser])
async def get_users_for_sidebar(current_user: dict = Depends(get_current_user),
                                service: MessageService = Depends(get_message_service)):
    """Sidebar: every other user with last message and unread count, most recent first"""
    return await service.list_conversations(str(current_user["_id"]))


@router.get("/search/{peer_id:objectid}", response_model=SearchResponse)
async def search_messages(peer_id: str, q: Optional[str] = None,
                          current_user: dict = Depends(get_current_user),
                          service: MessageService = Depends(get_message_service)):
    return await service.search(str(current_user["_id"]), peer_id, q)


@router.put("/read/{peer_id:objectid}", response_model=MarkReadResponse)
async def mark_messages_as_read(peer_id: str,
                                current_user: dict = Depends(get_current_user),
                                service: MessageService = Depends(get_message_service)):
    updated = await service.mark_read(str(current_user["_id"]), peer_id)
    return MarkReadResponse(message="Messages marked as read", updated=updated)


@router.get("/{peer_id:objectid}", response_model=HistoryResponse)
async def get_messages(peer_id: str,
                       current_user: dict = Depends(get_current_user),
                       service: MessageService = Depends(get_message_service)):
    """Conversation history with peer_id; marks the peer's messages as read"""
    return await service.get_history(str(current_user["_id"]), peer_id)


@router.post("/send/{peer_id:objectid}", response_model=MessageOut, status_code=201)
async def send_message(peer_id: str, body: SendMessageIn,
                       current_user: dict = Depends(get_current_user),
                       service: MessageService = Depends(get_message_service)):
    """Persist a message to peer_id and push it to them if they are connected"""
    return await service.send(str(current_user["_id"]), peer_id, body)


@router.delete("/{message_id:objectid}", response_model=DeleteResponse)
async def delete_message(message_id: str,
                         current_user: dict = Depends(get_current_user),
                         service: MessageService = Depends(get_message_service)):
    return await service.delete_message(str(current_user["_id"]), message_id)
