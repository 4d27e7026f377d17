from typing import Optional

from fastapi import Depends, Header, Request
from pymongo.errors import PyMongoError

from .errors import UnauthorizedError, UpstreamError
from .message_service import MessageService


def get_services(request: Request):
    return request.app.state.services


def get_message_service(services=Depends(get_services)) -> MessageService:
    return services.message_service


async def get_current_user(x_user_id: Optional[str] = Header(None), services=Depends(get_services)) -> dict:
    """Resolve the opaque session identity to a directory user"""
    if not x_user_id:
        raise UnauthorizedError("Unauthorized - No session provided")
    try:
        user = await services.users.find_by_id(x_user_id)
    except PyMongoError as e:
        raise UpstreamError("Internal server error", detail=str(e))
    if not user:
        raise UnauthorizedError("Unauthorized - User not found")
    return user
