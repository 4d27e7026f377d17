from typing import Optional


class ChatError(Exception):
    """Base error for chat operations, carries the HTTP status it maps to"""
    status_code = 500

    def __init__(self, error: str, detail: Optional[str] = None):
        super().__init__(error)
        self.error = error
        self.detail = detail


class InvalidRequestError(ChatError):
    status_code = 400


class UnauthorizedError(ChatError):
    status_code = 401


class ForbiddenError(ChatError):
    status_code = 403


class NotFoundError(ChatError):
    status_code = 404


class UpstreamError(ChatError):
    """Store or media collaborator failure"""
    status_code = 500
