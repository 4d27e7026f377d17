import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ChatApiClient:
    """Async client for the /api/messages endpoints, identified by the X-User-Id session header"""

    def __init__(self, base_url: str, user_id: str, timeout: float = 30,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/api",
            headers={"X-User-Id": user_id},
            timeout=timeout,
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def _request(self, method: str, path: str, **kwargs):
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error(f"{method} {path} failed: {exc!r}")
            raise ApiError(0, "Network error") from exc

        if resp.status_code >= 400:
            raise ApiError(resp.status_code, _error_message(resp))
        return resp.json()

    async def get_users(self):
        return await self._request("GET", "/messages/users")

    async def get_messages(self, peer_id: str):
        return await self._request("GET", f"/messages/{peer_id}")

    async def send_message(self, peer_id: str, payload: dict):
        return await self._request("POST", f"/messages/send/{peer_id}", json=payload)

    async def delete_message(self, message_id: str):
        return await self._request("DELETE", f"/messages/{message_id}")

    async def search_messages(self, peer_id: str, query: str):
        return await self._request("GET", f"/messages/search/{peer_id}", params={"q": query})

    async def mark_read(self, peer_id: str):
        return await self._request("PUT", f"/messages/read/{peer_id}")


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"HTTP {resp.status_code}"
    if isinstance(body, dict):
        return body.get("error") or body.get("message") or str(body.get("detail") or f"HTTP {resp.status_code}")
    return f"HTTP {resp.status_code}"
