from typing import Dict, List, Optional


class PresenceRegistry:
    """
    In-memory map of user id -> active connection.
    One connection per user: a newer registration replaces the older one.
    """

    def __init__(self):
        self._connections: Dict[str, object] = {}

    def register(self, user_id: str, connection) -> Optional[object]:
        """Register connection for user_id, returns the connection it replaced (if any)"""
        previous = self._connections.get(user_id)
        self._connections[user_id] = connection
        return previous if previous is not connection else None

    def unregister(self, user_id: str, connection) -> bool:
        # a late disconnect must not remove a newer connection
        if self._connections.get(user_id) is not connection:
            return False
        del self._connections[user_id]
        return True

    def lookup(self, user_id: str):
        return self._connections.get(user_id)

    def online_user_ids(self) -> List[str]:
        return list(self._connections.keys())

    def connections(self):
        return list(self._connections.items())

    def __contains__(self, user_id) -> bool:
        return user_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)
