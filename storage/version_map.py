"""Last known version counters for rooms and the user directory."""
import logging
from typing import Dict

logger = logging.getLogger(__name__)


class VersionMap:
    """Monotonic per-room versions plus the user-list version."""

    def __init__(self, user_version: int = 1):
        self._rooms: Dict[str, int] = {}
        self.user_version = user_version

    def get(self, room_id: str) -> int:
        return self._rooms.get(room_id, 0)

    def advance(self, room_id: str, version: int) -> bool:
        """
        Record a server-reported room version if it is newer.

        Args:
            room_id: Room identifier
            version: Version reported by the server

        Returns:
            True if the version was strictly greater and was recorded
        """
        current = self.get(room_id)
        if version <= current:
            return False
        self._rooms[room_id] = version
        logger.debug(f"Room {room_id} version {current} -> {version}")
        return True

    def advance_user_version(self, version: int) -> bool:
        """Record a newer user-list version; returns True if it advanced."""
        if version <= self.user_version:
            return False
        self.user_version = version
        return True
