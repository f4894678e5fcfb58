"""In-memory registry of live realtime connections per user.

A user is online while at least one of their connections is registered, so
closing one of several tabs does not flip them offline.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from uuid import UUID

from socialchat.schemas.realtime import OnlineUser

logger = logging.getLogger(__name__)


class PresenceTransition(str, Enum):
    ONLINE = "user_online"
    OFFLINE = "user_offline"


@dataclass
class PresenceEntry:
    connection_id: str
    user_id: UUID
    display_name: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class PresenceChange:
    """Result of a disconnect: who it belonged to and whether they went offline."""

    user_id: UUID | None
    transition: PresenceTransition | None
    remaining_connections: int = 0


class PresenceRegistry:
    def __init__(self):
        self._entries: dict[str, PresenceEntry] = {}
        self._by_user: dict[UUID, set[str]] = {}
        self._lock = asyncio.Lock()

    async def on_connect(
        self, connection_id: str, user_id: UUID, display_name: str
    ) -> PresenceTransition | None:
        """Registers a connection. Returns ONLINE when it is the user's first."""
        async with self._lock:
            if connection_id in self._entries:
                return None
            self._entries[connection_id] = PresenceEntry(
                connection_id=connection_id,
                user_id=user_id,
                display_name=display_name,
            )
            sockets = self._by_user.setdefault(user_id, set())
            sockets.add(connection_id)
            if len(sockets) == 1:
                logger.info(f"User {user_id} is online")
                return PresenceTransition.ONLINE
            return None

    async def on_disconnect(self, connection_id: str) -> PresenceChange:
        """Drops a connection. Unknown ids are ignored so OFFLINE fires once."""
        async with self._lock:
            entry = self._entries.pop(connection_id, None)
            if entry is None:
                return PresenceChange(user_id=None, transition=None)

            sockets = self._by_user.get(entry.user_id, set())
            sockets.discard(connection_id)
            if sockets:
                return PresenceChange(
                    user_id=entry.user_id,
                    transition=None,
                    remaining_connections=len(sockets),
                )

            self._by_user.pop(entry.user_id, None)
            logger.info(f"User {entry.user_id} is offline")
            return PresenceChange(
                user_id=entry.user_id, transition=PresenceTransition.OFFLINE
            )

    def list_online(self) -> list[OnlineUser]:
        online = []
        for user_id, sockets in self._by_user.items():
            entries = [self._entries[cid] for cid in sockets]
            first = min(entries, key=lambda e: e.connected_at)
            online.append(
                OnlineUser(
                    user_id=user_id,
                    name=first.display_name,
                    connections=len(entries),
                    connected_at=first.connected_at,
                )
            )
        online.sort(key=lambda u: u.connected_at)
        return online

    def sockets_for(self, user_id: UUID) -> list[str]:
        return sorted(self._by_user.get(user_id, ()))

    def is_online(self, user_id: UUID) -> bool:
        return bool(self._by_user.get(user_id))

    def online_user_ids(self) -> set[UUID]:
        return set(self._by_user)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
            self._by_user.clear()
