import asyncio
import logging
import uuid
import weakref
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable
from uuid import UUID

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from socialchat.services.identity_service import Identity

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


@dataclass(eq=False)
class Connection:
    websocket: WebSocket
    identity: Identity | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: ConnectionState = ConnectionState.UNAUTHENTICATED
    rooms: set[UUID] = field(default_factory=set)

    @property
    def user_id(self) -> UUID | None:
        return self.identity.user_id if self.identity else None

    def authenticate(self, identity: Identity) -> None:
        self.identity = identity
        self.state = ConnectionState.AUTHENTICATED

    def is_joined(self, conversation_id: UUID) -> bool:
        return conversation_id in self.rooms

    async def send(self, event: str, data: Any) -> bool:
        """Sends one envelope. Returns False when the socket is already gone."""
        if self.state == ConnectionState.CLOSED:
            return False
        if getattr(self.websocket, "client_state", None) == WebSocketState.DISCONNECTED:
            return False
        try:
            await self.websocket.send_json({"event": event, "data": data})
            return True
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.debug(f"Dropping {event} for connection {self.id}: {e}")
            return False


class ConnectionManager:
    """Tracks open connections and which conversation rooms each has joined."""

    def __init__(self):
        self.connections: dict[str, Connection] = {}
        self.rooms: dict[UUID, set[str]] = defaultdict(set)
        # Entries vanish once no task holds or waits on the lock
        self._conversation_locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def register(self, connection: Connection) -> None:
        self.connections[connection.id] = connection

    def unregister(self, connection: Connection) -> list[UUID]:
        """Removes the connection everywhere. Returns the rooms it had joined."""
        self.connections.pop(connection.id, None)
        left = list(connection.rooms)
        for conversation_id in left:
            self.leave(connection, conversation_id)
        return left

    def get(self, connection_id: str) -> Connection | None:
        return self.connections.get(connection_id)

    def join(self, connection: Connection, conversation_id: UUID) -> bool:
        """Adds the connection to a room. Returns False if it was already there."""
        if connection.is_joined(conversation_id):
            return False
        connection.rooms.add(conversation_id)
        self.rooms[conversation_id].add(connection.id)
        return True

    def leave(self, connection: Connection, conversation_id: UUID) -> bool:
        if not connection.is_joined(conversation_id):
            return False
        connection.rooms.discard(conversation_id)
        members = self.rooms.get(conversation_id)
        if members is not None:
            members.discard(connection.id)
            if not members:
                del self.rooms[conversation_id]
        return True

    def room_members(self, conversation_id: UUID) -> list[Connection]:
        return [
            self.connections[cid]
            for cid in sorted(self.rooms.get(conversation_id, ()))
            if cid in self.connections
        ]

    def lock_for(self, conversation_id: UUID) -> asyncio.Lock:
        lock = self._conversation_locks.get(conversation_id)
        if lock is None:
            lock = self._conversation_locks[conversation_id] = asyncio.Lock()
        return lock

    def forget_room(self, conversation_id: UUID) -> list[Connection]:
        """Empties a room, e.g. after its conversation was deleted."""
        members = self.room_members(conversation_id)
        for connection in members:
            self.leave(connection, conversation_id)
        self._conversation_locks.pop(conversation_id, None)
        return members

    async def send_to(
        self, connections: Iterable[Connection], event: str, data: Any
    ) -> int:
        delivered = 0
        for connection in connections:
            if await connection.send(event, data):
                delivered += 1
        return delivered

    async def broadcast(
        self, event: str, data: Any, exclude_user_id: UUID | None = None
    ) -> int:
        targets = [
            c
            for c in list(self.connections.values())
            if c.state == ConnectionState.AUTHENTICATED
            and (exclude_user_id is None or c.user_id != exclude_user_id)
        ]
        return await self.send_to(targets, event, data)

    def clear(self) -> None:
        self.connections.clear()
        self.rooms.clear()
        self._conversation_locks.clear()
