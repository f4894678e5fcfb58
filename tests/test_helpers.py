import json
import uuid
from typing import Any, Optional
from uuid import UUID

from asyncstdlib import anext
from fastapi_users.db import SQLAlchemyUserDatabase
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.websockets import WebSocketState

from socialchat.auth_config import get_strategy, get_user_manager
from socialchat.models import User
from socialchat.schemas.user import UserCreate


def create_test_user(
    id: Optional[UUID] = None,
    name: Optional[str] = None,
    email: Optional[str] = None,
    hashed_password: Optional[str] = None,
    image: Optional[str] = None,
    is_active: bool = True,
    is_superuser: bool = False,
    is_verified: bool = True,
) -> User:
    """Creates a User instance with default values for testing."""
    unique_suffix = uuid.uuid4()
    return User(
        id=id or unique_suffix,
        name=name or f"user_{unique_suffix.hex[:8]}",
        email=email or f"test_{unique_suffix}@example.com",
        hashed_password=hashed_password or f"password_{unique_suffix}",
        image=image,
        is_online=False,
        is_active=is_active,
        is_superuser=is_superuser,
        is_verified=is_verified,
    )


async def insert_users(
    session_maker: async_sessionmaker[AsyncSession], *users: User
) -> list[User]:
    async with session_maker() as session:
        session.add_all(users)
        await session.commit()
    return list(users)


async def register_user(
    session_maker: async_sessionmaker[AsyncSession],
    email: str,
    password: str,
    name: str,
) -> User:
    """Creates a user through the fastapi-users manager, so the password is hashed."""
    async with session_maker() as session:
        user_manager_gen = get_user_manager(SQLAlchemyUserDatabase(session, User))
        user_manager = await anext(user_manager_gen)
        try:
            return await user_manager.create(
                UserCreate(email=email, password=password, name=name)
            )
        finally:
            await user_manager_gen.aclose()


async def issue_token(user: User) -> str:
    return await get_strategy().write_token(user)


async def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {await issue_token(user)}"}


class FakeWebSocket:
    """Stands in for a starlette WebSocket: records what the server sends.

    ``incoming`` feeds ``receive``: bytes items arrive as binary frames,
    strings as text frames and anything else as JSON text. Once it is empty
    the client disconnects. ``fail_sends_with`` makes every send raise, like
    a peer that vanished without a close frame.
    """

    def __init__(
        self,
        incoming: list[Any] | None = None,
        fail_sends_with: Exception | None = None,
    ):
        self.incoming = list(incoming or [])
        self.fail_sends_with = fail_sends_with
        self.sent: list[dict] = []
        self.accepted = False
        self.close_code: int | None = None
        self.client_state = WebSocketState.CONNECTING

    async def accept(self):
        self.accepted = True
        self.client_state = WebSocketState.CONNECTED

    async def send_json(self, data: dict):
        if self.fail_sends_with is not None:
            raise self.fail_sends_with
        # Everything the server sends must survive a JSON round trip
        self.sent.append(json.loads(json.dumps(data)))

    async def receive(self) -> dict:
        if not self.incoming:
            self.client_state = WebSocketState.DISCONNECTED
            return {"type": "websocket.disconnect", "code": 1000}
        item = self.incoming.pop(0)
        if isinstance(item, bytes):
            return {"type": "websocket.receive", "bytes": item}
        text = item if isinstance(item, str) else json.dumps(item)
        return {"type": "websocket.receive", "text": text}

    async def close(self, code: int = 1000, reason: str | None = None):
        self.close_code = code
        self.client_state = WebSocketState.DISCONNECTED

    def events(self, name: str) -> list[dict]:
        return [m["data"] for m in self.sent if m["event"] == name]

    def event_names(self) -> list[str]:
        return [m["event"] for m in self.sent]

    def clear(self):
        self.sent.clear()
