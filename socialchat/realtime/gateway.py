"""Realtime gateway: authenticates sockets, tracks rooms and relays chat events.

Every store call opens its own short-lived session, so one slow query never
holds a session across unrelated events. Sends to the same conversation are
serialized so that delivery order matches the order messages were stored.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Awaitable, Callable, Iterable, TypeVar
from uuid import UUID

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from socialchat.core.config import settings
from socialchat.db import get_db_session
from socialchat.repositories.conversation_repository import ConversationRepository
from socialchat.repositories.message_repository import MessageRepository
from socialchat.repositories.participant_repository import ParticipantRepository
from socialchat.repositories.user_repository import UserRepository
from socialchat.schemas.conversation import ConversationKind
from socialchat.schemas.message import MessageResponse
from socialchat.schemas.realtime import (
    ErrorNotice,
    JoinChatEvent,
    JoinGroupEvent,
    LeaveChatEvent,
    LeaveGroupEvent,
    PresenceNotice,
    RoomNotice,
    SendGroupMessageEvent,
    SendMessageEvent,
    ServerEvent,
    TypingEvent,
    TypingNotice,
    inbound_event_adapter,
)
from socialchat.services.conversation_service import ConversationService
from socialchat.services.enrichment import describe_conversation
from socialchat.services.exceptions import (
    BusinessRuleError,
    InvalidArgumentError,
    NotAuthorizedError,
    ServiceError,
    StoreTimeoutError,
)
from socialchat.services.identity_service import Identity, IdentityService
from socialchat.services.message_service import MessageService
from socialchat.services.presence_service import PresenceService

from .connections import Connection, ConnectionManager, ConnectionState
from .presence import PresenceRegistry, PresenceTransition

logger = logging.getLogger(__name__)

T = TypeVar("T")

SessionFactory = Callable[[], AsyncGenerator[AsyncSession, None]]

# Close code sent when the handshake carries no valid token
WS_CLOSE_UNAUTHORIZED = 4401


def _dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class StoreScope:
    """Repositories and services bound to one database session."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.user_repo = UserRepository(session)
        conv_repo = ConversationRepository(session)
        part_repo = ParticipantRepository(session)
        self.conversations = ConversationService(conv_repo, part_repo, self.user_repo)
        self.messages = MessageService(
            conv_repo, part_repo, MessageRepository(session), self.user_repo
        )
        self.presence = PresenceService(self.user_repo)
        self.identity = IdentityService(self.user_repo)


class ChatGateway:
    def __init__(
        self,
        session_factory: SessionFactory = get_db_session,
        app: FastAPI | None = None,
        store_timeout: float | None = None,
    ):
        self.session_factory = session_factory
        self.app = app
        self.store_timeout = (
            store_timeout if store_timeout is not None else settings.STORE_TIMEOUT_SECONDS
        )
        self.presence = PresenceRegistry()
        self.manager = ConnectionManager()
        self._handlers = {
            "join_chat": self._on_join_chat,
            "leave_chat": self._on_leave_chat,
            "join_group": self._on_join_group,
            "leave_group": self._on_leave_group,
            "send_message": self._on_send_message,
            "send_group_message": self._on_send_message,
            "typing": self._on_typing,
        }

    # -- store access -----------------------------------------------------

    def _resolve_session_factory(self) -> SessionFactory:
        # Dependency overrides on get_db_session apply to socket sessions too
        if self.app is not None:
            return self.app.dependency_overrides.get(
                get_db_session, self.session_factory
            )
        return self.session_factory

    @asynccontextmanager
    async def _scope(self) -> AsyncGenerator[StoreScope, None]:
        sessions = self._resolve_session_factory()()
        session = await sessions.__anext__()
        try:
            yield StoreScope(session)
        finally:
            await sessions.aclose()

    async def _store(
        self, operation: Callable[[StoreScope], Awaitable[T]], action: str
    ) -> T:
        """Runs ``operation`` in a fresh scope, bounded by the store timeout."""

        async def run():
            async with self._scope() as scope:
                return await operation(scope)

        try:
            return await asyncio.wait_for(run(), timeout=self.store_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Store call timed out after {self.store_timeout}s: {action}")
            raise StoreTimeoutError(f"Timed out while trying to {action}. Please retry.")

    # -- connection lifecycle ---------------------------------------------

    async def authenticate(self, token: str | None) -> Identity:
        return await self._store(
            lambda scope: scope.identity.verify_token(token), "verify the access token"
        )

    async def serve(self, websocket: WebSocket, token: str | None) -> None:
        """Runs one socket from handshake to close."""
        try:
            identity = await self.authenticate(token)
        except ServiceError as e:
            logger.info(f"Rejecting websocket handshake: {e.message}")
            await websocket.close(code=WS_CLOSE_UNAUTHORIZED, reason=e.message)
            return

        connection = None
        try:
            connection = await self.connect(websocket, identity)
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(
                        message.get("code", 1000), message.get("reason")
                    )
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                await self.handle_message(connection, raw)
        except WebSocketDisconnect:
            logger.info(f"Socket of user {identity.user_id} closed")
        finally:
            if connection is not None:
                await self.disconnect(connection)

    async def connect(self, websocket: WebSocket, identity: Identity) -> Connection:
        await websocket.accept()
        connection = Connection(websocket=websocket)
        connection.authenticate(identity)
        self.manager.register(connection)
        try:
            await self._announce_connect(connection)
        except Exception:
            # Never leave a half-registered connection counted as online
            await self.disconnect(connection)
            raise
        return connection

    async def _announce_connect(self, connection: Connection) -> None:
        identity = connection.identity
        transition = await self.presence.on_connect(
            connection.id, identity.user_id, identity.name
        )
        await connection.send(ServerEvent.ONLINE_USERS, self._online_users())

        if transition == PresenceTransition.ONLINE:
            await self._persist_presence(identity.user_id, online=True)
            notice = PresenceNotice(
                user_id=identity.user_id,
                name=identity.name,
                message=f"{identity.name} is online",
                timestamp=_now(),
            )
            await self.manager.broadcast(
                ServerEvent.USER_JOINED, _dump(notice), exclude_user_id=identity.user_id
            )
            await self.manager.broadcast(
                ServerEvent.UPDATE_ONLINE_USERS, self._online_users()
            )

    async def disconnect(self, connection: Connection) -> None:
        if connection.state == ConnectionState.CLOSED:
            return
        connection.state = ConnectionState.CLOSED
        self.manager.unregister(connection)

        change = await self.presence.on_disconnect(connection.id)
        if change.transition != PresenceTransition.OFFLINE:
            return

        identity = connection.identity
        await self._persist_presence(identity.user_id, online=False)
        notice = PresenceNotice(
            user_id=identity.user_id,
            name=identity.name,
            message=f"{identity.name} went offline",
            timestamp=_now(),
        )
        await self.manager.broadcast(
            ServerEvent.USER_LEFT, _dump(notice), exclude_user_id=identity.user_id
        )
        await self.manager.broadcast(
            ServerEvent.UPDATE_ONLINE_USERS, self._online_users()
        )

    async def shutdown(self) -> None:
        for connection in list(self.manager.connections.values()):
            connection.state = ConnectionState.CLOSED
            try:
                await connection.websocket.close(code=1001)
            except RuntimeError as e:
                logger.debug(f"Connection {connection.id} already closed: {e}")
        self.manager.clear()
        await self.presence.clear()
        logger.info("Realtime gateway stopped")

    def _online_users(self) -> list[dict]:
        return [_dump(user) for user in self.presence.list_online()]

    async def _persist_presence(self, user_id: UUID, online: bool) -> None:
        async def write(scope: StoreScope):
            if online:
                await scope.presence.mark_online(user_id)
            else:
                await scope.presence.mark_offline(user_id)

        try:
            await self._store(write, "update presence")
        except ServiceError as e:
            # The in-memory registry stays authoritative for delivery
            logger.warning(f"Could not persist presence for {user_id}: {e.message}")

    # -- inbound events ---------------------------------------------------

    async def handle_message(self, connection: Connection, raw: str | bytes | dict) -> None:
        """Parses and dispatches one client event; failures go back as ``error``."""
        event_type = None
        try:
            if raw is None:
                raise InvalidArgumentError("Events must be JSON text frames.")
            if isinstance(raw, bytes):
                try:
                    raw = raw.decode("utf-8")
                except UnicodeDecodeError:
                    raise InvalidArgumentError("Events must be UTF-8 encoded JSON.")
            payload = json.loads(raw) if isinstance(raw, str) else raw
            if not isinstance(payload, dict):
                raise InvalidArgumentError("Events must be JSON objects.")
            event_type = payload.get("type")
            try:
                event = inbound_event_adapter.validate_python(payload)
            except ValidationError as e:
                first = e.errors()[0]
                location = ".".join(str(part) for part in first.get("loc", ()))
                raise InvalidArgumentError(
                    f"Malformed event: {location} {first.get('msg', '')}".strip()
                )
            await self._handlers[event.type](connection, event)
        except json.JSONDecodeError:
            await self._send_error(connection, InvalidArgumentError("Events must be valid JSON."))
        except ServiceError as e:
            await self._send_error(connection, e, event_type)
        except Exception as e:
            logger.error(
                f"Unexpected error handling {event_type} from {connection.id}: {e}",
                exc_info=True,
            )
            await self._send_error(
                connection, ServiceError("An unexpected server error occurred."), event_type
            )

    async def _send_error(
        self, connection: Connection, error: ServiceError, event_type: str | None = None
    ) -> None:
        logger.warning(
            f"Realtime error for {connection.user_id} ({event_type}): {error.message}"
        )
        notice = ErrorNotice(
            message=error.message,
            code=error.status_code,
            event=event_type if isinstance(event_type, str) else None,
        )
        await connection.send(ServerEvent.ERROR, _dump(notice))

    async def _join(self, connection: Connection, conversation_id: UUID, group_only: bool):
        user_id = connection.user_id

        async def load(scope: StoreScope):
            conversation = await scope.conversations.get_conversation(
                conversation_id, user_id
            )
            if group_only and conversation.kind != ConversationKind.GROUP:
                raise BusinessRuleError("Not a group conversation.")
            meta = await describe_conversation(scope.user_repo, conversation, user_id)
            return meta, conversation.participant_ids

        meta, participant_ids = await self._store(load, "join the conversation")
        joined = self.manager.join(connection, conversation_id)
        await connection.send(
            ServerEvent.JOINED_CHAT,
            {
                "conversation": _dump(meta),
                "participant_ids": [str(pid) for pid in participant_ids],
            },
        )
        return joined

    async def _on_join_chat(self, connection: Connection, event: JoinChatEvent):
        await self._join(connection, event.conversation_id, group_only=False)

    async def _on_leave_chat(self, connection: Connection, event: LeaveChatEvent):
        self.manager.leave(connection, event.conversation_id)

    async def _on_join_group(self, connection: Connection, event: JoinGroupEvent):
        if await self._join(connection, event.conversation_id, group_only=True):
            await self._notify_room(
                event.conversation_id,
                connection,
                ServerEvent.USER_JOINED_GROUP,
                f"{connection.identity.name} joined the group",
            )

    async def _on_leave_group(self, connection: Connection, event: LeaveGroupEvent):
        if self.manager.leave(connection, event.conversation_id):
            await self._notify_room(
                event.conversation_id,
                connection,
                ServerEvent.USER_LEFT_GROUP,
                f"{connection.identity.name} left the group",
            )

    async def _notify_room(
        self, conversation_id: UUID, actor: Connection, event: str, message: str
    ) -> None:
        notice = RoomNotice(
            conversation_id=conversation_id,
            user_id=actor.user_id,
            name=actor.identity.name,
            message=message,
            timestamp=_now(),
        )
        others = [
            c
            for c in self.manager.room_members(conversation_id)
            if c.user_id != actor.user_id
        ]
        await self.manager.send_to(others, event, _dump(notice))

    async def _on_send_message(self, connection: Connection, event: SendMessageEvent):
        expected_kind = (
            ConversationKind.GROUP if isinstance(event, SendGroupMessageEvent) else None
        )
        sender_id = connection.user_id

        stored = {}

        async def append(scope: StoreScope):
            conversation = await scope.conversations.get_conversation(
                event.conversation_id, sender_id
            )
            kind, participant_ids = conversation.kind, list(conversation.participant_ids)
            message = await scope.messages.append_message(
                conversation_id=event.conversation_id,
                sender_id=sender_id,
                text=event.text,
                attachments=event.attachments,
                reply_to_id=event.reply_to_id,
                expected_kind=expected_kind,
            )
            stored.update(message=message, kind=kind, participant_ids=participant_ids)

        # Held across persist and fan-out so delivery follows seq order
        async with self.manager.lock_for(event.conversation_id):
            try:
                await self._store(append, "send the message")
            except StoreTimeoutError:
                if "message" not in stored:
                    raise
                # The commit landed before the deadline; deliver it rather than invite a resend
                logger.warning(
                    f"Store call outlived its deadline after storing {stored['message'].id}"
                )
            message = stored["message"]
            await self.publish_message(message, stored["kind"], stored["participant_ids"])
            await self._advance_summary(message)

    async def _advance_summary(self, message: MessageResponse) -> None:
        try:
            await self._store(
                lambda scope: scope.messages.advance_last_message(message),
                "update the conversation summary",
            )
        except ServiceError as e:
            # The message is stored and delivered; the summary catches up on the next send
            logger.warning(
                f"lastMessage update for {message.conversation_id} failed: {e.message}"
            )

    async def _on_typing(self, connection: Connection, event: TypingEvent):
        if not connection.is_joined(event.conversation_id):
            raise NotAuthorizedError("Join the conversation before sending typing updates.")
        notice = TypingNotice(
            conversation_id=event.conversation_id,
            user_id=connection.user_id,
            name=connection.identity.name,
            is_typing=event.is_typing,
        )
        others = [
            c
            for c in self.manager.room_members(event.conversation_id)
            if c.user_id != connection.user_id
        ]
        await self.manager.send_to(others, ServerEvent.USER_TYPING, _dump(notice))

    # -- outbound fan-out -------------------------------------------------

    async def publish_message(
        self,
        message: MessageResponse,
        kind: ConversationKind,
        participant_ids: Iterable[UUID],
    ) -> None:
        """
        Delivers a stored message to every joined connection of its room, and
        to online participants without a joined connection on their own channel.
        """
        data = _dump(message)
        room = self.manager.room_members(message.conversation_id)
        room_event = (
            ServerEvent.RECEIVE_GROUP_MESSAGE
            if kind == ConversationKind.GROUP
            else ServerEvent.RECEIVE_MESSAGE
        )
        await self.manager.send_to(room, room_event, data)

        in_room = {c.user_id for c in room}
        for user_id in participant_ids:
            if user_id in in_room:
                continue
            targets = [
                c
                for cid in self.presence.sockets_for(user_id)
                if (c := self.manager.get(cid)) is not None
            ]
            await self.manager.send_to(targets, ServerEvent.RECEIVE_PRIVATE_MESSAGE, data)

    async def evict_participant(self, conversation_id: UUID, user_id: UUID) -> None:
        """Drops a removed member's connections from the conversation room."""
        evicted = [
            c for c in self.manager.room_members(conversation_id) if c.user_id == user_id
        ]
        for connection in evicted:
            self.manager.leave(connection, conversation_id)
        if evicted:
            await self._notify_room(
                conversation_id,
                evicted[0],
                ServerEvent.USER_LEFT_GROUP,
                f"{evicted[0].identity.name} was removed from the group",
            )

    def forget_conversation(self, conversation_id: UUID) -> None:
        self.manager.forget_room(conversation_id)


def get_chat_gateway(app: FastAPI) -> ChatGateway:
    gateway = getattr(app.state, "gateway", None)
    if gateway is None:
        gateway = app.state.gateway = ChatGateway(app=app)
    return gateway
