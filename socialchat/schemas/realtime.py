"""Wire format of the realtime websocket protocol.

Clients send JSON objects tagged with ``type``; the server answers with
``{"event": <name>, "data": {...}}`` envelopes.
"""

from datetime import datetime
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _InboundEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")


class JoinChatEvent(_InboundEvent):
    type: Literal["join_chat"]
    conversation_id: UUID


class LeaveChatEvent(_InboundEvent):
    type: Literal["leave_chat"]
    conversation_id: UUID


class JoinGroupEvent(_InboundEvent):
    type: Literal["join_group"]
    conversation_id: UUID


class LeaveGroupEvent(_InboundEvent):
    type: Literal["leave_group"]
    conversation_id: UUID


class SendMessageEvent(_InboundEvent):
    type: Literal["send_message"]
    conversation_id: UUID
    text: str | None = None
    attachments: list[str] = Field(default_factory=list)
    reply_to_id: UUID | None = None


class SendGroupMessageEvent(SendMessageEvent):
    type: Literal["send_group_message"]


class TypingEvent(_InboundEvent):
    type: Literal["typing"]
    conversation_id: UUID
    is_typing: bool = True


InboundEvent = Annotated[
    Union[
        JoinChatEvent,
        LeaveChatEvent,
        JoinGroupEvent,
        LeaveGroupEvent,
        SendMessageEvent,
        SendGroupMessageEvent,
        TypingEvent,
    ],
    Field(discriminator="type"),
]

inbound_event_adapter = TypeAdapter(InboundEvent)


class ServerEvent:
    """Names of server to client events."""

    ONLINE_USERS = "online_users"
    UPDATE_ONLINE_USERS = "update_online_users"
    USER_JOINED = "user_joined"
    USER_LEFT = "user_left"
    USER_JOINED_GROUP = "user_joined_group"
    USER_LEFT_GROUP = "user_left_group"
    JOINED_CHAT = "joined_chat"
    RECEIVE_MESSAGE = "receive_message"
    RECEIVE_GROUP_MESSAGE = "receive_group_message"
    RECEIVE_PRIVATE_MESSAGE = "receive_private_message"
    USER_TYPING = "user_typing"
    ERROR = "error"


class OnlineUser(BaseModel):
    user_id: UUID
    name: str
    connections: int
    connected_at: datetime


class PresenceNotice(BaseModel):
    user_id: UUID
    name: str
    message: str
    timestamp: datetime


class RoomNotice(BaseModel):
    conversation_id: UUID
    user_id: UUID
    name: str
    message: str
    timestamp: datetime


class TypingNotice(BaseModel):
    conversation_id: UUID
    user_id: UUID
    name: str
    is_typing: bool


class ErrorNotice(BaseModel):
    message: str
    code: int
    event: str | None = None
