import enum
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .conversation import ConversationMeta


class SortOrder(str, enum.Enum):
    ASC = "asc"
    DESC = "desc"


class MessageCreateRequest(BaseModel):
    text: str | None = None
    attachments: list[str] = Field(default_factory=list)
    reply_to_id: uuid.UUID | None = None


class MessageResponse(BaseModel):
    id: uuid.UUID
    conversation_id: uuid.UUID
    sender_id: uuid.UUID
    text: str | None = None
    attachments: list[str] = Field(default_factory=list)
    reply_to_id: uuid.UUID | None = None
    seq: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessagePage(BaseModel):
    conversation: ConversationMeta
    messages: list[MessageResponse]
    total: int
    skip: int
    limit: int


class ReadReceipt(BaseModel):
    conversation_id: uuid.UUID
    user_id: uuid.UUID
    last_read_seq: int
