import enum
from datetime import datetime
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ConversationKind(str, enum.Enum):
    PERSONAL = "personal"
    GROUP = "group"


class PersonalChatOpenRequest(BaseModel):
    # Optional so a missing peer surfaces as a 400 from the service layer
    peer_id: UUID | None = None


class GroupCreateRequest(BaseModel):
    name: str | None = None
    image: str | None = None
    participant_ids: list[UUID] = Field(default_factory=list)


class ConversationUpdateRequest(BaseModel):
    name: str | None = None
    image: str | None = None


class LastMessageSummary(BaseModel):
    id: UUID
    sender_id: UUID
    text: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationMeta(BaseModel):
    """Header fields rendered for one viewer."""

    id: UUID
    kind: ConversationKind
    name: str | None = None
    image: str | None = None


class _ConversationSummaryBase(BaseModel):
    id: UUID
    name: str | None = None
    image: str | None = None
    participant_ids: list[UUID]
    last_message: LastMessageSummary | None = None
    unread_count: int = 0
    created_at: datetime


class PersonalConversationSummary(_ConversationSummaryBase):
    kind: Literal["personal"] = "personal"
    # The participant whose profile supplies name and image
    peer_id: UUID | None = None


class GroupConversationSummary(_ConversationSummaryBase):
    kind: Literal["group"] = "group"
    created_by_user_id: UUID | None = None
    admin_ids: list[UUID] = Field(default_factory=list)


ConversationSummary = Annotated[
    Union[PersonalConversationSummary, GroupConversationSummary],
    Field(discriminator="kind"),
]


class ConversationDeleteResponse(BaseModel):
    deleted: bool
