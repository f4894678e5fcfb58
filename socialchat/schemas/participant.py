import enum
from uuid import UUID

from pydantic import BaseModel


class ParticipantRole(str, enum.Enum):
    MEMBER = "member"
    ADMIN = "admin"


class ParticipantAddRequest(BaseModel):
    user_id: UUID


class ParticipantChangeResponse(BaseModel):
    conversation_id: UUID
    user_id: UUID
    participant_ids: list[UUID]
    changed: bool
