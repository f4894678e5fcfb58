from sqlalchemy import Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import relationship
from sqlalchemy.types import Uuid

from socialchat.schemas.conversation import ConversationKind
from socialchat.schemas.participant import ParticipantRole

from .base import BaseModel


def make_pair_key(user_a, user_b) -> str:
    """Canonical key for an unordered pair of user ids."""
    first, second = sorted([str(user_a), str(user_b)])
    return f"{first}:{second}"


class Conversation(BaseModel):
    """Conversation header shared by personal and group chats.

    Both kinds live in one table discriminated by ``kind``; kind-specific
    columns are only populated by the matching subclass.
    """

    __tablename__ = "conversations"

    kind = Column(SQLAlchemyEnum(ConversationKind), nullable=False)

    # Personal only: unique per unordered participant pair
    pair_key = Column(Text, unique=True, nullable=True)

    # Group only
    name = Column(Text, nullable=True)
    image = Column(Text, nullable=True)
    created_by_user_id = Column(
        Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True
    )

    # lastMessage summary, overwritten only by a message with a greater seq
    last_message_id = Column(Uuid(as_uuid=True), nullable=True)
    last_message_sender_id = Column(Uuid(as_uuid=True), nullable=True)
    last_message_text = Column(Text, nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    last_message_seq = Column(Integer, nullable=True)

    participants = relationship(
        "Participant",
        back_populates="conversation",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Participant.created_at",
    )
    __mapper_args__ = {"polymorphic_on": kind}

    @property
    def participant_ids(self) -> list:
        return [p.user_id for p in self.participants]

    @property
    def admin_ids(self) -> list:
        return [p.user_id for p in self.participants if p.role == ParticipantRole.ADMIN]

    @property
    def last_message(self) -> dict | None:
        if self.last_message_id is None:
            return None
        return {
            "id": self.last_message_id,
            "sender_id": self.last_message_sender_id,
            "text": self.last_message_text,
            "created_at": self.last_message_at,
        }

    def has_participant(self, user_id) -> bool:
        return any(p.user_id == user_id for p in self.participants)

    def is_admin(self, user_id) -> bool:
        return user_id in self.admin_ids

    def other_participant_id(self, viewer_id):
        """For personal chats, the participant that is not ``viewer_id``."""
        for participant_id in self.participant_ids:
            if participant_id != viewer_id:
                return participant_id
        return None


class PersonalConversation(Conversation):
    __mapper_args__ = {"polymorphic_identity": ConversationKind.PERSONAL}


class GroupConversation(Conversation):
    __mapper_args__ = {"polymorphic_identity": ConversationKind.GROUP}
