from sqlalchemy import Column, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import relationship
from sqlalchemy.types import Uuid

from socialchat.schemas.participant import ParticipantRole

from .base import BaseModel


class Participant(BaseModel):
    __tablename__ = "participants"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    conversation_id = Column(
        Uuid(as_uuid=True), ForeignKey("conversations.id"), nullable=False
    )
    role = Column(
        SQLAlchemyEnum(ParticipantRole),
        nullable=False,
        default=ParticipantRole.MEMBER,
    )
    joined_at = Column(DateTime(timezone=True), nullable=True)
    # seq of the newest message this participant has seen
    last_read_seq = Column(Integer, nullable=False, default=0, server_default="0")

    user = relationship("User", back_populates="participations", foreign_keys=[user_id])
    conversation = relationship(
        "Conversation", back_populates="participants", foreign_keys=[conversation_id]
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "conversation_id", name="uq_participant_user_conversation"
        ),
    )
