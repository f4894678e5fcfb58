from sqlalchemy import JSON, Column, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.types import Uuid

from .base import BaseModel


class Message(BaseModel):
    __tablename__ = "messages"

    # Messages are immutable; updated_at/deleted_at stay at their defaults
    conversation_id = Column(
        Uuid(as_uuid=True), ForeignKey("conversations.id"), nullable=False
    )
    sender_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    text = Column(Text, nullable=True)
    attachments = Column(JSON, nullable=False, default=list)
    reply_to_id = Column(Uuid(as_uuid=True), ForeignKey("messages.id"), nullable=True)
    # Position in the conversation, assigned by the store on insert
    seq = Column(Integer, nullable=False)

    sender = relationship("User", back_populates="messages", foreign_keys=[sender_id])

    __table_args__ = (
        UniqueConstraint("conversation_id", "seq", name="uq_message_conversation_seq"),
    )
