import uuid

import sqlalchemy
from fastapi_users.db import SQLAlchemyBaseUserTable
from sqlalchemy import Boolean, Column, DateTime, Text
from sqlalchemy.orm import relationship

from .base import BaseModel


# Note: SQLAlchemyBaseUserTable requires a specific type for the ID. Uuid works.
class User(SQLAlchemyBaseUserTable[uuid.UUID], BaseModel):
    __tablename__ = "users"

    # email, hashed_password, is_active, is_superuser, is_verified come from
    # SQLAlchemyBaseUserTable

    # Display fields, read fresh whenever a personal conversation is rendered
    name = Column(Text, nullable=False, default="")
    image = Column(Text, nullable=True)

    is_online = Column(
        Boolean, nullable=False, server_default=sqlalchemy.sql.expression.false()
    )
    last_seen_at = Column(DateTime(timezone=True), nullable=True)

    participations = relationship(
        "Participant",
        back_populates="user",
        foreign_keys="Participant.user_id",
    )
    messages = relationship(
        "Message",
        back_populates="sender",
        foreign_keys="Message.sender_id",
    )
