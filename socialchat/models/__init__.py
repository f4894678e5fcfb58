from .base import BaseModel, metadata, utcnow
from .conversation import (
    Conversation,
    GroupConversation,
    PersonalConversation,
    make_pair_key,
)
from .message import Message
from .participant import Participant
from .user import User

__all__ = [
    "BaseModel",
    "metadata",
    "utcnow",
    "User",
    "Conversation",
    "PersonalConversation",
    "GroupConversation",
    "make_pair_key",
    "Message",
    "Participant",
]
