from fastapi import Depends, Request

from socialchat.realtime.gateway import ChatGateway, get_chat_gateway as _gateway_for
from socialchat.repositories.conversation_repository import ConversationRepository
from socialchat.repositories.dependencies import (
    get_conversation_repository,
    get_message_repository,
    get_participant_repository,
    get_user_repository,
)
from socialchat.repositories.message_repository import MessageRepository
from socialchat.repositories.participant_repository import ParticipantRepository
from socialchat.repositories.user_repository import UserRepository

from .conversation_service import ConversationService
from .message_service import MessageService


# Request-scoped: each service shares the request's session through its repositories
def get_conversation_service(
    conv_repo: ConversationRepository = Depends(get_conversation_repository),
    part_repo: ParticipantRepository = Depends(get_participant_repository),
    user_repo: UserRepository = Depends(get_user_repository),
) -> ConversationService:
    """Provides an instance of the ConversationService with its dependencies."""
    return ConversationService(
        conversation_repository=conv_repo,
        participant_repository=part_repo,
        user_repository=user_repo,
    )


def get_message_service(
    conv_repo: ConversationRepository = Depends(get_conversation_repository),
    part_repo: ParticipantRepository = Depends(get_participant_repository),
    msg_repo: MessageRepository = Depends(get_message_repository),
    user_repo: UserRepository = Depends(get_user_repository),
) -> MessageService:
    """Provides an instance of the MessageService."""
    return MessageService(
        conversation_repository=conv_repo,
        participant_repository=part_repo,
        message_repository=msg_repo,
        user_repository=user_repo,
    )


def get_chat_gateway(request: Request) -> ChatGateway:
    """The process-wide gateway, used by REST routes to publish realtime events."""
    return _gateway_for(request.app)
